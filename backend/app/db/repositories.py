"""Repository protocol interfaces for data access."""

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    PageRecord,
    ProcessingState,
)


@dataclass(frozen=True)
class ScopeFilter:
    """Restricts a chunk query to a document, optionally to one page."""

    document_id: UUID
    page_id: UUID | None = None


@dataclass
class MessageRecord:
    """Persisted conversation message."""

    message_id: UUID
    conversation_id: UUID
    document_id: UUID
    position: int
    role: str
    content: str
    created_at: datetime


class DocumentRepository(Protocol):
    """Repository for documents and their pages."""

    async def upsert_document(
        self, document_id: UUID, owner_id: UUID, storage_path: str
    ) -> DocumentStatus:
        """Create the document, or reset an existing one to queued.

        Args:
            document_id: Document identifier
            owner_id: Owning user
            storage_path: Object storage path of the uploaded file

        Returns:
            Status after the reset
        """
        ...

    async def get_document(self, document_id: UUID) -> DocumentStatus | None:
        """Get document status, or None if unknown."""
        ...

    async def update_status(
        self,
        document_id: UUID,
        state: ProcessingState,
        detail: str | None = None,
        *,
        total_pages: int | None = None,
    ) -> None:
        """Set processing state and detail (and total_pages when given)."""
        ...

    async def delete_document_content(self, document_id: UUID) -> None:
        """Delete all chunks then all pages of a document in one transaction."""
        ...

    async def insert_pages(
        self, document_id: UUID, pages: list[tuple[int, str]]
    ) -> list[PageRecord]:
        """Insert (page_number, content) rows and return them with IDs."""
        ...

    async def get_page(self, document_id: UUID, page_number: int) -> PageRecord | None:
        """Get a page by number, or None if it does not exist."""
        ...

    async def list_pages(self, document_id: UUID) -> list[PageRecord]:
        """List pages of a document in page order."""
        ...

    async def get_page_numbers(self, page_ids: list[UUID]) -> dict[UUID, int]:
        """Resolve page IDs to page numbers."""
        ...


class ChunkRepository(Protocol):
    """Repository for embedded chunks and similarity queries."""

    async def insert_chunks(self, chunks: list[NewChunk]) -> int:
        """Insert chunks with their vectors. Returns rows written."""
        ...

    async def count_chunks(self, document_id: UUID) -> int:
        """Count chunks stored for a document."""
        ...

    async def query_similar(
        self,
        query_vector: list[float],
        similarity_threshold: float,
        max_results: int,
        scope_filter: ScopeFilter,
    ) -> list[ChunkMatch]:
        """Nearest-neighbour search by cosine similarity.

        Only chunks with similarity strictly above the threshold are
        returned, best first, at most max_results of them.
        """
        ...

    async def search_keywords(
        self, scope_filter: ScopeFilter, tokens: list[str], max_results: int
    ) -> list[ChunkMatch]:
        """Case-insensitive substring search.

        Chunks matching any token are ranked by how many tokens they
        contain. ChunkMatch.similarity carries the matched fraction.
        """
        ...


class MessageRepository(Protocol):
    """Repository for conversation history."""

    async def append_messages(
        self, conversation_id: UUID, document_id: UUID, messages: list[tuple[str, str]]
    ) -> None:
        """Append (role, content) messages in order."""
        ...

    async def list_messages(self, conversation_id: UUID) -> list[MessageRecord]:
        """List messages of a conversation, oldest first."""
        ...


class ReadingStore(DocumentRepository, ChunkRepository, MessageRepository, Protocol):
    """Everything the ingestion and retrieval paths persist."""

    pass
