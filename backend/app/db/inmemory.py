"""In-memory implementation of the reading store."""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime

from backend.app.db.repositories import MessageRecord, ScopeFilter
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    PageRecord,
    ProcessingState,
)
from backend.app.utils.vectors import cosine_similarity


@dataclass
class _StoredChunk:
    chunk_id: uuid.UUID
    document_id: uuid.UUID
    page_id: uuid.UUID
    chunk_index: int
    content: str
    embedding: list[float]


class InMemoryReadingStore:
    """In-memory implementation of ReadingStore.

    Used by tests and offline runs. Writes of a single call are applied
    under one lock so readers never observe half a replacement.
    """

    def __init__(self) -> None:
        self._documents: dict[uuid.UUID, DocumentStatus] = {}
        self._pages: dict[uuid.UUID, PageRecord] = {}
        self._chunks: dict[uuid.UUID, _StoredChunk] = {}
        self._messages: dict[uuid.UUID, list[MessageRecord]] = {}
        self._lock = asyncio.Lock()
        # Every status written, in order (handy for asserting transitions)
        self.status_history: dict[uuid.UUID, list[tuple[ProcessingState, str | None]]] = {}

    async def upsert_document(
        self, document_id: uuid.UUID, owner_id: uuid.UUID, storage_path: str
    ) -> DocumentStatus:
        """Create the document, or reset an existing one to queued."""
        async with self._lock:
            now = datetime.now(UTC)
            existing = self._documents.get(document_id)
            status = DocumentStatus(
                document_id=document_id,
                owner_id=owner_id,
                storage_path=storage_path,
                processing_state=ProcessingState.queued,
                processing_detail=None,
                total_pages=existing.total_pages if existing else None,
                created_at=existing.created_at if existing else now,
                updated_at=now,
            )
            self._documents[document_id] = status
            self.status_history.setdefault(document_id, []).append(
                (ProcessingState.queued, None)
            )
            return status

    async def get_document(self, document_id: uuid.UUID) -> DocumentStatus | None:
        """Get document status."""
        status = self._documents.get(document_id)
        return status.model_copy() if status else None

    async def update_status(
        self,
        document_id: uuid.UUID,
        state: ProcessingState,
        detail: str | None = None,
        *,
        total_pages: int | None = None,
    ) -> None:
        """Set processing state and detail."""
        async with self._lock:
            status = self._documents.get(document_id)
            if status is None:
                return

            updates: dict = {
                "processing_state": state,
                "processing_detail": detail,
                "updated_at": datetime.now(UTC),
            }
            if total_pages is not None:
                updates["total_pages"] = total_pages

            self._documents[document_id] = status.model_copy(update=updates)
            self.status_history.setdefault(document_id, []).append((state, detail))

    async def delete_document_content(self, document_id: uuid.UUID) -> None:
        """Delete chunks then pages of a document."""
        async with self._lock:
            self._chunks = {
                cid: c for cid, c in self._chunks.items() if c.document_id != document_id
            }
            self._pages = {
                pid: p for pid, p in self._pages.items() if p.document_id != document_id
            }

    async def insert_pages(
        self, document_id: uuid.UUID, pages: list[tuple[int, str]]
    ) -> list[PageRecord]:
        """Insert pages, enforcing unique page numbers per document."""
        async with self._lock:
            taken = {p.page_number for p in self._pages.values() if p.document_id == document_id}
            records: list[PageRecord] = []
            for page_number, content in pages:
                if page_number in taken:
                    raise ValueError(
                        f"page {page_number} already exists for document {document_id}"
                    )
                taken.add(page_number)
                records.append(
                    PageRecord(
                        page_id=uuid.uuid4(),
                        document_id=document_id,
                        page_number=page_number,
                        content=content,
                    )
                )

            for record in records:
                self._pages[record.page_id] = record
            return records

    async def get_page(self, document_id: uuid.UUID, page_number: int) -> PageRecord | None:
        """Get a page by number."""
        for page in self._pages.values():
            if page.document_id == document_id and page.page_number == page_number:
                return page
        return None

    async def list_pages(self, document_id: uuid.UUID) -> list[PageRecord]:
        """List pages of a document in page order."""
        pages = [p for p in self._pages.values() if p.document_id == document_id]
        return sorted(pages, key=lambda p: p.page_number)

    async def get_page_numbers(self, page_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        """Resolve page IDs to page numbers."""
        return {pid: self._pages[pid].page_number for pid in page_ids if pid in self._pages}

    async def insert_chunks(self, chunks: list[NewChunk]) -> int:
        """Insert chunks, enforcing unique (page_id, chunk_index)."""
        async with self._lock:
            taken = {(c.page_id, c.chunk_index) for c in self._chunks.values()}
            stored: list[_StoredChunk] = []
            for chunk in chunks:
                page = self._pages.get(chunk.page_id)
                if page is None or page.document_id != chunk.document_id:
                    raise ValueError(f"page {chunk.page_id} does not belong to document")
                key = (chunk.page_id, chunk.chunk_index)
                if key in taken:
                    raise ValueError(f"chunk {chunk.chunk_index} already exists for page")
                taken.add(key)
                stored.append(
                    _StoredChunk(
                        chunk_id=uuid.uuid4(),
                        document_id=chunk.document_id,
                        page_id=chunk.page_id,
                        chunk_index=chunk.chunk_index,
                        content=chunk.content,
                        embedding=list(chunk.embedding),
                    )
                )

            for chunk in stored:
                self._chunks[chunk.chunk_id] = chunk
            return len(stored)

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        """Count chunks of a document."""
        return sum(1 for c in self._chunks.values() if c.document_id == document_id)

    def _in_scope(self, chunk: _StoredChunk, scope_filter: ScopeFilter) -> bool:
        if chunk.document_id != scope_filter.document_id:
            return False
        return scope_filter.page_id is None or chunk.page_id == scope_filter.page_id

    def _sort_key(self, chunk: _StoredChunk) -> tuple[int, int]:
        page = self._pages.get(chunk.page_id)
        return (page.page_number if page else 0, chunk.chunk_index)

    async def query_similar(
        self,
        query_vector: list[float],
        similarity_threshold: float,
        max_results: int,
        scope_filter: ScopeFilter,
    ) -> list[ChunkMatch]:
        """Exact cosine search over the scoped chunks."""
        scored: list[tuple[float, _StoredChunk]] = []
        for chunk in self._chunks.values():
            if not self._in_scope(chunk, scope_filter):
                continue
            similarity = cosine_similarity(query_vector, chunk.embedding)
            if similarity > similarity_threshold:
                scored.append((similarity, chunk))

        scored.sort(key=lambda item: (-item[0], self._sort_key(item[1])))
        return [
            ChunkMatch(
                chunk_id=chunk.chunk_id,
                page_id=chunk.page_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                similarity=similarity,
            )
            for similarity, chunk in scored[:max_results]
        ]

    async def search_keywords(
        self, scope_filter: ScopeFilter, tokens: list[str], max_results: int
    ) -> list[ChunkMatch]:
        """Rank scoped chunks by number of tokens they contain."""
        if not tokens:
            return []

        lowered = [t.lower() for t in tokens]
        ranked: list[tuple[int, _StoredChunk]] = []
        for chunk in self._chunks.values():
            if not self._in_scope(chunk, scope_filter):
                continue
            content = chunk.content.lower()
            hits = sum(1 for token in lowered if token in content)
            if hits:
                ranked.append((hits, chunk))

        ranked.sort(key=lambda item: (-item[0], self._sort_key(item[1])))
        return [
            ChunkMatch(
                chunk_id=chunk.chunk_id,
                page_id=chunk.page_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                similarity=hits / len(lowered),
            )
            for hits, chunk in ranked[:max_results]
        ]

    async def append_messages(
        self,
        conversation_id: uuid.UUID,
        document_id: uuid.UUID,
        messages: list[tuple[str, str]],
    ) -> None:
        """Append messages to a conversation."""
        async with self._lock:
            history = self._messages.setdefault(conversation_id, [])
            for role, content in messages:
                history.append(
                    MessageRecord(
                        message_id=uuid.uuid4(),
                        conversation_id=conversation_id,
                        document_id=document_id,
                        position=len(history),
                        role=role,
                        content=content,
                        created_at=datetime.now(UTC),
                    )
                )

    async def list_messages(self, conversation_id: uuid.UUID) -> list[MessageRecord]:
        """List messages oldest first."""
        return list(self._messages.get(conversation_id, []))
