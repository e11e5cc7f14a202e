"""SQL implementation of the reading store."""

import uuid
from typing import Any

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from backend.app.db.models import Chunk, ConversationMessage, Document, Page, utcnow
from backend.app.db.repositories import MessageRecord, ScopeFilter
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    NewChunk,
    PageRecord,
    ProcessingState,
)
from backend.app.utils.vectors import cosine_similarity


def _to_status(doc: Document) -> DocumentStatus:
    return DocumentStatus(
        document_id=doc.document_id,
        owner_id=doc.owner_id,
        storage_path=doc.storage_path,
        processing_state=ProcessingState(doc.processing_state),
        processing_detail=doc.processing_detail,
        total_pages=doc.total_pages,
        created_at=doc.created_at,
        updated_at=doc.updated_at,
    )


def _to_page(page: Page) -> PageRecord:
    return PageRecord(
        page_id=page.page_id,
        document_id=page.document_id,
        page_number=page.page_number,
        content=page.content,
    )


def _to_match(chunk: Chunk, similarity: float) -> ChunkMatch:
    return ChunkMatch(
        chunk_id=chunk.chunk_id,
        page_id=chunk.page_id,
        chunk_index=chunk.chunk_index,
        content=chunk.content,
        similarity=float(similarity),
    )


class SqlReadingStore:
    """SQL implementation of ReadingStore.

    PostgreSQL uses pgvector's cosine distance operator; other dialects
    (SQLite in tests) score the scoped chunks in Python.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    @property
    def uses_pgvector(self) -> bool:
        return self._engine.dialect.name == "postgresql"

    async def upsert_document(
        self, document_id: uuid.UUID, owner_id: uuid.UUID, storage_path: str
    ) -> DocumentStatus:
        """Create the document, or reset an existing one to queued."""
        async with self._sessions() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                doc = Document(
                    document_id=document_id,
                    owner_id=owner_id,
                    storage_path=storage_path,
                    processing_state=ProcessingState.queued.value,
                )
                session.add(doc)
            else:
                doc.owner_id = owner_id
                doc.storage_path = storage_path
                doc.processing_state = ProcessingState.queued.value
                doc.processing_detail = None
                doc.updated_at = utcnow()

            await session.commit()
            return _to_status(doc)

    async def get_document(self, document_id: uuid.UUID) -> DocumentStatus | None:
        """Get document status."""
        async with self._sessions() as session:
            doc = await session.get(Document, document_id)
            return _to_status(doc) if doc else None

    async def update_status(
        self,
        document_id: uuid.UUID,
        state: ProcessingState,
        detail: str | None = None,
        *,
        total_pages: int | None = None,
    ) -> None:
        """Set processing state and detail."""
        async with self._sessions() as session:
            doc = await session.get(Document, document_id)
            if doc is None:
                return

            doc.processing_state = state.value
            doc.processing_detail = detail
            doc.updated_at = utcnow()
            if total_pages is not None:
                doc.total_pages = total_pages

            await session.commit()

    async def delete_document_content(self, document_id: uuid.UUID) -> None:
        """Delete chunks then pages of a document in one transaction."""
        async with self._sessions() as session, session.begin():
            await session.execute(delete(Chunk).where(Chunk.document_id == document_id))
            await session.execute(delete(Page).where(Page.document_id == document_id))

    async def insert_pages(
        self, document_id: uuid.UUID, pages: list[tuple[int, str]]
    ) -> list[PageRecord]:
        """Insert pages in one transaction."""
        rows = [
            Page(page_id=uuid.uuid4(), document_id=document_id, page_number=n, content=content)
            for n, content in pages
        ]
        async with self._sessions() as session, session.begin():
            session.add_all(rows)

        return [_to_page(row) for row in rows]

    async def get_page(self, document_id: uuid.UUID, page_number: int) -> PageRecord | None:
        """Get a page by number."""
        async with self._sessions() as session:
            result = await session.execute(
                select(Page).where(
                    Page.document_id == document_id,
                    Page.page_number == page_number,
                )
            )
            page = result.scalar_one_or_none()
            return _to_page(page) if page else None

    async def list_pages(self, document_id: uuid.UUID) -> list[PageRecord]:
        """List pages of a document in page order."""
        async with self._sessions() as session:
            result = await session.execute(
                select(Page).where(Page.document_id == document_id).order_by(Page.page_number)
            )
            return [_to_page(page) for page in result.scalars().all()]

    async def get_page_numbers(self, page_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
        """Resolve page IDs to page numbers."""
        if not page_ids:
            return {}

        async with self._sessions() as session:
            result = await session.execute(
                select(Page.page_id, Page.page_number).where(
                    Page.page_id.in_(list(set(page_ids)))
                )
            )
            return {page_id: page_number for page_id, page_number in result.all()}

    async def insert_chunks(self, chunks: list[NewChunk]) -> int:
        """Insert chunks with their vectors in one transaction."""
        if not chunks:
            return 0

        rows = [
            Chunk(
                chunk_id=uuid.uuid4(),
                document_id=chunk.document_id,
                page_id=chunk.page_id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=list(chunk.embedding),
            )
            for chunk in chunks
        ]
        async with self._sessions() as session, session.begin():
            session.add_all(rows)

        return len(rows)

    async def count_chunks(self, document_id: uuid.UUID) -> int:
        """Count chunks of a document."""
        async with self._sessions() as session:
            result = await session.execute(
                select(func.count()).select_from(Chunk).where(Chunk.document_id == document_id)
            )
            return int(result.scalar_one())

    def _scope_clauses(self, scope_filter: ScopeFilter) -> list[Any]:
        clauses: list[Any] = [Chunk.document_id == scope_filter.document_id]
        if scope_filter.page_id is not None:
            clauses.append(Chunk.page_id == scope_filter.page_id)
        return clauses

    async def query_similar(
        self,
        query_vector: list[float],
        similarity_threshold: float,
        max_results: int,
        scope_filter: ScopeFilter,
    ) -> list[ChunkMatch]:
        """Nearest-neighbour search by cosine similarity."""
        if self.uses_pgvector:
            return await self._query_similar_pgvector(
                query_vector, similarity_threshold, max_results, scope_filter
            )

        async with self._sessions() as session:
            result = await session.execute(
                select(Chunk, Page.page_number)
                .join(Page, Page.page_id == Chunk.page_id)
                .where(*self._scope_clauses(scope_filter))
            )
            scored = []
            for chunk, page_number in result.all():
                similarity = cosine_similarity(query_vector, chunk.embedding)
                if similarity > similarity_threshold:
                    scored.append((similarity, page_number, chunk))

        scored.sort(key=lambda item: (-item[0], item[1], item[2].chunk_index))
        return [_to_match(chunk, similarity) for similarity, _, chunk in scored[:max_results]]

    async def _query_similar_pgvector(
        self,
        query_vector: list[float],
        similarity_threshold: float,
        max_results: int,
        scope_filter: ScopeFilter,
    ) -> list[ChunkMatch]:
        distance = Chunk.embedding.cosine_distance(query_vector)
        similarity = (1 - distance).label("similarity")

        async with self._sessions() as session:
            result = await session.execute(
                select(Chunk, similarity)
                .where(*self._scope_clauses(scope_filter))
                .where(1 - distance > similarity_threshold)
                .order_by(distance)
                .limit(max_results)
            )
            return [_to_match(chunk, score) for chunk, score in result.all()]

    async def search_keywords(
        self, scope_filter: ScopeFilter, tokens: list[str], max_results: int
    ) -> list[ChunkMatch]:
        """Rank scoped chunks by number of tokens they contain."""
        if not tokens:
            return []

        lowered = [t.lower() for t in tokens]
        content = func.lower(Chunk.content)
        any_token = or_(*[content.contains(t, autoescape=True) for t in lowered])

        async with self._sessions() as session:
            result = await session.execute(
                select(Chunk, Page.page_number)
                .join(Page, Page.page_id == Chunk.page_id)
                .where(*self._scope_clauses(scope_filter))
                .where(any_token)
            )
            ranked = []
            for chunk, page_number in result.all():
                text = chunk.content.lower()
                hits = sum(1 for token in lowered if token in text)
                if hits:
                    ranked.append((hits, page_number, chunk))

        ranked.sort(key=lambda item: (-item[0], item[1], item[2].chunk_index))
        return [_to_match(chunk, hits / len(lowered)) for hits, _, chunk in ranked[:max_results]]

    async def append_messages(
        self,
        conversation_id: uuid.UUID,
        document_id: uuid.UUID,
        messages: list[tuple[str, str]],
    ) -> None:
        """Append messages after the conversation's current tail."""
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                select(func.count())
                .select_from(ConversationMessage)
                .where(ConversationMessage.conversation_id == conversation_id)
            )
            start = int(result.scalar_one())
            session.add_all(
                [
                    ConversationMessage(
                        message_id=uuid.uuid4(),
                        conversation_id=conversation_id,
                        document_id=document_id,
                        position=start + offset,
                        role=role,
                        content=content,
                    )
                    for offset, (role, content) in enumerate(messages)
                ]
            )

    async def list_messages(self, conversation_id: uuid.UUID) -> list[MessageRecord]:
        """List messages oldest first."""
        async with self._sessions() as session:
            result = await session.execute(
                select(ConversationMessage)
                .where(ConversationMessage.conversation_id == conversation_id)
                .order_by(ConversationMessage.position)
            )
            return [
                MessageRecord(
                    message_id=row.message_id,
                    conversation_id=row.conversation_id,
                    document_id=row.document_id,
                    position=row.position,
                    role=row.role,
                    content=row.content,
                    created_at=row.created_at,
                )
                for row in result.scalars().all()
            ]
