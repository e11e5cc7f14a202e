"""Shared pytest fixtures for all test suites."""

import os
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryReadingStore
from backend.app.db.models import Base
from backend.app.docs.ingest import IngestionPipeline
from backend.app.docs.storage import InMemoryObjectStorage
from backend.app.llm.client import DeterministicStubBackend
from backend.app.llm.embeddings import DeterministicStubEmbedder
from backend.app.models.docs import ProcessingState
from backend.app.services.companion import ReadingCompanion
from backend.app.services.wiring import build_companion

TEST_DIMENSIONS = 1536


def text_document(pages: list[str]) -> bytes:
    """Encode pages as a plain-text document (form feed between pages)."""
    return "\f".join(pages).encode("utf-8")


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: stub providers, no backoff delay."""
    return Settings(
        database_url=None,
        llm_provider="stub",
        embedding_dimensions=TEST_DIMENSIONS,
        retry_base_delay_ms=0,
        retry_max_delay_ms=0,
        retry_jitter_min_ms=0,
        retry_jitter_max_ms=0,
    )


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def store() -> InMemoryReadingStore:
    return InMemoryReadingStore()


@pytest.fixture
def storage() -> InMemoryObjectStorage:
    return InMemoryObjectStorage()


@pytest.fixture
def embedder() -> DeterministicStubEmbedder:
    return DeterministicStubEmbedder(TEST_DIMENSIONS)


@pytest.fixture
def backend() -> DeterministicStubBackend:
    return DeterministicStubBackend()


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.UUID("00000000-0000-0000-0000-000000000001")


@pytest_asyncio.fixture
async def companion(
    settings: Settings,
    store: InMemoryReadingStore,
    storage: InMemoryObjectStorage,
    embedder: DeterministicStubEmbedder,
    backend: DeterministicStubBackend,
) -> AsyncGenerator[ReadingCompanion, None]:
    """Companion over in-memory collaborators."""
    companion = await build_companion(
        settings, store=store, storage=storage, embedder=embedder, backend=backend
    )
    yield companion
    await companion.scheduler.shutdown()


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
        echo=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def ingest(
    settings: Settings,
    store: InMemoryReadingStore,
    storage: InMemoryObjectStorage,
    embedder: DeterministicStubEmbedder,
    owner_id: uuid.UUID,
) -> Callable[..., Awaitable[uuid.UUID]]:
    """Upload pages as a text document and run ingestion to completion."""

    async def _ingest(pages: list[str], path: str = "books/book.txt") -> uuid.UUID:
        document_id = uuid.uuid4()
        storage.put(path, text_document(pages))
        await store.upsert_document(document_id, owner_id, path)

        report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)
        assert report.state == ProcessingState.complete, report.detail
        return document_id

    return _ingest


@pytest_asyncio.fixture
async def postgres_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Async engine for PostgreSQL (pgvector) integration tests.

    Requires DATABASE_URL to point at a PostgreSQL server with the vector
    extension available. Tests using this fixture should be marked with
    @pytest.mark.postgres.
    """
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        pytest.skip("DATABASE_URL not set - skipping postgres test")

    if not database_url.startswith(("postgresql://", "postgresql+asyncpg://")):
        pytest.skip(f"DATABASE_URL is not PostgreSQL: {database_url}")

    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    engine = create_async_engine(database_url, poolclass=NullPool, echo=False)

    async with engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()
