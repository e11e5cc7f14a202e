"""Builds a ReadingCompanion from settings."""

import logging

from backend.app.config import Settings
from backend.app.db.engine import create_schema, get_async_engine
from backend.app.db.inmemory import InMemoryReadingStore
from backend.app.db.repositories import ReadingStore
from backend.app.db.sql_repositories import SqlReadingStore
from backend.app.docs.ingest import IngestionPipeline
from backend.app.docs.retriever import RetrievalService
from backend.app.docs.scheduler import IngestionScheduler
from backend.app.docs.storage import ObjectStorage, get_object_storage
from backend.app.llm.client import GenerationBackend, get_generation_backend
from backend.app.llm.embeddings import Embedder, get_embedder
from backend.app.llm.orchestrator import GenerationOrchestrator
from backend.app.services.companion import ReadingCompanion

logger = logging.getLogger(__name__)


async def create_store(settings: Settings) -> ReadingStore:
    """SQL store when DATABASE_URL is set, otherwise in-memory."""
    if not settings.database_url:
        logger.warning("DATABASE_URL not set, using in-memory store")
        return InMemoryReadingStore()

    engine = get_async_engine()
    if engine.dialect.name == "sqlite":
        await create_schema(engine)
    return SqlReadingStore(engine)


async def build_companion(
    settings: Settings,
    *,
    store: ReadingStore | None = None,
    storage: ObjectStorage | None = None,
    embedder: Embedder | None = None,
    backend: GenerationBackend | None = None,
) -> ReadingCompanion:
    """Wire every collaborator; explicit arguments override settings.

    Raises:
        ConfigurationError: For invalid chunking or missing credentials
    """
    if store is None:
        store = await create_store(settings)
    if storage is None:
        storage = get_object_storage(settings)
    if embedder is None:
        embedder = get_embedder(settings)
    if backend is None:
        backend = get_generation_backend(settings)

    pipeline = IngestionPipeline(store, storage, embedder, settings)
    return ReadingCompanion(
        store=store,
        retrieval=RetrievalService(store, embedder, settings),
        orchestrator=GenerationOrchestrator(backend, settings),
        scheduler=IngestionScheduler(pipeline),
        settings=settings,
    )
