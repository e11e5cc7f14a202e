"""Integration tests for the ingestion pipeline over in-memory collaborators."""

import uuid

import pytest

from backend.app.config import Settings
from backend.app.db.inmemory import InMemoryReadingStore
from backend.app.docs.ingest import UNREADABLE_PAGE_TEXT, IngestionPipeline
from backend.app.docs.storage import InMemoryObjectStorage
from backend.app.errors import ConfigurationError, EmbeddingError, StorageError, TransientError
from backend.app.llm.embeddings import DeterministicStubEmbedder
from backend.app.models.docs import ProcessingState

PAGES = ["The sky is blue.", "Water boils at 100C.", "Grass is green in spring."]


def _encode(pages: list[str]) -> bytes:
    return "\f".join(pages).encode("utf-8")


class FlakyEmbedder:
    """Raises the queued errors before delegating to the stub embedder."""

    def __init__(self, errors: list[Exception], dimensions: int = 1536) -> None:
        self.errors = list(errors)
        self.calls = 0
        self._inner = DeterministicStubEmbedder(dimensions)

    @property
    def dimensions(self) -> int:
        return self._inner.dimensions

    async def embed(self, text: str) -> list[float]:
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return await self._inner.embed(text)


class PoisonEmbedder(DeterministicStubEmbedder):
    """Permanently fails for texts containing POISON."""

    async def embed(self, text: str) -> list[float]:
        if "POISON" in text:
            raise EmbeddingError("provider rejected input")
        return await super().embed(text)


class FlakyStorage(InMemoryObjectStorage):
    """Fails the first download with a transient error."""

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def download(self, path: str) -> bytes:
        self.calls += 1
        if self.calls == 1:
            raise StorageError("connection reset", transient=True)
        return await super().download(path)


async def _register(
    store: InMemoryReadingStore,
    storage: InMemoryObjectStorage,
    owner_id: uuid.UUID,
    data: bytes,
    path: str = "books/book.txt",
) -> uuid.UUID:
    document_id = uuid.uuid4()
    storage.put(path, data)
    await store.upsert_document(document_id, owner_id, path)
    return document_id


@pytest.mark.asyncio
async def test_ingestion_stores_contiguous_pages_and_chunks(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test a full run: pages 1..N, one chunk per short page, complete state."""
    document_id = await _register(store, storage, owner_id, _encode(PAGES))

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.state == ProcessingState.complete
    assert report.total_pages == 3
    assert report.chunks_stored == 3
    assert report.chunks_skipped == 0

    pages = await store.list_pages(document_id)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert [p.content for p in pages] == PAGES

    status = await store.get_document(document_id)
    assert status.processing_state == ProcessingState.complete
    assert status.total_pages == 3
    assert status.processing_detail == "3 pages, 3 chunks stored, 0 chunks skipped"

    states = [state for state, _ in store.status_history[document_id]]
    assert states[0] == ProcessingState.queued
    assert states[1:4] == [
        ProcessingState.downloading,
        ProcessingState.extracting,
        ProcessingState.embedding,
    ]
    assert states[-1] == ProcessingState.complete


@pytest.mark.asyncio
async def test_reingestion_replaces_instead_of_appending(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that running twice leaves one copy of every page and chunk."""
    document_id = await _register(store, storage, owner_id, _encode(PAGES))
    pipeline = IngestionPipeline(store, storage, embedder, settings)

    await pipeline.run(document_id)
    first_chunks = await store.count_chunks(document_id)
    await store.upsert_document(document_id, owner_id, "books/book.txt")
    report = await pipeline.run(document_id)

    assert report.state == ProcessingState.complete
    assert len(await store.list_pages(document_id)) == 3
    assert await store.count_chunks(document_id) == first_chunks == 3


@pytest.mark.asyncio
async def test_reingestion_picks_up_new_content(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that a re-run with a shorter document drops stale pages."""
    document_id = await _register(store, storage, owner_id, _encode(PAGES))
    pipeline = IngestionPipeline(store, storage, embedder, settings)
    await pipeline.run(document_id)

    storage.put("books/book.txt", _encode(["Only one page remains."]))
    await pipeline.run(document_id)

    pages = await store.list_pages(document_id)
    assert [p.content for p in pages] == ["Only one page remains."]
    assert await store.count_chunks(document_id) == 1


@pytest.mark.asyncio
async def test_embedding_fails_twice_then_succeeds(
    settings, store, storage, sleep, owner_id
) -> None:
    """Test that a retried embedding is persisted exactly once."""
    document_id = await _register(store, storage, owner_id, _encode(["The sky is blue."]))
    embedder = FlakyEmbedder([TransientError("429"), TimeoutError()])

    report = await IngestionPipeline(
        store, storage, embedder, settings, sleep_fn=sleep
    ).run(document_id)

    assert report.state == ProcessingState.complete
    assert report.chunks_stored == 1
    assert embedder.calls == 3
    assert len(sleep.calls) == 2
    assert await store.count_chunks(document_id) == 1


@pytest.mark.asyncio
async def test_failed_chunk_is_skipped_and_counted(
    settings, store, storage, owner_id
) -> None:
    """Test that a permanently failing chunk does not fail the document."""
    document_id = await _register(
        store, storage, owner_id, _encode(["The sky is blue.", "POISON on this page."])
    )

    report = await IngestionPipeline(
        store, storage, PoisonEmbedder(1536), settings
    ).run(document_id)

    assert report.state == ProcessingState.complete
    assert report.chunks_stored == 1
    assert report.chunks_skipped == 1
    # The page itself is still stored for raw-text fallback
    assert len(await store.list_pages(document_id)) == 2
    status = await store.get_document(document_id)
    assert status.processing_detail == "2 pages, 1 chunks stored, 1 chunks skipped"


@pytest.mark.asyncio
async def test_long_page_is_chunked_with_overlap(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that a 2500-character page yields three overlapping chunks."""
    page = "".join(f"word{i} " for i in range(500))[:2500]
    document_id = await _register(store, storage, owner_id, _encode([page]))

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.chunks_stored == 3


@pytest.mark.asyncio
async def test_tiny_chunks_are_not_embedded(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that pages shorter than the minimum produce no chunks."""
    document_id = await _register(store, storage, owner_id, _encode(["Hi.", "The sky is blue."]))

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.chunks_stored == 1
    assert report.chunks_skipped == 0
    assert len(await store.list_pages(document_id)) == 2


@pytest.mark.asyncio
async def test_transient_download_failure_is_retried(
    settings, store, embedder, sleep, owner_id
) -> None:
    """Test that one storage hiccup does not fail ingestion."""
    storage = FlakyStorage()
    document_id = await _register(store, storage, owner_id, _encode(PAGES))

    report = await IngestionPipeline(
        store, storage, embedder, settings, sleep_fn=sleep
    ).run(document_id)

    assert report.state == ProcessingState.complete
    assert storage.calls == 2


@pytest.mark.asyncio
async def test_missing_object_ends_in_download_error(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that a missing upload records a download failure."""
    document_id = uuid.uuid4()
    await store.upsert_document(document_id, owner_id, "books/missing.pdf")

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.state == ProcessingState.error
    status = await store.get_document(document_id)
    assert status.processing_state == ProcessingState.error
    assert status.processing_detail.startswith("download failed:")
    assert await store.list_pages(document_id) == []


@pytest.mark.asyncio
async def test_corrupt_pdf_ends_in_extraction_error(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that unreadable documents record an extraction failure."""
    document_id = await _register(
        store, storage, owner_id, b"definitely not a pdf", path="books/broken.pdf"
    )

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.state == ProcessingState.error
    assert report.detail.startswith("extraction failed:")


@pytest.mark.asyncio
async def test_empty_document_ends_in_error(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that zero extracted pages is an error, not a complete document."""
    document_id = await _register(store, storage, owner_id, b"   ")

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.state == ProcessingState.error
    assert report.detail == "extraction failed: no pages found in document"
    assert await store.count_chunks(document_id) == 0


@pytest.mark.asyncio
async def test_unreadable_page_keeps_its_slot(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test that a page that fails extraction is stored with placeholder text."""

    class OnePageFails:
        def parse(self, data: bytes) -> list[str | None]:
            return ["The sky is blue.", None, "Water boils at 100C."]

    document_id = await _register(store, storage, owner_id, b"%PDF", path="books/book.pdf")

    report = await IngestionPipeline(
        store, storage, embedder, settings, parser_factory=lambda _: OnePageFails()
    ).run(document_id)

    assert report.state == ProcessingState.complete
    pages = await store.list_pages(document_id)
    assert [p.page_number for p in pages] == [1, 2, 3]
    assert pages[1].content == UNREADABLE_PAGE_TEXT


@pytest.mark.asyncio
async def test_progress_detail_reported_every_few_pages(
    settings, store, storage, embedder, owner_id
) -> None:
    """Test 'Processing page X of Y' updates during the embedding stage."""
    pages = [f"Page number {i} has some text." for i in range(1, 13)]
    document_id = await _register(store, storage, owner_id, _encode(pages))
    progress_settings = settings.model_copy(update={"progress_every_pages": 5})

    await IngestionPipeline(store, storage, embedder, progress_settings).run(document_id)

    details = [
        detail
        for state, detail in store.status_history[document_id]
        if state == ProcessingState.embedding
    ]
    assert details == [
        "Processing page 0 of 12",
        "Processing page 5 of 12",
        "Processing page 10 of 12",
        "Processing page 12 of 12",
    ]


@pytest.mark.asyncio
async def test_unknown_document_reports_error_without_writes(
    settings, store, storage, embedder
) -> None:
    """Test that ingesting an unregistered id does not create state."""
    document_id = uuid.uuid4()

    report = await IngestionPipeline(store, storage, embedder, settings).run(document_id)

    assert report.state == ProcessingState.error
    assert report.detail == "document not found"
    assert await store.get_document(document_id) is None


def test_invalid_chunk_settings_rejected_at_construction(store, storage, embedder) -> None:
    """Test that overlap >= size is a configuration error."""
    bad = Settings(database_url=None, chunk_size=100, chunk_overlap=100)

    with pytest.raises(ConfigurationError):
        IngestionPipeline(store, storage, embedder, bad)
