"""Document ingestion pipeline: download, extract, chunk, embed, persist.

A run walks the document through
queued -> downloading -> extracting -> embedding -> complete,
or stops in error with the reason in processing_detail. Prior pages and
chunks are removed first, so re-running replaces rather than appends.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from uuid import UUID

from backend.app.config import Settings
from backend.app.db.repositories import ReadingStore
from backend.app.docs.chunker import chunk_text, is_embeddable, validate_chunk_params
from backend.app.docs.parser import DocumentParser, get_parser
from backend.app.docs.storage import ObjectStorage
from backend.app.errors import ExtractionError
from backend.app.llm.embeddings import Embedder
from backend.app.models.docs import (
    DocumentStatus,
    IngestionReport,
    NewChunk,
    PageRecord,
    ProcessingState,
)
from backend.app.utils.logging import StructuredIngestionLogger
from backend.app.utils.metrics import PrometheusIngestionMetrics
from backend.app.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

UNREADABLE_PAGE_TEXT = "[unable to extract text from this page]"


class IngestionPipeline:
    """Turns an uploaded document into pages and embedded chunks."""

    def __init__(
        self,
        store: ReadingStore,
        storage: ObjectStorage,
        embedder: Embedder,
        settings: Settings,
        *,
        parser_factory: Callable[[str], DocumentParser] = get_parser,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize pipeline.

        Args:
            store: Document, page and chunk persistence
            storage: Object storage holding uploaded files
            embedder: Embedding client
            settings: Chunking, batching and retry settings
            parser_factory: Picks a parser for a storage path
            sleep_fn: Injectable sleep for retry backoff (default: asyncio.sleep)

        Raises:
            ConfigurationError: If chunk size/overlap are invalid
        """
        validate_chunk_params(settings.chunk_size, settings.chunk_overlap)

        self._store = store
        self._storage = storage
        self._embedder = embedder
        self._settings = settings
        self._parser_factory = parser_factory
        self._sleep_fn = sleep_fn
        self._download_policy = RetryPolicy.from_settings(settings, settings.download_timeout_s)
        self._embed_policy = RetryPolicy.from_settings(settings, settings.embedding_timeout_s)
        self._log = StructuredIngestionLogger()
        self._metrics = PrometheusIngestionMetrics()

    async def run(self, document_id: UUID) -> IngestionReport:
        """Ingest one document. Failures end in the error state, never raise."""
        started = time.monotonic()

        doc = await self._store.get_document(document_id)
        if doc is None:
            logger.warning(f"Ingestion requested for unknown document {document_id}")
            return IngestionReport(
                document_id=document_id,
                state=ProcessingState.error,
                detail="document not found",
            )

        try:
            report = await self._ingest(doc)
        except asyncio.CancelledError:
            await self._set_state(document_id, ProcessingState.error, "ingestion cancelled")
            raise
        except Exception as e:
            logger.exception(f"Ingestion of {document_id} failed unexpectedly")
            report = await self._fail(document_id, f"ingestion failed: {e}")

        self._metrics.record_run(report.state.value, time.monotonic() - started)
        return report

    async def _ingest(self, doc: DocumentStatus) -> IngestionReport:
        document_id = doc.document_id

        await self._store.delete_document_content(document_id)

        # Download
        await self._set_state(document_id, ProcessingState.downloading)
        try:
            data = await retry_async(
                lambda: self._storage.download(doc.storage_path),
                self._download_policy,
                operation="download",
                sleep_fn=self._sleep_fn,
            )
        except Exception as e:
            return await self._fail(document_id, f"download failed: {e}")

        # Extract
        await self._set_state(document_id, ProcessingState.extracting)
        parser = self._parser_factory(doc.storage_path)
        try:
            raw_pages = await asyncio.to_thread(parser.parse, data)
        except ExtractionError as e:
            return await self._fail(document_id, f"extraction failed: {e}")

        if not raw_pages:
            return await self._fail(document_id, "extraction failed: no pages found in document")

        pages = await self._insert_pages(document_id, raw_pages)
        total = len(pages)

        # Embed
        await self._set_state(
            document_id,
            ProcessingState.embedding,
            f"Processing page 0 of {total}",
            total_pages=total,
        )

        stored = 0
        skipped = 0
        every = max(1, self._settings.progress_every_pages)
        for page in pages:
            page_stored, page_skipped = await self._embed_page(page)
            stored += page_stored
            skipped += page_skipped

            if page.page_number % every == 0 or page.page_number == total:
                await self._set_state(
                    document_id,
                    ProcessingState.embedding,
                    f"Processing page {page.page_number} of {total}",
                )

        self._metrics.inc_chunks("stored", stored)
        self._metrics.inc_chunks("skipped", skipped)

        detail = f"{total} pages, {stored} chunks stored, {skipped} chunks skipped"
        await self._set_state(document_id, ProcessingState.complete, detail)

        return IngestionReport(
            document_id=document_id,
            state=ProcessingState.complete,
            total_pages=total,
            chunks_stored=stored,
            chunks_skipped=skipped,
            detail=detail,
        )

    async def _insert_pages(
        self, document_id: UUID, raw_pages: list[str | None]
    ) -> list[PageRecord]:
        contents = [UNREADABLE_PAGE_TEXT if text is None else text for text in raw_pages]
        batch_size = max(1, self._settings.page_insert_batch_size)

        pages: list[PageRecord] = []
        for start in range(0, len(contents), batch_size):
            batch = [
                (index + 1, contents[index])
                for index in range(start, min(start + batch_size, len(contents)))
            ]
            pages.extend(await self._store.insert_pages(document_id, batch))
        return pages

    async def _embed_page(self, page: PageRecord) -> tuple[int, int]:
        """Embed and persist one page's chunks. Returns (stored, skipped)."""
        pieces = [
            (index, text)
            for index, text in enumerate(
                chunk_text(page.content, self._settings.chunk_size, self._settings.chunk_overlap)
            )
            if is_embeddable(text, self._settings.min_chunk_chars)
        ]

        stored = 0
        skipped = 0
        batch_size = max(1, self._settings.embedding_batch_size)
        for start in range(0, len(pieces), batch_size):
            batch = pieces[start : start + batch_size]
            results = await asyncio.gather(
                *(self._embed(text) for _, text in batch),
                return_exceptions=True,
            )

            new_chunks: list[NewChunk] = []
            for (index, text), result in zip(batch, results, strict=True):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if isinstance(result, BaseException):
                    skipped += 1
                    self._log.log_chunk_skipped(page.document_id, page.page_number, index, result)
                    continue
                new_chunks.append(
                    NewChunk(
                        document_id=page.document_id,
                        page_id=page.page_id,
                        chunk_index=index,
                        content=text,
                        embedding=result,
                    )
                )

            stored += await self._store.insert_chunks(new_chunks)

        return stored, skipped

    async def _embed(self, text: str) -> list[float]:
        return await retry_async(
            lambda: self._embedder.embed(text),
            self._embed_policy,
            operation="embed",
            sleep_fn=self._sleep_fn,
        )

    async def _set_state(
        self,
        document_id: UUID,
        state: ProcessingState,
        detail: str | None = None,
        *,
        total_pages: int | None = None,
    ) -> None:
        await self._store.update_status(document_id, state, detail, total_pages=total_pages)
        self._log.log_stage(document_id, state.value, detail)

    async def _fail(self, document_id: UUID, detail: str) -> IngestionReport:
        await self._set_state(document_id, ProcessingState.error, detail)
        return IngestionReport(document_id=document_id, state=ProcessingState.error, detail=detail)
