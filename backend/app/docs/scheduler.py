"""Background scheduling of ingestion runs."""

import asyncio
import logging
from uuid import UUID

from backend.app.docs.ingest import IngestionPipeline
from backend.app.models.docs import IngestionReport

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """Runs ingestion as detached asyncio tasks.

    Runs for the same document are chained: a new run starts only after
    the previous one finishes, then replaces its output. Task references
    are held until completion.
    """

    def __init__(self, pipeline: IngestionPipeline) -> None:
        self._pipeline = pipeline
        self._tasks: dict[UUID, asyncio.Task[IngestionReport | None]] = {}

    def schedule(self, document_id: UUID) -> asyncio.Task[IngestionReport | None]:
        """Start a run for the document, after any run already in flight."""
        previous = self._tasks.get(document_id)
        task = asyncio.create_task(
            self._run_after(previous, document_id),
            name=f"ingest-{document_id}",
        )
        self._tasks[document_id] = task
        task.add_done_callback(lambda t: self._forget(document_id, t))
        return task

    def is_running(self, document_id: UUID) -> bool:
        task = self._tasks.get(document_id)
        return task is not None and not task.done()

    async def wait_for(self, document_id: UUID) -> IngestionReport | None:
        """Wait for the latest scheduled run of a document to finish."""
        task = self._tasks.get(document_id)
        if task is None:
            return None
        await asyncio.wait([task])
        if task.cancelled():
            return None
        return task.result()

    async def shutdown(self) -> None:
        """Cancel in-flight runs and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _run_after(
        self,
        previous: asyncio.Task[IngestionReport | None] | None,
        document_id: UUID,
    ) -> IngestionReport | None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        try:
            return await self._pipeline.run(document_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            # The pipeline records its own failures; this only fires if the store is down
            logger.exception(f"Ingestion task for {document_id} crashed")
            return None

    def _forget(self, document_id: UUID, task: asyncio.Task[IngestionReport | None]) -> None:
        if self._tasks.get(document_id) is task:
            del self._tasks[document_id]
