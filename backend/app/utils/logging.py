"""Structured logging for ingestion runs."""

import logging
from typing import Any
from uuid import UUID

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the application."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class StructuredIngestionLogger:
    """Structured logger for ingestion stage transitions."""

    def log_stage(
        self,
        document_id: UUID,
        state: str,
        detail: str | None = None,
        **fields: Any,
    ) -> None:
        """Log a processing state change with structured data."""
        log_data: dict[str, Any] = {
            "document_id": str(document_id),
            "state": state,
        }

        if detail:
            log_data["detail"] = detail
        log_data.update(fields)

        log_msg = f"Ingestion: {document_id} - {state}"

        if state == "error":
            logger.error(log_msg, extra={"structured": log_data})
        else:
            logger.info(log_msg, extra={"structured": log_data})

    def log_chunk_skipped(
        self,
        document_id: UUID,
        page_number: int,
        chunk_index: int,
        error: BaseException,
    ) -> None:
        """Log a chunk whose embedding could not be computed."""
        logger.warning(
            f"Ingestion: skipped chunk {chunk_index} of page {page_number}",
            extra={
                "structured": {
                    "document_id": str(document_id),
                    "page_number": page_number,
                    "chunk_index": chunk_index,
                    "error_reason": type(error).__name__,
                    "error": str(error),
                }
            },
        )
