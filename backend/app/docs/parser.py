"""Document parsers: raw bytes to ordered page texts."""

import io
import logging
from typing import Protocol

import pdfplumber

from backend.app.errors import ExtractionError

logger = logging.getLogger(__name__)


class DocumentParser(Protocol):
    """Turns document bytes into page texts.

    Parsers are synchronous; callers run them off the event loop.
    """

    def parse(self, data: bytes) -> list[str | None]:
        """Return page texts in page order.

        A None entry marks a page whose text could not be extracted.

        Raises:
            ExtractionError: If the document as a whole cannot be read
        """
        ...


class PdfPageParser:
    """PDF parser backed by pdfplumber."""

    def parse(self, data: bytes) -> list[str | None]:
        pages: list[str | None] = []

        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                for page_number, page in enumerate(pdf.pages, 1):
                    try:
                        pages.append(page.extract_text() or "")
                    except Exception as e:
                        logger.warning(
                            f"Failed to extract text from page {page_number}: {e}",
                            extra={
                                "structured": {
                                    "page_number": page_number,
                                    "error_reason": type(e).__name__,
                                }
                            },
                        )
                        pages.append(None)
        except Exception as e:
            raise ExtractionError(f"could not open PDF: {e}") from e

        return pages


class PlainTextParser:
    """UTF-8 text parser; form feeds separate pages."""

    def parse(self, data: bytes) -> list[str | None]:
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ExtractionError(f"document is not valid UTF-8: {e}") from e

        if not text.strip():
            return []
        # A trailing form feed ends the last page rather than starting a new one
        if text.endswith("\f"):
            text = text[:-1]
        return text.split("\f")


def get_parser(storage_path: str) -> DocumentParser:
    """Choose a parser by file extension (PDF unless plain text)."""
    if storage_path.lower().endswith((".txt", ".text")):
        return PlainTextParser()
    return PdfPageParser()
