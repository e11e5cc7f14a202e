"""Exception hierarchy for the reading companion.

Errors fall into three groups:

- configuration problems, which are fatal and never retried;
- transient I/O problems, which are retried with backoff;
- collaborator failures that survive retries, surfaced to the caller.
"""

import asyncio

import httpx
import openai


class ReadingCompanionError(Exception):
    """Base class for all reading companion errors."""

    pass


class ConfigurationError(ReadingCompanionError):
    """Invalid configuration (chunk parameters, missing credentials)."""

    pass


class TransientError(ReadingCompanionError):
    """Retryable I/O failure."""

    pass


class StorageError(ReadingCompanionError):
    """Object storage download failed."""

    def __init__(self, message: str, *, transient: bool = False) -> None:
        super().__init__(message)
        self.transient = transient


class ExtractionError(ReadingCompanionError):
    """Document bytes could not be turned into page texts."""

    pass


class EmbeddingError(ReadingCompanionError):
    """Embedding service failed after retries."""

    pass


class GenerationError(ReadingCompanionError):
    """Generation backend failed or returned nothing usable."""

    pass


class QuizParseError(GenerationError):
    """Generation output did not contain a valid quiz."""

    pass


class NoContextError(ReadingCompanionError):
    """A request needs document material and none is available."""

    pass


_TRANSIENT_OPENAI_ERRORS = (
    openai.RateLimitError,
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
)

_TRANSIENT_HTTP_ERRORS = (
    httpx.TimeoutException,
    httpx.TransportError,
)


def is_transient_error(error: BaseException) -> bool:
    """Classify an exception as retryable."""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, StorageError):
        return error.transient
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return True
    if isinstance(error, _TRANSIENT_OPENAI_ERRORS):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429 or error.response.status_code >= 500
    return isinstance(error, _TRANSIENT_HTTP_ERRORS)
