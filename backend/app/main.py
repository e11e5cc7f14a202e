"""FastAPI application."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from backend.app.api.routes.assistant import router as assistant_router
from backend.app.api.routes.documents import router as documents_router
from backend.app.api.routes.health import router as health_router
from backend.app.api.routes.metrics import router as metrics_router
from backend.app.config import get_settings
from backend.app.errors import (
    ConfigurationError,
    GenerationError,
    NoContextError,
    QuizParseError,
)
from backend.app.services.wiring import build_companion
from backend.app.utils.logging import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the companion on startup; stop background ingestion on shutdown."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app.state.companion = await build_companion(settings)
    try:
        yield
    finally:
        await app.state.companion.scheduler.shutdown()


app = FastAPI(title="Reading Companion API", version="0.1.0", lifespan=lifespan)

# Register routes
app.include_router(health_router, tags=["health"])
app.include_router(metrics_router, tags=["metrics"])
app.include_router(documents_router)
app.include_router(assistant_router)


def _error(status_code: int, code: str, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": code, "detail": str(exc)})


@app.exception_handler(QuizParseError)
async def quiz_parse_error_handler(request: Request, exc: QuizParseError) -> JSONResponse:
    logger.warning(f"Quiz parse failed: {exc}")
    return _error(status.HTTP_502_BAD_GATEWAY, "quiz_parse_error", exc)


@app.exception_handler(GenerationError)
async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    logger.error(f"Generation failed: {exc}")
    return _error(status.HTTP_503_SERVICE_UNAVAILABLE, "generation_error", exc)


@app.exception_handler(NoContextError)
async def no_context_error_handler(request: Request, exc: NoContextError) -> JSONResponse:
    return _error(status.HTTP_409_CONFLICT, "no_context", exc)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.error(f"Configuration error: {exc}")
    return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, "configuration_error", exc)


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {"message": "Reading Companion API", "version": "0.1.0"}
