"""Health check endpoints.

- /health: liveness, always 200 while the process runs
- /healthz: readiness, checks the database and provider configuration
"""

from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from backend.app.config import Settings, get_settings
from backend.app.db.engine import get_async_engine

router = APIRouter()


async def check_db(settings: Settings) -> tuple[bool, str]:
    """Check database connectivity.

    Returns:
        (is_ok, status_message)
    """
    if not settings.database_url:
        return (True, "not_configured")

    try:
        async with get_async_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        return (True, "ok")
    except Exception as e:
        return (False, f"error: {type(e).__name__}")


async def check_provider(settings: Settings) -> tuple[bool, str]:
    """Check that the selected model provider is usable.

    Returns:
        (is_ok, status_message)
    """
    if settings.llm_provider == "stub":
        return (True, "stub")

    api_key = settings.openai_api_key
    if not api_key or not api_key.get_secret_value():
        return (False, "error: missing OPENAI_API_KEY")
    return (True, "openai")


@router.get("/health")
async def health() -> dict[str, str]:
    """Simple health check for Docker/k8s.

    Returns:
        200 OK always (application is running)
    """
    return {"status": "ok"}


@router.get("/healthz", response_model=None)
async def healthz() -> dict[str, Any] | JSONResponse:
    """Readiness check.

    Returns:
        200 with component status if all components are ok
        503 if any component fails
    """
    settings = get_settings()

    db_ok, db_status = await check_db(settings)
    provider_ok, provider_status = await check_provider(settings)

    response_body = {
        "status": "ok" if db_ok and provider_ok else "degraded",
        "components": {
            "db": db_status,
            "provider": provider_status,
        },
    }

    if not (db_ok and provider_ok):
        return JSONResponse(content=response_body, status_code=503)

    return response_body
