"""Prometheus metrics endpoint."""

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter()


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus metrics endpoint.

    Exposes ingestion, retry, retrieval and generation metrics, e.g.:
    - ingestion_runs_total{state}
    - retrieval_fallbacks_total{scope, reason}
    - generation_latency_ms{mode, outcome}
    """
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
