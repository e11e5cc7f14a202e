"""Document endpoints - POST /documents/{id}/ingest, GET /documents/{id}/status."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from backend.app.api.auth import get_current_context
from backend.app.api.dependencies import get_companion, get_owned_document
from backend.app.db.context import RequestContext
from backend.app.models.docs import DocumentStatus, ProcessingState
from backend.app.services.companion import ReadingCompanion

router = APIRouter(prefix="/documents", tags=["documents"])


class IngestRequest(BaseModel):
    """Request body for POST /documents/{id}/ingest."""

    storage_path: str = Field(
        ..., min_length=1, max_length=1024, description="Object storage path of the upload"
    )


class IngestResponse(BaseModel):
    """Response for POST /documents/{id}/ingest."""

    document_id: UUID
    processing_state: ProcessingState


class StatusResponse(BaseModel):
    """Response for GET /documents/{id}/status."""

    document_id: UUID
    processing_state: ProcessingState
    processing_detail: str | None
    total_pages: int | None
    updated_at: datetime


@router.post(
    "/{document_id}/ingest",
    response_model=IngestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_ingestion(
    document_id: UUID,
    request: IngestRequest,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> IngestResponse:
    """Start (or restart) ingestion of an uploaded document.

    Returns immediately; poll the status endpoint for progress.

    Args:
        document_id: Document identifier
        request: Storage path of the uploaded file
        ctx: Request context (user_id)
        companion: Reading companion service

    Returns:
        Acknowledgement with the queued state
    """
    existing = await companion.get_status(document_id)
    if existing is not None and existing.owner_id != ctx.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )

    ack = await companion.trigger_ingestion(document_id, ctx.user_id, request.storage_path)
    return IngestResponse(document_id=ack.document_id, processing_state=ack.processing_state)


@router.get("/{document_id}/status", response_model=StatusResponse)
async def get_status(
    document: Annotated[DocumentStatus, Depends(get_owned_document)],
) -> StatusResponse:
    """Current processing state of a document."""
    return StatusResponse(
        document_id=document.document_id,
        processing_state=document.processing_state,
        processing_detail=document.processing_detail,
        total_pages=document.total_pages,
        updated_at=document.updated_at,
    )
