"""Shared FastAPI dependencies."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status

from backend.app.api.auth import get_current_context
from backend.app.db.context import RequestContext
from backend.app.models.docs import DocumentStatus
from backend.app.services.companion import ReadingCompanion


def get_companion(request: Request) -> ReadingCompanion:
    """Companion built during application startup."""
    return request.app.state.companion


async def get_owned_document(
    document_id: UUID,
    ctx: Annotated[RequestContext, Depends(get_current_context)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> DocumentStatus:
    """Load a document the caller owns.

    Raises:
        HTTPException: 404 if unknown or owned by someone else
    """
    status_record = await companion.get_status(document_id)
    if status_record is None or status_record.owner_id != ctx.user_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Document {document_id} not found",
        )
    return status_record
