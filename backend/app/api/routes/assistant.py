"""Reading assistant endpoints - ask, quiz, evaluate, explain."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from backend.app.api.dependencies import get_companion, get_owned_document
from backend.app.models import AskResult, DocumentStatus, QuizQuestion, RetrievalScope
from backend.app.services.companion import ReadingCompanion

router = APIRouter(prefix="/documents", tags=["assistant"])


class AskRequest(BaseModel):
    """Request body for POST /documents/{id}/ask."""

    query: str = Field(..., min_length=1, max_length=4000)
    page_number: int | None = Field(None, ge=1, description="Page the reader is on")
    scope: RetrievalScope = RetrievalScope.page
    conversation_id: UUID | None = Field(None, description="Persist the exchange to this chat")


class SourceRef(BaseModel):
    """Citation for one passage used in an answer."""

    page_number: int
    chunk_id: UUID | None
    similarity: float
    source: str


class AskResponse(BaseModel):
    """Response for ask and explain."""

    response: str
    context_used: bool
    sources: list[SourceRef] = Field(default_factory=list)


class QuizRequest(BaseModel):
    """Request body for POST /documents/{id}/quiz."""

    page_number: int | None = Field(None, ge=1)
    scope: RetrievalScope = RetrievalScope.page
    n_questions: int = Field(3, ge=1, le=10)


class QuizResponse(BaseModel):
    """Response for POST /documents/{id}/quiz."""

    questions: list[QuizQuestion]
    context_used: bool


class EvaluateRequest(BaseModel):
    """Request body for POST /documents/{id}/quiz/evaluate."""

    question: QuizQuestion
    chosen_index: int = Field(..., ge=0, le=3)
    page_number: int | None = Field(None, ge=1)


class EvaluateResponse(BaseModel):
    """Response for POST /documents/{id}/quiz/evaluate."""

    is_correct: bool
    feedback: str


class ExplainRequest(BaseModel):
    """Request body for POST /documents/{id}/explain."""

    page_number: int = Field(..., ge=1)
    selected_text: str = Field(..., min_length=1, max_length=5000)


def _to_response(result: AskResult) -> AskResponse:
    return AskResponse(
        response=result.response_text,
        context_used=result.context_used,
        sources=[
            SourceRef(
                page_number=r.page_number,
                chunk_id=r.chunk_id,
                similarity=r.similarity,
                source=r.source,
            )
            for r in result.sources
        ],
    )


@router.post("/{document_id}/ask", response_model=AskResponse)
async def ask(
    request: AskRequest,
    document: Annotated[DocumentStatus, Depends(get_owned_document)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> AskResponse:
    """Answer a question grounded in the document."""
    result = await companion.ask(
        document.document_id,
        request.page_number,
        request.scope,
        request.query,
        conversation_id=request.conversation_id,
    )
    return _to_response(result)


@router.post("/{document_id}/quiz", response_model=QuizResponse)
async def generate_quiz(
    request: QuizRequest,
    document: Annotated[DocumentStatus, Depends(get_owned_document)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> QuizResponse:
    """Generate multiple-choice questions about the reader's material."""
    result = await companion.generate_quiz(
        document.document_id, request.page_number, request.scope, request.n_questions
    )
    return QuizResponse(questions=result.questions, context_used=result.context_used)


@router.post("/{document_id}/quiz/evaluate", response_model=EvaluateResponse)
async def evaluate_answer(
    request: EvaluateRequest,
    document: Annotated[DocumentStatus, Depends(get_owned_document)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> EvaluateResponse:
    """Judge the chosen option of a quiz question."""
    evaluation = await companion.evaluate_answer(
        document.document_id,
        request.question,
        request.chosen_index,
        page_number=request.page_number,
    )
    return EvaluateResponse(is_correct=evaluation.is_correct, feedback=evaluation.feedback_text)


@router.post("/{document_id}/explain", response_model=AskResponse)
async def explain_selection(
    request: ExplainRequest,
    document: Annotated[DocumentStatus, Depends(get_owned_document)],
    companion: Annotated[ReadingCompanion, Depends(get_companion)],
) -> AskResponse:
    """Explain a highlighted passage."""
    result = await companion.explain_selection(
        document.document_id, request.page_number, request.selected_text
    )
    return _to_response(result)
