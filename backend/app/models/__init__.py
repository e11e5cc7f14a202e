"""Models package - re-exports for convenience."""

from backend.app.models.companion import (
    AnswerEvaluation,
    AskResult,
    GenerationMode,
    PromptBundle,
    QuizEvaluationInput,
    QuizQuestion,
    QuizResult,
)
from backend.app.models.docs import (
    ChunkMatch,
    DocumentStatus,
    IngestionAck,
    IngestionReport,
    NewChunk,
    PageRecord,
    ProcessingState,
    RetrievalResult,
    RetrievalScope,
)

__all__ = [
    "AnswerEvaluation",
    "AskResult",
    "ChunkMatch",
    "DocumentStatus",
    "GenerationMode",
    "IngestionAck",
    "IngestionReport",
    "NewChunk",
    "PageRecord",
    "ProcessingState",
    "PromptBundle",
    "QuizEvaluationInput",
    "QuizQuestion",
    "QuizResult",
    "RetrievalResult",
    "RetrievalScope",
]
