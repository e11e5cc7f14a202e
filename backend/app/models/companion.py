"""Prompt, quiz and answer models for the reading companion."""

from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_validator

from backend.app.models.docs import RetrievalResult

QUIZ_OPTION_COUNT = 4


class GenerationMode(str, Enum):
    """Kind of request sent to the generation backend."""

    chat = "chat"
    quiz = "quiz"
    quiz_evaluation = "quiz_evaluation"
    explain_selection = "explain_selection"


class PromptBundle(BaseModel):
    """System instructions and user content for one generation call."""

    mode: GenerationMode
    system_instructions: str
    user_content: str
    context_used: bool


class QuizQuestion(BaseModel):
    """Multiple-choice question with exactly four options."""

    question: str = Field(..., min_length=1)
    options: list[str] = Field(..., min_length=QUIZ_OPTION_COUNT, max_length=QUIZ_OPTION_COUNT)
    correct_index: int = Field(
        ...,
        ge=0,
        lt=QUIZ_OPTION_COUNT,
        validation_alias=AliasChoices("correct_index", "correctIndex"),
    )

    @field_validator("question")
    @classmethod
    def _question_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("question must not be blank")
        return value.strip()

    @field_validator("options")
    @classmethod
    def _options_not_blank(cls, value: list[str]) -> list[str]:
        if any(not option.strip() for option in value):
            raise ValueError("options must not be blank")
        return [option.strip() for option in value]


class QuizEvaluationInput(BaseModel):
    """Question and chosen option handed to the evaluation prompt."""

    question: QuizQuestion
    chosen_index: int = Field(..., ge=0, lt=QUIZ_OPTION_COUNT)

    @property
    def is_correct(self) -> bool:
        return self.chosen_index == self.question.correct_index


class AskResult(BaseModel):
    """Answer to a chat or explain request."""

    response_text: str
    context_used: bool
    sources: list[RetrievalResult] = Field(default_factory=list)


class QuizResult(BaseModel):
    """Generated quiz."""

    questions: list[QuizQuestion]
    context_used: bool


class AnswerEvaluation(BaseModel):
    """Judgement of a chosen quiz answer."""

    is_correct: bool
    feedback_text: str
