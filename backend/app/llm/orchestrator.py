"""Generation orchestrator - mode-aware dispatch to the generation backend."""

import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from pydantic import ValidationError

from backend.app.config import Settings
from backend.app.errors import GenerationError, QuizParseError
from backend.app.llm.client import GenerationBackend
from backend.app.models.companion import GenerationMode, QuizQuestion
from backend.app.utils.metrics import generation_latency_ms
from backend.app.utils.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeParams:
    """Sampling parameters for one generation mode."""

    temperature: float
    max_tokens: int


# Low temperature where precision matters, higher for quiz variety
MODE_PARAMS: dict[GenerationMode, ModeParams] = {
    GenerationMode.chat: ModeParams(temperature=0.3, max_tokens=500),
    GenerationMode.quiz: ModeParams(temperature=0.7, max_tokens=1500),
    GenerationMode.quiz_evaluation: ModeParams(temperature=0.4, max_tokens=500),
    GenerationMode.explain_selection: ModeParams(temperature=0.2, max_tokens=1000),
}


class GenerationOrchestrator:
    """Calls the generation backend with per-mode parameters and retries."""

    def __init__(
        self,
        backend: GenerationBackend,
        settings: Settings,
        *,
        sleep_fn: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        self._backend = backend
        self._policy = RetryPolicy.from_settings(settings, settings.generation_timeout_s)
        self._sleep_fn = sleep_fn

    async def generate(
        self, system_instructions: str, user_content: str, mode: GenerationMode
    ) -> str:
        """Generate a response for the given mode.

        Raises:
            GenerationError: If the backend keeps failing or returns nothing
        """
        params = MODE_PARAMS[mode]
        start = time.monotonic()

        try:
            text = await retry_async(
                lambda: self._backend.complete(
                    system_instructions, user_content, params.temperature, params.max_tokens
                ),
                self._policy,
                operation=f"generate_{mode.value}",
                sleep_fn=self._sleep_fn,
            )
        except GenerationError:
            self._observe(mode, "error", start)
            raise
        except Exception as e:
            self._observe(mode, "error", start)
            raise GenerationError(f"{mode.value} generation failed: {e}") from e

        if not text or not text.strip():
            self._observe(mode, "empty", start)
            raise GenerationError(f"{mode.value} generation returned an empty response")

        self._observe(mode, "success", start)
        return text.strip()

    async def generate_quiz(self, system_instructions: str, user_content: str) -> list[QuizQuestion]:
        """Generate and parse a quiz.

        Raises:
            GenerationError: If generation fails
            QuizParseError: If the response holds no well-formed quiz
        """
        text = await self.generate(system_instructions, user_content, GenerationMode.quiz)
        return parse_quiz_response(text)

    def _observe(self, mode: GenerationMode, outcome: str, start: float) -> None:
        generation_latency_ms.labels(mode=mode.value, outcome=outcome).observe(
            (time.monotonic() - start) * 1000
        )


def parse_quiz_response(text: str) -> list[QuizQuestion]:
    """Extract the first well-formed quiz array from model output.

    Tolerates surrounding prose and fenced code blocks: every '[' is tried
    as the start of a JSON array, and the first array whose items all
    validate as QuizQuestion wins.

    Raises:
        QuizParseError: If no such array exists
    """
    decoder = json.JSONDecoder()
    position = text.find("[")

    while position != -1:
        try:
            candidate, _ = decoder.raw_decode(text, position)
        except json.JSONDecodeError:
            candidate = None

        if isinstance(candidate, list) and candidate and all(
            isinstance(item, dict) for item in candidate
        ):
            try:
                return [QuizQuestion.model_validate(item) for item in candidate]
            except ValidationError as e:
                logger.info(f"Skipping quiz candidate at offset {position}: {e.error_count()} errors")

        position = text.find("[", position + 1)

    raise QuizParseError("response did not contain a valid quiz question list")
