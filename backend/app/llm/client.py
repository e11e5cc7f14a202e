"""Text generation backends with OpenAI integration.

Security: Reads API key from settings only, never hardcoded.
Provides a deterministic backend when no provider is configured.
"""

import json
import logging
import re
from typing import Protocol

from openai import AsyncOpenAI

from backend.app.config import Settings
from backend.app.context.prompts import NO_MATERIAL
from backend.app.errors import ConfigurationError

logger = logging.getLogger(__name__)


class GenerationBackend(Protocol):
    """Protocol for text generation implementations."""

    async def complete(
        self,
        system_instructions: str,
        user_content: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate a completion.

        Args:
            system_instructions: System prompt
            user_content: User message carrying material and request
            temperature: Sampling temperature
            max_tokens: Output token limit

        Returns:
            Completion text (may be empty; callers validate)
        """
        ...


_QUIZ_REQUEST = re.compile(r"(\d+)\s+multiple-choice question", re.IGNORECASE)
_MATERIAL = re.compile(r"Material:\n(.*?)\n--- End of material ---", re.DOTALL)
_PAGE_HEADER = re.compile(r"^--- Page \d+ ---$", re.MULTILINE)
_SENTENCE = re.compile(r"[^.!?\n]+[.!?]?")


class DeterministicStubBackend:
    """Deterministic backend for tests and offline runs (no API key required).

    Answers from the first material block it is given, builds quizzes from
    the material's sentences and judges answers from the marked-correct
    option.
    """

    NOT_FOUND = "I couldn't find this in the provided material."

    async def complete(
        self,
        system_instructions: str,
        user_content: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate deterministic stub output."""
        sentences = self._material_sentences(user_content)
        request = user_content.rsplit("--- End of material ---", 1)[-1]

        quiz_match = _QUIZ_REQUEST.search(request)
        if quiz_match:
            return self._quiz(int(quiz_match.group(1)), sentences)

        if "Chosen answer:" in request:
            correct = "Chosen answer is correct: yes" in request
            verdict = "Correct." if correct else "Not quite."
            return f"{verdict} The marked answer is supported by the material on this page."

        if not sentences:
            return self.NOT_FOUND
        return f"Based on the material: {sentences[0]}"

    def _material_sentences(self, user_content: str) -> list[str]:
        match = _MATERIAL.search(user_content)
        if match is None:
            return []

        material = _PAGE_HEADER.sub("", match.group(1))
        if material.strip() == NO_MATERIAL:
            return []
        return [s.strip() for s in _SENTENCE.findall(material) if s.strip()]

    def _quiz(self, count: int, sentences: list[str]) -> str:
        facts = sentences or ["The material for this page is empty."]
        questions = []
        for i in range(count):
            fact = facts[i % len(facts)]
            questions.append(
                {
                    "question": f"Which statement appears in the material? ({i + 1})",
                    "options": [
                        fact,
                        "None of the statements appear.",
                        "The material does not say.",
                        "All of the statements are false.",
                    ],
                    "correct_index": 0,
                }
            )
        return "Here is your quiz:\n```json\n" + json.dumps(questions, indent=2) + "\n```"


class OpenAIGenerationBackend:
    """OpenAI-backed chat completions."""

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", timeout_s: float = 60.0):
        """Initialize OpenAI client.

        Args:
            api_key: OpenAI API key (read from settings)
            model: Model name to use (default: gpt-4o-mini for cost efficiency)
            timeout_s: Per-request timeout
        """
        # Retries are handled by the orchestrator
        self.client = AsyncOpenAI(api_key=api_key, timeout=timeout_s, max_retries=0)
        self.model = model

    async def complete(
        self,
        system_instructions: str,
        user_content: str,
        temperature: float,
        max_tokens: int,
    ) -> str:
        """Generate a completion using the OpenAI API."""
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_instructions},
                {"role": "user", "content": user_content},
            ],
            temperature=temperature,
            max_tokens=max_tokens,
        )

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


def get_generation_backend(settings: Settings) -> GenerationBackend:
    """Factory returning the backend selected by LLM_PROVIDER.

    Raises:
        ConfigurationError: If the OpenAI provider is selected without a key
    """
    if settings.llm_provider == "stub":
        logger.warning("LLM_PROVIDER=stub, using deterministic generation backend")
        return DeterministicStubBackend()

    api_key = settings.openai_api_key
    if not api_key or not api_key.get_secret_value():
        raise ConfigurationError("LLM_PROVIDER=openai requires OPENAI_API_KEY")

    logger.info("Using OpenAI generation backend")
    return OpenAIGenerationBackend(
        api_key=api_key.get_secret_value(),
        model=settings.openai_chat_model,
        timeout_s=settings.generation_timeout_s,
    )
