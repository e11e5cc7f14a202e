"""Reading companion service - the operations exposed to the API.

Wires ingestion, retrieval, prompt building and generation together:
- trigger_ingestion schedules a background run and returns at once
- ask, generate_quiz, evaluate_answer and explain_selection retrieve
  material, build a grounded prompt and call the generation backend
"""

import asyncio
import logging
from uuid import UUID

from backend.app.config import Settings
from backend.app.context.builder import build_prompt
from backend.app.db.repositories import ReadingStore
from backend.app.docs.scheduler import IngestionScheduler
from backend.app.docs.retriever import RetrievalService
from backend.app.errors import NoContextError
from backend.app.llm.orchestrator import GenerationOrchestrator
from backend.app.models.companion import (
    AnswerEvaluation,
    AskResult,
    GenerationMode,
    QuizEvaluationInput,
    QuizQuestion,
    QuizResult,
)
from backend.app.models.docs import (
    DocumentStatus,
    IngestionAck,
    RetrievalResult,
    RetrievalScope,
)

logger = logging.getLogger(__name__)

NO_CONTEXT_RESPONSE = (
    "I couldn't find any text for this document yet. If it was just uploaded, "
    "wait for processing to finish and ask again."
)

QUIZ_RETRIEVAL_QUERY = "key facts, ideas, definitions and events"


class ConversationLocks:
    """Registry of per-conversation locks so chat turns persist in order."""

    def __init__(self) -> None:
        self._locks: dict[UUID, asyncio.Lock] = {}

    def get(self, conversation_id: UUID) -> asyncio.Lock:
        """Get or create the lock for a conversation."""
        if conversation_id not in self._locks:
            self._locks[conversation_id] = asyncio.Lock()
        return self._locks[conversation_id]


class ReadingCompanion:
    """Facade over ingestion, retrieval and generation."""

    def __init__(
        self,
        store: ReadingStore,
        retrieval: RetrievalService,
        orchestrator: GenerationOrchestrator,
        scheduler: IngestionScheduler,
        settings: Settings,
    ) -> None:
        self.store = store
        self.retrieval = retrieval
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self._settings = settings
        self._conversation_locks = ConversationLocks()

    async def trigger_ingestion(
        self, document_id: UUID, owner_id: UUID, storage_path: str
    ) -> IngestionAck:
        """Queue the document and start ingestion in the background.

        Re-triggering replaces the document's pages and chunks once any
        in-flight run has finished.
        """
        status = await self.store.upsert_document(document_id, owner_id, storage_path)
        self.scheduler.schedule(document_id)

        logger.info(
            f"Ingestion scheduled for {document_id}",
            extra={"structured": {"document_id": str(document_id), "path": storage_path}},
        )
        return IngestionAck(document_id=document_id, processing_state=status.processing_state)

    async def get_status(self, document_id: UUID) -> DocumentStatus | None:
        """Current processing status, or None for unknown documents."""
        return await self.store.get_document(document_id)

    async def ask(
        self,
        document_id: UUID,
        page_number: int | None,
        scope: RetrievalScope,
        query: str,
        conversation_id: UUID | None = None,
    ) -> AskResult:
        """Answer a question from the document's content.

        With a conversation_id, turns of the same conversation run one at a
        time and both messages are appended to its history.
        """
        if conversation_id is None:
            return await self._answer(document_id, page_number, scope, query)

        async with self._conversation_locks.get(conversation_id):
            result = await self._answer(document_id, page_number, scope, query)
            await self.store.append_messages(
                conversation_id,
                document_id,
                [("user", query), ("assistant", result.response_text)],
            )
            return result

    async def _answer(
        self,
        document_id: UUID,
        page_number: int | None,
        scope: RetrievalScope,
        query: str,
    ) -> AskResult:
        results, raw_text = await self._gather_material(document_id, page_number, scope, query)
        if not results and not (raw_text and raw_text.strip()):
            return AskResult(response_text=NO_CONTEXT_RESPONSE, context_used=False)

        bundle = build_prompt(GenerationMode.chat, query, results, raw_text, page_number)
        text = await self.orchestrator.generate(
            bundle.system_instructions, bundle.user_content, bundle.mode
        )
        return AskResult(response_text=text, context_used=bundle.context_used, sources=results)

    async def generate_quiz(
        self,
        document_id: UUID,
        page_number: int | None,
        scope: RetrievalScope,
        n_questions: int | None = None,
    ) -> QuizResult:
        """Generate multiple-choice questions about the reader's material.

        Raises:
            ValueError: If n_questions is out of range
            NoContextError: If the document has no usable text
            GenerationError: If generation fails
            QuizParseError: If the response holds no well-formed quiz
        """
        count = self._settings.quiz_default_questions if n_questions is None else n_questions
        if not 1 <= count <= self._settings.quiz_max_questions:
            raise ValueError(
                f"n_questions must be between 1 and {self._settings.quiz_max_questions}"
            )

        results, raw_text = await self._gather_material(
            document_id, page_number, scope, QUIZ_RETRIEVAL_QUERY
        )
        if not results and not (raw_text and raw_text.strip()):
            raise NoContextError(f"no text available to build a quiz for {document_id}")

        bundle = build_prompt(
            GenerationMode.quiz,
            QUIZ_RETRIEVAL_QUERY,
            results,
            raw_text,
            page_number,
            n_questions=count,
        )
        questions = await self.orchestrator.generate_quiz(
            bundle.system_instructions, bundle.user_content
        )
        return QuizResult(questions=questions[:count], context_used=bundle.context_used)

    async def evaluate_answer(
        self,
        document_id: UUID,
        question: QuizQuestion,
        chosen_index: int,
        page_number: int | None = None,
    ) -> AnswerEvaluation:
        """Judge a chosen option; correctness is decided locally."""
        evaluation = QuizEvaluationInput(question=question, chosen_index=chosen_index)
        scope = RetrievalScope.page if page_number is not None else RetrievalScope.book

        results, raw_text = await self._gather_material(
            document_id, page_number, scope, question.question
        )
        bundle = build_prompt(
            GenerationMode.quiz_evaluation,
            question.question,
            results,
            raw_text,
            page_number,
            quiz_evaluation=evaluation,
        )
        feedback = await self.orchestrator.generate(
            bundle.system_instructions, bundle.user_content, bundle.mode
        )
        return AnswerEvaluation(is_correct=evaluation.is_correct, feedback_text=feedback)

    async def explain_selection(
        self, document_id: UUID, page_number: int, selected_text: str
    ) -> AskResult:
        """Explain a highlighted passage.

        Matched passages are sent together with the full text of the page, so
        the explanation sees the selection in its surroundings.
        """
        results, raw_text = await self._gather_material(
            document_id, page_number, RetrievalScope.page, selected_text
        )
        page_text = None
        if results:
            page = await self.store.get_page(document_id, page_number)
            page_text = page.content if page is not None else None

        bundle = build_prompt(
            GenerationMode.explain_selection,
            selected_text,
            results,
            raw_text,
            page_number,
            page_context=page_text,
        )
        text = await self.orchestrator.generate(
            bundle.system_instructions, bundle.user_content, bundle.mode
        )
        return AskResult(response_text=text, context_used=bundle.context_used, sources=results)

    async def _gather_material(
        self,
        document_id: UUID,
        page_number: int | None,
        scope: RetrievalScope,
        query: str,
    ) -> tuple[list[RetrievalResult], str | None]:
        """Retrieved chunks plus raw text for when there are none.

        The whole-page fallback result is returned as raw text rather than
        as a retrieved passage, so context_used only reflects real matches.
        Without a page to fall back to, the raw text is the document's own
        pages up to document_context_max_chars.
        """
        results = await self.retrieval.retrieve(query, document_id, page_number, scope)
        chunks = [r for r in results if r.source != "page"]
        if chunks:
            return chunks, None

        whole_page = [r for r in results if r.source == "page"]
        if whole_page:
            return [], whole_page[0].content

        if page_number is not None:
            page = await self.store.get_page(document_id, page_number)
            if page is not None:
                return [], page.content
            return [], None

        return [], await self._document_text(document_id)

    async def _document_text(self, document_id: UUID) -> str | None:
        budget = self._settings.document_context_max_chars
        blocks: list[str] = []
        used = 0
        for page in await self.store.list_pages(document_id):
            if not page.content.strip():
                continue
            block = f"--- Page {page.page_number} ---\n{page.content}"
            if used + len(block) > budget:
                if not blocks:
                    blocks.append(block[:budget])
                break
            blocks.append(block)
            used += len(block) + 2

        return "\n\n".join(blocks) or None
