"""Context assembler - turns retrieved passages into grounded prompts.

Pure functions with no I/O. Retrieved passages are labelled by page number;
when there are none, the raw fallback text (usually the current page) is
used under the same grounding rules and context_used is False.
"""

from backend.app.context import prompts
from backend.app.models.companion import GenerationMode, PromptBundle, QuizEvaluationInput
from backend.app.models.docs import RetrievalResult

_SYSTEM_PROMPTS = {
    GenerationMode.chat: prompts.CHAT_SYSTEM,
    GenerationMode.quiz: prompts.QUIZ_SYSTEM,
    GenerationMode.quiz_evaluation: prompts.QUIZ_EVALUATION_SYSTEM,
    GenerationMode.explain_selection: prompts.EXPLAIN_SELECTION_SYSTEM,
}


def format_passages(results: list[RetrievalResult]) -> str:
    """Join passages as '--- Page N ---' blocks separated by blank lines."""
    return "\n\n".join(f"--- Page {r.page_number} ---\n{r.content}" for r in results)


def _format_fallback(raw_fallback_text: str | None, page_number: int | None) -> str:
    if not raw_fallback_text or not raw_fallback_text.strip():
        return prompts.NO_MATERIAL
    if page_number is None:
        return raw_fallback_text
    return f"--- Page {page_number} ---\n{raw_fallback_text}"


def build_prompt(
    mode: GenerationMode,
    query_or_instruction: str,
    retrieval_results: list[RetrievalResult],
    raw_fallback_text: str | None,
    page_number: int | None,
    *,
    n_questions: int = 3,
    quiz_evaluation: QuizEvaluationInput | None = None,
    page_context: str | None = None,
) -> PromptBundle:
    """Build system instructions and user content for one generation call.

    Args:
        mode: Generation mode
        query_or_instruction: User question, or the selected text for
            explain_selection
        retrieval_results: Retrieved passages (may be empty)
        raw_fallback_text: Material used when retrieval_results is empty
        page_number: Page the reader is on
        n_questions: Number of questions for quiz mode
        quiz_evaluation: Question and chosen option (required for quiz_evaluation)
        page_context: Full text of the current page, sent alongside matched
            passages in explain_selection mode

    Returns:
        PromptBundle; context_used is True only when retrieved passages
        supplied the material

    Raises:
        ValueError: If quiz_evaluation mode is missing its question
    """
    context_used = bool(retrieval_results)
    if context_used:
        material = format_passages(retrieval_results)
    else:
        material = _format_fallback(raw_fallback_text, page_number)

    if mode == GenerationMode.chat:
        user_content = prompts.CHAT_USER.format(material=material, query=query_or_instruction)

    elif mode == GenerationMode.quiz:
        user_content = prompts.QUIZ_USER.format(material=material, count=n_questions)

    elif mode == GenerationMode.quiz_evaluation:
        if quiz_evaluation is None:
            raise ValueError("quiz_evaluation mode requires the question and chosen option")
        question = quiz_evaluation.question
        user_content = prompts.QUIZ_EVALUATION_USER.format(
            material=material,
            question=question.question,
            options="\n".join(f"{i}. {option}" for i, option in enumerate(question.options)),
            correct_index=question.correct_index,
            correct_option=question.options[question.correct_index],
            chosen_index=quiz_evaluation.chosen_index,
            chosen_option=question.options[quiz_evaluation.chosen_index],
            verdict="yes" if quiz_evaluation.is_correct else "no",
        )

    else:
        page = page_number if page_number is not None else "unknown"
        extra = ""
        if context_used and page_context and page_context.strip():
            extra = prompts.PAGE_CONTEXT.format(page=page, text=page_context)
        user_content = prompts.EXPLAIN_SELECTION_USER.format(
            material=material,
            page_context=extra,
            page=page,
            selection=query_or_instruction,
        )

    return PromptBundle(
        mode=mode,
        system_instructions=_SYSTEM_PROMPTS[mode],
        user_content=user_content,
        context_used=context_used,
    )
