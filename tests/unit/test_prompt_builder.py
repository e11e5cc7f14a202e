"""Unit tests for the context assembler."""

import uuid

import pytest

from backend.app.context.builder import build_prompt, format_passages
from backend.app.context.prompts import NO_MATERIAL
from backend.app.models.companion import GenerationMode, QuizEvaluationInput, QuizQuestion
from backend.app.models.docs import RetrievalResult


def _result(page: int, content: str, index: int = 0) -> RetrievalResult:
    return RetrievalResult(
        chunk_id=uuid.uuid4(),
        content=content,
        page_number=page,
        similarity=0.8,
        chunk_index=index,
    )


@pytest.fixture
def question() -> QuizQuestion:
    return QuizQuestion(
        question="At what temperature does water boil?",
        options=["50C", "100C", "150C", "200C"],
        correct_index=1,
    )


def test_format_passages_labels_each_page() -> None:
    """Test '--- Page N ---' blocks separated by blank lines."""
    text = format_passages([_result(1, "The sky is blue."), _result(2, "Water boils at 100C.")])

    assert text == "--- Page 1 ---\nThe sky is blue.\n\n--- Page 2 ---\nWater boils at 100C."


def test_chat_with_results_uses_retrieved_material() -> None:
    """Test that retrieved passages ground the prompt and set context_used."""
    bundle = build_prompt(
        GenerationMode.chat,
        "what color is the sky",
        [_result(1, "The sky is blue.")],
        raw_fallback_text="IGNORED PAGE TEXT",
        page_number=1,
    )

    assert bundle.context_used is True
    assert bundle.mode == GenerationMode.chat
    assert "--- Page 1 ---\nThe sky is blue." in bundle.user_content
    assert "IGNORED PAGE TEXT" not in bundle.user_content
    assert "what color is the sky" in bundle.user_content
    assert "Work only from the material" in bundle.system_instructions


def test_chat_without_results_falls_back_to_raw_text() -> None:
    """Test that raw page text is used and context_used is False."""
    bundle = build_prompt(
        GenerationMode.chat,
        "what happens here?",
        [],
        raw_fallback_text="Chapter one begins at dawn.",
        page_number=7,
    )

    assert bundle.context_used is False
    assert "--- Page 7 ---\nChapter one begins at dawn." in bundle.user_content
    assert "say so plainly" in bundle.system_instructions


def test_no_material_at_all_is_stated() -> None:
    """Test that missing material is spelled out instead of left blank."""
    bundle = build_prompt(GenerationMode.chat, "anything?", [], None, None)

    assert bundle.context_used is False
    assert NO_MATERIAL in bundle.user_content


def test_quiz_prompt_carries_count_and_shape() -> None:
    """Test that quiz mode asks for n questions in the JSON shape."""
    bundle = build_prompt(
        GenerationMode.quiz,
        "key ideas",
        [],
        raw_fallback_text="Water boils at 100C.",
        page_number=2,
        n_questions=4,
    )

    assert "Generate 4 multiple-choice questions" in bundle.user_content
    assert '"correct_index"' in bundle.system_instructions
    assert "exactly 4 options" in bundle.system_instructions


def test_quiz_evaluation_embeds_question_and_choices(question: QuizQuestion) -> None:
    """Test that evaluation includes options, marked-correct and chosen option."""
    bundle = build_prompt(
        GenerationMode.quiz_evaluation,
        question.question,
        [_result(2, "Water boils at 100C.")],
        None,
        2,
        quiz_evaluation=QuizEvaluationInput(question=question, chosen_index=3),
    )

    content = bundle.user_content
    assert "Question: At what temperature does water boil?" in content
    assert "0. 50C" in content and "3. 200C" in content
    assert "Marked correct answer: 1. 100C" in content
    assert "Chosen answer: 3. 200C" in content
    assert "Chosen answer is correct: no" in content


def test_quiz_evaluation_requires_question() -> None:
    """Test that evaluation mode without its input is rejected."""
    with pytest.raises(ValueError):
        build_prompt(GenerationMode.quiz_evaluation, "q", [], "text", 1)


def test_explain_selection_includes_selection_and_page() -> None:
    """Test that the selected text and page number reach the prompt."""
    bundle = build_prompt(
        GenerationMode.explain_selection,
        "boils at 100C",
        [],
        raw_fallback_text="Water boils at 100C.",
        page_number=2,
    )

    assert "Selected text (page 2)" in bundle.user_content
    assert "boils at 100C" in bundle.user_content
    assert "highlighted" in bundle.system_instructions


def test_explain_selection_adds_page_context_to_passages() -> None:
    """Test that the full page follows matched passages for a long page."""
    page_text = "Water boils at 100C. " * 60 + "The kettle whistles."

    bundle = build_prompt(
        GenerationMode.explain_selection,
        "Water boils at 100C.",
        [_result(2, page_text[:1000])],
        None,
        2,
        page_context=page_text,
    )

    assert bundle.context_used is True
    assert f"Additional context from page 2:\n{page_text}\n--- End of page context ---" in (
        bundle.user_content
    )
    assert bundle.user_content.index("--- End of page context ---") < (
        bundle.user_content.index("Selected text (page 2)")
    )


def test_explain_selection_page_context_not_repeated_without_passages() -> None:
    """Test that raw page material is not sent twice."""
    bundle = build_prompt(
        GenerationMode.explain_selection,
        "boils",
        [],
        raw_fallback_text="Water boils at 100C.",
        page_number=2,
        page_context="Water boils at 100C.",
    )

    assert "Additional context" not in bundle.user_content
    assert bundle.user_content.count("Water boils at 100C.") == 1


def test_each_mode_has_distinct_system_instructions() -> None:
    """Test that every mode maps to its own system prompt."""
    evaluation = QuizEvaluationInput(
        question=QuizQuestion(question="q?", options=["a", "b", "c", "d"], correct_index=0),
        chosen_index=0,
    )
    prompts = {
        mode: build_prompt(mode, "x", [], "text", 1, quiz_evaluation=evaluation).system_instructions
        for mode in GenerationMode
    }

    assert len(set(prompts.values())) == len(GenerationMode)
