"""Blank-marker parsing and authoring validation for cloze questions.

A blank is a maximal run of three or more underscores inside the question
text. Blanks are numbered left to right and ``correct_answers[i]`` belongs to
blank ``i``, so the answer order must never change independently of the text.
"""

from __future__ import annotations

from cloze_app.constants.quiz_constants import (
    BLANK_PATTERN,
    MAX_BLANKS_PER_QUESTION,
    MAX_TIME_LIMIT_SECONDS,
    MIN_TIME_LIMIT_SECONDS,
)
from cloze_app.core.errors import QuestionValidationError, QuizValidationError, RejectionReason
from cloze_app.core.models import QuestionDraft, QuizDraft


def compile_blanks(text: str) -> int:
    """Return the number of blank markers in ``text``."""
    return len(BLANK_PATTERN.findall(text or ""))


def split_template(text: str) -> list[str]:
    """Split ``text`` into the literal segments surrounding each blank.

    The result always holds ``compile_blanks(text) + 1`` items.
    """
    return BLANK_PATTERN.split(text or "")


def resize_answer_slots(text: str, answers: list[str]) -> list[str]:
    """Pad or truncate answer inputs so the form shows one per blank (capped)."""
    target = min(compile_blanks(text), MAX_BLANKS_PER_QUESTION)
    if len(answers) >= target:
        return list(answers[:target])
    return list(answers) + [""] * (target - len(answers))


def validate_question(draft: QuestionDraft, question_number: int | None = None) -> QuestionDraft:
    """Check a draft against the authoring rules and return a cleaned copy.

    Raises :class:`QuestionValidationError` naming the first rule that fails.
    """
    text = (draft.text or "").strip()
    if not text:
        raise QuestionValidationError(
            RejectionReason.EMPTY_TEXT, "question text must not be empty", question_number
        )

    blank_count = compile_blanks(text)
    if blank_count == 0:
        raise QuestionValidationError(
            RejectionReason.NO_BLANKS, "must contain at least one blank (___)", question_number
        )
    if blank_count > MAX_BLANKS_PER_QUESTION:
        raise QuestionValidationError(
            RejectionReason.TOO_MANY_BLANKS,
            f"too many blanks ({blank_count}, maximum is {MAX_BLANKS_PER_QUESTION})",
            question_number,
        )

    answers = list(draft.correct_answers or [])
    if len(answers) != blank_count:
        raise QuestionValidationError(
            RejectionReason.ANSWER_COUNT_MISMATCH,
            f"answer count mismatch ({blank_count} blanks, {len(answers)} answers)",
            question_number,
        )

    cleaned_answers = [answer.strip() if answer else "" for answer in answers]
    if any(not answer for answer in cleaned_answers):
        raise QuestionValidationError(
            RejectionReason.EMPTY_ANSWER, "every blank needs a correct answer", question_number
        )

    return QuestionDraft(
        text=text,
        correct_answers=cleaned_answers,
        distractors=_clean_distractors(draft.distractors),
    )


def validate_questions(drafts: list[QuestionDraft]) -> list[QuestionDraft]:
    """Validate a whole quiz. Nothing is returned unless every question passes."""
    if not drafts:
        raise QuizValidationError("Quiz must contain at least one question.")
    return [validate_question(draft, number) for number, draft in enumerate(drafts, start=1)]


def validate_quiz_draft(draft: QuizDraft) -> QuizDraft:
    """Validate quiz metadata and every question; return a cleaned draft."""
    title = (draft.title or "").strip()
    if not title:
        raise QuizValidationError("Quiz title must not be empty.")
    description = (draft.description or "").strip() or None
    class_id = (draft.class_id or "").strip() or None
    return QuizDraft(
        title=title,
        questions=validate_questions(draft.questions),
        time_limit_seconds=_normalize_time_limit(draft.time_limit_seconds),
        description=description,
        class_id=class_id,
        is_published=bool(draft.is_published),
        reveal_answers=bool(draft.reveal_answers),
    )


def _normalize_time_limit(time_limit_seconds: int) -> int:
    if isinstance(time_limit_seconds, bool) or not isinstance(time_limit_seconds, int):
        raise QuizValidationError("Time limit must be provided as an integer number of seconds.")
    if not MIN_TIME_LIMIT_SECONDS <= time_limit_seconds <= MAX_TIME_LIMIT_SECONDS:
        raise QuizValidationError(
            f"Time limit must be between {MIN_TIME_LIMIT_SECONDS} and {MAX_TIME_LIMIT_SECONDS} seconds."
        )
    return time_limit_seconds


def _clean_distractors(distractors: list[str] | None) -> list[str]:
    cleaned = [item.strip() for item in distractors or [] if item]
    return [item for item in cleaned if item]
