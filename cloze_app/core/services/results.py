"""Read-only result views rebuilt from stored attempts and questions."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from cloze_app.constants.quiz_constants import PASSING_PERCENTAGE
from cloze_app.core.models import Attempt, ClozeQuestion
from cloze_app.core.services.attempt_engine import percentage, round_half_up
from cloze_app.core.template_renderer import display_text


@dataclass(slots=True)
class QuestionResultRow:
    number: int
    question_id: str
    question_text: str
    user_answers: list[str]
    is_correct: bool
    correct_answers: list[str] | None  # None when the key is hidden


@dataclass(slots=True)
class AttemptResult:
    attempt_id: str
    quiz_id: str
    student_id: str
    score: int
    total_questions: int
    percentage: int
    passed: bool
    time_taken_seconds: int
    can_retry: bool
    completed_at: datetime
    answers_revealed: bool
    questions: list[QuestionResultRow]


@dataclass(slots=True)
class AttemptSummaryRow:
    attempt_id: str
    student_id: str
    score: int
    total_questions: int
    percentage: int
    passed: bool
    can_retry: bool
    completed_at: datetime


@dataclass(slots=True)
class QuizResultsSummary:
    quiz_id: str
    total_attempts: int
    average_percentage: int
    passed_attempts: int
    attempts: list[AttemptSummaryRow]


def is_passing(score: int, total_questions: int) -> bool:
    return percentage(score, total_questions) >= PASSING_PERCENTAGE


def build_attempt_result(
    attempt: Attempt,
    questions: list[ClozeQuestion],
    reveal_answers: bool,
) -> AttemptResult:
    """Describe one attempt. The key is included only when ``reveal_answers`` is set."""
    texts = {question.id: question.text for question in questions}
    rows = [
        QuestionResultRow(
            number=number,
            question_id=answer.question_id,
            # Questions are re-created on every edit, so older attempts may not resolve.
            question_text=display_text(texts.get(answer.question_id, f"Question {number}")),
            user_answers=list(answer.user_answers),
            is_correct=answer.is_correct,
            correct_answers=list(answer.correct_answers) if reveal_answers else None,
        )
        for number, answer in enumerate(attempt.answers, start=1)
    ]
    return AttemptResult(
        attempt_id=attempt.id,
        quiz_id=attempt.quiz_id,
        student_id=attempt.student_id,
        score=attempt.score,
        total_questions=attempt.total_questions,
        percentage=percentage(attempt.score, attempt.total_questions),
        passed=is_passing(attempt.score, attempt.total_questions),
        time_taken_seconds=attempt.time_taken_seconds,
        can_retry=attempt.can_retry,
        completed_at=attempt.completed_at,
        answers_revealed=reveal_answers,
        questions=rows,
    )


def build_quiz_summary(quiz_id: str, attempts: list[Attempt]) -> QuizResultsSummary:
    """Aggregate every attempt of a quiz, newest first as given."""
    rows = [
        AttemptSummaryRow(
            attempt_id=attempt.id,
            student_id=attempt.student_id,
            score=attempt.score,
            total_questions=attempt.total_questions,
            percentage=percentage(attempt.score, attempt.total_questions),
            passed=is_passing(attempt.score, attempt.total_questions),
            can_retry=attempt.can_retry,
            completed_at=attempt.completed_at,
        )
        for attempt in attempts
    ]
    average = 0
    if attempts:
        total = sum(
            attempt.score * 100 / attempt.total_questions
            for attempt in attempts
            if attempt.total_questions > 0
        )
        average = round_half_up(total / len(attempts))
    return QuizResultsSummary(
        quiz_id=quiz_id,
        total_attempts=len(attempts),
        average_percentage=average,
        passed_attempts=sum(1 for row in rows if row.passed),
        attempts=rows,
    )
