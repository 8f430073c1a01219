"""Domain models for the cloze quiz application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class QuestionDraft:
    """Teacher input for a single question before it is validated and stored."""

    text: str
    correct_answers: list[str]
    distractors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ClozeQuestion:
    """Stored fill-in-the-blank question. Answers follow blank order in ``text``."""

    id: str
    quiz_id: str
    text: str
    correct_answers: list[str]
    distractors: list[str]
    position: int
    created_at: datetime = field(default_factory=utc_now)


@dataclass(slots=True)
class QuizDraft:
    """Teacher input for creating or rewriting a quiz."""

    title: str
    questions: list[QuestionDraft]
    time_limit_seconds: int
    description: str | None = None
    class_id: str | None = None
    is_published: bool = False
    reveal_answers: bool = False


@dataclass(slots=True)
class Quiz:
    """Quiz metadata. ``time_limit_seconds`` applies to each question, not the whole quiz."""

    id: str
    teacher_id: str
    title: str
    time_limit_seconds: int
    description: str | None = None
    class_id: str | None = None
    is_published: bool = False
    published_at: datetime | None = None
    reveal_answers: bool = False
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True, slots=True)
class AnswerRecord:
    """Outcome of one question inside an attempt."""

    question_id: str
    user_answers: tuple[str, ...]
    correct_answers: tuple[str, ...]  # Snapshot of the key at submission time
    is_correct: bool


@dataclass(slots=True)
class Attempt:
    """Finished play session. Only ``can_retry`` changes after creation."""

    id: str
    quiz_id: str
    student_id: str
    score: int
    total_questions: int
    time_taken_seconds: int
    answers: list[AnswerRecord]
    can_retry: bool = False
    completed_at: datetime = field(default_factory=utc_now)
