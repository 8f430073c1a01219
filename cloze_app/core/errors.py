"""Exceptions shared by the core services and the API layer."""

from __future__ import annotations

from enum import Enum


class RejectionReason(str, Enum):
    """Distinguishable reasons a question is rejected at authoring time."""

    EMPTY_TEXT = "empty_text"
    NO_BLANKS = "no_blanks"
    TOO_MANY_BLANKS = "too_many_blanks"
    ANSWER_COUNT_MISMATCH = "answer_count_mismatch"
    EMPTY_ANSWER = "empty_answer"


class QuestionValidationError(ValueError):
    """Raised when a question draft breaks one of the authoring rules."""

    def __init__(self, reason: RejectionReason, message: str, question_number: int | None = None) -> None:
        self.reason = reason
        self.question_number = question_number
        if question_number is not None:
            message = f"Question {question_number}: {message}"
        super().__init__(message)


class QuizValidationError(ValueError):
    """Raised for quiz-level authoring problems (title, time limit, empty quiz)."""


class QuizNotFoundError(LookupError):
    pass


class AttemptNotFoundError(LookupError):
    pass


class SessionNotFoundError(LookupError):
    pass


class PermissionDeniedError(PermissionError):
    """Raised when a user acts on a quiz or attempt they do not own."""


class RetryNotAllowedError(RuntimeError):
    """Raised when a student replays a quiz whose latest attempt is not re-opened."""
