"""Persistence port for quizzes, questions and attempts, plus an in-memory store."""

from __future__ import annotations

from dataclasses import replace
from threading import Lock
from typing import Any, Protocol
from uuid import uuid4

from cloze_app.core.errors import AttemptNotFoundError, QuizNotFoundError
from cloze_app.core.models import (
    AnswerRecord,
    Attempt,
    ClozeQuestion,
    QuestionDraft,
    Quiz,
    utc_now,
)


class QuizStore(Protocol):
    """Storage collaborator used by the authoring services and the attempt engine."""

    def save_quiz(self, quiz: Quiz) -> Quiz: ...

    def get_quiz(self, quiz_id: str) -> Quiz: ...

    def list_quizzes(self, teacher_id: str | None = None, published_only: bool = False) -> list[Quiz]: ...

    def delete_quiz(self, quiz_id: str) -> None: ...

    def replace_questions(self, quiz_id: str, drafts: list[QuestionDraft]) -> list[ClozeQuestion]: ...

    def get_questions(self, quiz_id: str) -> list[ClozeQuestion]: ...

    def create_attempt(self, attempt: Attempt) -> Attempt: ...

    def get_attempt(self, attempt_id: str) -> Attempt: ...

    def list_attempts_for_quiz(self, quiz_id: str) -> list[Attempt]: ...

    def list_attempts_for_student(self, student_id: str, quiz_id: str | None = None) -> list[Attempt]: ...

    def set_attempt_can_retry(self, attempt_id: str, can_retry: bool) -> Attempt: ...


def normalize_answer_record(raw: dict[str, Any]) -> AnswerRecord:
    """Build an :class:`AnswerRecord` from a stored dict in snake_case or camelCase."""
    is_correct = raw.get("is_correct")
    if is_correct is None:
        is_correct = raw.get("isCorrect", False)
    user_answers = raw.get("user_answers") or raw.get("userAnswers") or []
    correct_answers = raw.get("correct_answers") or raw.get("correctAnswers") or []
    question_id = raw.get("question_id") or raw.get("questionId")
    if not question_id:
        raise ValueError("Stored answer record is missing its question id.")
    return AnswerRecord(
        question_id=str(question_id),
        user_answers=tuple(str(item) for item in user_answers),
        correct_answers=tuple(str(item) for item in correct_answers),
        is_correct=bool(is_correct),
    )


class InMemoryQuizStore:
    """Process-local implementation of :class:`QuizStore`."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._quizzes: dict[str, Quiz] = {}
        self._questions: dict[str, list[ClozeQuestion]] = {}
        self._attempts: dict[str, Attempt] = {}

    # --- Quizzes ---

    def save_quiz(self, quiz: Quiz) -> Quiz:
        with self._lock:
            stored = replace(quiz, updated_at=utc_now())
            self._quizzes[stored.id] = stored
            self._questions.setdefault(stored.id, [])
            return stored

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return self._require_quiz(quiz_id)

    def list_quizzes(self, teacher_id: str | None = None, published_only: bool = False) -> list[Quiz]:
        with self._lock:
            quizzes = [
                quiz
                for quiz in self._quizzes.values()
                if (teacher_id is None or quiz.teacher_id == teacher_id)
                and (not published_only or quiz.is_published)
            ]
        return sorted(quizzes, key=lambda q: q.created_at, reverse=True)

    def delete_quiz(self, quiz_id: str) -> None:
        with self._lock:
            self._require_quiz(quiz_id)
            del self._quizzes[quiz_id]
            self._questions.pop(quiz_id, None)
            self._attempts = {
                attempt_id: attempt
                for attempt_id, attempt in self._attempts.items()
                if attempt.quiz_id != quiz_id
            }

    # --- Questions ---

    def replace_questions(self, quiz_id: str, drafts: list[QuestionDraft]) -> list[ClozeQuestion]:
        """Delete every question of the quiz and insert ``drafts`` in order."""
        with self._lock:
            self._require_quiz(quiz_id)
            questions = [
                ClozeQuestion(
                    id=uuid4().hex,
                    quiz_id=quiz_id,
                    text=draft.text,
                    correct_answers=list(draft.correct_answers),
                    distractors=list(draft.distractors),
                    position=position,
                )
                for position, draft in enumerate(drafts)
            ]
            self._questions[quiz_id] = questions
            return list(questions)

    def get_questions(self, quiz_id: str) -> list[ClozeQuestion]:
        with self._lock:
            self._require_quiz(quiz_id)
            return sorted(self._questions.get(quiz_id, []), key=lambda q: q.position)

    # --- Attempts ---

    def create_attempt(self, attempt: Attempt) -> Attempt:
        with self._lock:
            self._require_quiz(attempt.quiz_id)
            if attempt.id in self._attempts:
                raise ValueError(f"Attempt {attempt.id} already exists.")
            self._attempts[attempt.id] = attempt
            return attempt

    def import_attempt(self, raw: dict[str, Any]) -> Attempt:
        """Store a historical attempt record, normalising its answer field names."""
        answers = [normalize_answer_record(item) for item in raw.get("answers") or []]
        attempt = Attempt(
            id=str(raw.get("id") or uuid4().hex),
            quiz_id=str(raw.get("quiz_id") or raw.get("game_id")),
            student_id=str(raw["student_id"]),
            score=int(raw.get("score", sum(1 for a in answers if a.is_correct))),
            total_questions=int(raw.get("total_questions", len(answers))),
            time_taken_seconds=int(raw.get("time_taken") or raw.get("time_taken_seconds") or 0),
            answers=answers,
            can_retry=bool(raw.get("can_retry", False)),
        )
        return self.create_attempt(attempt)

    def get_attempt(self, attempt_id: str) -> Attempt:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(f"Attempt {attempt_id} not found.")
            return attempt

    def list_attempts_for_quiz(self, quiz_id: str) -> list[Attempt]:
        with self._lock:
            attempts = [a for a in self._attempts.values() if a.quiz_id == quiz_id]
        return _newest_first(attempts)

    def list_attempts_for_student(self, student_id: str, quiz_id: str | None = None) -> list[Attempt]:
        with self._lock:
            attempts = [
                a
                for a in self._attempts.values()
                if a.student_id == student_id and (quiz_id is None or a.quiz_id == quiz_id)
            ]
        return _newest_first(attempts)

    def set_attempt_can_retry(self, attempt_id: str, can_retry: bool) -> Attempt:
        with self._lock:
            attempt = self._attempts.get(attempt_id)
            if attempt is None:
                raise AttemptNotFoundError(f"Attempt {attempt_id} not found.")
            attempt.can_retry = can_retry
            return attempt

    def _require_quiz(self, quiz_id: str) -> Quiz:
        quiz = self._quizzes.get(quiz_id)
        if quiz is None:
            raise QuizNotFoundError(f"Quiz {quiz_id} not found.")
        return quiz


def _newest_first(attempts: list[Attempt]) -> list[Attempt]:
    # Ties on completed_at keep the later insertion first.
    return list(reversed(sorted(attempts, key=lambda a: a.completed_at)))
