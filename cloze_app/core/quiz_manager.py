"""Business logic shared by the API: authoring, play sessions and results."""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
import logging
from pathlib import Path
from threading import Lock
from typing import Callable
from uuid import uuid4

from cloze_app.constants.quiz_constants import SESSION_RETENTION_SECONDS
from cloze_app.core.errors import (
    PermissionDeniedError,
    RetryNotAllowedError,
    SessionNotFoundError,
)
from cloze_app.core.models import Attempt, ClozeQuestion, Quiz, QuizDraft, utc_now
from cloze_app.core.quiz_exporter import save_quiz_to_file
from cloze_app.core.quiz_importer import load_quiz_from_file
from cloze_app.core.services.attempt_engine import AttemptEngine
from cloze_app.core.services.quiz_repository import InMemoryQuizStore, QuizStore
from cloze_app.core.services.results import (
    AttemptResult,
    QuizResultsSummary,
    build_attempt_result,
    build_quiz_summary,
)
from cloze_app.core.template_compiler import validate_quiz_draft

logger = logging.getLogger(__name__)

EngineFactory = Callable[[Quiz, list[ClozeQuestion], str, QuizStore], AttemptEngine]


class QuizManager:
    """Facade over the quiz store and the live attempt engines."""

    def __init__(
        self,
        store: QuizStore | None = None,
        engine_factory: EngineFactory | None = None,
        session_retention_seconds: int = SESSION_RETENTION_SECONDS,
    ) -> None:
        self._lock = Lock()
        self._session_retention = timedelta(seconds=session_retention_seconds)
        self._store = store if store is not None else InMemoryQuizStore()
        self._engine_factory = engine_factory or AttemptEngine
        self._sessions: dict[str, AttemptEngine] = {}

    @property
    def store(self) -> QuizStore:
        return self._store

    # --- Authoring ---

    def create_quiz(self, teacher_id: str, draft: QuizDraft) -> tuple[Quiz, list[ClozeQuestion]]:
        """Validate the whole draft, then store the quiz and its questions."""
        cleaned = validate_quiz_draft(draft)
        now = utc_now()
        quiz = Quiz(
            id=uuid4().hex,
            teacher_id=teacher_id,
            title=cleaned.title,
            time_limit_seconds=cleaned.time_limit_seconds,
            description=cleaned.description,
            class_id=cleaned.class_id,
            is_published=cleaned.is_published,
            published_at=now if cleaned.is_published else None,
            reveal_answers=cleaned.reveal_answers,
            created_at=now,
        )
        with self._lock:
            stored = self._store.save_quiz(quiz)
            questions = self._store.replace_questions(stored.id, cleaned.questions)
        logger.info("Quiz %s created by %s with %d questions.", stored.id, teacher_id, len(questions))
        return stored, questions

    def update_quiz(self, teacher_id: str, quiz_id: str, draft: QuizDraft) -> tuple[Quiz, list[ClozeQuestion]]:
        """Rewrite a quiz: metadata is replaced and every question is re-created."""
        cleaned = validate_quiz_draft(draft)
        with self._lock:
            existing = self._owned_quiz(teacher_id, quiz_id)
            published_at = existing.published_at
            if cleaned.is_published and not existing.is_published:
                published_at = utc_now()
            elif not cleaned.is_published:
                published_at = None
            updated = replace(
                existing,
                title=cleaned.title,
                time_limit_seconds=cleaned.time_limit_seconds,
                description=cleaned.description,
                class_id=cleaned.class_id,
                is_published=cleaned.is_published,
                published_at=published_at,
                reveal_answers=cleaned.reveal_answers,
            )
            stored = self._store.save_quiz(updated)
            questions = self._store.replace_questions(quiz_id, cleaned.questions)
        logger.info("Quiz %s rewritten with %d questions.", quiz_id, len(questions))
        return stored, questions

    def publish_quiz(self, teacher_id: str, quiz_id: str) -> Quiz:
        with self._lock:
            quiz = self._owned_quiz(teacher_id, quiz_id)
            if quiz.is_published:
                return quiz
            return self._store.save_quiz(replace(quiz, is_published=True, published_at=utc_now()))

    def delete_quiz(self, teacher_id: str, quiz_id: str) -> None:
        with self._lock:
            self._owned_quiz(teacher_id, quiz_id)
            self._store.delete_quiz(quiz_id)
            stale = [sid for sid, engine in self._sessions.items() if engine.quiz.id == quiz_id]
            for session_id in stale:
                self._sessions.pop(session_id).stop()
        logger.info("Quiz %s deleted with its questions and attempts.", quiz_id)

    def get_quiz(self, quiz_id: str) -> Quiz:
        with self._lock:
            return self._store.get_quiz(quiz_id)

    def get_questions(self, quiz_id: str) -> list[ClozeQuestion]:
        with self._lock:
            return self._store.get_questions(quiz_id)

    def list_teacher_quizzes(self, teacher_id: str) -> list[Quiz]:
        with self._lock:
            return self._store.list_quizzes(teacher_id=teacher_id)

    def list_published_quizzes(self, class_id: str | None = None) -> list[Quiz]:
        with self._lock:
            quizzes = self._store.list_quizzes(published_only=True)
        if class_id is None:
            return quizzes
        return [quiz for quiz in quizzes if quiz.class_id in (None, class_id)]

    def import_quiz(self, teacher_id: str, file_path: Path) -> tuple[Quiz, list[ClozeQuestion]]:
        imported = load_quiz_from_file(file_path)
        return self.create_quiz(teacher_id, imported.draft)

    def export_quiz(self, teacher_id: str, quiz_id: str, file_path: Path) -> None:
        with self._lock:
            quiz = self._owned_quiz(teacher_id, quiz_id)
            questions = self._store.get_questions(quiz_id)
        save_quiz_to_file(file_path, quiz, questions)

    # --- Play sessions ---

    def can_start_attempt(self, quiz_id: str, student_id: str) -> bool:
        """A student may play when they have no attempt yet or their latest one was re-opened."""
        with self._lock:
            attempts = self._store.list_attempts_for_student(student_id, quiz_id=quiz_id)
        return not attempts or attempts[0].can_retry

    def start_session(self, quiz_id: str, student_id: str) -> AttemptEngine:
        """Start a fresh session. A still-running session of the same student on this quiz is abandoned."""
        with self._lock:
            self._prune_sessions_locked()
            quiz = self._store.get_quiz(quiz_id)
            if not quiz.is_published:
                raise PermissionDeniedError("Quiz is not published.")
            # Stopped before the retry check so a session that just finished is counted.
            self._abandon_live_sessions_locked(quiz_id, student_id)
            attempts = self._store.list_attempts_for_student(student_id, quiz_id=quiz_id)
            if attempts and not attempts[0].can_retry:
                raise RetryNotAllowedError("Quiz already completed; ask your teacher to re-open it.")
            questions = self._store.get_questions(quiz_id)
            engine = self._engine_factory(quiz, questions, student_id, self._store)
            self._sessions[engine.session_id] = engine
        engine.start()
        return engine

    def get_session(self, session_id: str, student_id: str | None = None) -> AttemptEngine:
        """Look up a session. A completed session is handed out one last time and then forgotten."""
        with self._lock:
            self._prune_sessions_locked()
            engine = self._sessions.get(session_id)
            if engine is None:
                raise SessionNotFoundError(f"Session {session_id} not found.")
            if student_id is not None and engine.student_id != student_id:
                raise PermissionDeniedError("Session belongs to another student.")
            if engine.is_completed():
                del self._sessions[session_id]
        return engine

    def active_session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def discard_session(self, session_id: str) -> None:
        with self._lock:
            engine = self._sessions.pop(session_id, None)
        if engine is not None:
            engine.stop()

    # --- Results ---

    def get_attempt_result(self, attempt_id: str, user_id: str) -> AttemptResult:
        with self._lock:
            attempt = self._store.get_attempt(attempt_id)
            quiz = self._store.get_quiz(attempt.quiz_id)
            questions = self._store.get_questions(quiz.id)
        if user_id == quiz.teacher_id:
            reveal = True
        elif user_id == attempt.student_id:
            reveal = quiz.reveal_answers
        else:
            raise PermissionDeniedError("Attempt belongs to another student.")
        return build_attempt_result(attempt, questions, reveal_answers=reveal)

    def get_quiz_results(self, teacher_id: str, quiz_id: str) -> QuizResultsSummary:
        with self._lock:
            self._owned_quiz(teacher_id, quiz_id)
            attempts = self._store.list_attempts_for_quiz(quiz_id)
        return build_quiz_summary(quiz_id, attempts)

    def list_student_attempts(self, student_id: str) -> list[Attempt]:
        with self._lock:
            return self._store.list_attempts_for_student(student_id)

    def set_attempt_can_retry(self, teacher_id: str, attempt_id: str, can_retry: bool) -> Attempt:
        """Re-open (or close) a stored attempt. Only the quiz owner may do this."""
        with self._lock:
            attempt = self._store.get_attempt(attempt_id)
            self._owned_quiz(teacher_id, attempt.quiz_id)
            updated = self._store.set_attempt_can_retry(attempt_id, can_retry)
        logger.info("Attempt %s can_retry set to %s by %s.", attempt_id, can_retry, teacher_id)
        return updated

    def _abandon_live_sessions_locked(self, quiz_id: str, student_id: str) -> None:
        live = [
            session_id
            for session_id, engine in self._sessions.items()
            if engine.quiz.id == quiz_id and engine.student_id == student_id and not engine.is_completed()
        ]
        for session_id in live:
            self._sessions.pop(session_id).stop()
            logger.info("Session %s abandoned by a new session of student %s.", session_id, student_id)

    def _prune_sessions_locked(self) -> None:
        now = utc_now()
        expired = []
        for session_id, engine in self._sessions.items():
            attempt = engine.attempt
            if attempt is not None:
                deadline = attempt.completed_at + self._session_retention
            else:
                deadline = engine.created_at + timedelta(seconds=engine.max_duration_seconds) + self._session_retention
            if now >= deadline:
                expired.append(session_id)
        for session_id in expired:
            self._sessions.pop(session_id).stop()
        if expired:
            logger.debug("Dropped %d expired sessions.", len(expired))

    def _owned_quiz(self, teacher_id: str, quiz_id: str) -> Quiz:
        quiz = self._store.get_quiz(quiz_id)
        if quiz.teacher_id != teacher_id:
            raise PermissionDeniedError("Quiz belongs to another teacher.")
        return quiz
