"""FastAPI server exposing authoring, play and results endpoints."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import asdict
from threading import Thread
from typing import Iterator

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
import uvicorn

from cloze_app.constants.about import APP_ABOUT_TEXT, APP_NAME, APP_VERSION, HELP_TEXT
from cloze_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT, USER_ID_HEADER
from cloze_app.constants.quiz_constants import DEFAULT_TIME_LIMIT_SECONDS
from cloze_app.core.errors import (
    PermissionDeniedError,
    QuestionValidationError,
    QuizValidationError,
    RetryNotAllowedError,
)
from cloze_app.core.models import ClozeQuestion, QuestionDraft, Quiz, QuizDraft
from cloze_app.core.quiz_exporter import serialize_quiz
from cloze_app.core.quiz_importer import QuizImportError, parse_quiz_text
from cloze_app.core.quiz_manager import QuizManager
from cloze_app.core.services.attempt_engine import AttemptEngine, percentage
from cloze_app.core.template_compiler import compile_blanks, resize_answer_slots, split_template
from cloze_app.core.template_renderer import renderer


class QuestionPayload(BaseModel):
    """Payload schema for one authored question."""

    text: str
    correct_answers: list[str] = Field(default_factory=list)
    distractors: list[str] = Field(default_factory=list)


class QuizPayload(BaseModel):
    """Payload schema for creating or rewriting a quiz."""

    title: str
    description: str | None = None
    time_limit_seconds: int = DEFAULT_TIME_LIMIT_SECONDS
    class_id: str | None = None
    is_published: bool = False
    reveal_answers: bool = False
    questions: list[QuestionPayload]

    def to_draft(self) -> QuizDraft:
        return QuizDraft(
            title=self.title,
            questions=[
                QuestionDraft(
                    text=question.text,
                    correct_answers=list(question.correct_answers),
                    distractors=list(question.distractors),
                )
                for question in self.questions
            ],
            time_limit_seconds=self.time_limit_seconds,
            description=self.description,
            class_id=self.class_id,
            is_published=self.is_published,
            reveal_answers=self.reveal_answers,
        )


class ImportPayload(BaseModel):
    content: str
    title: str | None = None


class CompilePayload(BaseModel):
    text: str
    answers: list[str] = Field(default_factory=list)


class SelectPayload(BaseModel):
    entry_index: int


class ClearPayload(BaseModel):
    slot_index: int


class RetryPayload(BaseModel):
    can_retry: bool = True


def _get_quiz_manager_dependency(quiz_manager: QuizManager):
    def dependency() -> QuizManager:
        return quiz_manager

    return dependency


def _current_user(user_id: str = Header(..., alias=USER_ID_HEADER)) -> str:
    stripped = user_id.strip()
    if not stripped:
        raise HTTPException(status_code=401, detail=f"{USER_ID_HEADER} header is required.")
    return stripped


@contextmanager
def _http_errors() -> Iterator[None]:
    try:
        yield
    except QuestionValidationError as exc:
        raise HTTPException(
            status_code=422,
            detail={"reason": exc.reason.value, "question": exc.question_number, "message": str(exc)},
        ) from exc
    except (QuizValidationError, QuizImportError) as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except PermissionDeniedError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RetryNotAllowedError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


def _quiz_to_dict(quiz: Quiz, questions: list[ClozeQuestion], include_key: bool) -> dict[str, object]:
    serialized_questions = []
    for question in questions:
        entry: dict[str, object] = {
            "id": question.id,
            "position": question.position,
            "text": question.text,
            "blank_count": compile_blanks(question.text),
        }
        if include_key:
            entry["correct_answers"] = list(question.correct_answers)
            entry["distractors"] = list(question.distractors)
        serialized_questions.append(entry)
    return {
        "id": quiz.id,
        "teacher_id": quiz.teacher_id,
        "title": quiz.title,
        "description": quiz.description,
        "time_limit_seconds": quiz.time_limit_seconds,
        "class_id": quiz.class_id,
        "is_published": quiz.is_published,
        "published_at": quiz.published_at.isoformat() if quiz.published_at else None,
        "reveal_answers": quiz.reveal_answers,
        "questions": serialized_questions,
    }


def _session_to_dict(engine: AttemptEngine) -> dict[str, object]:
    snapshot = engine.snapshot()
    payload: dict[str, object] = {
        "session_id": snapshot.session_id,
        "quiz_id": snapshot.quiz_id,
        "phase": snapshot.phase.value,
        "question_index": snapshot.question_index,
        "total_questions": snapshot.total_questions,
        "remaining_seconds": snapshot.remaining_seconds,
        "time_limit_seconds": snapshot.time_limit_seconds,
        "question_id": snapshot.question_id,
        "segments": list(snapshot.segments),
        "blank_count": snapshot.blank_count,
        "slots": list(snapshot.slots),
        "word_bank": [asdict(item) for item in snapshot.word_bank],
        "question_html": None,
    }
    if snapshot.question_text is not None:
        payload["question_html"] = renderer.render_fragment(snapshot.question_text, snapshot.slots)
    attempt = engine.attempt
    if attempt is not None:
        payload["result"] = {
            "attempt_id": attempt.id,
            "score": attempt.score,
            "total_questions": attempt.total_questions,
            "percentage": percentage(attempt.score, attempt.total_questions),
            "saved": engine.submission_error is None,
            "answers": [
                {"question_id": answer.question_id, "is_correct": answer.is_correct}
                for answer in attempt.answers
            ],
        }
    return payload


def create_api_app(quiz_manager: QuizManager) -> FastAPI:
    """Create a FastAPI application wired to the provided quiz manager."""
    app = FastAPI(title=f"{APP_NAME} API", version=APP_VERSION)
    quiz_manager_dep = _get_quiz_manager_dependency(quiz_manager)

    @app.get("/about")
    def about() -> dict[str, object]:
        return {"name": APP_NAME, "version": APP_VERSION, "about": APP_ABOUT_TEXT, "help": HELP_TEXT}

    # --- Authoring ---

    @app.post("/templates/compile")
    def compile_template(payload: CompilePayload) -> dict[str, object]:
        return {
            "blank_count": compile_blanks(payload.text),
            "segments": split_template(payload.text),
            "answer_slots": resize_answer_slots(payload.text, payload.answers),
        }

    @app.post("/quizzes", status_code=201)
    def create_quiz(
        payload: QuizPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            quiz, questions = manager.create_quiz(user_id, payload.to_draft())
        return _quiz_to_dict(quiz, questions, include_key=True)

    @app.post("/quizzes/import", status_code=201)
    def import_quiz(
        payload: ImportPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            draft = parse_quiz_text(payload.content, default_title=payload.title or "Imported quiz")
            quiz, questions = manager.create_quiz(user_id, draft)
        return _quiz_to_dict(quiz, questions, include_key=True)

    @app.get("/quizzes")
    def list_quizzes(
        mine: bool = Query(False),
        class_id: str | None = Query(None),
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        quizzes = manager.list_teacher_quizzes(user_id) if mine else manager.list_published_quizzes(class_id)
        return [
            {
                "id": quiz.id,
                "title": quiz.title,
                "time_limit_seconds": quiz.time_limit_seconds,
                "is_published": quiz.is_published,
                "can_play": quiz.is_published and manager.can_start_attempt(quiz.id, user_id),
            }
            for quiz in quizzes
        ]

    @app.get("/quizzes/{quiz_id}")
    def get_quiz(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            quiz = manager.get_quiz(quiz_id)
            is_owner = quiz.teacher_id == user_id
            if not is_owner and not quiz.is_published:
                raise PermissionDeniedError("Quiz is not published.")
            questions = manager.get_questions(quiz_id)
        return _quiz_to_dict(quiz, questions, include_key=is_owner)

    @app.put("/quizzes/{quiz_id}")
    def update_quiz(
        quiz_id: str,
        payload: QuizPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            quiz, questions = manager.update_quiz(user_id, quiz_id, payload.to_draft())
        return _quiz_to_dict(quiz, questions, include_key=True)

    @app.post("/quizzes/{quiz_id}/publish")
    def publish_quiz(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            quiz = manager.publish_quiz(user_id, quiz_id)
        return {"id": quiz.id, "is_published": quiz.is_published, "published_at": quiz.published_at.isoformat()}

    @app.delete("/quizzes/{quiz_id}", status_code=204)
    def delete_quiz(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> None:
        with _http_errors():
            manager.delete_quiz(user_id, quiz_id)

    @app.get("/quizzes/{quiz_id}/export", response_class=PlainTextResponse)
    def export_quiz(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> str:
        with _http_errors():
            quiz = manager.get_quiz(quiz_id)
            if quiz.teacher_id != user_id:
                raise PermissionDeniedError("Quiz belongs to another teacher.")
            return serialize_quiz(quiz, manager.get_questions(quiz_id))

    # --- Play ---

    @app.post("/quizzes/{quiz_id}/sessions", status_code=201)
    def start_session(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            engine = manager.start_session(quiz_id, user_id)
        return _session_to_dict(engine)

    @app.get("/sessions/{session_id}")
    def get_session(
        session_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            engine = manager.get_session(session_id, student_id=user_id)
        return _session_to_dict(engine)

    @app.post("/sessions/{session_id}/select")
    def select_word(
        session_id: str,
        payload: SelectPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            engine = manager.get_session(session_id, student_id=user_id)
        engine.select_word(payload.entry_index)
        return _session_to_dict(engine)

    @app.post("/sessions/{session_id}/clear")
    def clear_slot(
        session_id: str,
        payload: ClearPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            engine = manager.get_session(session_id, student_id=user_id)
        engine.clear_slot(payload.slot_index)
        return _session_to_dict(engine)

    @app.post("/sessions/{session_id}/advance")
    def advance(
        session_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            engine = manager.get_session(session_id, student_id=user_id)
        engine.advance()
        return _session_to_dict(engine)

    # --- Results ---

    @app.get("/attempts")
    def list_my_attempts(
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> list[dict[str, object]]:
        return [
            {
                "id": attempt.id,
                "quiz_id": attempt.quiz_id,
                "score": attempt.score,
                "total_questions": attempt.total_questions,
                "percentage": percentage(attempt.score, attempt.total_questions),
                "can_retry": attempt.can_retry,
                "completed_at": attempt.completed_at.isoformat(),
            }
            for attempt in manager.list_student_attempts(user_id)
        ]

    @app.get("/attempts/{attempt_id}")
    def get_attempt(
        attempt_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            result = manager.get_attempt_result(attempt_id, user_id)
        return asdict(result)

    @app.patch("/attempts/{attempt_id}/retry")
    def set_retry(
        attempt_id: str,
        payload: RetryPayload,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            attempt = manager.set_attempt_can_retry(user_id, attempt_id, payload.can_retry)
        return {"id": attempt.id, "can_retry": attempt.can_retry}

    @app.get("/quizzes/{quiz_id}/results")
    def get_quiz_results(
        quiz_id: str,
        user_id: str = Depends(_current_user),
        manager: QuizManager = Depends(quiz_manager_dep),
    ) -> dict[str, object]:
        with _http_errors():
            summary = manager.get_quiz_results(user_id, quiz_id)
        return asdict(summary)

    return app


def start_api_server(
    quiz_manager: QuizManager,
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    log_level: str = "info",
) -> Thread:
    """Start the FastAPI server in a background daemon thread."""
    app = create_api_app(quiz_manager)
    config = uvicorn.Config(app=app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = Thread(target=run_server, name="ClozeApiServer", daemon=True)
    thread.start()
    return thread
