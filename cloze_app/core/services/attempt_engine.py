"""Play-time engine: per-question countdown, word-bank selection and scoring.

The session itself is an immutable :class:`SessionState` advanced by the pure
:func:`transition` function. :class:`AttemptEngine` owns one state, the
countdown timer and the store, and turns the terminal state into exactly one
persisted :class:`Attempt`.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
import logging
import math
import random
from threading import RLock
from typing import Callable, Union
from uuid import uuid4

from cloze_app.core.models import AnswerRecord, Attempt, ClozeQuestion, Quiz, utc_now
from cloze_app.core.services.countdown_timer import CountdownTimer
from cloze_app.core.services.quiz_repository import QuizStore
from cloze_app.core.template_compiler import compile_blanks, split_template

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    PRESENTING = "presenting"
    SCORING = "scoring"
    COMPLETED = "completed"


@dataclass(frozen=True, slots=True)
class WordBankEntry:
    """One clickable word. ``index`` identifies the entry within the shuffled bank."""

    index: int
    text: str


@dataclass(frozen=True, slots=True)
class SelectWord:
    entry_index: int


@dataclass(frozen=True, slots=True)
class ClearSlot:
    slot_index: int


@dataclass(frozen=True, slots=True)
class Advance:
    pass


@dataclass(frozen=True, slots=True)
class Tick:
    question_index: int


SessionEvent = Union[SelectWord, ClearSlot, Advance, Tick]


@dataclass(frozen=True, slots=True)
class SessionContext:
    """Fixed inputs of a play session."""

    questions: tuple[ClozeQuestion, ...]
    time_limit_seconds: int
    shuffle: Callable[[list[WordBankEntry]], None]


@dataclass(frozen=True, slots=True)
class SessionState:
    phase: Phase
    question_index: int
    remaining_seconds: int
    word_bank: tuple[WordBankEntry, ...]
    used_words: frozenset[str]
    answers: tuple[tuple[str, ...], ...]  # One entry per question
    elapsed_seconds: tuple[int, ...]  # Time spent on each question once it is left

    @property
    def current_answers(self) -> tuple[str, ...]:
        if self.phase is not Phase.PRESENTING:
            return ()
        return self.answers[self.question_index]


# --- Pure session functions ---


def build_word_bank(
    question: ClozeQuestion, shuffle: Callable[[list[WordBankEntry]], None]
) -> tuple[WordBankEntry, ...]:
    """Return the question's correct answers and distractors in shuffled order."""
    words = list(question.correct_answers or []) + list(question.distractors or [])
    entries = [WordBankEntry(index=0, text=word) for word in words]
    shuffle(entries)
    return tuple(WordBankEntry(index=position, text=entry.text) for position, entry in enumerate(entries))


def initial_state(context: SessionContext) -> SessionState:
    count = len(context.questions)
    state = SessionState(
        phase=Phase.SCORING,
        question_index=0,
        remaining_seconds=0,
        word_bank=(),
        used_words=frozenset(),
        answers=tuple(() for _ in range(count)),
        elapsed_seconds=tuple(0 for _ in range(count)),
    )
    if count == 0:
        return state
    return _enter_question(state, 0, context)


def transition(state: SessionState, event: SessionEvent, context: SessionContext) -> SessionState:
    """Apply ``event`` and return the next state. Only ``PRESENTING`` reacts to events."""
    if state.phase is not Phase.PRESENTING:
        return state
    if isinstance(event, SelectWord):
        return _select_word(state, event.entry_index, context)
    if isinstance(event, ClearSlot):
        return _clear_slot(state, event.slot_index)
    if isinstance(event, Advance):
        return _leave_question(state, context)
    if isinstance(event, Tick):
        if event.question_index != state.question_index:
            return state
        remaining = max(0, state.remaining_seconds - 1)
        if remaining == 0:
            return _leave_question(replace(state, remaining_seconds=0), context)
        return replace(state, remaining_seconds=remaining)
    raise TypeError(f"Unsupported session event: {event!r}")


def resolve_scoring(state: SessionState, context: SessionContext) -> tuple[SessionState, list[AnswerRecord]]:
    """Score every question and move from ``SCORING`` to ``COMPLETED``."""
    if state.phase is not Phase.SCORING:
        raise RuntimeError(f"Cannot score a session in phase {state.phase.value}.")
    records = [
        score_question(question, state.answers[index])
        for index, question in enumerate(context.questions)
    ]
    completed = replace(
        state,
        phase=Phase.COMPLETED,
        remaining_seconds=0,
        word_bank=(),
        used_words=frozenset(),
    )
    return completed, records


def _enter_question(state: SessionState, index: int, context: SessionContext) -> SessionState:
    question = context.questions[index]
    return replace(
        state,
        phase=Phase.PRESENTING,
        question_index=index,
        remaining_seconds=context.time_limit_seconds,
        word_bank=build_word_bank(question, context.shuffle),
        used_words=frozenset(state.answers[index]),
    )


def _leave_question(state: SessionState, context: SessionContext) -> SessionState:
    index = state.question_index
    spent = max(0, context.time_limit_seconds - state.remaining_seconds)
    elapsed = state.elapsed_seconds[:index] + (spent,) + state.elapsed_seconds[index + 1 :]
    left = replace(state, elapsed_seconds=elapsed)
    next_index = index + 1
    if next_index < len(context.questions):
        return _enter_question(left, next_index, context)
    return replace(left, phase=Phase.SCORING, remaining_seconds=0)


def _select_word(state: SessionState, entry_index: int, context: SessionContext) -> SessionState:
    if not 0 <= entry_index < len(state.word_bank):
        return state
    word = state.word_bank[entry_index].text
    current = state.current_answers

    if word in current:
        position = current.index(word)
        return _with_answers(state, current[:position] + current[position + 1 :], state.used_words - {word})

    if word in state.used_words:
        return state

    blank_count = compile_blanks(context.questions[state.question_index].text)
    if len(current) >= blank_count:
        return state
    return _with_answers(state, current + (word,), state.used_words | {word})


def _clear_slot(state: SessionState, slot_index: int) -> SessionState:
    current = state.current_answers
    if not 0 <= slot_index < len(current):
        return state
    word = current[slot_index]
    return _with_answers(state, current[:slot_index] + current[slot_index + 1 :], state.used_words - {word})


def _with_answers(state: SessionState, current: tuple[str, ...], used: frozenset[str]) -> SessionState:
    index = state.question_index
    answers = state.answers[:index] + (current,) + state.answers[index + 1 :]
    return replace(state, answers=answers, used_words=used)


# --- Scoring ---


def normalize_answer(value: str) -> str:
    return str(value or "").strip().casefold()


def answers_match(user_answers: tuple[str, ...] | list[str], correct_answers: tuple[str, ...] | list[str]) -> bool:
    """Positional comparison, ignoring case and surrounding whitespace."""
    if len(user_answers) != len(correct_answers):
        return False
    return all(
        normalize_answer(given) == normalize_answer(expected)
        for given, expected in zip(user_answers, correct_answers)
    )


def score_question(question: ClozeQuestion, user_answers: tuple[str, ...]) -> AnswerRecord:
    """Score one question. A question whose key does not fit its text is incorrect."""
    key = tuple(question.correct_answers or ())
    blank_count = compile_blanks(question.text)
    if not key or blank_count != len(key):
        logger.warning(
            "Question %s has %d blanks but %d stored answers; scoring it as incorrect.",
            question.id,
            blank_count,
            len(key),
        )
        is_correct = False
    else:
        is_correct = answers_match(user_answers, key)
    return AnswerRecord(
        question_id=question.id,
        user_answers=tuple(user_answers),
        correct_answers=key,
        is_correct=is_correct,
    )


def round_half_up(value: float) -> int:
    """Round to the nearest integer with .5 going up (12.5 -> 13)."""
    return math.floor(value + 0.5)


def percentage(score: int, total_questions: int) -> int:
    if total_questions <= 0:
        return 0
    return round_half_up(score * 100 / total_questions)


# --- Session object ---


@dataclass(frozen=True, slots=True)
class WordBankItem:
    index: int
    text: str
    used: bool
    selectable: bool


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    """Read-only view of an engine for rendering."""

    session_id: str
    quiz_id: str
    phase: Phase
    question_index: int
    total_questions: int
    remaining_seconds: int
    time_limit_seconds: int
    question_id: str | None
    question_text: str | None
    segments: tuple[str, ...]
    blank_count: int
    slots: tuple[str, ...]
    word_bank: tuple[WordBankItem, ...]
    attempt_id: str | None
    score: int | None


class AttemptEngine:
    """Drives one student through a quiz and submits the attempt exactly once."""

    def __init__(
        self,
        quiz: Quiz,
        questions: list[ClozeQuestion],
        student_id: str,
        store: QuizStore,
        *,
        rng: random.Random | None = None,
        timer_factory: Callable[[Callable[[int], None]], CountdownTimer] | None = None,
        on_change: Callable[[AttemptEngine], None] | None = None,
        session_id: str | None = None,
    ) -> None:
        self.session_id = session_id or uuid4().hex
        self.created_at = utc_now()
        self._quiz = quiz
        self._student_id = student_id
        self._store = store
        self._on_change = on_change
        self._lock = RLock()
        self._rng = rng or random.Random()
        self._context = SessionContext(
            questions=tuple(sorted(questions, key=lambda q: q.position)),
            time_limit_seconds=quiz.time_limit_seconds,
            shuffle=self._rng.shuffle,
        )
        factory = timer_factory or (lambda callback: CountdownTimer(callback))
        self._timer = factory(self._on_timer_tick)
        self._state = initial_state(self._context)
        self._attempt: Attempt | None = None
        self._submitted = False
        self.submission_error: Exception | None = None
        self._started = False
        self._stopped = False

    @property
    def quiz(self) -> Quiz:
        return self._quiz

    @property
    def student_id(self) -> str:
        return self._student_id

    @property
    def max_duration_seconds(self) -> int:
        """Upper bound on play time: every question running out its timer."""
        return len(self._context.questions) * self._context.time_limit_seconds

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def attempt(self) -> Attempt | None:
        """The finished attempt, available once the session is completed."""
        with self._lock:
            return self._attempt

    def is_completed(self) -> bool:
        with self._lock:
            return self._state.phase is Phase.COMPLETED

    def start(self) -> None:
        """Arm the timer for the first question (or finish an empty quiz)."""
        with self._lock:
            if self._started:
                return
            self._started = True
            logger.info(
                "Session %s started for student %s on quiz %s (%d questions).",
                self.session_id,
                self._student_id,
                self._quiz.id,
                len(self._context.questions),
            )
            if self._state.phase is Phase.SCORING:
                self._finish()
            else:
                self._timer.arm(self._state.question_index)

    def select_word(self, entry_index: int) -> SessionState:
        return self.dispatch(SelectWord(entry_index))

    def clear_slot(self, slot_index: int) -> SessionState:
        return self.dispatch(ClearSlot(slot_index))

    def advance(self) -> SessionState:
        return self.dispatch(Advance())

    def dispatch(self, event: SessionEvent) -> SessionState:
        with self._lock:
            if self._stopped:
                return self._state
            previous = self._state
            self._state = transition(previous, event, self._context)
            if self._state.phase is Phase.SCORING:
                self._timer.cancel()
                self._finish()
            elif self._state.question_index != previous.question_index:
                self._timer.arm(self._state.question_index)
            current = self._state
        if current is not previous and self._on_change is not None:
            self._on_change(self)
        return current

    def stop(self) -> None:
        """Abandon the session: cancel the timer and ignore any further events.

        A stopped session never submits, so its partial answers are lost.
        """
        with self._lock:
            self._stopped = True
            self._timer.cancel()

    def is_stopped(self) -> bool:
        with self._lock:
            return self._stopped

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            state = self._state
            attempt = self._attempt
            question = None
            if state.phase is Phase.PRESENTING:
                question = self._context.questions[state.question_index]
            current = state.current_answers
            bank = tuple(
                WordBankItem(
                    index=entry.index,
                    text=entry.text,
                    used=entry.text in state.used_words,
                    selectable=entry.text not in state.used_words or entry.text in current,
                )
                for entry in state.word_bank
            )
            return SessionSnapshot(
                session_id=self.session_id,
                quiz_id=self._quiz.id,
                phase=state.phase,
                question_index=state.question_index,
                total_questions=len(self._context.questions),
                remaining_seconds=state.remaining_seconds,
                time_limit_seconds=self._context.time_limit_seconds,
                question_id=question.id if question else None,
                question_text=question.text if question else None,
                segments=tuple(split_template(question.text)) if question else (),
                blank_count=compile_blanks(question.text) if question else 0,
                slots=current,
                word_bank=bank,
                attempt_id=attempt.id if attempt else None,
                score=attempt.score if attempt else None,
            )

    def _on_timer_tick(self, question_index: int) -> None:
        self.dispatch(Tick(question_index))

    def _finish(self) -> None:
        self._state, records = resolve_scoring(self._state, self._context)
        score = sum(1 for record in records if record.is_correct)
        self._attempt = Attempt(
            id=uuid4().hex,
            quiz_id=self._quiz.id,
            student_id=self._student_id,
            score=score,
            total_questions=len(records),
            time_taken_seconds=sum(self._state.elapsed_seconds),
            answers=records,
            can_retry=False,
        )
        logger.info(
            "Session %s completed: %d/%d correct.", self.session_id, score, len(records)
        )
        self._submit_once()

    def _submit_once(self) -> None:
        if self._submitted or self._attempt is None:
            return
        self._submitted = True
        try:
            self._store.create_attempt(self._attempt)
        except Exception as exc:
            # Results stay available from local state; there is no resubmission.
            logger.exception("Failed to persist attempt %s for session %s.", self._attempt.id, self.session_id)
            self.submission_error = exc
