import random

import pytest

from cloze_app.core.models import ClozeQuestion, QuestionDraft, Quiz, QuizDraft
from cloze_app.core.quiz_manager import QuizManager
from cloze_app.core.services.attempt_engine import AttemptEngine
from cloze_app.core.services.quiz_repository import InMemoryQuizStore


class ManualTimer:
    """Stand-in for CountdownTimer; tests fire ticks by hand."""

    def __init__(self, callback):
        self.callback = callback
        self.armed_index = None
        self.arm_calls = []
        self.cancel_count = 0

    def arm(self, question_index):
        self.armed_index = question_index
        self.arm_calls.append(question_index)

    def cancel(self):
        self.armed_index = None
        self.cancel_count += 1

    def is_armed(self):
        return self.armed_index is not None

    def fire(self, question_index=None):
        index = self.armed_index if question_index is None else question_index
        self.callback(index)


def make_question(text, answers, distractors=(), position=0, question_id=None):
    return ClozeQuestion(
        id=question_id or f"q{position}",
        quiz_id="quiz-1",
        text=text,
        correct_answers=list(answers),
        distractors=list(distractors),
        position=position,
    )


def make_quiz(time_limit=30, reveal_answers=False, quiz_id="quiz-1"):
    return Quiz(
        id=quiz_id,
        teacher_id="teacher-1",
        title="Capitals",
        time_limit_seconds=time_limit,
        is_published=True,
        reveal_answers=reveal_answers,
    )


def make_engine(questions, store=None, time_limit=30, seed=3, quiz=None):
    quiz = quiz or make_quiz(time_limit=time_limit)
    if store is None:
        store = InMemoryQuizStore()
        store.save_quiz(quiz)
    return AttemptEngine(
        quiz,
        questions,
        "student-1",
        store,
        rng=random.Random(seed),
        timer_factory=ManualTimer,
    )


def bank_index(engine, word):
    """Index of the first word-bank entry with the given text."""
    for entry in engine.state.word_bank:
        if entry.text == word:
            return entry.index
    raise AssertionError(f"{word!r} not in word bank")


def manual_engine_factory(quiz, questions, student_id, store):
    return AttemptEngine(
        quiz, questions, student_id, store, rng=random.Random(11), timer_factory=ManualTimer
    )


@pytest.fixture
def store():
    return InMemoryQuizStore()


@pytest.fixture
def manager(store):
    return QuizManager(store=store, engine_factory=manual_engine_factory)


@pytest.fixture
def quiz_draft():
    return QuizDraft(
        title="Capitals",
        description="South America",
        time_limit_seconds=30,
        is_published=True,
        questions=[
            QuestionDraft(
                text="The capital of Brazil is ___.",
                correct_answers=["Brasília"],
                distractors=["Rio", "São Paulo", " "],
            ),
            QuestionDraft(
                text="___ and ___ are primary colors.",
                correct_answers=["Red", "Blue"],
                distractors=["Green"],
            ),
        ],
    )
