from dataclasses import replace
import logging
import random
from unittest.mock import MagicMock

import pytest

from cloze_app.core.services.attempt_engine import (
    Advance,
    ClearSlot,
    Phase,
    SelectWord,
    SessionContext,
    Tick,
    answers_match,
    build_word_bank,
    initial_state,
    percentage,
    resolve_scoring,
    score_question,
    transition,
)
from cloze_app.core.services.quiz_repository import InMemoryQuizStore

from conftest import bank_index, make_engine, make_question, make_quiz


def _context(questions, time_limit=30):
    return SessionContext(
        questions=tuple(questions),
        time_limit_seconds=time_limit,
        shuffle=lambda entries: None,
    )


COLORS = make_question("___ and ___ are primary colors.", ["Red", "Blue"], ["Green"], position=0)
BRAZIL = make_question("The capital of Brazil is ___.", ["Brasília"], ["Rio"], position=1)


class TestWordBankSelection:
    """Selection rules applied by the pure transition function."""

    def test_initial_state_presents_first_question(self):
        state = initial_state(_context([COLORS, BRAZIL]))
        assert state.phase is Phase.PRESENTING
        assert state.question_index == 0
        assert state.remaining_seconds == 30
        assert [entry.text for entry in state.word_bank] == ["Red", "Blue", "Green"]

    def test_select_appends_in_order_up_to_blank_count(self):
        context = _context([COLORS])
        state = initial_state(context)
        state = transition(state, SelectWord(2), context)
        state = transition(state, SelectWord(0), context)
        assert state.current_answers == ("Green", "Red")

        full = transition(state, SelectWord(1), context)
        assert full is state
        assert len(full.current_answers) == 2

    def test_selecting_selected_word_toggles_it_off(self):
        context = _context([COLORS])
        state = initial_state(context)
        state = transition(state, SelectWord(2), context)
        state = transition(state, SelectWord(0), context)
        state = transition(state, SelectWord(2), context)
        assert state.current_answers == ("Red",)
        assert "Green" not in state.used_words

    def test_clear_slot_keeps_relative_order(self):
        question = make_question("___ ___ ___", ["a", "b", "c"])
        context = _context([question])
        state = initial_state(context)
        for index in (0, 1, 2):
            state = transition(state, SelectWord(index), context)
        state = transition(state, ClearSlot(1), context)
        assert state.current_answers == ("a", "c")
        assert "b" not in state.used_words

    def test_clear_empty_slot_is_ignored(self):
        context = _context([COLORS])
        state = initial_state(context)
        assert transition(state, ClearSlot(0), context) is state

    def test_duplicate_text_appears_once(self):
        question = make_question("___ ___", ["a", "b"], ["a"])
        context = _context([question])
        state = initial_state(context)
        state = transition(state, SelectWord(0), context)
        state = transition(state, SelectWord(2), context)
        assert state.current_answers.count("a") <= 1

    def test_used_word_outside_answers_cannot_be_selected(self):
        context = _context([COLORS])
        state = replace(initial_state(context), used_words=frozenset({"Green"}))
        assert transition(state, SelectWord(2), context) is state

    def test_out_of_range_entry_is_ignored(self):
        context = _context([COLORS])
        state = initial_state(context)
        assert transition(state, SelectWord(9), context) is state


class TestTimingTransitions:
    def test_tick_decrements_remaining(self):
        context = _context([COLORS, BRAZIL])
        state = transition(initial_state(context), Tick(0), context)
        assert state.remaining_seconds == 29

    def test_stale_tick_is_ignored(self):
        context = _context([COLORS, BRAZIL])
        state = initial_state(context)
        assert transition(state, Tick(1), context) is state

    def test_advance_rearms_full_time_limit(self):
        context = _context([COLORS, BRAZIL])
        state = initial_state(context)
        for _ in range(10):
            state = transition(state, Tick(0), context)
        state = transition(state, Advance(), context)
        assert state.question_index == 1
        assert state.remaining_seconds == 30
        assert state.elapsed_seconds == (10, 0)
        assert [entry.text for entry in state.word_bank] == ["Brasília", "Rio"]

    def test_timeout_moves_to_next_question(self):
        context = _context([COLORS, BRAZIL], time_limit=2)
        state = initial_state(context)
        state = transition(state, Tick(0), context)
        state = transition(state, Tick(0), context)
        assert state.question_index == 1
        assert state.remaining_seconds == 2
        assert state.elapsed_seconds[0] == 2

    def test_leaving_last_question_enters_scoring(self):
        context = _context([BRAZIL])
        state = transition(initial_state(context), Advance(), context)
        assert state.phase is Phase.SCORING
        assert transition(state, SelectWord(0), context) is state

    def test_resolve_scoring_completes(self):
        context = _context([BRAZIL])
        state = initial_state(context)
        state = transition(state, SelectWord(0), context)
        state = transition(state, Advance(), context)
        completed, records = resolve_scoring(state, context)
        assert completed.phase is Phase.COMPLETED
        assert records[0].is_correct is True
        assert transition(completed, Advance(), context) is completed

    def test_word_bank_is_a_permutation(self):
        question = make_question("___ ___", ["a", "b"], ["c", "d"])
        bank = build_word_bank(question, random.Random(5).shuffle)
        assert sorted(entry.text for entry in bank) == ["a", "b", "c", "d"]
        assert [entry.index for entry in bank] == [0, 1, 2, 3]


class TestScoring:
    def test_normalized_match(self):
        assert answers_match(["brasília "], ["Brasília"])
        assert answers_match(("  RED", "blue"), ("Red", " Blue "))

    def test_order_matters(self):
        assert not answers_match(["Blue", "Red"], ["Red", "Blue"])

    def test_short_answer_list_is_incorrect(self):
        assert not answers_match([], ["Red"])

    def test_malformed_question_scored_incorrect(self, caplog):
        broken = make_question("___ and ___", ["Red"])
        with caplog.at_level(logging.WARNING):
            record = score_question(broken, ("Red",))
        assert record.is_correct is False
        assert "scoring it as incorrect" in caplog.text

    def test_percentage_rounds(self):
        assert percentage(2, 3) == 67
        assert percentage(0, 0) == 0
        assert percentage(5, 5) == 100

    def test_percentage_rounds_half_up(self):
        assert percentage(1, 8) == 13
        assert percentage(5, 8) == 63
        assert percentage(1, 2) == 50


class TestAttemptEngine:
    """Session object: timer ownership and single submission."""

    def test_start_arms_timer_for_first_question(self):
        engine = make_engine([COLORS, BRAZIL])
        engine.start()
        assert engine._timer.arm_calls == [0]
        engine.advance()
        assert engine._timer.arm_calls == [0, 1]

    def test_timer_ticks_drive_countdown(self):
        engine = make_engine([COLORS, BRAZIL], time_limit=3)
        engine.start()
        engine._timer.fire()
        assert engine.state.remaining_seconds == 2
        engine._timer.fire()
        engine._timer.fire()
        assert engine.state.question_index == 1
        assert engine.state.remaining_seconds == 3

    def test_last_question_timeout_persists_once(self):
        questions = [
            make_question(f"Word {n} is ___.", [f"w{n}"], [f"x{n}"], position=n, question_id=f"q{n}")
            for n in range(5)
        ]
        store = InMemoryQuizStore()
        store.save_quiz(make_quiz())
        engine = make_engine(questions, store=store)
        engine.start()

        for n in range(4):
            engine.select_word(bank_index(engine, f"w{n}"))
            engine.advance()

        for _ in range(30):
            engine._timer.fire(4)

        attempts = store.list_attempts_for_student("student-1")
        assert len(attempts) == 1
        attempt = attempts[0]
        assert attempt.score == 4
        assert attempt.total_questions == 5
        assert attempt.answers[4].user_answers == ()
        assert attempt.answers[4].is_correct is False
        assert engine.is_completed()
        assert not engine._timer.is_armed()

    def test_double_finish_submits_once(self):
        store = InMemoryQuizStore()
        store.save_quiz(make_quiz())
        store.create_attempt = MagicMock(wraps=store.create_attempt)
        engine = make_engine([BRAZIL], store=store)
        engine.start()

        engine.advance()
        engine._timer.fire(0)
        engine.advance()

        assert store.create_attempt.call_count == 1

    def test_persistence_failure_keeps_results(self, caplog):
        store = MagicMock()
        store.create_attempt.side_effect = RuntimeError("database unavailable")
        engine = make_engine([BRAZIL], store=store)
        engine.start()
        engine.select_word(bank_index(engine, "Brasília"))

        with caplog.at_level(logging.ERROR):
            engine.advance()

        assert engine.is_completed()
        assert engine.attempt.score == 1
        assert isinstance(engine.submission_error, RuntimeError)
        assert "Failed to persist attempt" in caplog.text

    def test_time_taken_sums_time_spent_per_question(self):
        engine = make_engine([COLORS, BRAZIL], time_limit=30)
        engine.start()
        for _ in range(5):
            engine._timer.fire()
        engine.advance()
        for _ in range(10):
            engine._timer.fire()
        engine.advance()
        assert engine.attempt.time_taken_seconds == 15

    def test_answer_snapshot_is_stored(self):
        engine = make_engine([COLORS])
        engine.start()
        engine.select_word(bank_index(engine, "Red"))
        engine.select_word(bank_index(engine, "Blue"))
        engine.advance()
        record = engine.attempt.answers[0]
        assert record.user_answers == ("Red", "Blue")
        assert record.correct_answers == ("Red", "Blue")
        assert record.is_correct is True

    def test_snapshot_marks_selectable_words(self):
        engine = make_engine([COLORS])
        engine.start()
        engine.select_word(bank_index(engine, "Green"))
        snapshot = engine.snapshot()
        assert snapshot.slots == ("Green",)
        assert snapshot.blank_count == 2
        green = next(item for item in snapshot.word_bank if item.text == "Green")
        assert green.used and green.selectable
        assert snapshot.segments == ("", " and ", " are primary colors.")

    def test_snapshot_carries_question_text(self):
        question = make_question("Pick _____ **here**.", ["one"], ["two"])
        engine = make_engine([question])
        engine.start()
        assert engine.snapshot().question_text == "Pick _____ **here**."

        engine.advance()
        assert engine.snapshot().question_text is None

    def test_on_change_notified(self):
        changes = []
        engine = make_engine([BRAZIL])
        engine._on_change = changes.append
        engine.start()
        engine.select_word(99)
        assert changes == []
        engine.select_word(0)
        assert changes == [engine]

    def test_empty_quiz_completes_on_start(self):
        engine = make_engine([])
        engine.start()
        assert engine.is_completed()
        assert engine.attempt.total_questions == 0

    @pytest.mark.parametrize("seed", [1, 2, 3])
    def test_bank_reshuffled_on_each_question(self, seed):
        questions = [
            make_question("___", ["a"], ["b", "c", "d"], position=0, question_id="q0"),
            make_question("___", ["e"], ["f", "g", "h"], position=1, question_id="q1"),
        ]
        engine = make_engine(questions, seed=seed)
        engine.start()
        assert sorted(e.text for e in engine.state.word_bank) == ["a", "b", "c", "d"]
        engine.advance()
        assert sorted(e.text for e in engine.state.word_bank) == ["e", "f", "g", "h"]

    def test_stopped_session_ignores_events_and_never_submits(self):
        store = InMemoryQuizStore()
        store.save_quiz(make_quiz())
        engine = make_engine([BRAZIL], store=store)
        engine.start()

        engine.stop()
        engine.select_word(bank_index(engine, "Brasília"))
        engine.advance()
        engine._timer.fire(0)

        assert engine.is_stopped()
        assert not engine.is_completed()
        assert engine.state.current_answers == ()
        assert store.list_attempts_for_student("student-1") == []
