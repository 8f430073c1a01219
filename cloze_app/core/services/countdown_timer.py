"""Cancellable recurring tick used for the per-question countdown."""

from __future__ import annotations

from threading import Lock, Timer
from typing import Callable

from cloze_app.constants.quiz_constants import TIMER_TICK_SECONDS


class CountdownTimer:
    """Calls ``callback(question_index)`` every ``interval`` seconds until cancelled.

    Each :meth:`arm` starts a new generation; a tick from an older generation is
    dropped, so a late tick never reaches a question that is no longer active.
    """

    def __init__(self, callback: Callable[[int], None], interval: float = TIMER_TICK_SECONDS) -> None:
        self._callback = callback
        self._interval = interval
        self._lock = Lock()
        self._generation = 0
        self._question_index: int | None = None
        self._timer: Timer | None = None

    def arm(self, question_index: int) -> None:
        with self._lock:
            self._stop_locked()
            self._question_index = question_index
            self._schedule_locked()

    def cancel(self) -> None:
        with self._lock:
            self._stop_locked()
            self._question_index = None

    def is_armed(self) -> bool:
        with self._lock:
            return self._question_index is not None

    def _schedule_locked(self) -> None:
        timer = Timer(self._interval, self._fire, args=(self._generation,))
        timer.daemon = True
        self._timer = timer
        timer.start()

    def _stop_locked(self) -> None:
        self._generation += 1
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation or self._question_index is None:
                return
            question_index = self._question_index
            self._schedule_locked()
        # Called outside the lock: the callback may arm or cancel this timer.
        self._callback(question_index)
