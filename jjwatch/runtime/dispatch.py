"""Single-threaded callback dispatcher.

Every tracking handler (timer expiry, filesystem notification, process
completion) runs on the thread that drives the dispatcher. Helper threads
only hand work over through ``post`` and never touch tracker state directly.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import time
from collections.abc import Callable
from queue import Empty, Queue

logger = logging.getLogger(__name__)


class Timer:
    """Re-armable one-shot timer owned by a ``Dispatcher``.

    ``start`` on an already running timer replaces the pending expiry, which
    is what debouncing relies on. Stopping an inactive timer is a no-op.
    """

    def __init__(self, dispatcher: Dispatcher) -> None:
        self._dispatcher = dispatcher
        self._generation = 0
        self._active = False
        self._callback: Callable[[], None] | None = None

    def start(self, delay_seconds: float, callback: Callable[[], None]) -> None:
        self._generation += 1
        self._active = True
        self._callback = callback
        self._dispatcher._schedule(self, self._generation, max(0.0, delay_seconds))

    def stop(self) -> None:
        self._generation += 1
        self._active = False
        self._callback = None

    def is_active(self) -> bool:
        return self._active

    def _fire(self, generation: int) -> bool:
        """Run the callback if ``generation`` is still the armed one."""
        if not self._active or generation != self._generation:
            return False
        callback = self._callback
        self._active = False
        self._callback = None
        if callback is not None:
            self._dispatcher._invoke(callback)
        return True


class Dispatcher:
    """Cooperative event loop for timers and cross-thread callbacks.

    Args:
        monotonic: Clock used for timer deadlines. Tests inject a fake clock.
        sleep: Sleep used while polling in ``wait_until``.
    """

    def __init__(
        self,
        *,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._monotonic = monotonic
        self._sleep = sleep
        self._timers: list[tuple[float, int, Timer, int]] = []
        self._sequence = itertools.count()
        self._posted: Queue[Callable[[], None]] = Queue()

    def monotonic(self) -> float:
        return self._monotonic()

    def new_timer(self) -> Timer:
        return Timer(self)

    def call_later(self, delay_seconds: float, callback: Callable[[], None]) -> Timer:
        timer = self.new_timer()
        timer.start(delay_seconds, callback)
        return timer

    def post(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` to run on the dispatcher thread. Thread-safe."""
        self._posted.put(callback)

    def _schedule(self, timer: Timer, generation: int, delay_seconds: float) -> None:
        deadline = self._monotonic() + delay_seconds
        heapq.heappush(self._timers, (deadline, next(self._sequence), timer, generation))

    def _invoke(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Unhandled error in dispatcher callback")

    def next_timer_delay(self) -> float | None:
        """Seconds until the earliest armed timer, or ``None`` without timers."""
        while self._timers:
            _deadline, _seq, timer, generation = self._timers[0]
            if timer.is_active() and generation == timer._generation:
                break
            heapq.heappop(self._timers)
        if not self._timers:
            return None
        return max(0.0, self._timers[0][0] - self._monotonic())

    def run_pending(self) -> int:
        """Run posted callbacks and due timers once; return how many ran.

        Timers armed by callbacks during this pass wait for the next pass even
        when their delay is zero.
        """
        ran = 0
        while True:
            try:
                callback = self._posted.get_nowait()
            except Empty:
                break
            self._invoke(callback)
            ran += 1

        now = self._monotonic()
        due: list[tuple[Timer, int]] = []
        while self._timers and self._timers[0][0] <= now:
            _deadline, _seq, timer, generation = heapq.heappop(self._timers)
            due.append((timer, generation))
        for timer, generation in due:
            if timer._fire(generation):
                ran += 1
        return ran

    def wait_until(
        self,
        predicate: Callable[[], bool],
        timeout_seconds: float,
        interval_seconds: float = 0.001,
    ) -> bool:
        """Keep dispatching until ``predicate`` holds or the timeout elapses."""
        deadline = self._monotonic() + timeout_seconds
        while True:
            self.run_pending()
            if predicate():
                return True
            if self._monotonic() >= deadline:
                return False
            self._sleep(interval_seconds)

    def run_forever(
        self,
        should_stop: Callable[[], bool] = lambda: False,
        idle_seconds: float = 0.05,
    ) -> None:
        """Dispatch until ``should_stop`` returns true.

        Blocks on the posted-callback queue between passes, waking early for
        the next timer deadline.
        """
        while not should_stop():
            self.run_pending()
            delay = self.next_timer_delay()
            wait_seconds = idle_seconds if delay is None else min(idle_seconds, delay)
            try:
                callback = self._posted.get(timeout=wait_seconds)
            except Empty:
                continue
            self._invoke(callback)
