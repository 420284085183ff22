"""Background timers: a repeating tick and a resettable debounce.

Both schedule through a timer factory, `factory(seconds, fn)`, returning an
object with `start()` and `cancel()`. The default builds daemon
`threading.Timer`s; tests pass a factory whose timers fire on demand.
"""

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], object]


def thread_timer(seconds: float, fn: Callable[[], None]) -> threading.Timer:
    timer = threading.Timer(seconds, fn)
    timer.daemon = True
    return timer


class RepeatingTimer:
    """Calls `callback` every `interval` seconds until stopped."""

    def __init__(self, interval: float, callback: Callable[[], object],
                 timer_factory: TimerFactory = thread_timer,
                 name: str = "timer"):
        self.interval = interval
        self.callback = callback
        self.name = name
        self._factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self):
        """Start ticking. Starting a running timer does nothing."""
        with self._lock:
            if self._running:
                return
            self._running = True
            self._arm()

    def stop(self):
        with self._lock:
            self._running = False
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _arm(self):
        self._timer = self._factory(self.interval, self._tick)
        self._timer.start()

    def _tick(self):
        with self._lock:
            if not self._running:
                return
        try:
            self.callback()
        except Exception:
            # A failing tick must not kill the schedule
            logger.exception("%s tick failed", self.name)
        with self._lock:
            if self._running:
                self._arm()


class Debouncer:
    """Runs `callback` once, `delay` seconds after the last trigger."""

    def __init__(self, delay: float, callback: Callable[..., object],
                 timer_factory: TimerFactory = thread_timer):
        self.delay = delay
        self.callback = callback
        self._factory = timer_factory
        self._lock = threading.Lock()
        self._timer = None
        self._args: Optional[tuple] = None

    @property
    def pending(self) -> bool:
        return self._timer is not None

    def trigger(self, *args):
        """(Re)start the countdown; the latest arguments win."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._args = args
            self._timer = self._factory(self.delay, self._fire)
            self._timer.start()

    def cancel(self):
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
            self._timer = None
            self._args = None

    def flush(self) -> bool:
        """Cancel the countdown and run now. False when nothing was pending."""
        with self._lock:
            if self._timer is None:
                return False
            self._timer.cancel()
        self._fire()
        return True

    def _fire(self):
        with self._lock:
            if self._timer is None:
                return
            args = self._args or ()
            self._timer = None
            self._args = None
        self.callback(*args)
