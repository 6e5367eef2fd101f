"""
Cancellable one-shot and periodic timers backed by daemon threads.

Both the supervisor and the watchdog schedule all of their work through a
scheduler object so that tests can substitute a manual, fake-clock scheduler.
"""
import logging
import threading
from typing import Any, Callable, Optional, Protocol

log = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, name: Optional[str] = None) -> TimerHandle: ...
    def call_every(self, interval: float, callback: Callable[[], Any], name: Optional[str] = None) -> TimerHandle: ...


def _run_logged(callback: Callable[..., Any], *args: Any) -> None:
    """Runs a timer callback, logging any exception instead of killing the timer thread."""
    try:
        callback(*args)
    except Exception as e:
        log.error(f"Timer callback {getattr(callback, '__name__', callback)!r} failed: {e}", exc_info=True)


class OneShotTimer:
    """A `threading.Timer` whose callback errors are logged."""

    def __init__(self, delay: float, callback: Callable[..., Any], args: tuple, name: Optional[str] = None):
        self._timer = threading.Timer(delay, _run_logged, args=(callback, *args))
        self._timer.daemon = True
        if name:
            self._timer.name = name

    def start(self) -> "OneShotTimer":
        self._timer.start()
        return self

    def cancel(self) -> None:
        self._timer.cancel()


class RepeatingTimer:
    """
    Runs a callback every `interval` seconds in a background thread until cancelled.
    The first run happens one interval after start.
    """

    def __init__(self, interval: float, callback: Callable[[], Any], name: Optional[str] = None):
        self.interval = interval
        self.callback = callback
        self.stop_event = threading.Event()
        self.thread = threading.Thread(target=self._run, daemon=True, name=name or "RepeatingTimer")

    def _run(self) -> None:
        while not self.stop_event.wait(self.interval):
            _run_logged(self.callback)

    def start(self) -> "RepeatingTimer":
        self.thread.start()
        return self

    def cancel(self) -> None:
        self.stop_event.set()


class ThreadScheduler:
    """Default scheduler: every timer gets its own daemon thread."""

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any, name: Optional[str] = None) -> OneShotTimer:
        return OneShotTimer(delay, callback, args, name=name).start()

    def call_every(self, interval: float, callback: Callable[[], Any], name: Optional[str] = None) -> RepeatingTimer:
        return RepeatingTimer(interval, callback, name=name).start()
