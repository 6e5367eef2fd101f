"""
The external session the watchdog observes.

Real sessions (a chat gateway, a websocket feed, ...) are supplied by the
domain code through WORKER_SESSION_FACTORY. They only need to look like
`ExternalSession`; `SessionEvents` is a small emitter they can build on.
"""
import time
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, DefaultDict, List, Protocol

log = logging.getLogger(__name__)

READY = "ready"
DISCONNECT = "disconnect"
RECONNECTING = "reconnecting"
ERROR = "error"
SESSION_EVENTS = (READY, DISCONNECT, RECONNECTING, ERROR)


class ExternalSession(Protocol):
    """What the watchdog needs from a session. `keep_alive()`, `connect()` and `close()` are optional."""

    def on(self, event: str, callback: Callable[..., Any]) -> None: ...

    def is_ready(self) -> bool: ...

    @property
    def latency(self) -> float: ...


class SessionEvents:
    """A thread-safe named-event emitter."""

    def __init__(self) -> None:
        self._listeners: DefaultDict[str, List[Callable[..., Any]]] = defaultdict(list)
        self._listeners_lock = threading.Lock()

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        with self._listeners_lock:
            self._listeners[event].append(callback)

    def off(self, event: str, callback: Callable[..., Any]) -> None:
        with self._listeners_lock:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

    def emit(self, event: str, *args: Any) -> int:
        """
        Calls every listener of `event`. A failing listener is logged and the
        others still run.

        :return: The number of listeners called.
        """
        with self._listeners_lock:
            listeners = list(self._listeners[event])
        for callback in listeners:
            try:
                callback(*args)
            except Exception as e:
                log.error(f"Listener for session event '{event}' failed: {e}", exc_info=True)
        return len(listeners)


class LocalSession(SessionEvents):
    """
    A session without a remote end. It is ready between `connect()` and
    `disconnect()`, and its latency is the time of one local round trip.
    Used as the default factory and in tests.
    """

    def __init__(self) -> None:
        super().__init__()
        self._ready = False
        self._latency = -1.0

    def connect(self) -> None:
        started = time.perf_counter()
        self._ready = True
        self._latency = max((time.perf_counter() - started) * 1000, 0.001)
        log.info("Local session connected.")
        self.emit(READY)

    def disconnect(self) -> None:
        was_ready, self._ready = self._ready, False
        if was_ready:
            self.emit(DISCONNECT)

    def reconnect(self) -> None:
        self.emit(RECONNECTING)
        self.connect()

    def fail(self, error: Exception) -> None:
        self._ready = False
        self.emit(ERROR, error)

    def is_ready(self) -> bool:
        return self._ready

    @property
    def latency(self) -> float:
        return self._latency

    def keep_alive(self) -> None:
        if not self._ready:
            raise ConnectionError("Local session is not connected")

    def close(self) -> None:
        self.disconnect()
