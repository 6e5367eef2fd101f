"""
The worker side: the liveness watchdog and the runtime that hosts it inside
the supervised process.
"""

from .runtime import WorkerRuntime, load_callable
from .session import ExternalSession, LocalSession, SessionEvents
from .watchdog import HeartbeatState, LivenessWatchdog

__all__ = [
    "WorkerRuntime", "load_callable",
    "ExternalSession", "LocalSession", "SessionEvents",
    "HeartbeatState", "LivenessWatchdog",
]
