import subprocess
from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Dict, Optional


class WorkerStatus(str, Enum):
    """Lifecycle status of the supervised worker. Only the supervisor changes it."""
    STARTING = "starting"
    RUNNING = "running"
    CRASHED = "crashed"
    STOPPED = "stopped"
    ERROR = "error"
    RESTARTING = "restarting"
    FAILED = "failed"


@dataclass(frozen=True)
class SupervisedProcessHandle:
    """
    Reference to one spawned worker. A new handle is created for every spawn,
    the old one is dropped, never reused.
    """
    process: subprocess.Popen = field(repr=False, compare=False)
    pid: int
    spawned_at: float

    @classmethod
    def from_process(cls, process: subprocess.Popen, spawned_at: float) -> "SupervisedProcessHandle":
        return cls(process=process, pid=process.pid, spawned_at=spawned_at)

    @property
    def alive(self) -> bool:
        """True until the process has been reaped. Does not reap by itself."""
        return self.process.returncode is None

    def poll(self) -> Optional[int]:
        """Non-blocking reap. Returns the exit code once the process has ended."""
        return self.process.poll()


@dataclass
class RestartBudget:
    """
    Bounds how many restarts may happen within a window before the
    supervisor stops spawning and cools down for one full window.
    """
    max_restarts: int
    window: float
    count: int = 0
    window_start: float = 0.0
    last_restart: float = 0.0

    def refresh(self, now: float) -> bool:
        """
        Resets the count once the window has elapsed.

        :return: True if the count was reset.
        """
        if self.count and now - self.window_start > self.window:
            self.count = 0
            return True
        return False

    @property
    def exhausted(self) -> bool:
        return self.count >= self.max_restarts

    def record(self, now: float) -> None:
        """Counts one restart. The first restart of a window opens the window."""
        if self.count == 0:
            self.window_start = now
        self.count += 1
        self.last_restart = now

    def reset(self) -> None:
        self.count = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "restart_count": self.count,
            "last_restart_time": self.last_restart,
            "max_restarts": self.max_restarts,
        }
