"""
The contract between the worker and the supervisor.

The two never call each other. The worker ends its own process with an exit
code that encodes why, and the supervisor reads that code after reaping it.
"""
from enum import Enum
from typing import Optional

import keepalive.settings as default_settings


class RestartReason(Enum):
    """Why a worker process ended on purpose."""
    OPERATOR = "operator"   # termination signal from the operator, clean exit
    HEALTH = "health"       # the watchdog judged the external session unrecoverable

    def exit_code(self, restart_exit_code: int = default_settings.RESTART_EXIT_CODE) -> int:
        return restart_exit_code if self is RestartReason.HEALTH else 0

    @classmethod
    def from_exit_code(cls, code: Optional[int],
                       restart_exit_code: int = default_settings.RESTART_EXIT_CODE) -> Optional["RestartReason"]:
        """
        Maps a worker exit code back to a reason.

        :return: The reason, or None for any other exit (crash, signal, unknown).
        """
        if code == 0:
            return cls.OPERATOR
        if code == restart_exit_code:
            return cls.HEALTH
        return None


class RestartRequired(Exception):
    """
    Raised by the worker runtime when the watchdog asked for a restart.
    The worker's top-level handler turns it into a process exit.
    """

    def __init__(self, message: str = "Restart required", reason: RestartReason = RestartReason.HEALTH,
                 exit_code: int = default_settings.RESTART_EXIT_CODE):
        super().__init__(message)
        self.reason = reason
        self.exit_code = exit_code
