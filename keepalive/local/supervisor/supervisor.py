import os
import time
import signal
import logging
import threading
import subprocess
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import keepalive.settings as default_settings
from keepalive.local.restart import RestartReason
from keepalive.local.timers import Scheduler, ThreadScheduler, TimerHandle
from keepalive.local.supervisor import persistence, process_utils, shutdown
from keepalive.local.supervisor.state import RestartBudget, SupervisedProcessHandle, WorkerStatus

log = logging.getLogger(__name__)


def describe_exit(code: int) -> str:
    """Human readable exit description. Negative Popen codes are signals."""
    if code < 0:
        try:
            return f"signal {signal.Signals(-code).name}"
        except ValueError:
            return f"signal {-code}"
    return f"code {code}"


class ProcessSupervisor:
    """
    Owns the lifecycle of the single worker process: spawn, monitor, bounded
    restart, and graceful/forced shutdown.

    All state changes happen under one lock, from the caller's thread or from
    timer threads. Every spawn decision checks `shutting_down` and that the
    triggering event belongs to the current handle, so at most one spawn is
    ever in flight.
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
        spawn: Optional[Callable[[], subprocess.Popen]] = None,
        pid_file: Optional[Path] = None,
    ) -> None:
        """
        :param config: Configuration dictionary; missing keys fall back to settings.py.
        :param scheduler: Timer factory, a ThreadScheduler by default.
        :param clock: Wall-clock source in seconds.
        :param spawn: Callable starting the worker, `spawn_worker(config)` by default.
        :param pid_file: If set, the supervisor and worker PIDs are written here.
        """
        self.config: Dict[str, Any] = config if config is not None else {}
        self._scheduler = scheduler or ThreadScheduler()
        self._clock = clock
        self._spawn = spawn or partial(process_utils.spawn_worker, self.config)
        self._pid_file = pid_file

        self.budget = RestartBudget(
            max_restarts=int(self._setting("MAX_RESTARTS")),
            window=float(self._setting("RESTART_WINDOW_SECONDS")),
        )
        self.status = WorkerStatus.STARTING
        self.shutting_down = False
        self.exit_code = 0

        self._lock = threading.RLock()
        self._handle: Optional[SupervisedProcessHandle] = None
        self._has_spawned = False
        self._spawning = False
        self._pending_start: Optional[TimerHandle] = None
        self._exit_timer: Optional[TimerHandle] = None
        self._health_timer: Optional[TimerHandle] = None
        self._running_timer: Optional[TimerHandle] = None
        self._kill_timer: Optional[TimerHandle] = None
        self._terminated = threading.Event()

    def _setting(self, key: str) -> Any:
        return self.config.get(key, getattr(default_settings, key))

    @property
    def handle(self) -> Optional[SupervisedProcessHandle]:
        return self._handle

    #* --- Spawning ---
    def start(self) -> None:
        """
        Spawns the worker unless shutting down or the restart budget is spent.
        Also the callback of every restart and cooldown timer.
        """
        with self._lock:
            if self.shutting_down:
                return
            self._pending_start = None

            now = self._clock()
            if self.budget.refresh(now):
                log.info("Restart window elapsed. Restart counter reset.")

            if self.budget.exhausted:
                window = self.budget.window
                log.critical(
                    f"Maximum restart limit ({self.budget.max_restarts}) reached within {window:.0f}s. "
                    f"Waiting {window:.0f}s before the next attempt..."
                )
                self.status = WorkerStatus.FAILED
                self._pending_start = self._scheduler.call_later(
                    window, self._retry_after_cooldown, name="SupervisorCooldown"
                )
                return

            is_restart = self._has_spawned
            if is_restart:
                self.budget.record(now)
            self._has_spawned = True
            log.info(
                f"Starting worker (restart {self.budget.count}/{self.budget.max_restarts})"
                f"{' - Auto-restart after process exit' if is_restart else ' - Initial start'}"
            )
            self.status = WorkerStatus.STARTING

            # A signal handler running on this thread may call shutdown() while Popen is in progress.
            self._spawning = True
            try:
                process = self._spawn()
            except (OSError, ValueError) as e:
                log.error(f"Failed to start worker process: {e}", exc_info=True)
                if self.shutting_down:
                    self.status = WorkerStatus.STOPPED
                    self._finish_shutdown()
                else:
                    self.status = WorkerStatus.ERROR
                    self.handle_restart()
                return
            finally:
                self._spawning = False

            handle = SupervisedProcessHandle.from_process(process, now)
            self._handle = handle
            if self.shutting_down:
                log.warning(f"Shutdown requested while worker (PID {handle.pid}) was being spawned.")
                self._exit_timer = self._scheduler.call_every(
                    float(self._setting("EXIT_POLL_INTERVAL")), partial(self._poll_exit, handle), name="WorkerExitPoll"
                )
                self._terminate(handle)
                return
            log.info(f"Worker started with PID: {handle.pid}")
            self._write_pid_file(handle)
            self._start_monitoring(handle)

    def _retry_after_cooldown(self) -> None:
        with self._lock:
            if self.shutting_down:
                return
            self._pending_start = None
            log.warning("Restart cooldown finished. Resetting restart counter and trying again.")
            self.budget.reset()
            self.status = WorkerStatus.RESTARTING
        self.start()

    def handle_restart(self, handle: Optional[SupervisedProcessHandle] = None) -> None:
        """
        Drops the current worker and schedules `start()` after the fixed restart delay.

        :param handle: The worker the triggering event is about. Events for a
            handle that is no longer current are ignored.
        """
        with self._lock:
            if self.shutting_down:
                return
            if handle is not None and handle is not self._handle:
                log.debug(f"Ignoring restart request for stale worker (PID {handle.pid}).")
                return

            self._clear_handle()
            self.status = WorkerStatus.RESTARTING
            delay = float(self._setting("RESTART_DELAY_SECONDS"))
            log.info(f"Worker process ended, restarting in {delay:g} seconds...")

            if self._pending_start is not None:
                self._pending_start.cancel()
            self._pending_start = self._scheduler.call_later(delay, self.start, name="SupervisorRestart")

    #* --- Monitoring ---
    def _start_monitoring(self, handle: SupervisedProcessHandle) -> None:
        self._exit_timer = self._scheduler.call_every(
            float(self._setting("EXIT_POLL_INTERVAL")), partial(self._poll_exit, handle), name="WorkerExitPoll"
        )
        self._health_timer = self._scheduler.call_every(
            float(self._setting("HEALTH_POLL_INTERVAL")), partial(self._check_health, handle), name="WorkerHealthPoll"
        )
        self._running_timer = self._scheduler.call_later(
            float(self._setting("RUNNING_GRACE_PERIOD")), self._mark_running, handle, name="WorkerRunningGrace"
        )

    def _poll_exit(self, handle: SupervisedProcessHandle) -> None:
        code = handle.poll()
        if code is not None:
            self._on_worker_exit(handle, code)

    def _on_worker_exit(self, handle: SupervisedProcessHandle, code: int) -> None:
        with self._lock:
            if handle is not self._handle:
                return

            if self.shutting_down:
                log.info(f"Worker (PID {handle.pid}) exited with {describe_exit(code)} during shutdown.")
                self.status = WorkerStatus.STOPPED
                self._clear_handle()
                self._finish_shutdown()
                return

            restart_exit_code = int(self._setting("RESTART_EXIT_CODE"))
            reason = RestartReason.from_exit_code(code, restart_exit_code)
            if reason is RestartReason.HEALTH:
                log.warning(
                    f"Worker (PID {handle.pid}) exited with restart-required code {code}: "
                    "its watchdog judged the external session unrecoverable."
                )
                self.status = WorkerStatus.CRASHED
                if self._setting("EXIT_ON_RESTART_REQUIRED"):
                    log.warning(f"Handing the restart to the host platform. Supervisor will exit with code {code}.")
                    self.exit_code = code
                    self._clear_handle()
                    self.shutdown()
                    return
            else:
                log.warning(f"Worker process exited with {describe_exit(code)} - Triggering auto-restart")
                self.status = WorkerStatus.STOPPED if code == 0 else WorkerStatus.CRASHED

            self.handle_restart(handle)

    def _check_health(self, handle: SupervisedProcessHandle) -> None:
        with self._lock:
            if self.shutting_down or handle is not self._handle:
                return
            if process_utils.pid_exists(handle.pid):
                log.debug("Process health check passed")
                return
            log.warning(f"Process health check failed: worker PID {handle.pid} no longer exists")
            self.status = WorkerStatus.CRASHED
            self.handle_restart(handle)

    def _mark_running(self, handle: SupervisedProcessHandle) -> None:
        with self._lock:
            if self.shutting_down or handle is not self._handle or not handle.alive:
                return
            if self.status is WorkerStatus.STARTING:
                self.status = WorkerStatus.RUNNING
                log.info(f"Worker (PID {handle.pid}) appears to be running successfully")

    def _clear_handle(self) -> None:
        for name in ("_exit_timer", "_health_timer", "_running_timer", "_kill_timer"):
            timer = getattr(self, name)
            if timer is not None:
                timer.cancel()
                setattr(self, name, None)
        self._handle = None

    def _write_pid_file(self, handle: SupervisedProcessHandle) -> None:
        if self._pid_file is not None:
            persistence.write_pid_file(self._pid_file, {"supervisor": os.getpid(), "worker": handle.pid})

    #* --- Shutdown ---
    def shutdown(self) -> None:
        """
        Stops supervising for good: no further spawns, SIGTERM to the worker,
        SIGKILL after the grace period. Calling it again does nothing.
        """
        with self._lock:
            if self.shutting_down:
                log.debug("Shutdown already in progress.")
                return
            log.info("Shutting down supervisor...")
            self.shutting_down = True

            for name in ("_pending_start", "_health_timer", "_running_timer"):
                timer = getattr(self, name)
                if timer is not None:
                    timer.cancel()
                    setattr(self, name, None)

            handle = self._handle
            if handle is None and self._spawning:
                # start() terminates the new worker once the spawn returns.
                return
            if handle is None or handle.poll() is not None:
                self.status = WorkerStatus.STOPPED
                self._clear_handle()
                self._finish_shutdown()
                return

            self._terminate(handle)

    def _terminate(self, handle: SupervisedProcessHandle) -> None:
        log.info(f"Terminating worker process (PID {handle.pid})...")
        shutdown.send_terminate(handle)
        grace = float(self._setting("GRACEFUL_SHUTDOWN_TIMEOUT"))
        self._kill_timer = self._scheduler.call_later(grace, self._force_kill, handle, name="WorkerForceKill")

    def _force_kill(self, handle: SupervisedProcessHandle) -> None:
        with self._lock:
            self._kill_timer = None
            if handle is not self._handle:
                return
        shutdown.send_kill(handle)

    def _finish_shutdown(self) -> None:
        if self._pid_file is not None:
            persistence.remove_pid_file(self._pid_file)
        self._terminated.set()
        log.info("Supervisor shutdown complete.")

    def wait_terminated(self, timeout: Optional[float] = None) -> bool:
        """Blocks until the worker is gone after `shutdown()`. Returns False on timeout."""
        return self._terminated.wait(timeout)

    #* --- Status ---
    def get_status(self) -> Dict[str, Any]:
        """A read-only snapshot of the supervisor state."""
        with self._lock:
            handle = self._handle
            return {
                "running": handle is not None and handle.alive,
                "pid": handle.pid if handle is not None else None,
                **self.budget.as_dict(),
                "status": self.status.value,
                "shutting_down": self.shutting_down,
            }
