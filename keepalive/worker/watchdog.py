import json
import time
import logging
import threading
import setproctitle
from functools import partial
from pathlib import Path
from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, Optional

import keepalive.settings as default_settings
from keepalive.local.timers import Scheduler, ThreadScheduler, TimerHandle
from keepalive.worker.session import DISCONNECT, ERROR, READY, RECONNECTING, ExternalSession

log = logging.getLogger(__name__)

TASK_NAMES = ("activity", "heartbeat", "health", "integrity", "host_keepalive")


@dataclass
class HeartbeatState:
    """Liveness bookkeeping. Created afresh each time a watchdog starts."""
    last_activity: float
    last_heartbeat: float
    missed_heartbeats: int = 0
    shutting_down: bool = False


class LivenessWatchdog:
    """
    Watches the worker's external session from inside the worker and asks for
    a restart when it looks unrecoverable.

    Five periodic tasks run independently so that losing one signal source
    is still caught by another:
    - activity probe: exercises the session and refreshes `last_activity`
    - heartbeat probe: refreshes `last_heartbeat`
    - health check: decides whether a restart is required
    - integrity probe: optional domain check, informational only
    - host keep-alive: process title and status file for the host monitor

    The watchdog never touches the supervisor. It calls `on_restart_required`
    once, and the worker runtime turns that into a process exit.
    """

    def __init__(
        self,
        on_restart_required: Callable[[], None],
        config: Optional[Dict[str, Any]] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], float] = time.time,
        integrity_check: Optional[Callable[[], Any]] = None,
        status_path: Optional[Path] = None,
    ) -> None:
        """
        :param on_restart_required: Called exactly once when a restart is required.
        :param config: Configuration dictionary; missing keys fall back to settings.py.
        :param scheduler: Timer factory, a ThreadScheduler by default.
        :param clock: Wall-clock source in seconds.
        :param integrity_check: Optional callable run by the integrity probe.
        :param status_path: File the host keep-alive probe writes the status snapshot to.
        """
        self.config: Dict[str, Any] = config if config is not None else {}
        self._on_restart_required = on_restart_required
        self._scheduler = scheduler or ThreadScheduler()
        self._clock = clock
        self._integrity_check = integrity_check
        self._status_path = status_path

        now = clock()
        self.state = HeartbeatState(last_activity=now, last_heartbeat=now)
        self._session: Optional[ExternalSession] = None
        self._tasks: Dict[str, TimerHandle] = {}
        self._lock = threading.RLock()

    def _setting(self, key: str) -> Any:
        return self.config.get(key, getattr(default_settings, key))

    @property
    def max_missed(self) -> int:
        return int(self._setting("MAX_MISSED_HEARTBEATS"))

    #* --- Session wiring ---
    def attach(self, session: ExternalSession) -> None:
        """
        Subscribes to the session's ready/disconnect/reconnecting/error events.
        Attaching the same session again does nothing.
        """
        with self._lock:
            if session is self._session:
                return
            self._session = session

        session.on(READY, partial(self._on_ready, session))
        session.on(DISCONNECT, partial(self._on_disconnect, session))
        session.on(RECONNECTING, partial(self._on_reconnecting, session))
        session.on(ERROR, partial(self._on_error, session))
        log.info("External session attached to the liveness watchdog")

    def _on_ready(self, session: ExternalSession, *_: Any) -> None:
        with self._lock:
            if session is not self._session:
                return
            now = self._clock()
            self.state.last_activity = now
            self.state.last_heartbeat = now
            self.state.missed_heartbeats = 0
        log.info("Session ready - liveness monitoring active")

    def _on_disconnect(self, session: ExternalSession, *_: Any) -> None:
        if session is self._session:
            log.warning("Session disconnected - monitoring for reconnection")

    def _on_reconnecting(self, session: ExternalSession, *_: Any) -> None:
        with self._lock:
            if session is not self._session:
                return
            self.state.last_heartbeat = self._clock()
        log.info("Session reconnecting - heartbeat refreshed")

    def _on_error(self, session: ExternalSession, *args: Any) -> None:
        with self._lock:
            if session is not self._session:
                return
            self.state.missed_heartbeats += 1
            missed = self.state.missed_heartbeats
        detail = args[0] if args else "unknown error"
        log.error(f"Session error detected ({missed}/{self.max_missed} missed): {detail}")

    def record_activity(self) -> None:
        """Lets domain code report that the session just did useful work."""
        with self._lock:
            self.state.last_activity = self._clock()

    #* --- Lifecycle ---
    def start(self) -> None:
        """Schedules the five periodic tasks. A stopped watchdog cannot be restarted."""
        with self._lock:
            if self.state.shutting_down:
                log.warning("Watchdog was stopped; create a new one instead of restarting it.")
                return
            now = self._clock()
            self.state = HeartbeatState(last_activity=now, last_heartbeat=now)
            self._cancel_tasks()
            schedule = [
                ("activity", "ACTIVITY_INTERVAL", self.perform_activity_probe),
                ("heartbeat", "HEARTBEAT_INTERVAL", self.perform_heartbeat),
                ("health", "HEALTH_CHECK_INTERVAL", self.perform_health_check),
                ("integrity", "INTEGRITY_CHECK_INTERVAL", self.perform_integrity_check),
                ("host_keepalive", "HOST_KEEPALIVE_INTERVAL", self.perform_host_keepalive),
            ]
            for name, interval_key, callback in schedule:
                if name == "host_keepalive" and not self._setting("HOST_KEEPALIVE_ENABLED"):
                    continue
                interval = float(self._setting(interval_key))
                self._tasks[name] = self._scheduler.call_every(interval, callback, name=f"Watchdog-{name}")
                log.debug(f"Watchdog task '{name}' scheduled every {interval:g}s")
        log.info(f"Liveness watchdog started ({len(self._tasks)} tasks, restart after {self.max_missed} missed heartbeats)")

    def stop(self) -> None:
        """Cancels every task. Raises no restart. Safe to call repeatedly."""
        with self._lock:
            already_stopped = self.state.shutting_down and not self._tasks
            self.state.shutting_down = True
            self._cancel_tasks()
        if not already_stopped:
            log.info("Liveness watchdog stopped.")

    def trigger_restart(self) -> None:
        """Stops the watchdog and raises the restart-required condition, once."""
        with self._lock:
            if self.state.shutting_down:
                return
            self.state.shutting_down = True
            self._cancel_tasks()
        log.warning("Triggering worker restart due to external session connectivity failure")
        self._on_restart_required()

    def _cancel_tasks(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    @property
    def active_tasks(self) -> int:
        return len(self._tasks)

    #* --- Probes ---
    def _session_ready(self, session: Optional[ExternalSession]) -> bool:
        if session is None:
            return False
        try:
            return bool(session.is_ready())
        except Exception as e:
            log.debug(f"Session readiness check raised: {e}")
            return False

    def _session_latency(self, session: Optional[ExternalSession]) -> float:
        try:
            return float(session.latency) if session is not None else -1.0
        except (AttributeError, TypeError, ValueError):
            return -1.0

    def _miss(self, probe: str, detail: str) -> None:
        with self._lock:
            self.state.missed_heartbeats += 1
            missed = self.state.missed_heartbeats
        log.debug(f"Session {probe} failed ({missed}/{self.max_missed}): {detail}")

    def perform_activity_probe(self) -> None:
        with self._lock:
            if self.state.shutting_down:
                return
            session = self._session

        if not self._session_ready(session):
            self._miss("activity check", "session not ready")
            return
        keep_alive = getattr(session, "keep_alive", None)
        try:
            if keep_alive is not None:
                keep_alive()
        except Exception as e:
            self._miss("activity check", str(e))
            return

        with self._lock:
            self.state.last_activity = self._clock()
            self.state.missed_heartbeats = 0
        log.debug("Session activity confirmed")

    def perform_heartbeat(self) -> None:
        with self._lock:
            if self.state.shutting_down:
                return
            if not self._session_ready(self._session):
                missed_detail = "session not ready"
            else:
                self.state.last_heartbeat = self._clock()
                self.state.missed_heartbeats = 0
                missed_detail = None
        if missed_detail:
            self._miss("heartbeat", missed_detail)
        else:
            log.debug("Session heartbeat successful")

    def perform_health_check(self) -> None:
        restart = False
        with self._lock:
            if self.state.shutting_down:
                return
            session = self._session
            ready = self._session_ready(session)
            since_activity = self._clock() - self.state.last_activity
            missed = self.state.missed_heartbeats

            if ready:
                latency = self._session_latency(session)
                log.info(f"Health check: session ready, {latency:.0f}ms latency, {missed} missed heartbeats")
                if 0 < latency < float(self._setting("HEALTHY_LATENCY_MS")):
                    self.state.missed_heartbeats = 0
            elif missed >= self.max_missed:
                log.error(
                    f"Session health check failed - {missed} missed heartbeats, "
                    f"last activity {since_activity:.0f}s ago"
                )
                restart = True

            stall_window = float(self._setting("ACTIVITY_STALL_SECONDS"))
            if not restart and since_activity > stall_window:
                log.error(
                    f"No session activity for {since_activity:.0f}s (limit {stall_window:.0f}s) "
                    f"although the session reports ready={ready}"
                )
                restart = True

        if restart:
            self.trigger_restart()

    def perform_integrity_check(self) -> None:
        if self.state.shutting_down or self._integrity_check is None:
            return
        try:
            result = self._integrity_check()
        except Exception as e:
            log.error(f"Data integrity check failed: {e}", exc_info=True)
            return

        issues = result.get("issues", 0) if isinstance(result, dict) else result
        if isinstance(issues, int) and issues > 0:
            log.warning(f"Data integrity check found {issues} issues")
        else:
            log.debug("Data integrity check passed")

    def perform_host_keepalive(self) -> None:
        if self.state.shutting_down:
            return
        title = self._setting("WORKER_PROCESS_TITLE")
        setproctitle.setproctitle(f"{title} [alive {int(self._clock())}]")

        if self._status_path is None:
            return
        temp_path = self._status_path.with_suffix(".tmp")
        try:
            temp_path.write_text(json.dumps(self.get_status()))
            temp_path.replace(self._status_path)
        except OSError as e:
            log.debug(f"Could not write worker status file '{self._status_path}': {e}")

    #* --- Status ---
    def get_status(self) -> Dict[str, Any]:
        with self._lock:
            session = self._session
            status = asdict(self.state)
        status["ready"] = self._session_ready(session)
        status["latency"] = self._session_latency(session)
        return status
