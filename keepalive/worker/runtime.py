import signal
import logging
import importlib
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import keepalive.settings as default_settings
from keepalive.local.restart import RestartReason, RestartRequired
from keepalive.worker.session import ExternalSession
from keepalive.worker.watchdog import LivenessWatchdog

log = logging.getLogger(__name__)


def load_callable(path: str) -> Callable[..., Any]:
    """
    Resolves a 'package.module:attribute' string.

    :raises ValueError: If the path is not in 'module:attribute' form.
    :raises ImportError: If the module cannot be imported.
    :raises AttributeError: If the attribute does not exist.
    :raises TypeError: If the attribute is not callable.
    """
    module_name, sep, attribute = path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got '{path}'")
    module = importlib.import_module(module_name)
    target = getattr(module, attribute)
    if not callable(target):
        raise TypeError(f"'{path}' is not callable")
    return target


class WorkerRuntime:
    """
    Runs inside the supervised worker process. It owns the external session,
    attaches a fresh LivenessWatchdog to it and waits for either an operator
    signal or the watchdog's restart request.
    """

    def __init__(
        self,
        session_factory: Callable[[], ExternalSession],
        config: Optional[Dict[str, Any]] = None,
        watchdog_factory: Optional[Callable[..., LivenessWatchdog]] = None,
        integrity_check: Optional[Callable[[], Any]] = None,
    ) -> None:
        self.config: Dict[str, Any] = config if config is not None else {}
        self._session_factory = session_factory
        self._watchdog_factory = watchdog_factory or LivenessWatchdog
        self._integrity_check = integrity_check
        self._stop_event = threading.Event()
        self._restart_required = threading.Event()
        self.session: Optional[ExternalSession] = None
        self.watchdog: Optional[LivenessWatchdog] = None

    @classmethod
    def from_settings(cls, config: Dict[str, Any]) -> "WorkerRuntime":
        """Builds a runtime from the configured session factory and integrity check paths."""
        session_factory = load_callable(config["WORKER_SESSION_FACTORY"])
        integrity_path = config.get("INTEGRITY_CHECK")
        integrity_check = load_callable(integrity_path) if integrity_path else None
        return cls(session_factory, config=config, integrity_check=integrity_check)

    def _setting(self, key: str) -> Any:
        return self.config.get(key, getattr(default_settings, key))

    def request_restart(self) -> None:
        """Restart-required callback handed to the watchdog."""
        self._restart_required.set()
        self._stop_event.set()

    def request_stop(self, signum: Optional[int] = None, frame: Any = None) -> None:
        """Operator stop. Also usable as a signal handler."""
        if signum is not None:
            log.info(f"Received {signal.Signals(signum).name}. Gracefully shutting down worker...")
        self._stop_event.set()

    def install_signal_handlers(self) -> None:
        """Must be called from the main thread."""
        signal.signal(signal.SIGINT, self.request_stop)
        signal.signal(signal.SIGTERM, self.request_stop)

    def run(self, timeout: Optional[float] = None) -> RestartReason:
        """
        Starts the session and the watchdog, then blocks until stopped.

        :param timeout: Stop waiting after this many seconds (tests); None waits forever.
        :return: RestartReason.OPERATOR on an ordinary stop.
        :raises RestartRequired: When the watchdog asked for a restart.
        """
        self.session = self._session_factory()
        status_path = self._setting("WORKER_STATUS_PATH")
        self.watchdog = self._watchdog_factory(
            self.request_restart,
            config=self.config,
            integrity_check=self._integrity_check,
            status_path=Path(status_path) if status_path else None,
        )
        self.watchdog.attach(self.session)
        self.watchdog.start()

        connect = getattr(self.session, "connect", None)
        if connect is not None:
            try:
                connect()
            except Exception as e:
                # The watchdog's probes see a session that never became ready.
                log.error(f"Session failed to connect: {e}", exc_info=True)

        try:
            self._stop_event.wait(timeout)
        finally:
            self._teardown()

        if self._restart_required.is_set():
            restart_code = int(self._setting("RESTART_EXIT_CODE"))
            raise RestartRequired(
                "Watchdog requested a restart: external session unrecoverable",
                reason=RestartReason.HEALTH,
                exit_code=RestartReason.HEALTH.exit_code(restart_code),
            )
        return RestartReason.OPERATOR

    def _teardown(self) -> None:
        if self.watchdog is not None:
            self.watchdog.stop()
        close = getattr(self.session, "close", None)
        if close is not None:
            try:
                close()
            except Exception as e:
                log.warning(f"Error while closing the session: {e}")
        status_path = self._setting("WORKER_STATUS_PATH")
        if status_path:
            Path(status_path).unlink(missing_ok=True)
