"""
Entry point of the supervisor process.

Sets the process title and logging, starts the status API, and supervises the
worker until SIGINT/SIGTERM. The process exit code is the supervisor's
`exit_code`: 0 normally, the restart-required code when the restart is handed
to the host platform.
"""
import sys
import signal
import logging
import threading
import setproctitle

from keepalive.local import app_globals
from keepalive.local.supervisor import ProcessSupervisor
from keepalive.local.supervisor.status_service import start_status_service
from keepalive.log import setup_logging

log = logging.getLogger(__name__)


def run_supervisor() -> int:
    """Runs the supervisor in the foreground and returns its exit code."""
    setproctitle.setproctitle(app_globals.SUPERVISOR_PROCESS_TITLE)
    level = logging.DEBUG if app_globals.VERBOSE_LOGGING else getattr(logging, app_globals.LOG_LEVEL, logging.INFO)
    setup_logging(level, process_name="supervisor")

    for directory in (app_globals.RUN_DIR, app_globals.LOGS_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    config = app_globals.get_all_settings()
    supervisor = ProcessSupervisor(config, pid_file=app_globals.PID_FILE_PATH)
    stop_event = threading.Event()
    shutdown_signal_received = threading.Event()

    def _on_signal(signum, frame):
        log.info(f"Received {signal.Signals(signum).name}. Gracefully shutting down supervisor...")
        shutdown_signal_received.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    start_status_service(supervisor, config, stop_event)
    supervisor.start()

    # Ends on a signal or when a restart is handed to the platform.
    while not supervisor.shutting_down:
        if shutdown_signal_received.wait(timeout=1):
            supervisor.shutdown()

    grace = float(config["GRACEFUL_SHUTDOWN_TIMEOUT"])
    if not supervisor.wait_terminated(timeout=grace + 5):
        log.error("Worker did not exit after the forced kill. Giving up.")
    stop_event.set()
    logging.shutdown()
    return supervisor.exit_code


if __name__ == "__main__":
    sys.exit(run_supervisor())
