"""
Entry point of the supervised worker process.

Exits 0 on an operator stop and with the restart-required code when the
liveness watchdog gives up on the external session.
"""
import sys
import logging
import setproctitle

from keepalive.local import app_globals
from keepalive.local.restart import RestartRequired
from keepalive.log import setup_logging
from keepalive.worker import WorkerRuntime

log = logging.getLogger(__name__)


def main() -> int:
    setproctitle.setproctitle(app_globals.WORKER_PROCESS_TITLE)
    level = logging.DEBUG if app_globals.VERBOSE_LOGGING else getattr(logging, app_globals.LOG_LEVEL, logging.INFO)
    setup_logging(level, process_name="worker")

    try:
        runtime = WorkerRuntime.from_settings(app_globals.get_all_settings())
    except (ValueError, TypeError, ImportError, AttributeError) as e:
        log.critical(f"Could not load the worker session: {e}", exc_info=True)
        return 1

    runtime.install_signal_handlers()
    try:
        runtime.run()
        log.info("Worker stopped.")
        return 0
    except RestartRequired as e:
        log.warning(f"{e}. Exiting with code {e.exit_code}.")
        return e.exit_code
    finally:
        logging.shutdown()


if __name__ == "__main__":
    sys.exit(main())
