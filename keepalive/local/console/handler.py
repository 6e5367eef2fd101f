import sys
import time
import psutil
import logging
from typing import Any, Dict, Optional

from keepalive.local import app_globals
from keepalive.local.database import LogDBManager
from keepalive.local.status_client import fetch_status
from keepalive.local.supervisor import persistence, process_utils, shutdown
from keepalive.log import set_console_level

# --- Platform-specific non-blocking keypress detection ---
try:
    import msvcrt

    def is_keypress_waiting() -> bool:
        return msvcrt.kbhit()

    def clear_keypress_buffer() -> None:
        while msvcrt.kbhit():
            msvcrt.getch()
except ImportError:
    import select
    import termios
    import tty

    def is_keypress_waiting() -> bool:
        return select.select([sys.stdin], [], [], 0) == ([sys.stdin], [], [])

    def clear_keypress_buffer() -> None:
        # Raw mode is needed to read without Enter
        old_settings = termios.tcgetattr(sys.stdin)
        try:
            tty.setcbreak(sys.stdin.fileno())
            while is_keypress_waiting():
                sys.stdin.read(1)
        finally:
            termios.tcsetattr(sys.stdin, termios.TCSADRAIN, old_settings)

log = logging.getLogger(__name__)


def _running_pids() -> Optional[Dict[str, int]]:
    """PID file contents, or None if there is no live supervisor behind it."""
    pids = persistence.get_pid_info(app_globals.PID_FILE_PATH)
    if not pids:
        return None
    supervisor_pid = pids.get("supervisor")
    if supervisor_pid is None or not process_utils.pid_exists(supervisor_pid):
        return None
    return pids


def start_background() -> Optional[int]:
    """Launches a detached supervisor unless one is already running."""
    pids = _running_pids()
    if pids:
        print(f"\nKeepalive is already running (supervisor PID {pids['supervisor']}).\n")
        return None

    pid = process_utils.launch_detached_supervisor(app_globals.get_all_settings())
    if pid is not None:
        app_globals.start_time = time.time()
        print(f"Supervisor started in the background (PID {pid}).")
    else:
        print("Failed to start the supervisor. Check the logs for details.")
    return pid


def stop_background() -> bool:
    """Stops the background supervisor, which in turn stops the worker."""
    pids = persistence.get_pid_info(app_globals.PID_FILE_PATH)
    if not pids:
        print("\nKeepalive is not running (no PID file found).\n")
        return False

    # The supervisor needs its own grace period to stop the worker first.
    timeout = float(app_globals.GRACEFUL_SHUTDOWN_TIMEOUT) + 5
    stopped = False
    supervisor_pid = pids.get("supervisor")
    if supervisor_pid is not None:
        stopped = shutdown.stop_external_process(supervisor_pid, timeout)

    worker_pid = pids.get("worker")
    if worker_pid is not None and process_utils.pid_exists(worker_pid):
        log.warning(f"Worker (PID {worker_pid}) outlived its supervisor. Stopping it directly.")
        stopped = shutdown.stop_external_process(worker_pid, float(app_globals.GRACEFUL_SHUTDOWN_TIMEOUT)) or stopped

    persistence.remove_pid_file(app_globals.PID_FILE_PATH)
    app_globals.start_time = None
    print("Keepalive stopped." if stopped else "Keepalive was not running. Removed stale PID file.")
    return stopped


def _describe_process(name: str, pid: int) -> str:
    try:
        p = psutil.Process(pid)
        cpu = p.cpu_percent(interval=0.1)
        mem = p.memory_info().rss
        return (f"  - {name:<12} : PID {pid:<8} | Status: {p.status().upper()} | "
                f"CPU: {cpu:.1f}% | MEM: {mem / 1024 / 1024:.1f} MB")
    except psutil.NoSuchProcess:
        return f"  - {name:<12} : PID {pid:<8} | Status: STOPPED (Stale PID)"
    except psutil.AccessDenied:
        return f"  - {name:<12} : PID {pid:<8} | Status: RUNNING (Access Denied)"


def _print_snapshot(snapshot: Dict[str, Any]) -> None:
    sup = snapshot.get("supervisor") or {}
    print(f"\n  Worker status : {sup.get('status', 'unknown').upper()}")
    print(f"  Restarts      : {sup.get('restart_count', 0)}/{sup.get('max_restarts', '?')}")
    last_restart = sup.get("last_restart_time") or 0
    if last_restart:
        print(f"  Last restart  : {time.strftime('%Y-%m-%d %H:%M:%S', time.localtime(last_restart))}")

    worker = snapshot.get("worker")
    if worker:
        print(f"  Session ready : {worker.get('ready')}  (latency: {worker.get('latency')} ms)")
        print(f"  Missed beats  : {worker.get('missed_heartbeats')}")


def display_status() -> None:
    """Shows the processes from the PID file and the supervisor's live snapshot."""
    pids = persistence.get_pid_info(app_globals.PID_FILE_PATH)
    if not pids:
        print("\nKeepalive is STOPPED (No PID file found).\n")
        return

    print("\n--- Keepalive Status ---")
    for name, pid in sorted(pids.items()):
        print(_describe_process(name, pid))

    snapshot = fetch_status(app_globals.STATUS_API_HOST, app_globals.STATUS_API_PORT, retries=1)
    if snapshot is None:
        print("\n  Status API unreachable.")
    else:
        _print_snapshot(snapshot)

    if app_globals.start_time:
        print(f"\nRuntime: {time.strftime('%H:%M:%S', time.gmtime(time.time() - app_globals.start_time))}")
    print("-" * 24 + "\n")


def handle_logs_command() -> None:
    """
    Handles the 'logs' command, providing a blocking, interactive log tail.
    """
    log_db = LogDBManager(app_globals.LOG_DB_PATH)
    if not app_globals.LOG_DB_PATH.exists():
        print("No log database yet. Start Keepalive first.")
        return

    print(f"\n--- Displaying last {app_globals.LOG_HISTORY_COUNT} log entries ---")
    last_id = 0
    for log_entry in log_db.fetch_last_entries(app_globals.LOG_HISTORY_COUNT, app_globals.VERBOSE_LOGGING):
        print(log_entry.message)
        last_id = max(last_id, log_entry.id)

    print("\n--- Now tailing new log entries (Press any key to stop) ---\n")
    try:
        while not is_keypress_waiting():
            new_logs, last_id = log_db.listen_for_updates(last_id)
            for log_entry in new_logs:
                if log_entry.level == "DEBUG" and not app_globals.VERBOSE_LOGGING:
                    continue
                print(log_entry.message)
            time.sleep(1)  # Poll interval
        clear_keypress_buffer()
        print("\n--- Log tailing stopped. Returning to console. ---")
    except KeyboardInterrupt:
        print("\n--- Log tailing interrupted. Returning to console. ---")


def toggle_verbose_logging() -> None:
    """Toggles verbose (DEBUG level) logging for the console handler."""
    app_globals.VERBOSE_LOGGING = not app_globals.VERBOSE_LOGGING
    set_console_level(logging.DEBUG if app_globals.VERBOSE_LOGGING else logging.INFO)
    print(f"Verbose console logging is now {'ON' if app_globals.VERBOSE_LOGGING else 'OFF'}.")
    log.debug("Debug logging test: This message should only appear when verbose is ON.")


def print_help() -> None:
    """Prints the main help text for the console."""
    print("\nAvailable commands:")
    print("  run      - Run the supervisor in the foreground (Ctrl+C to stop).")
    print("  start    - Start the supervisor in the background.")
    print("  stop     - Stop the background supervisor and its worker.")
    print("  status   - Show the supervisor and watchdog status.")
    print("  logs     - View historical logs and tail new logs in real-time.")
    print("  verbose  - Toggle detailed DEBUG log output in the console.")
    print("  help     - Show this help message.")
    print("  exit     - Exit the management console.")
    print()
