import sys
import logging
import threading

import keepalive.local.console as console
from keepalive.local import app_globals
from keepalive.local.supervisor import persistence
from keepalive.log import setup_logging

log = logging.getLogger("console")

# --- Global State ---
CONSOLE_LOCK = threading.Lock()


def main() -> None:
    """The main entry point for the `keepalive` console."""
    setup_logging(logging.INFO, process_name="console")

    # Non-interactive mode for one-off commands
    if len(sys.argv) > 1:
        command, args = sys.argv[1].lower(), sys.argv[2:]
        if "--verbose" in args:
            console.toggle_verbose_logging()
            args.remove("--verbose")
        console.execute_command(command, args)
        return

    # Interactive mode
    print("--- Keepalive Management Console ---")
    print("Type 'help' for a list of commands.")
    with CONSOLE_LOCK:
        status = "Running" if persistence.get_pid_info(app_globals.PID_FILE_PATH) else "Stopped"
    print(f"Keepalive is currently {status}.")

    while True:
        try:
            # The input prompt must be outside the lock to not block background threads
            command_line_str = input("> ")
            with CONSOLE_LOCK:
                command_line = command_line_str.strip().split()
                if not command_line:
                    continue
                command, args = command_line[0].lower(), command_line[1:]
                if console.execute_command(command, args):
                    break
        except (KeyboardInterrupt, EOFError):
            with CONSOLE_LOCK:
                log.warning("Exiting console.")
                break
        except Exception as e:
            with CONSOLE_LOCK:
                log.error(f"An unexpected error occurred in the console: {e}", exc_info=True)


if __name__ == "__main__":
    main()
