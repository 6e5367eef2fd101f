import logging
from typing import List

from keepalive.local.console.handler import (
    display_status, handle_logs_command, print_help, start_background, stop_background, toggle_verbose_logging
)

log = logging.getLogger(__name__)


def _run_foreground() -> None:
    # Imported lazily: the supervisor entry reconfigures logging for its own process.
    from keepalive.local.entry.supervisor import run_supervisor
    raise SystemExit(run_supervisor())


def execute_command(command: str, args: List[str]) -> bool:
    """
    Executes a single command from the user.

    :param command: The main command string (e.g., 'start', 'status').
    :param args: A list of arguments for the command.
    :return bool: True if the console should exit, False otherwise.
    """
    log.debug(f"Executing command: {command}, args: {args}")
    command_map = {
        "run": _run_foreground,
        "start": start_background,
        "stop": stop_background,
        "shutdown": stop_background,  # alias
        "status": display_status,
        "logs": handle_logs_command,
        "verbose": toggle_verbose_logging,
        "help": print_help,
    }

    if command == "exit":
        return True
    if command in command_map:
        command_map[command]()
    else:
        log.info(f"Unknown command: '{command}'. Type 'help' for a list of commands.")
    return False
