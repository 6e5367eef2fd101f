import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

log = logging.getLogger(__name__)


def get_pid_info(pid_file: Path) -> Optional[Dict[str, int]]:
    """
    Reads the PID file from disk and returns its contents.

    :param pid_file: Path of the PID file.
    :return: A dictionary of PIDs if the file exists and is valid, else None.
    """
    if not pid_file.exists():
        return None
    try:
        with pid_file.open("r") as f:
            pids = json.load(f)
        if not isinstance(pids, dict):
            pid_file.unlink()
            return None
        return {name: int(pid) for name, pid in pids.items() if pid is not None}
    except (json.JSONDecodeError, IOError, ValueError, TypeError):
        pid_file.unlink(missing_ok=True)
        return None


def write_pid_file(pid_file: Path, pids: Dict[str, Optional[int]]) -> None:
    """
    Atomically writes the supervisor and worker PIDs to the PID file.

    :param pid_file: Path of the PID file.
    :param pids: Mapping of process role to PID. None values are skipped.
    """
    pid_dict = {name: pid for name, pid in pids.items() if pid is not None}
    temp_pid_path = pid_file.with_suffix(".tmp")
    try:
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        with temp_pid_path.open("w") as f:
            json.dump(pid_dict, f, indent=4)
        temp_pid_path.replace(pid_file)
    except (IOError, OSError) as e:
        log.error(f"Failed to write PID file: {e}", exc_info=True)
    finally:
        temp_pid_path.unlink(missing_ok=True)


def remove_pid_file(pid_file: Path) -> None:
    pid_file.unlink(missing_ok=True)
    log.debug("Cleaned up PID file.")


def read_worker_status(status_file: Path) -> Optional[Dict[str, Any]]:
    """Reads the last watchdog snapshot the worker published, if any."""
    try:
        return json.loads(status_file.read_text())
    except FileNotFoundError:
        return None
    except (json.JSONDecodeError, IOError) as e:
        log.debug(f"Could not read worker status file '{status_file}': {e}")
        return None
