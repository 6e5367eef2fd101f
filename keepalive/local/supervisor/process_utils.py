import os
import sys
import shlex
import psutil
import logging
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import keepalive.settings as default_settings

log = logging.getLogger(__name__)


#* --- Process Status ---
def pid_exists(pid: int) -> bool:
    """A wrapper for psutil.pid_exists for easy testing/mocking. Sends no signal."""
    return psutil.pid_exists(pid)


#* --- Process Creation ---
def _get_popen_creation_flags() -> Dict[str, Any]:
    """Returns platform-specific creation flags for a detached subprocess.Popen."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.DETACHED_PROCESS | subprocess.CREATE_NO_WINDOW}
    return {"start_new_session": True}


def get_worker_args(config: Dict[str, Any]) -> Tuple[List[str], Path]:
    """
    Returns the command-line arguments and CWD for the worker process.

    :param config: The supervisor's configuration dictionary.
    :return: A tuple of (argument list, working directory).
    :raises ValueError: If the configured worker command is malformed.
    """
    cwd = Path(config.get("BASE_DIR", default_settings.BASE_DIR))
    command = config.get("WORKER_COMMAND") or ""
    if command:
        args = shlex.split(command)
        if not args:
            raise ValueError(f"Worker command '{command}' is empty after parsing.")
        return args, cwd

    python = config.get("PYTHON_EXECUTABLE") or sys.executable
    return [python, "-m", "keepalive.local.entry.worker"], cwd


def build_worker_env(config: Dict[str, Any]) -> Dict[str, str]:
    """A copy of this process's environment with the production mode marker set."""
    env = dict(os.environ)
    env_var = config.get("WORKER_MODE_ENV_VAR", default_settings.WORKER_MODE_ENV_VAR)
    env[env_var] = config.get("WORKER_MODE", default_settings.WORKER_MODE)
    return env


def spawn_worker(config: Dict[str, Any]) -> subprocess.Popen:
    """
    Spawns the worker with inherited stdin/stdout/stderr.

    :param config: The supervisor's configuration dictionary.
    :return: The Popen object of the new worker.
    :raises OSError: If the executable cannot be started.
    """
    args, cwd = get_worker_args(config)
    log.debug(f"Spawning worker: {' '.join(args)} (cwd: {cwd})")
    return subprocess.Popen(args, cwd=str(cwd), env=build_worker_env(config))


def launch_detached_supervisor(config: Dict[str, Any]) -> Optional[int]:
    """
    Starts the supervisor entry point as a background process that survives the console.

    :return: The PID of the supervisor process, or None if it could not be started.
    """
    python = config.get("PYTHON_EXECUTABLE") or sys.executable
    args = [python, "-m", "keepalive.local.entry.supervisor"]
    cwd = Path(config.get("BASE_DIR", default_settings.BASE_DIR))
    try:
        p = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            cwd=str(cwd),
            **_get_popen_creation_flags()
        )
    except OSError as e:
        log.critical(f"Failed to start the supervisor process: {e}", exc_info=True)
        return None
    log.info(f"Supervisor started in the background with PID: {p.pid}")
    return p.pid
