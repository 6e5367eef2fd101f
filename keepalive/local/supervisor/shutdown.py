import psutil
import logging
from typing import TYPE_CHECKING, List

if TYPE_CHECKING:
    from .state import SupervisedProcessHandle

log = logging.getLogger(__name__)


def send_terminate(handle: "SupervisedProcessHandle") -> bool:
    """
    Sends SIGTERM to the worker.

    :param handle: The worker to terminate.
    :return: True if the signal was delivered, False if the process was already gone.
    """
    try:
        log.debug(f"Sending SIGTERM to worker (PID {handle.pid})")
        handle.process.terminate()
        return True
    except ProcessLookupError:
        log.warning(f"Worker {handle.pid} no longer exists, skipping termination.")
        return False


def send_kill(handle: "SupervisedProcessHandle") -> bool:
    """
    Forcefully kills a worker that did not terminate within the grace period.

    :param handle: The worker to kill.
    :return: True if the signal was delivered, False if the process was already gone.
    """
    if not handle.alive:
        return False
    try:
        log.warning(f"Worker (PID {handle.pid}) did not terminate gracefully. Killing it.")
        handle.process.kill()
        return True
    except ProcessLookupError:
        log.warning(f"Worker {handle.pid} no longer exists, skipping forceful kill.")
        return False


def _forceful_kill(processes: List[psutil.Process]) -> None:
    """Forcefully kills processes that didn't terminate gracefully."""
    if not processes:
        return

    log.warning(f"{len(processes)} processes did not terminate gracefully. Forcing shutdown...")
    for proc in processes:
        try:
            log.warning(f"Killing stubborn process {proc.name()} (PID {proc.pid}).")
            proc.kill()
        except psutil.NoSuchProcess:
            log.warning(f"Process {proc.pid} no longer exists, skipping forceful kill.")
            continue


def stop_external_process(pid: int, timeout: float) -> bool:
    """
    Gracefully stops a process that is not a child of this one (e.g. a
    background supervisor, from the console). SIGTERM first, SIGKILL after `timeout`.

    :param pid: The process to stop.
    :param timeout: Seconds to wait before force-killing.
    :return: True if a process was found and stopped.
    """
    try:
        proc = psutil.Process(pid)
        log.info(f"Sending SIGTERM to {proc.name()} (PID {pid})")
        proc.terminate()
    except psutil.NoSuchProcess:
        log.warning(f"Process {pid} no longer exists, nothing to stop.")
        return False

    try:
        _, alive = psutil.wait_procs([proc], timeout=timeout)
    except psutil.NoSuchProcess:
        alive = []

    _forceful_kill(alive)
    return True
