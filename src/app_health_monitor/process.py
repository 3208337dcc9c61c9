"""Process supervision helpers for the polling process."""

import json
import logging
import os
import time
from pathlib import Path

import psutil

from app_health_monitor.models import StatusType

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (StatusType.SUCCESS, StatusType.ERROR)
CREATE_TIME_TOLERANCE_SECONDS = 1.0


def write_pid_file(path: str | Path, pid: int | None = None) -> None:
    """Record the pid of the polling process and when it started.
    
    The start time lets a later reader tell the recorded process apart from
    an unrelated one that has since been given the same pid.
    """
    path = Path(path)
    pid = pid if pid is not None else os.getpid()
    try:
        record = f"{pid} {psutil.Process(pid).create_time()!r}"
    except psutil.Error:
        record = str(pid)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"{record}\n")


def read_pid_record(path: str | Path) -> tuple[int, float | None] | None:
    """Get the recorded pid and start time, or None if there is no usable pid file."""
    path = Path(path)
    try:
        fields = path.read_text().split()
        pid = int(fields[0])
        create_time = float(fields[1]) if len(fields) > 1 else None
    except FileNotFoundError:
        return None
    except (ValueError, IndexError):
        logger.warning(f"Ignoring malformed pid file: {path}")
        return None
    return pid, create_time


def read_pid_file(path: str | Path) -> int | None:
    """Get the recorded pid, or None if there is no usable pid file."""
    record = read_pid_record(path)
    return record[0] if record is not None else None


def is_recorded_process(pid: int, create_time: float | None) -> bool:
    """Check that ``pid`` is still the process that was recorded.
    
    A record without a start time cannot be verified and is never matched.
    """
    if create_time is None:
        return False
    try:
        return abs(psutil.Process(pid).create_time() - create_time) < CREATE_TIME_TOLERANCE_SECONDS
    except psutil.Error:
        return False


def is_running(pid: int) -> bool:
    """Check whether a process with this pid exists and is not a zombie."""
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return psutil.pid_exists(pid)


def stop_process(pid: int, timeout: float = 10.0) -> bool:
    """Ask a process to terminate, killing it if it does not exit in time.
    
    Args:
        pid: Process to stop.
        timeout: Seconds to wait after SIGTERM before sending SIGKILL.
        
    Returns:
        True if a running process was stopped, False if there was none.
        
    Raises:
        PermissionError: If the process may not be signalled.
    """
    if pid == os.getpid():
        raise ValueError("refusing to stop the current process")
    
    try:
        proc = psutil.Process(pid)
        logger.info(f"Terminating process {pid}")
        proc.terminate()
        try:
            proc.wait(timeout=timeout)
        except psutil.TimeoutExpired:
            logger.warning(f"Process {pid} did not exit after {timeout}s, killing it")
            proc.kill()
            proc.wait(timeout=timeout)
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied as e:
        raise PermissionError(f"not permitted to stop process {pid}") from e
    
    return True


def wait_for_process(pid: int, timeout: float | None = None) -> bool:
    """Block until the process exits.
    
    Returns:
        True if the process is gone, False if the timeout elapsed first.
    """
    try:
        psutil.Process(pid).wait(timeout=timeout)
    except psutil.NoSuchProcess:
        return True
    except psutil.TimeoutExpired:
        return False
    return True


def read_status_type(path: str | Path) -> StatusType | None:
    """Get the top-level status of a status file, if it is readable."""
    try:
        with open(path) as f:
            document = json.load(f)
        return StatusType(document[0]["status"]["status"])
    except FileNotFoundError:
        return None
    except (OSError, ValueError, KeyError, IndexError, TypeError) as e:
        logger.debug(f"Unreadable status file {path}: {e}")
        return None


def wait_for_status(
    path: str | Path,
    timeout: float | None = None,
    poll_interval: float = 1.0,
) -> StatusType | None:
    """Block until the status file reports a terminal status.
    
    Returns:
        The terminal status, or None if the timeout elapsed first.
    """
    deadline = None if timeout is None else time.monotonic() + timeout
    while True:
        status = read_status_type(path)
        if status in TERMINAL_STATUSES:
            return status
        if deadline is not None and time.monotonic() >= deadline:
            return None
        time.sleep(poll_interval)
