"""OS process table access backed by psutil.

All psutil calls of the package go through this module, which maps
psutil's exceptions onto the supervisor taxonomy:

- NoSuchProcess / AccessDenied on a query -> QueryFailure
- AccessDenied on a signal                -> TerminationRejected
- NoSuchProcess on a signal               -> False (nothing to terminate)

Iteration helpers are generators: the table is read when iteration starts,
and processes that vanish mid-iteration are skipped.
"""

from __future__ import annotations

import logging
import os
import signal
import sys
from collections.abc import Iterator
from datetime import datetime

import psutil
from pydantic import BaseModel, ConfigDict, Field

from ..errors import QueryFailure, TerminationRejected
from .types import TerminateMode

__all__ = [
    "IS_WINDOWS",
    "ProcessInfo",
    "get_handle",
    "query_info",
    "iter_children",
    "iter_all",
    "parent_pid",
    "is_running",
    "send_signal",
]

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class ProcessInfo(BaseModel):
    """Point-in-time description of one process.

    Fields the OS refuses to disclose are None.
    """

    model_config = ConfigDict(frozen=True)

    pid: int
    ppid: int | None = None
    name: str | None = None
    command: str | None = None
    arguments: list[str] = Field(default_factory=list)
    start_time: datetime | None = None
    user: str | None = None
    status: str | None = None


def _optional(getter):
    """Call a psutil accessor, None when access to that field is denied."""
    try:
        return getter()
    except (psutil.AccessDenied, psutil.ZombieProcess):
        return None


def get_handle(pid: int) -> psutil.Process:
    """Return a psutil handle for pid.

    Raises:
        QueryFailure: If the process does not exist or cannot be inspected
    """
    try:
        return psutil.Process(pid)
    except psutil.NoSuchProcess as e:
        raise QueryFailure(pid, "no such process") from e
    except psutil.AccessDenied as e:
        raise QueryFailure(pid, "access denied") from e


def info_from_handle(handle: psutil.Process) -> ProcessInfo:
    """Read a ProcessInfo from an existing psutil handle.

    Raises:
        QueryFailure: If the process vanished while being read
    """
    pid = handle.pid
    try:
        with handle.oneshot():
            create_time = _optional(handle.create_time)
            cmdline = _optional(handle.cmdline) or []
            return ProcessInfo(
                pid=pid,
                ppid=_optional(handle.ppid),
                name=_optional(handle.name),
                command=_optional(handle.exe) or (cmdline[0] if cmdline else None),
                arguments=list(cmdline[1:]),
                start_time=datetime.fromtimestamp(create_time) if create_time else None,
                user=_optional(handle.username),
                status=_optional(handle.status),
            )
    except psutil.NoSuchProcess as e:
        raise QueryFailure(pid, "process exited during query") from e


def query_info(pid: int) -> ProcessInfo:
    """Describe pid.

    Raises:
        QueryFailure: If the process does not exist or vanished mid-read
    """
    return info_from_handle(get_handle(pid))


def iter_children(pid: int, recursive: bool = False) -> Iterator[psutil.Process]:
    """Yield the children of pid, read from the table on first iteration.

    Raises:
        QueryFailure: If pid itself cannot be queried
    """
    parent = get_handle(pid)
    try:
        children = parent.children(recursive=recursive)
    except psutil.NoSuchProcess as e:
        raise QueryFailure(pid, "no such process") from e
    except psutil.AccessDenied as e:
        raise QueryFailure(pid, "access denied") from e
    yield from children


def iter_all() -> Iterator[psutil.Process]:
    """Yield the running processes of the whole system table."""
    for handle in psutil.process_iter():
        try:
            if not handle.is_running():
                continue
        except psutil.Error:
            continue
        yield handle


def parent_pid(pid: int) -> int | None:
    """Return the parent pid of pid, None for a root process.

    Raises:
        QueryFailure: If pid cannot be queried
    """
    handle = get_handle(pid)
    try:
        ppid = handle.ppid()
    except psutil.NoSuchProcess as e:
        raise QueryFailure(pid, "no such process") from e
    except psutil.AccessDenied as e:
        raise QueryFailure(pid, "access denied") from e
    if ppid <= 0 or ppid == pid:
        return None
    return ppid


def is_running(pid: int) -> bool:
    """Best-effort liveness probe; zombies count as not running."""
    try:
        handle = psutil.Process(pid)
        return handle.is_running() and handle.status() != psutil.STATUS_ZOMBIE
    except (psutil.NoSuchProcess, psutil.ZombieProcess):
        return False
    except psutil.AccessDenied:
        # Exists but is not ours to inspect
        return True


def _posix_signal(mode: TerminateMode) -> int:
    return signal.SIGKILL if mode is TerminateMode.FORCED else signal.SIGTERM


def send_signal(
    target: int | psutil.Process,
    mode: TerminateMode,
    group: bool = False,
) -> bool:
    """Deliver a termination request.

    Args:
        target: pid, or a psutil handle (which refuses to signal a pid
            that was reused by another process)
        mode: Graceful or forced
        group: Signal the whole process group led by the target (POSIX
            only); falls back to the single process if the group cannot
            be signalled

    Returns:
        True if the request was delivered, False if the process is gone

    Raises:
        TerminationRejected: If the OS refuses the request
    """
    pid = target.pid if isinstance(target, psutil.Process) else target

    if group and not IS_WINDOWS:
        sig = _posix_signal(mode)
        try:
            pgid = os.getpgid(pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {signal.Signals(sig).name} to process group pgid={pgid}")
            return True
        except ProcessLookupError:
            return False
        except PermissionError as e:
            raise TerminationRejected(pid, "permission denied") from e
        except OSError as e:
            logger.debug(f"killpg failed for pid={pid}, falling back to single process: {e}")

    try:
        handle = target if isinstance(target, psutil.Process) else psutil.Process(pid)
        if mode is TerminateMode.FORCED:
            handle.kill()
        else:
            handle.terminate()
    except psutil.NoSuchProcess:
        return False
    except psutil.AccessDenied as e:
        raise TerminationRejected(pid, "access denied") from e

    logger.debug(f"Sent {mode.value} termination to pid={pid}")
    return True
