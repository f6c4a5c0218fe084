"""ManagedProcess: the supervisor's handle to one OS process."""

from __future__ import annotations

import logging
import subprocess
import threading
from datetime import datetime
from typing import Callable, Optional

import psutil

from .types import (
    TIMED_OUT,
    ExitStatus,
    LaunchSpec,
    ProcessState,
    TerminateMode,
    TimedOut,
)

__all__ = ["ManagedProcess"]

logger = logging.getLogger(__name__)


class ManagedProcess:
    """Tracked handle to one external process.

    A handle is either *launched* (backed by subprocess.Popen, exit code is
    always known) or *attached* by pid (backed by psutil.Process, exit code
    known only when the process is a child of this interpreter).

    The exit status is recorded at most once, under a lock, so concurrent
    waiters and terminators all observe the same terminal status.

    Attributes:
        pid: OS process identifier, fixed at creation
        spec: Launch specification (None for attached processes)
        command: Executable the process runs
        args: Arguments after the executable
        started_at: Launch (or OS-reported creation) time
    """

    def __init__(
        self,
        pid: int,
        *,
        command: str,
        args: tuple[str, ...] = (),
        started_at: Optional[datetime] = None,
        spec: Optional[LaunchSpec] = None,
        popen: Optional[subprocess.Popen] = None,
        handle: Optional[psutil.Process] = None,
    ) -> None:
        if popen is None and handle is None:
            raise ValueError("ManagedProcess needs a Popen or a psutil handle")
        self._pid = pid
        self._command = command
        self._args = tuple(args)
        self._started_at = started_at or datetime.now()
        self._spec = spec
        self._popen = popen
        self._handle = handle

        self._lock = threading.RLock()
        self._exit_status: Optional[ExitStatus] = None
        self._termination_requested: Optional[TerminateMode] = None

    @property
    def pid(self) -> int:
        return self._pid

    @property
    def command(self) -> str:
        return self._command

    @property
    def args(self) -> tuple[str, ...]:
        return self._args

    @property
    def started_at(self) -> datetime:
        return self._started_at

    @property
    def spec(self) -> Optional[LaunchSpec]:
        return self._spec

    @property
    def launched(self) -> bool:
        """Whether this handle was created by launching the process."""
        return self._popen is not None

    @property
    def popen(self) -> Optional[subprocess.Popen]:
        return self._popen

    @property
    def handle(self) -> Optional[psutil.Process]:
        """psutil handle of an attached process (None when launched)."""
        return self._handle

    @property
    def exit_status(self) -> Optional[ExitStatus]:
        """Recorded terminal status, None while running."""
        return self._exit_status

    @property
    def state(self) -> ProcessState:
        if self._exit_status is None:
            return ProcessState.RUNNING
        return ProcessState.TERMINATED

    @property
    def termination_requested(self) -> Optional[TerminateMode]:
        """Strongest termination mode requested so far, if any."""
        return self._termination_requested

    def _request_termination(self, mode: TerminateMode, deliver: Callable[[], bool]) -> bool:
        """Note a termination request and deliver it while holding the lock.

        A concurrent _record() blocks until delivery is settled, so an exit
        is flagged as destroyed only if a request was actually accepted. A
        request that is not delivered, or raises, leaves the flag unchanged.
        """
        with self._lock:
            previous = self._termination_requested
            if previous is not TerminateMode.FORCED:
                self._termination_requested = mode
            delivered = False
            try:
                delivered = deliver()
            finally:
                if not delivered:
                    self._termination_requested = previous
            return delivered

    def _record(self, returncode: Optional[int]) -> ExitStatus:
        """Record the terminal status once; later calls return the first."""
        with self._lock:
            if self._exit_status is None:
                destroyed = self._termination_requested is not None
                if returncode is None:
                    status = ExitStatus.unknown(destroyed=destroyed)
                else:
                    status = ExitStatus.from_returncode(returncode, destroyed=destroyed)
                self._exit_status = status
                logger.debug(f"Process pid={self._pid} terminated: {status.describe()}")
            return self._exit_status

    def _poll(self) -> Optional[ExitStatus]:
        """Non-blocking check; records and returns the status if exited."""
        if self._exit_status is not None:
            return self._exit_status
        result = self._block(0)
        if result is TIMED_OUT:
            return None
        return result

    def _block(self, timeout: Optional[float]) -> ExitStatus | TimedOut:
        """Wait up to timeout seconds (None = forever) for the process."""
        if self._exit_status is not None:
            return self._exit_status

        if self._popen is not None:
            try:
                if timeout == 0:
                    returncode = self._popen.poll()
                    if returncode is None:
                        return TIMED_OUT
                else:
                    returncode = self._popen.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                return TIMED_OUT
            return self._record(returncode)

        try:
            returncode = self._handle.wait(timeout=timeout)
        except psutil.TimeoutExpired:
            return TIMED_OUT
        except psutil.NoSuchProcess:
            returncode = None
        return self._record(returncode)

    def __repr__(self) -> str:
        origin = "launched" if self.launched else "attached"
        return (
            f"ManagedProcess(pid={self._pid}, "
            f"command={self._command!r}, "
            f"{origin}, "
            f"state={self.state.value})"
        )
