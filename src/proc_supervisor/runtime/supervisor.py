"""Process supervisor: launch, wait, probe and terminate OS processes.

This module provides:
- Launching processes with optional session/process-group isolation
- Bounded waits that report TIMED_OUT instead of raising
- Graceful (SIGTERM) and forced (SIGKILL) termination requests
- Lazy snapshots of child processes and of the system process table

Key design points:
- No operation other than wait()/run() blocks on the child's lifetime
- The supervisor holds no global lock; each ManagedProcess guards its own
  exit status so a wait() racing a terminate() observes one terminal status
- No default grace period: escalation is parameterised by the caller
  (see escalation.EscalationPolicy)
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import weakref
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import anyio
import psutil

from ..errors import LaunchFailure, QueryFailure, TerminationRejected
from . import process_table
from .escalation import EscalationPolicy, escalate
from .managed import ManagedProcess
from .process_table import IS_WINDOWS, ProcessInfo
from .types import TIMED_OUT, ExitStatus, LaunchSpec, TerminateMode, TimedOut

__all__ = [
    "CompletedRun",
    "ProcessSupervisor",
]

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.05  # seconds between liveness checks in wait_async
DEFAULT_DRAIN_TIMEOUT = 1.0  # seconds to read leftover output after escalation


@dataclass(frozen=True)
class CompletedRun:
    """Result of ProcessSupervisor.run().

    Attributes:
        pid: Process identifier the run had
        status: Terminal status, TIMED_OUT if the process outlived escalation
        output: Captured stdout with stderr merged in
        timed_out: The timeout elapsed and termination was escalated
    """

    pid: int
    status: ExitStatus | TimedOut
    output: bytes
    timed_out: bool = False

    @property
    def text(self) -> str:
        return self.output.decode(errors="replace")


class ProcessSupervisor:
    """Uniform contract for launching, waiting on and terminating processes.

    Example:
        supervisor = ProcessSupervisor()
        proc = supervisor.launch("sleep", ["5"])

        if supervisor.wait(proc, timeout=1) is TIMED_OUT:
            escalate(supervisor, proc, EscalationPolicy(grace_period=2))

    Attributes:
        poll_interval: Seconds between checks in wait_async()
    """

    def __init__(self, poll_interval: float = DEFAULT_POLL_INTERVAL) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.poll_interval = poll_interval
        # pid -> launched handle, so attaching to one of our own children
        # returns the Popen-backed handle instead of reaping it via psutil
        self._launched: "weakref.WeakValueDictionary[int, ManagedProcess]" = (
            weakref.WeakValueDictionary()
        )
        self._launched_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def launch(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        new_session: bool = False,
        capture_output: bool = False,
    ) -> ManagedProcess:
        """Start a process and return its handle in state RUNNING.

        Returns as soon as the OS has accepted the spawn.

        Raises:
            ValueError: If command is empty
            LaunchFailure: If the command cannot be found or executed, or
                the OS refuses to spawn it
        """
        spec = LaunchSpec(
            command=command,
            args=tuple(args),
            cwd=Path(cwd) if cwd is not None else None,
            env=env,
            new_session=new_session,
            capture_output=capture_output,
        )
        return self.launch_spec(spec)

    def launch_spec(self, spec: LaunchSpec) -> ManagedProcess:
        """Start a process described by a LaunchSpec."""
        kwargs = self._build_popen_kwargs(spec)

        try:
            # stdin=DEVNULL: never hand our own stdin to the child
            popen = subprocess.Popen(
                spec.argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if spec.capture_output else None,
                stderr=subprocess.STDOUT if spec.capture_output else None,
                cwd=spec.cwd,
                **kwargs,
            )
        except FileNotFoundError as e:
            raise LaunchFailure(spec.command, f"not found ({e.strerror or e})") from e
        except PermissionError as e:
            raise LaunchFailure(spec.command, "not executable") from e
        except OSError as e:
            raise LaunchFailure(spec.command, e.strerror or str(e)) from e

        process = ManagedProcess(
            popen.pid,
            command=spec.command,
            args=spec.args,
            started_at=datetime.now(),
            spec=spec,
            popen=popen,
        )
        with self._launched_lock:
            self._launched[popen.pid] = process

        logger.debug(
            f"Launched pid={popen.pid} "
            f"argv={spec.argv} cwd={spec.cwd} new_session={spec.new_session}"
        )
        return process

    def _build_popen_kwargs(self, spec: LaunchSpec) -> dict[str, Any]:
        """Build platform-specific Popen kwargs."""
        kwargs: dict[str, Any] = {}

        if spec.env is not None:
            kwargs["env"] = dict(spec.env)

        if spec.new_session:
            if IS_WINDOWS:
                kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
            else:
                kwargs["start_new_session"] = True

        return kwargs

    # ------------------------------------------------------------------
    # Waiting and liveness
    # ------------------------------------------------------------------

    def wait(
        self,
        process: ManagedProcess,
        timeout: Optional[float] = None,
    ) -> ExitStatus | TimedOut:
        """Block until the process terminates or timeout seconds elapse.

        Args:
            process: Process to wait for
            timeout: Maximum seconds to block; None waits indefinitely,
                0 only polls

        Returns:
            The recorded ExitStatus, or TIMED_OUT if the deadline passed
            first (the process keeps running and its state is unchanged)
        """
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must be >= 0")
        return process._block(timeout)

    async def wait_async(
        self,
        process: ManagedProcess,
        timeout: Optional[float] = None,
    ) -> ExitStatus | TimedOut:
        """Async variant of wait(); cancellable at every poll."""
        if timeout is not None and timeout < 0:
            raise ValueError("timeout must be >= 0")

        with anyio.move_on_after(timeout):
            while True:
                status = process._poll()
                if status is not None:
                    return status
                await anyio.sleep(self.poll_interval)

        return TIMED_OUT

    def is_alive(self, process: ManagedProcess) -> bool:
        """Non-blocking, best-effort liveness probe.

        Never authoritative over wait(): the OS may report the exit a
        little after it happened.
        """
        return process._poll() is None

    # ------------------------------------------------------------------
    # Termination
    # ------------------------------------------------------------------

    def terminate(
        self,
        process: ManagedProcess,
        mode: TerminateMode = TerminateMode.GRACEFUL,
    ) -> bool:
        """Request termination and return without waiting for the exit.

        Returns:
            True if the OS accepted the request, False if the process had
            already terminated or its pid no longer exists

        Raises:
            TerminationRejected: If the OS refuses the request
        """
        mode = TerminateMode(mode)
        if process._poll() is not None:
            logger.debug(f"terminate({mode.value}) ignored, pid={process.pid} already exited")
            return False

        def deliver() -> bool:
            if process.launched:
                return self._signal_launched(process, mode)
            return process_table.send_signal(process.handle, mode)

        if not process._request_termination(mode, deliver):
            return False

        logger.debug(f"Requested {mode.value} termination of pid={process.pid}")
        return True

    def _signal_launched(self, process: ManagedProcess, mode: TerminateMode) -> bool:
        popen = process.popen
        spec = process.spec

        if spec is not None and spec.new_session:
            if IS_WINDOWS and mode is TerminateMode.GRACEFUL:
                return self._windows_break(popen)
            return process_table.send_signal(popen.pid, mode, group=True)

        # Popen silently ignores signals for an already reaped child
        if popen.poll() is not None:
            return False
        try:
            if mode is TerminateMode.FORCED:
                popen.kill()
            else:
                popen.terminate()
        except ProcessLookupError:
            return False
        except PermissionError as e:
            raise TerminationRejected(popen.pid, "permission denied") from e
        return True

    def _windows_break(self, popen: subprocess.Popen) -> bool:
        """Send CTRL_BREAK_EVENT to a process started in its own group."""
        try:
            os.kill(popen.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={popen.pid}")
        except ProcessLookupError:
            return False
        except OSError as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back to terminate: {e}")
            popen.terminate()
        return True

    # ------------------------------------------------------------------
    # Process table
    # ------------------------------------------------------------------

    def current(self) -> ManagedProcess:
        """Handle for this interpreter's own process."""
        return self.attach(os.getpid())

    def attach(self, pid: int) -> ManagedProcess:
        """Handle for an existing process.

        Raises:
            QueryFailure: If the process does not exist or cannot be read
        """
        with self._launched_lock:
            launched = self._launched.get(pid)
        if launched is not None and launched.exit_status is None:
            return launched
        return self._adopt(process_table.get_handle(pid))

    def _adopt(self, handle: psutil.Process) -> ManagedProcess:
        with self._launched_lock:
            launched = self._launched.get(handle.pid)
        if launched is not None and launched.exit_status is None:
            return launched

        info = process_table.info_from_handle(handle)
        return ManagedProcess(
            handle.pid,
            command=info.command or info.name or "",
            args=tuple(info.arguments),
            started_at=info.start_time,
            handle=handle,
        )

    def parent(self, process: ManagedProcess) -> Optional[ManagedProcess]:
        """Handle for the parent of process, None if it has none or is gone.

        Raises:
            QueryFailure: If process itself cannot be queried
        """
        ppid = process_table.parent_pid(process.pid)
        if ppid is None:
            return None
        try:
            return self.attach(ppid)
        except QueryFailure:
            logger.debug(f"Parent pid={ppid} of pid={process.pid} vanished")
            return None

    def children(self, process: ManagedProcess) -> Iterator[ManagedProcess]:
        """Lazy, single-pass snapshot of the direct children of process.

        The table is read when iteration starts; children that exit while
        being read are skipped. No ordering among siblings.
        """
        return self._iter_adopted(process_table.iter_children(process.pid))

    def descendants(self, process: ManagedProcess) -> Iterator[ManagedProcess]:
        """Like children(), but recursive."""
        return self._iter_adopted(process_table.iter_children(process.pid, recursive=True))

    def all_processes(self, limit: Optional[int] = None) -> Iterator[ManagedProcess]:
        """Lazy enumeration of every visible process on the system."""
        return self._iter_adopted(process_table.iter_all(), limit)

    def _iter_adopted(
        self,
        handles: Iterator[psutil.Process],
        limit: Optional[int] = None,
    ) -> Iterator[ManagedProcess]:
        # limit counts adopted handles, not table entries that vanished
        if limit is not None and limit <= 0:
            return
        count = 0
        for handle in handles:
            try:
                process = self._adopt(handle)
            except QueryFailure:
                continue
            yield process
            count += 1
            if limit is not None and count >= limit:
                return

    def info(self, process: ManagedProcess) -> ProcessInfo:
        """Describe process from the OS table.

        Raises:
            QueryFailure: If the process cannot be queried; tracked state is
                unaffected
        """
        if process.handle is not None:
            return process_table.info_from_handle(process.handle)
        return process_table.query_info(process.pid)

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def run(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        timeout: Optional[float] = None,
        policy: Optional[EscalationPolicy] = None,
        cwd: Path | str | None = None,
        env: Mapping[str, str] | None = None,
        new_session: bool = False,
    ) -> CompletedRun:
        """Run a command to completion, capturing stdout and stderr together.

        If timeout elapses, termination is escalated with policy.

        Raises:
            ValueError: If timeout is given without a policy
            LaunchFailure: If the command cannot be launched
        """
        if timeout is not None and policy is None:
            raise ValueError("an EscalationPolicy is required when timeout is set")

        process = self.launch(
            command,
            args,
            cwd=cwd,
            env=env,
            new_session=new_session,
            capture_output=True,
        )
        popen = process.popen
        timed_out = False

        try:
            output, _ = popen.communicate(timeout=timeout)
            status = process._record(popen.returncode)
        except subprocess.TimeoutExpired:
            timed_out = True
            logger.info(f"pid={process.pid} exceeded {timeout}s, escalating termination")
            status = escalate(self, process, policy)
            output = self._drain(process, policy)

        if status is TIMED_OUT:
            logger.warning(f"Run of {command!r} pid={process.pid} survived forced termination")
        else:
            logger.debug(f"Run of {command!r} pid={process.pid} {status.describe()}")
        return CompletedRun(
            pid=process.pid,
            status=status,
            output=output or b"",
            timed_out=timed_out,
        )

    @staticmethod
    def _drain(process: ManagedProcess, policy: EscalationPolicy) -> bytes:
        """Collect the output left in the pipe of an escalated run.

        Descendants that inherited the pipe can keep it open after the
        process itself is gone, so reading is bounded and the pipe is
        closed on expiry.
        """
        popen = process.popen
        bound = policy.kill_timeout or DEFAULT_DRAIN_TIMEOUT
        try:
            output, _ = popen.communicate(timeout=bound)
            return output
        except subprocess.TimeoutExpired as e:
            logger.warning(
                f"Output pipe of pid={process.pid} still open after {bound}s, "
                f"held by a descendant; returning partial output"
            )
            if popen.stdout is not None:
                popen.stdout.close()
            return e.output or b""
