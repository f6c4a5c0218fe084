"""Value types shared by the supervisor runtime."""

from __future__ import annotations

import signal as _signal
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

__all__ = [
    "LaunchSpec",
    "ProcessState",
    "TerminateMode",
    "ExitStatus",
    "TimedOut",
    "TIMED_OUT",
]


class ProcessState(str, Enum):
    """Lifecycle state of a ManagedProcess.

    TERMINATED is absorbing: once entered, no further transition happens.
    """

    RUNNING = "running"
    TERMINATED = "terminated"


class TerminateMode(str, Enum):
    """How a termination request is delivered.

    - graceful: SIGTERM (CTRL_BREAK_EVENT on Windows), may be intercepted
    - forced: SIGKILL (TerminateProcess on Windows), cannot be intercepted
    """

    GRACEFUL = "graceful"
    FORCED = "forced"


class TimedOut(Enum):
    """Outcome of a bounded wait whose deadline elapsed first."""

    TIMED_OUT = "timed_out"

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "TIMED_OUT"


TIMED_OUT = TimedOut.TIMED_OUT


@dataclass(frozen=True)
class LaunchSpec:
    """Specification for a process to launch.

    Attributes:
        command: Executable path or name looked up on PATH
        args: Arguments passed after the command
        cwd: Working directory (None = inherit)
        env: Environment variables (None = inherit parent)
        new_session: Start in a new session/process group so termination
            requests reach the whole group
        capture_output: Pipe stdout with stderr merged into it
    """

    command: str
    args: tuple[str, ...] = ()
    cwd: Path | None = None
    env: Mapping[str, str] | None = None
    new_session: bool = False
    capture_output: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.command, str) or not self.command.strip():
            raise ValueError("command must be a non-empty string")
        # Accept any sequence of arguments, store an immutable tuple
        object.__setattr__(self, "args", tuple(str(a) for a in self.args))
        if isinstance(self.cwd, str):
            object.__setattr__(self, "cwd", Path(self.cwd))

    @property
    def argv(self) -> list[str]:
        return [self.command, *self.args]


@dataclass(frozen=True)
class ExitStatus:
    """Terminal outcome of a process.

    Attributes:
        code: Exit code for a normal exit, None when killed by a signal or
            when the OS does not report it to us
        signal: Number of the signal that ended the process, if any
        destroyed: Termination had been requested through the supervisor
            before the exit was observed
    """

    code: int | None = None
    signal: int | None = None
    destroyed: bool = False

    @classmethod
    def from_returncode(cls, returncode: int, destroyed: bool = False) -> "ExitStatus":
        """Build from a subprocess returncode (negative means signal on POSIX)."""
        if returncode < 0:
            return cls(code=None, signal=-returncode, destroyed=destroyed)
        return cls(code=returncode, signal=None, destroyed=destroyed)

    @classmethod
    def unknown(cls, destroyed: bool = False) -> "ExitStatus":
        """Exit of a process that is not our child; the OS keeps its code."""
        return cls(code=None, signal=None, destroyed=destroyed)

    @property
    def exited_normally(self) -> bool:
        return self.code is not None

    @property
    def success(self) -> bool:
        return self.code == 0

    @property
    def shell_code(self) -> int:
        """Exit code as a shell reports it (128 + signal for signal deaths)."""
        if self.code is not None:
            return self.code
        if self.signal is not None:
            return 128 + self.signal
        return 1

    def describe(self) -> str:
        if self.code is not None:
            text = f"exited with code {self.code}"
        elif self.signal is not None:
            try:
                name = _signal.Signals(self.signal).name
            except ValueError:
                name = str(self.signal)
            text = f"killed by {name}"
        else:
            text = "exited (status unavailable)"
        if self.destroyed:
            text += " after termination request"
        return text
