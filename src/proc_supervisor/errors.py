"""Supervisor exception types.

An elapsed wait is not an exception: wait() returns runtime.types.TIMED_OUT.
"""

from __future__ import annotations

__all__ = [
    "SupervisorError",
    "LaunchFailure",
    "QueryFailure",
    "TerminationRejected",
]


class SupervisorError(Exception):
    """Base exception of the supervisor package."""
    pass


class LaunchFailure(SupervisorError):
    """The OS refused to spawn a process.

    Attributes:
        command: Command that was being launched
        reason: Human readable cause
    """

    def __init__(self, command: str, reason: str) -> None:
        self.command = command
        self.reason = reason
        super().__init__(f"cannot launch {command!r}: {reason}")


class QueryFailure(SupervisorError):
    """A single process-table query could not be satisfied.

    Local to the query that raised it; tracked state is left untouched.

    Attributes:
        pid: Process the query was about
        reason: Human readable cause
    """

    def __init__(self, pid: int, reason: str) -> None:
        self.pid = pid
        self.reason = reason
        super().__init__(f"query failed for pid={pid}: {reason}")


class TerminationRejected(SupervisorError):
    """The OS refused a termination request (e.g. permission denied)."""

    def __init__(self, pid: int, reason: str) -> None:
        self.pid = pid
        self.reason = reason
        super().__init__(f"termination rejected for pid={pid}: {reason}")
