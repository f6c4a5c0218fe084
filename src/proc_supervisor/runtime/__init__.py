"""Runtime module for launching and supervising OS processes.

Provides the ManagedProcess handle, the ProcessSupervisor operations on it,
the psutil-backed process table and the graceful-then-forced escalation
policy.
"""

from __future__ import annotations

from .escalation import EscalationPolicy, escalate, escalate_async
from .managed import ManagedProcess
from .process_table import ProcessInfo
from .supervisor import CompletedRun, ProcessSupervisor
from .types import (
    TIMED_OUT,
    ExitStatus,
    LaunchSpec,
    ProcessState,
    TerminateMode,
    TimedOut,
)

__all__ = [
    "CompletedRun",
    "EscalationPolicy",
    "ExitStatus",
    "LaunchSpec",
    "ManagedProcess",
    "ProcessInfo",
    "ProcessState",
    "ProcessSupervisor",
    "TIMED_OUT",
    "TerminateMode",
    "TimedOut",
    "escalate",
    "escalate_async",
]
