"""proc-supervisor - launch, wait on and terminate OS processes.

Environment variables (command line front end only):
    PSV_GRACE_PERIOD: seconds between graceful and forced termination
    PSV_KILL_TIMEOUT: seconds to wait after forced termination
    PSV_LOG_DEBUG: write DEBUG logs to a temp file

Usage:
    proc-supervisor run --timeout 3 -- sleep 10
"""

__version__ = "0.1.0"

from .errors import LaunchFailure, QueryFailure, SupervisorError, TerminationRejected
from .registry import ProcessRegistry
from .runtime import (
    TIMED_OUT,
    CompletedRun,
    EscalationPolicy,
    ExitStatus,
    LaunchSpec,
    ManagedProcess,
    ProcessInfo,
    ProcessState,
    ProcessSupervisor,
    TerminateMode,
    TimedOut,
    escalate,
    escalate_async,
)
from .signal_relay import SignalRelay

__all__ = [
    "__version__",
    "CompletedRun",
    "EscalationPolicy",
    "ExitStatus",
    "LaunchFailure",
    "LaunchSpec",
    "ManagedProcess",
    "ProcessInfo",
    "ProcessRegistry",
    "ProcessState",
    "ProcessSupervisor",
    "QueryFailure",
    "SignalRelay",
    "SupervisorError",
    "TIMED_OUT",
    "TerminateMode",
    "TerminationRejected",
    "TimedOut",
    "escalate",
    "escalate_async",
]
