"""Graceful-then-forced termination.

Termination strategy:
1. Request graceful termination (SIGTERM, or CTRL_BREAK_EVENT on Windows)
2. Wait up to grace_period for the process to exit
3. If still running, request forced termination (SIGKILL)
4. Wait up to kill_timeout (None = until it exits)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .managed import ManagedProcess
from .types import TIMED_OUT, ExitStatus, TerminateMode, TimedOut

if TYPE_CHECKING:
    from .supervisor import ProcessSupervisor

__all__ = [
    "EscalationPolicy",
    "escalate",
    "escalate_async",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EscalationPolicy:
    """Two-step termination policy.

    Attributes:
        grace_period: Seconds to wait after the graceful request
        kill_timeout: Seconds to wait after the forced request
            (None = wait until the process exits)
    """

    grace_period: float
    kill_timeout: Optional[float] = None

    def __post_init__(self) -> None:
        if self.grace_period < 0:
            raise ValueError("grace_period must be >= 0")
        if self.kill_timeout is not None and self.kill_timeout < 0:
            raise ValueError("kill_timeout must be >= 0")


def escalate(
    supervisor: "ProcessSupervisor",
    process: ManagedProcess,
    policy: EscalationPolicy,
) -> ExitStatus | TimedOut:
    """Terminate process, escalating from graceful to forced.

    Returns:
        The terminal ExitStatus, or TIMED_OUT if the process outlived
        kill_timeout even after the forced request
    """
    pid = process.pid
    if process.exit_status is not None:
        return process.exit_status

    logger.debug(f"Terminating pid={pid} (grace_period={policy.grace_period}s)")
    supervisor.terminate(process, TerminateMode.GRACEFUL)

    status = supervisor.wait(process, policy.grace_period)
    if status is not TIMED_OUT:
        logger.debug(f"pid={pid} terminated gracefully: {status.describe()}")
        return status

    logger.info(f"pid={pid} still alive after {policy.grace_period}s, force killing")
    supervisor.terminate(process, TerminateMode.FORCED)

    status = supervisor.wait(process, policy.kill_timeout)
    if status is TIMED_OUT:
        logger.warning(f"pid={pid} did not exit after forced termination")
    else:
        logger.debug(f"pid={pid} force killed: {status.describe()}")
    return status


async def escalate_async(
    supervisor: "ProcessSupervisor",
    process: ManagedProcess,
    policy: EscalationPolicy,
) -> ExitStatus | TimedOut:
    """Async variant of escalate() built on wait_async()."""
    pid = process.pid
    if process.exit_status is not None:
        return process.exit_status

    supervisor.terminate(process, TerminateMode.GRACEFUL)
    status = await supervisor.wait_async(process, policy.grace_period)
    if status is not TIMED_OUT:
        return status

    logger.info(f"pid={pid} still alive after {policy.grace_period}s, force killing")
    supervisor.terminate(process, TerminateMode.FORCED)

    status = await supervisor.wait_async(process, policy.kill_timeout)
    if status is TIMED_OUT:
        logger.warning(f"pid={pid} did not exit after forced termination")
    return status
