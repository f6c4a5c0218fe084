"""Signal relay.

Turns signals received by the supervising process into termination
requests for the processes it supervises, so that Ctrl+C does not leave
orphans behind:

- SIGINT: graceful termination of every alive registered process; a
  second SIGINT within the double-tap window escalates to forced
- SIGTERM: graceful termination of every alive process and shutdown

Configuration:
- PSV_SIGINT_DOUBLE_TAP_WINDOW: double-tap window in seconds
"""

from __future__ import annotations

import logging
import signal
import sys
import time
from typing import Any, Callable, Optional

from .config import get_config
from .registry import ProcessRegistry
from .runtime.supervisor import ProcessSupervisor
from .runtime.types import TerminateMode

__all__ = ["SignalRelay"]

logger = logging.getLogger(__name__)


class SignalRelay:
    """Relays SIGINT/SIGTERM to registered processes.

    Handlers are installed with signal.signal(), so install() must be
    called from the main thread.

    Example:
        ```python
        registry = ProcessRegistry()
        with SignalRelay(supervisor, registry):
            proc = supervisor.launch("long-task")
            registry.register(proc)
            supervisor.wait(proc)
        ```

    Attributes:
        supervisor: Supervisor used to deliver termination requests
        registry: Processes to relay to
        double_tap_window: Seconds within which a second SIGINT escalates
    """

    def __init__(
        self,
        supervisor: ProcessSupervisor,
        registry: ProcessRegistry,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        self.supervisor = supervisor
        self.registry = registry

        config = get_config()
        self.double_tap_window = (
            double_tap_window if double_tap_window is not None else config.sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._sigint_count: int = 0
        self._shutdown_requested: bool = False
        self._forced: bool = False
        self._original_handlers: dict[int, Any] = {}
        self._installed: bool = False

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_forced(self) -> bool:
        """Whether a double SIGINT escalated to forced termination."""
        return self._forced

    @property
    def last_signal(self) -> Optional[int]:
        """Signal number to re-raise as exit status, if any was relayed."""
        if self._forced or self._sigint_count:
            return signal.SIGINT
        if self._shutdown_requested:
            return signal.SIGTERM
        return None

    def install(self) -> None:
        """Install the SIGINT (and, on POSIX, SIGTERM) handlers."""
        if self._installed:
            logger.warning("SignalRelay already installed")
            return

        signums = [signal.SIGINT]
        if sys.platform != "win32":
            signums.append(signal.SIGTERM)

        for signum in signums:
            self._original_handlers[signum] = signal.signal(signum, self._dispatch)
        self._installed = True
        logger.debug(f"Signal relay installed (double_tap_window={self.double_tap_window}s)")

    def restore(self) -> None:
        """Restore the handlers that were active before install()."""
        if not self._installed:
            return

        for signum, handler in self._original_handlers.items():
            try:
                signal.signal(signum, handler)
            except (OSError, ValueError) as e:
                logger.debug(f"Error restoring handler for signal {signum}: {e}")
        self._original_handlers.clear()
        self._installed = False
        logger.debug("Signal relay removed")

    def __enter__(self) -> "SignalRelay":
        self.install()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.restore()

    def _dispatch(self, signum: int, frame: Any) -> None:
        if signum == signal.SIGINT:
            self._handle_sigint()
        else:
            self._handle_sigterm()

    def _handle_sigint(self) -> None:
        """Gracefully terminate children; escalate on a quick second SIGINT."""
        current_time = time.monotonic()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time
        self._sigint_count += 1

        if self._sigint_count > 1 and time_since_last < self.double_tap_window:
            logger.warning("Double SIGINT detected, forcing termination")
            self._forced = True
            count = self.registry.terminate_all(self.supervisor, TerminateMode.FORCED)
            logger.info(f"Force terminated {count} process(es)")
            self._request_shutdown()
            return

        count = self.registry.terminate_all(self.supervisor, TerminateMode.GRACEFUL)
        logger.info(
            f"SIGINT received, requested termination of {count} process(es). "
            f"Press Ctrl+C again within {self.double_tap_window}s to force."
        )

    def _handle_sigterm(self) -> None:
        """Gracefully terminate children and request shutdown."""
        logger.info("SIGTERM received, terminating supervised processes")
        self.registry.terminate_all(self.supervisor, TerminateMode.GRACEFUL)
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True
        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")
