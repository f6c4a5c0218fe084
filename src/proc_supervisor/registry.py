"""Registry of supervised processes.

Keeps the set of processes a caller supervises together so they can be
queried and terminated as a group (used by the CLI and SignalRelay).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, Optional

from .errors import TerminationRejected
from .runtime.managed import ManagedProcess
from .runtime.supervisor import ProcessSupervisor
from .runtime.types import TerminateMode

__all__ = ["ProcessRegistry"]

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Registry of supervised processes keyed by pid.

    Thread-safe: signal handlers and worker threads may call into it
    concurrently.

    Example:
        ```python
        registry = ProcessRegistry()
        proc = supervisor.launch("sleep", ["30"])
        registry.register(proc)

        if registry.has_alive():
            registry.terminate_all(supervisor, TerminateMode.GRACEFUL)

        registry.cleanup_done()
        ```
    """

    def __init__(self) -> None:
        self._processes: Dict[int, ManagedProcess] = {}
        self._lock = threading.RLock()
        self._on_empty_callbacks: list[Callable[[], None]] = []

    def register(self, process: ManagedProcess) -> None:
        """Add a process.

        Raises:
            ValueError: If a process with the same pid is registered
        """
        with self._lock:
            if process.pid in self._processes:
                raise ValueError(f"Process pid={process.pid} already registered")
            self._processes[process.pid] = process
        logger.debug(f"Registered {process}")

    def unregister(self, pid: int) -> bool:
        """Remove a process; returns whether it was registered."""
        with self._lock:
            process = self._processes.pop(pid, None)
            if process is None:
                return False
            now_empty = not self._processes
            callbacks = list(self._on_empty_callbacks) if now_empty else []

        logger.debug(f"Unregistered {process}")
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning(f"Error in on_empty callback: {e}")
        return True

    def get(self, pid: int) -> Optional[ManagedProcess]:
        with self._lock:
            return self._processes.get(pid)

    def terminate_all(
        self,
        supervisor: ProcessSupervisor,
        mode: TerminateMode = TerminateMode.GRACEFUL,
    ) -> int:
        """Request termination of every alive process.

        Returns:
            Number of requests the OS accepted
        """
        accepted = 0
        for process in self.list_alive():
            try:
                if supervisor.terminate(process, mode):
                    accepted += 1
            except TerminationRejected as e:
                logger.warning(f"Could not terminate pid={process.pid}: {e.reason}")

        if accepted > 0:
            logger.info(f"Requested {mode.value} termination of {accepted} process(es)")
        return accepted

    def has_alive(self) -> bool:
        """Whether any registered process has not been seen to exit."""
        return bool(self.list_alive())

    @property
    def alive_count(self) -> int:
        return len(self.list_alive())

    def list_alive(self) -> list[ManagedProcess]:
        """Alive processes, oldest first."""
        with self._lock:
            processes = list(self._processes.values())
        alive = [p for p in processes if p._poll() is None]
        return sorted(alive, key=lambda p: p.started_at)

    def add_on_empty_callback(self, callback: Callable[[], None]) -> None:
        """Call callback whenever the last process is unregistered."""
        with self._lock:
            self._on_empty_callbacks.append(callback)

    def remove_on_empty_callback(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if callback in self._on_empty_callbacks:
                self._on_empty_callbacks.remove(callback)

    def cleanup_done(self) -> int:
        """Unregister every process that has terminated.

        Returns:
            Number of processes removed
        """
        with self._lock:
            done = [pid for pid, p in self._processes.items() if p._poll() is not None]

        for pid in done:
            self.unregister(pid)

        if done:
            logger.debug(f"Cleaned up {len(done)} terminated process(es)")
        return len(done)

    def __len__(self) -> int:
        with self._lock:
            return len(self._processes)

    def __contains__(self, pid: int) -> bool:
        with self._lock:
            return pid in self._processes
