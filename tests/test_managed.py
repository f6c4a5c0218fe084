"""ManagedProcess bookkeeping tests.

The handles here are backed by mock psutil processes, so nothing is
launched; exits are recorded directly through _record().
"""

from __future__ import annotations

import threading
import time
from unittest import mock

import psutil
import pytest

from proc_supervisor.errors import TerminationRejected
from proc_supervisor.runtime import ExitStatus, TerminateMode
from proc_supervisor.runtime.managed import ManagedProcess


def _attached(pid: int = 4242) -> ManagedProcess:
    return ManagedProcess(pid, command="worker", handle=mock.Mock(spec=psutil.Process))


def _record_during_delivery(proc: ManagedProcess, delivered: bool, threads: list):
    """A delivery callback that races an exit from another thread."""

    def deliver() -> bool:
        thread = threading.Thread(target=proc._record, args=(0,))
        thread.start()
        threads.append(thread)
        time.sleep(0.1)
        # The recorder is held off until delivery is settled
        assert proc.exit_status is None
        return delivered

    return deliver


class TestTerminationRequest:
    """Test how termination requests feed the destroyed flag."""

    def test_delivered_request_is_noted(self):
        proc = _attached()

        assert proc._request_termination(TerminateMode.GRACEFUL, lambda: True) is True

        assert proc.termination_requested is TerminateMode.GRACEFUL
        assert proc._record(None).destroyed

    def test_undelivered_request_is_dropped(self):
        proc = _attached()

        assert proc._request_termination(TerminateMode.FORCED, lambda: False) is False

        assert proc.termination_requested is None
        assert proc._record(0) == ExitStatus(code=0)

    def test_rejected_request_is_dropped(self):
        proc = _attached()

        def deliver() -> bool:
            raise TerminationRejected(proc.pid, "permission denied")

        with pytest.raises(TerminationRejected):
            proc._request_termination(TerminateMode.GRACEFUL, deliver)

        assert proc.termination_requested is None

    def test_forced_is_never_downgraded(self):
        proc = _attached()
        proc._request_termination(TerminateMode.FORCED, lambda: True)

        proc._request_termination(TerminateMode.GRACEFUL, lambda: True)

        assert proc.termination_requested is TerminateMode.FORCED

    @pytest.mark.timeout(10)
    def test_exit_during_undelivered_request_is_not_destroyed(self):
        proc = _attached()
        threads: list[threading.Thread] = []

        delivered = proc._request_termination(
            TerminateMode.GRACEFUL, _record_during_delivery(proc, False, threads)
        )
        threads[0].join(timeout=5)

        assert delivered is False
        assert proc.exit_status == ExitStatus(code=0)
        assert not proc.exit_status.destroyed
        assert proc.termination_requested is None

    @pytest.mark.timeout(10)
    def test_exit_during_delivered_request_is_destroyed(self):
        proc = _attached()
        threads: list[threading.Thread] = []

        delivered = proc._request_termination(
            TerminateMode.FORCED, _record_during_delivery(proc, True, threads)
        )
        threads[0].join(timeout=5)

        assert delivered is True
        assert proc.exit_status == ExitStatus(code=0, destroyed=True)


class TestRecord:
    def test_first_status_wins(self):
        proc = _attached()

        first = proc._record(3)

        assert proc._record(0) is first
        assert proc.exit_status.code == 3
