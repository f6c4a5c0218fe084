"""Pytest configuration and fixtures."""

from __future__ import annotations

import json
import sys
import time
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).parent.parent

SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

FIXTURES_DIR = PROJECT_ROOT / "tests" / "fixtures"
STUBBORN_CHILD = FIXTURES_DIR / "stubborn_child.py"

IS_WINDOWS = sys.platform == "win32"

posix_only = pytest.mark.skipif(IS_WINDOWS, reason="POSIX signal semantics")


def python_argv(code: str) -> tuple[str, list[str]]:
    """Command and args running a Python snippet in a fresh interpreter."""
    return sys.executable, ["-c", code]


def sleeper(seconds: float) -> tuple[str, list[str]]:
    return python_argv(f"import time; time.sleep({seconds})")


def stubborn(*extra: str) -> tuple[str, list[str]]:
    return sys.executable, [str(STUBBORN_CHILD), *extra]


def wait_for_ready(path: Path, timeout: float = 10.0) -> list[int]:
    """Wait for stubborn_child.py to write its readiness file."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
        time.sleep(0.02)
    raise TimeoutError(f"{path} was not written within {timeout}s")


@pytest.fixture
def supervisor():
    """ProcessSupervisor that force-kills whatever it launched on teardown."""
    from proc_supervisor.runtime import ProcessSupervisor, TerminateMode

    sup = ProcessSupervisor(poll_interval=0.02)
    launched = []
    original_launch_spec = sup.launch_spec

    def tracking_launch_spec(spec):
        process = original_launch_spec(spec)
        launched.append(process)
        return process

    sup.launch_spec = tracking_launch_spec
    yield sup

    for process in launched:
        if process.exit_status is None:
            sup.terminate(process, TerminateMode.FORCED)
            sup.wait(process, 5)


@pytest.fixture
def ready_file(tmp_path: Path) -> Path:
    return tmp_path / "ready.json"
