"""PSV environment configuration.

Environment variables:
    PSV_GRACE_PERIOD: seconds between the graceful and the forced
        termination request used by the CLI
        - default 2.0, limited to 0-300

    PSV_KILL_TIMEOUT: seconds to wait for exit after the forced request
        - default 1.0, limited to 0-60

    PSV_POLL_INTERVAL: seconds between liveness checks of async waits
        - default 0.05, limited to 0.01-1.0

    PSV_FORWARD_SIGNALS: relay SIGINT/SIGTERM received by the CLI to the
        supervised process
        - true/1/yes = on (default)
        - false/0/no = off

    PSV_SIGINT_DOUBLE_TAP_WINDOW: seconds within which a second Ctrl+C
        escalates to forced termination
        - default 1.0, limited to 0.1-10

    PSV_LOG_DEBUG: debug logging
        - true/1/yes = DEBUG logs written to a file under the temp dir
        - false/0/no = INFO logs on stderr (default)

The library API never reads this module; values here are defaults for the
command line front end.
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_GRACE_PERIOD = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_POLL_INTERVAL = 0.05
DEFAULT_DOUBLE_TAP_WINDOW = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(
    value: str | None,
    default: float,
    minimum: float,
    maximum: float,
) -> float:
    """Parse a duration, clamped to [minimum, maximum]; default if invalid."""
    if not value or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    if seconds != seconds:  # NaN
        return default
    return max(minimum, min(seconds, maximum))


@dataclass
class Config:
    """Supervisor CLI configuration.

    Attributes:
        grace_period: Seconds between graceful and forced termination
        kill_timeout: Seconds to wait after forced termination
        poll_interval: Seconds between async liveness checks
        forward_signals: Relay SIGINT/SIGTERM to supervised processes
        sigint_double_tap_window: Second-Ctrl+C escalation window (seconds)
        log_debug: Write DEBUG logs to log_file
        log_file: Log file path (set when log_debug is on)
    """

    grace_period: float = DEFAULT_GRACE_PERIOD
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    forward_signals: bool = True
    sigint_double_tap_window: float = DEFAULT_DOUBLE_TAP_WINDOW
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(grace_period={self.grace_period}, "
            f"kill_timeout={self.kill_timeout}, "
            f"poll_interval={self.poll_interval}, "
            f"forward_signals={self.forward_signals}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Timestamped log file under <tempdir>/proc-supervisor."""
    log_dir = Path(tempfile.gettempdir()) / "proc-supervisor"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"psv_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("PSV_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        grace_period=_parse_seconds(
            os.environ.get("PSV_GRACE_PERIOD"), DEFAULT_GRACE_PERIOD, 0.0, 300.0
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("PSV_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.0, 60.0
        ),
        poll_interval=_parse_seconds(
            os.environ.get("PSV_POLL_INTERVAL"), DEFAULT_POLL_INTERVAL, 0.01, 1.0
        ),
        forward_signals=_parse_bool(os.environ.get("PSV_FORWARD_SIGNALS"), default=True),
        sigint_double_tap_window=_parse_seconds(
            os.environ.get("PSV_SIGINT_DOUBLE_TAP_WINDOW"),
            DEFAULT_DOUBLE_TAP_WINDOW,
            0.1,
            10.0,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global instance, loaded lazily
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload the global configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config
