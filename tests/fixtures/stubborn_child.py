#!/usr/bin/env python3
"""Helper process for supervisor tests.

Sleeps for a while, optionally ignoring SIGTERM and spawning children of
its own, then exits with the requested code.

Usage:
    python stubborn_child.py [--duration SECONDS] [--ignore-term]
                             [--spawn N] [--ready-file PATH] [--exit-code CODE]

Arguments:
    --duration: Seconds to run (default: 30)
    --ignore-term: Ignore SIGTERM so only a forced kill stops the process
    --spawn: Number of child processes to start (they run as long)
    --ready-file: Written with a JSON list of child pids once signal
        handling and children are set up
    --exit-code: Exit code when the duration elapses (default: 0)
"""

from __future__ import annotations

import argparse
import json
import os
import signal
import subprocess
import sys
import time
from typing import NoReturn


def main() -> NoReturn:
    parser = argparse.ArgumentParser(description="Stubborn child for testing")
    parser.add_argument("--duration", type=float, default=30.0, help="Duration in seconds")
    parser.add_argument("--ignore-term", action="store_true", help="Ignore SIGTERM")
    parser.add_argument("--spawn", type=int, default=0, help="Children to start")
    parser.add_argument("--ready-file", type=str, default=None, help="Readiness file")
    parser.add_argument("--exit-code", type=int, default=0, help="Exit code")
    args = parser.parse_args()

    if args.ignore_term and sys.platform != "win32":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)

    children = [
        subprocess.Popen(
            [sys.executable, os.path.abspath(__file__), "--duration", str(args.duration)],
            stdin=subprocess.DEVNULL,
        )
        for _ in range(args.spawn)
    ]

    if args.ready_file:
        tmp_path = args.ready_file + ".tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump([child.pid for child in children], f)
        os.replace(tmp_path, args.ready_file)

    deadline = time.monotonic() + args.duration
    while time.monotonic() < deadline:
        time.sleep(0.05)

    for child in children:
        child.wait()
    sys.exit(args.exit_code)


if __name__ == "__main__":
    main()
