"""Command line front end.

Usage:
    proc-supervisor run [--timeout S] [--grace S] [--kill-timeout S]
                        [--capture] [--new-session] -- COMMAND [ARGS...]
    proc-supervisor info [PID] [--json]
    proc-supervisor ps [--limit N] [--json]
    proc-supervisor children [PID] [--recursive] [--json]

Exit codes of `run` follow shell conventions: the child's exit code,
128 + N for a child killed by signal N, 124 when the timeout elapsed and
127 when the command could not be launched.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional, Sequence

from .config import Config, get_config
from .errors import LaunchFailure, QueryFailure
from .registry import ProcessRegistry
from .runtime import (
    TIMED_OUT,
    EscalationPolicy,
    ManagedProcess,
    ProcessInfo,
    ProcessSupervisor,
    escalate,
)
from .signal_relay import SignalRelay

__all__ = ["main", "build_parser", "configure_logging"]

logger = logging.getLogger(__name__)

EXIT_TIMEOUT = 124
EXIT_LAUNCH_FAILURE = 127


def _non_negative_float(value: str) -> float:
    """argparse type for a duration in seconds."""
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number: {value!r}") from None
    if not seconds >= 0:
        raise argparse.ArgumentTypeError(f"must be a non-negative number of seconds: {value!r}")
    return seconds


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="proc-supervisor",
        description="Launch, inspect and terminate OS processes",
    )
    sub = parser.add_subparsers(dest="action", required=True)

    run = sub.add_parser("run", help="Run a command under supervision")
    run.add_argument("--timeout", type=_non_negative_float, default=None, help="Seconds before termination starts")
    run.add_argument("--grace", type=_non_negative_float, default=None, help="Seconds between SIGTERM and SIGKILL")
    run.add_argument("--kill-timeout", type=_non_negative_float, default=None, help="Seconds to wait after SIGKILL")
    run.add_argument("--capture", action="store_true", help="Capture output and print it after exit")
    run.add_argument("--new-session", action="store_true", help="Run in its own process group")
    run.add_argument("command", nargs=argparse.REMAINDER, help="Command and arguments")

    info = sub.add_parser("info", help="Describe a process, its parent and children")
    info.add_argument("pid", type=int, nargs="?", default=None, help="Process id (default: this process)")
    info.add_argument("--json", action="store_true", help="Print JSON")

    ps = sub.add_parser("ps", help="List processes of the system table")
    ps.add_argument("--limit", type=int, default=10, help="Maximum number of processes")
    ps.add_argument("--json", action="store_true", help="Print JSON")

    children = sub.add_parser("children", help="List children of a process")
    children.add_argument("pid", type=int, nargs="?", default=None, help="Process id (default: this process)")
    children.add_argument("--recursive", action="store_true", help="Include all descendants")
    children.add_argument("--json", action="store_true", help="Print JSON")

    return parser


def _policy(args: argparse.Namespace, config: Config) -> EscalationPolicy:
    return EscalationPolicy(
        grace_period=args.grace if args.grace is not None else config.grace_period,
        kill_timeout=args.kill_timeout if args.kill_timeout is not None else config.kill_timeout,
    )


def _format_info(info: ProcessInfo) -> str:
    started = info.start_time.isoformat(timespec="seconds") if info.start_time else "N/A"
    return (
        f"PID: {info.pid}, "
        f"Command: {info.command or 'N/A'}, "
        f"Arguments: {len(info.arguments)}, "
        f"Start time: {started}"
    )


def _print_infos(infos: list[ProcessInfo], as_json: bool) -> None:
    if as_json:
        print(json.dumps([i.model_dump(mode="json") for i in infos], ensure_ascii=False, indent=2))
        return
    for info in infos:
        print(_format_info(info))


def _collect_infos(supervisor: ProcessSupervisor, processes) -> list[ProcessInfo]:
    infos = []
    for process in processes:
        try:
            infos.append(supervisor.info(process))
        except QueryFailure as e:
            logger.debug(f"Skipping pid={process.pid}: {e.reason}")
    return infos


def cmd_run(args: argparse.Namespace, config: Config) -> int:
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        print("proc-supervisor run: missing command", file=sys.stderr)
        return 2

    supervisor = ProcessSupervisor(poll_interval=config.poll_interval)
    policy = _policy(args, config)

    if args.capture:
        try:
            result = supervisor.run(
                command[0],
                command[1:],
                timeout=args.timeout,
                policy=policy,
                new_session=args.new_session,
            )
        except LaunchFailure as e:
            print(f"proc-supervisor: {e}", file=sys.stderr)
            return EXIT_LAUNCH_FAILURE
        sys.stdout.write(result.text)
        sys.stdout.flush()
        if result.status is TIMED_OUT:
            logger.error(f"pid={result.pid} survived forced termination")
            return EXIT_TIMEOUT
        logger.info(f"pid={result.pid} {result.status.describe()}")
        return EXIT_TIMEOUT if result.timed_out else result.status.shell_code

    registry = ProcessRegistry()
    relay: Optional[SignalRelay] = None
    if config.forward_signals:
        relay = SignalRelay(supervisor, registry)
        relay.install()

    try:
        try:
            process = supervisor.launch(command[0], command[1:], new_session=args.new_session)
        except LaunchFailure as e:
            print(f"proc-supervisor: {e}", file=sys.stderr)
            return EXIT_LAUNCH_FAILURE
        registry.register(process)
        logger.info(f"Started pid={process.pid} argv={command}")

        status = supervisor.wait(process, args.timeout)
        if status is TIMED_OUT:
            logger.info(f"pid={process.pid} exceeded {args.timeout}s, terminating")
            final = escalate(supervisor, process, policy)
            if final is TIMED_OUT:
                logger.error(f"pid={process.pid} survived forced termination")
            return EXIT_TIMEOUT

        logger.info(f"pid={process.pid} {status.describe()}")
        return status.shell_code
    finally:
        if relay is not None:
            relay.restore()
        registry.cleanup_done()


def _resolve(supervisor: ProcessSupervisor, pid: Optional[int]) -> ManagedProcess:
    return supervisor.current() if pid is None else supervisor.attach(pid)


def cmd_info(args: argparse.Namespace, config: Config) -> int:
    supervisor = ProcessSupervisor(poll_interval=config.poll_interval)
    process = _resolve(supervisor, args.pid)
    info = supervisor.info(process)
    parent = supervisor.parent(process)
    parent_info = _collect_infos(supervisor, [parent]) if parent is not None else []
    child_count = sum(1 for _ in supervisor.children(process))

    if args.json:
        print(json.dumps(
            {
                "process": info.model_dump(mode="json"),
                "alive": supervisor.is_alive(process),
                "parent": parent_info[0].model_dump(mode="json") if parent_info else None,
                "children": child_count,
            },
            ensure_ascii=False,
            indent=2,
        ))
        return 0

    print(f"Process: {_format_info(info)}")
    print(f"Alive: {supervisor.is_alive(process)}")
    if parent_info:
        print(f"Parent: {_format_info(parent_info[0])}")
    else:
        print("Parent: none")
    print(f"Children: {child_count}")
    return 0


def cmd_ps(args: argparse.Namespace, config: Config) -> int:
    supervisor = ProcessSupervisor(poll_interval=config.poll_interval)
    _print_infos(_collect_infos(supervisor, supervisor.all_processes(limit=args.limit)), args.json)
    return 0


def cmd_children(args: argparse.Namespace, config: Config) -> int:
    supervisor = ProcessSupervisor(poll_interval=config.poll_interval)
    process = _resolve(supervisor, args.pid)
    processes = supervisor.descendants(process) if args.recursive else supervisor.children(process)
    _print_infos(_collect_infos(supervisor, processes), args.json)
    return 0


COMMANDS = {
    "run": cmd_run,
    "info": cmd_info,
    "ps": cmd_ps,
    "children": cmd_children,
}


def configure_logging(config: Config) -> None:
    """Send logs to stderr, or to a debug file when PSV_LOG_DEBUG is on."""
    log_handlers: list[logging.Handler] = []
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(formatter)
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Third-party loggers stay at WARNING
    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("proc_supervisor").setLevel(log_level)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point."""
    config = get_config()
    configure_logging(config)

    args = build_parser().parse_args(argv)
    try:
        return COMMANDS[args.action](args, config)
    except QueryFailure as e:
        print(f"proc-supervisor: {e}", file=sys.stderr)
        return 1
