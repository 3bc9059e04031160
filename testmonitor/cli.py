"""
Test Execution Monitor

Runs a test runner under supervision, reporting hanging and slow tests and
terminating the run when a test or the whole suite exceeds its time limit.

Usage:
    testmonitor [options] -- COMMAND [ARGS...]

Options:
    --max-test-duration SECONDS     Kill the run when one test exceeds this (default: 10)
    --max-suite-duration SECONDS    Kill the run when the suite exceeds this (default: 30)
    --hanging-threshold SECONDS     Report a test as hanging after this (default: 5)
    --memory-threshold MB           Warn above this much resident memory (default: 512)
    --no-kill-switch                Report hanging tests but never kill the run
    --duration-override FILE=SECS   Minimum per-test limit for tests in FILE (repeatable)
    --verbose                       Show every test start and completion
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass, field
from functools import partial
from typing import Any, List, Optional, Sequence

from .configuration import KILL_SWITCH_DISABLE_ENV, MIB, MonitorConfig, parse_duration_overrides
from .errors import MonitorError
from .events import MonitorEvent
from .memory import MemorySnapshot
from .monitor import TestExecutionMonitor
from .registry import TestExecutionEntry
from .utils import Color, env_flag, format_duration, format_size

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


@dataclass
class RunReport:
    """Counts collected from the event stream of one run."""

    completed: List[TestExecutionEntry] = field(default_factory=list)
    slow: List[TestExecutionEntry] = field(default_factory=list)
    hanging: List[TestExecutionEntry] = field(default_factory=list)
    killed: List[TestExecutionEntry] = field(default_factory=list)
    runner_hang_reports: int = 0
    queued: int = 0
    peak_memory: int = 0

    def record(self, event: MonitorEvent, payload: Any) -> None:
        if event is MonitorEvent.TEST_COMPLETED:
            self.completed.append(payload)
        elif event is MonitorEvent.SLOW_TEST:
            self.slow.append(payload)
        elif event is MonitorEvent.TEST_HANGING:
            if isinstance(payload, TestExecutionEntry):
                self.hanging.append(payload)
            else:
                self.runner_hang_reports += 1
        elif event is MonitorEvent.TEST_KILLED:
            self.killed.append(payload)
        elif event is MonitorEvent.TEST_QUEUED:
            self.queued += 1
        elif event is MonitorEvent.HIGH_MEMORY_USAGE:
            self.peak_memory = max(self.peak_memory, payload.total)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="testmonitor",
        description="Run a test command with hanging test detection",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"Set {KILL_SWITCH_DISABLE_ENV}=1 to disable the kill switch from the environment.",
    )
    defaults = MonitorConfig()
    parser.add_argument('--max-test-duration', type=float, default=defaults.max_test_duration,
                        help='Maximum time for a single test in seconds (default: %(default)s)')
    parser.add_argument('--max-suite-duration', type=float, default=defaults.max_suite_duration,
                        help='Maximum time for the entire suite in seconds (default: %(default)s)')
    parser.add_argument('--hanging-threshold', type=float, default=defaults.hanging_test_threshold,
                        help='Seconds before a test is considered hanging (default: %(default)s)')
    parser.add_argument('--memory-threshold', type=float, default=defaults.memory_threshold / MIB,
                        help='Memory warning threshold in MiB (default: %(default)s)')
    parser.add_argument('--no-kill-switch', action='store_true',
                        help='Never terminate the run because of a single slow test')
    parser.add_argument('--sweep-interval', type=float, default=defaults.sweep_interval,
                        help='Seconds between hanging test sweeps (default: %(default)s)')
    parser.add_argument('--memory-interval', type=float, default=defaults.memory_sample_interval,
                        help='Seconds between memory samples (default: %(default)s)')
    parser.add_argument('--grace-period', type=float, default=defaults.kill_grace_period,
                        help='Seconds between the graceful and the forceful kill (default: %(default)s)')
    parser.add_argument('--duration-override', action='append', default=[], metavar='FILE=SECONDS',
                        help='Minimum per-test limit for tests in FILE (repeatable)')
    parser.add_argument('--verbose', action='store_true',
                        help='Show every test start and completion')
    parser.add_argument('command', nargs=argparse.REMAINDER,
                        help='Test command to run, after --')
    return parser


def config_from_args(args: argparse.Namespace) -> MonitorConfig:
    """Build the run configuration; raises ValueError on invalid values."""

    return MonitorConfig(
        max_test_duration=args.max_test_duration,
        max_suite_duration=args.max_suite_duration,
        hanging_test_threshold=args.hanging_threshold,
        memory_threshold=int(args.memory_threshold * MIB),
        enable_kill_switch=not (args.no_kill_switch or env_flag(KILL_SWITCH_DISABLE_ENV)),
        sweep_interval=args.sweep_interval,
        memory_sample_interval=args.memory_interval,
        kill_grace_period=args.grace_period,
        duration_overrides=parse_duration_overrides(args.duration_override),
    )


def _print_event(verbose: bool, event: MonitorEvent, payload: Any) -> None:
    if event is MonitorEvent.TEST_STARTED and verbose:
        print(f"  {Color.BLUE}RUN{Color.RESET}  {payload.file_path} > {payload.test_name}")
    elif event is MonitorEvent.TEST_COMPLETED and verbose:
        duration = format_duration(payload.duration_ms / 1000.0)
        print(f"  {Color.GREEN}DONE{Color.RESET} {payload.test_name} ({duration})")
    elif event is MonitorEvent.SLOW_TEST:
        duration = format_duration(payload.duration_ms / 1000.0)
        print(f"  {Color.YELLOW}SLOW{Color.RESET} {payload.file_path} > {payload.test_name} ({duration})")
    elif event is MonitorEvent.HANGING_TESTS_DETECTED:
        names = ", ".join(entry.test_name for entry in payload)
        print(f"  {Color.YELLOW}{len(payload)} hanging test(s): {names}{Color.RESET}")
    elif event is MonitorEvent.HIGH_MEMORY_USAGE and verbose:
        snapshot: MemorySnapshot = payload
        print(f"  [DEBUG] memory: monitor={format_size(snapshot.rss)} runner={format_size(snapshot.children_rss)}")


def print_summary(success: bool, report: RunReport, suite_runtime: float, reason: Optional[str]) -> None:
    """Print summary statistics for a run"""

    status = f"{Color.GREEN}PASS{Color.RESET}" if success else f"{Color.RED}FAIL{Color.RESET}"

    print("=" * 70)
    print(f"  {Color.BOLD}Result: {status}{Color.RESET}")
    if reason:
        print(f"  Terminated: {reason}")
    print(f"  Completed: {len(report.completed)} / Slow: {len(report.slow)} / "
          f"Hanging: {len(report.hanging)} / Killed: {len(report.killed)}")
    if report.runner_hang_reports:
        print(f"  Runner hang reports: {report.runner_hang_reports}")
    if report.peak_memory:
        print(f"  {Color.YELLOW}Peak memory above threshold: {format_size(report.peak_memory)}{Color.RESET}")
    print(f"  Suite duration: {format_duration(suite_runtime)}")

    if report.killed or report.hanging:
        print(f"\n  {Color.YELLOW}Stalled tests:{Color.RESET}")
        seen = set()
        for entry in report.killed + report.hanging:
            if entry.key in seen:
                continue
            seen.add(entry.key)
            print(f"    [{entry.status.value}] {entry.file_path} > {entry.test_name}")


async def run_monitored(command: Sequence[str], config: MonitorConfig, verbose: bool) -> int:
    monitor = TestExecutionMonitor(config, verbose=verbose)
    report = RunReport()
    monitor.events.subscribe_all(report.record)
    monitor.events.subscribe_all(partial(_print_event, verbose))

    try:
        success = await monitor.start_monitoring(command)
    except MonitorError as exc:
        print(f"{Color.RED}Error: {exc}{Color.RESET}")
        return 2
    finally:
        suite_runtime = monitor.get_execution_status().suite_runtime
        monitor.stop()

    await monitor.wait_closed()
    print_summary(success, report, suite_runtime, monitor.supervisor.termination_reason)
    return 0 if success else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    command = list(args.command)
    if command and command[0] == '--':
        command = command[1:]
    if not command:
        parser.print_usage(sys.stderr)
        print(f"{Color.RED}Error: a test command is required after --{Color.RESET}")
        return 2

    try:
        config = config_from_args(args)
    except ValueError as exc:
        print(f"{Color.RED}Error: {exc}{Color.RESET}")
        return 2

    print(f"{Color.BOLD}Test Execution Monitor{Color.RESET}")
    print(f"Command: {' '.join(command)}")
    print(f"Max test duration: {config.max_test_duration}s, max suite duration: {config.max_suite_duration}s")
    print(f"Hanging threshold: {config.hanging_test_threshold}s, "
          f"memory threshold: {format_size(config.memory_threshold)}")
    if not config.enable_kill_switch:
        print(f"{Color.YELLOW}Kill switch disabled: hanging tests are reported only.{Color.RESET}")
    print("=" * 70)

    return asyncio.run(run_monitored(command, config, args.verbose))


if __name__ == '__main__':
    sys.exit(main())
