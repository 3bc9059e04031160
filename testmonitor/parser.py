"""Recognise test lifecycle markers in raw runner output.

The markers follow the default vitest reporter::

    ❯ src/foo.test.ts renders correctly      (test started)
    ✓ renders correctly 50ms                  (test finished)
    ❯ src/bar.test.ts [queued]                (file queued)
"""

from __future__ import annotations

import re
import sys
import time
from functools import partial
from typing import Callable, List, Optional, Pattern

from .configuration import MonitorConfig
from .events import EventChannel, MonitorEvent
from .registry import ActiveTestRegistry, TestExecutionEntry
from .utils import Color, strip_ansi

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


START_PATTERN = re.compile(
    r"❯ (?P<file>.+?\.(?:test|spec)\.(?:[cm]?[jt]sx?)) (?P<name>.+)"
)
FINISH_PATTERN = re.compile(r"[✓✔×✗] (?P<name>.+) (?P<duration>\d+)ms")
QUEUED_MARKER = "[queued]"
HANG_MARKERS = ("timeout", "hung")


class _LineBuffer:
    """Split a stream of text chunks into complete lines."""

    def __init__(self) -> None:
        self._pending = ""

    def feed(self, chunk: str) -> List[str]:
        data = self._pending + chunk
        lines = data.split("\n")
        self._pending = lines.pop()
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        if not self._pending:
            return []
        line, self._pending = self._pending.rstrip("\r"), ""
        return [line]


class OutputParser:
    """Turn runner output into registry updates and lifecycle events.

    The parser never makes process control decisions; it only mutates the
    registry and publishes events.
    """

    def __init__(
        self,
        config: MonitorConfig,
        registry: ActiveTestRegistry,
        events: EventChannel,
        *,
        memory_probe: Callable[[], int] = lambda: 0,
        clock: Callable[[], float] = time.monotonic,
        start_pattern: Pattern[str] = START_PATTERN,
        finish_pattern: Pattern[str] = FINISH_PATTERN,
        verbose: bool = False,
    ) -> None:
        self.config = config
        self.registry = registry
        self.events = events
        self.memory_probe = memory_probe
        self.clock = clock
        self.start_pattern = start_pattern
        self.finish_pattern = finish_pattern
        self.verbose = verbose
        self._stdout = _LineBuffer()
        self._stderr = _LineBuffer()

    def feed_stdout(self, chunk: str) -> None:
        for line in self._stdout.feed(chunk):
            self.parse_output_line(line)

    def feed_stderr(self, chunk: str) -> None:
        for line in self._stderr.feed(chunk):
            self.parse_error_line(line)

    def reset(self) -> None:
        """Discard partial lines from a previous run."""

        self._stdout = _LineBuffer()
        self._stderr = _LineBuffer()

    def flush(self) -> None:
        """Process partial lines left over when the streams close."""

        for line in self._stdout.flush():
            self.parse_output_line(line)
        for line in self._stderr.flush():
            self.parse_error_line(line)

    def parse_output_line(self, raw_line: str) -> None:
        line = strip_ansi(raw_line)

        # "❯ file.test.ts [queued]" also fits the start pattern; it is not a test.
        if QUEUED_MARKER in line:
            if self.verbose:
                print(f"[DEBUG] Test queued: {line.strip()}")
            self.events.publish(MonitorEvent.TEST_QUEUED, line)
            return

        start = self.start_pattern.search(line)
        if start:
            self._on_test_started(start.group("file"), start.group("name").strip())

        finish = self.finish_pattern.search(line)
        if finish:
            self._on_test_finished(finish.group("name").strip(), int(finish.group("duration")))

    def parse_error_line(self, raw_line: str) -> None:
        line = strip_ansi(raw_line)
        lowered = line.lower()
        if any(marker in lowered for marker in HANG_MARKERS):
            print(f"{Color.RED}Test timeout/hang reported: {line.strip()}{Color.RESET}")
            self.events.publish(MonitorEvent.TEST_HANGING, line)

    def _on_test_started(self, file_path: str, test_name: str) -> None:
        entry = TestExecutionEntry(
            test_name=test_name,
            file_path=file_path,
            start_time=self.clock(),
            memory_usage=self.memory_probe(),
        )
        self.registry.upsert(entry)
        self.events.publish(MonitorEvent.TEST_STARTED, entry)

    def _on_test_finished(self, test_name: str, duration_ms: int) -> Optional[TestExecutionEntry]:
        entry = self.registry.complete_matching(test_name, duration_ms)
        if entry is None:
            return None

        self.events.publish(MonitorEvent.TEST_COMPLETED, entry)
        if duration_ms > self.config.hanging_threshold_ms:
            self.events.publish(MonitorEvent.SLOW_TEST, entry)
        return entry
