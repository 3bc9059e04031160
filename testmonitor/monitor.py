"""Real-time test monitoring and hanging test detection.

``TestExecutionMonitor`` runs a test runner as a child process, reconstructs
per-test timing from its output, flags tests that stop making progress, and
terminates the whole run when a test exceeds its limit or the suite runs too
long.
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass
from functools import partial
from typing import Callable, List, Optional, Sequence

from .configuration import MonitorConfig
from .detector import HangDetector
from .events import EventChannel
from .memory import MemorySnapshot, MemoryWatcher, sample_memory
from .parser import OutputParser
from .platform import PlatformSupport
from .process import spawn_child
from .registry import ActiveTestRegistry, TestStatus
from .supervisor import ProcessSupervisor, Spawner
from .utils import Color

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


@dataclass(frozen=True)
class ExecutionStatus:
    """Point-in-time view of a monitored run."""

    suite_runtime: float
    active_test_count: int
    hanging_test_count: int
    memory: MemorySnapshot


class TestExecutionMonitor:
    """Supervise a test runner and publish lifecycle events."""

    __test__ = False

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        *,
        events: Optional[EventChannel] = None,
        platform: Optional[PlatformSupport] = None,
        spawner: Spawner = spawn_child,
        memory_sampler: Optional[Callable[[], MemorySnapshot]] = None,
        clock: Callable[[], float] = time.monotonic,
        verbose: bool = False,
    ) -> None:
        self.config = config if config is not None else MonitorConfig()
        self.events = events if events is not None else EventChannel()
        self.registry = ActiveTestRegistry()
        self.verbose = verbose
        self._clock = clock
        self._suite_start: Optional[float] = None
        self._tasks: List[asyncio.Task] = []
        self._active = False

        self.supervisor = ProcessSupervisor(
            self.config,
            on_stdout=self._on_stdout,
            on_stderr=self._on_stderr,
            on_streams_closed=self._on_streams_closed,
            platform=platform,
            spawner=spawner,
            verbose=verbose,
        )
        self._memory_sampler = memory_sampler or (lambda: sample_memory(self.supervisor.pid))
        self.parser = OutputParser(
            self.config,
            self.registry,
            self.events,
            memory_probe=lambda: self._memory_sampler().total,
            clock=clock,
            verbose=verbose,
        )
        self.detector = HangDetector(
            self.config,
            self.registry,
            self.events,
            self.supervisor.terminate,
            termination_pending=lambda: self.supervisor.terminating,
            clock=clock,
        )
        self.memory_watcher = MemoryWatcher(self.config, self.events, self._memory_sampler)

    async def start_monitoring(self, command: Sequence[str]) -> bool:
        """Run ``command`` under supervision.

        Returns True iff the runner exited with status 0 before any timeout
        or kill. Raises SpawnError / ProcessRuntimeError for fatal process
        failures.
        """

        print(f"{Color.BLUE}Starting test monitoring...{Color.RESET}")
        self._suite_start = self._clock()
        self.registry.clear()
        self.parser.reset()
        self._active = True

        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self.detector.run()),
            loop.create_task(self.memory_watcher.run()),
        ]
        try:
            return await self.supervisor.start(command)
        finally:
            self._cleanup()

    def get_execution_status(self) -> ExecutionStatus:
        suite_runtime = 0.0
        if self._suite_start is not None:
            suite_runtime = self._clock() - self._suite_start

        return ExecutionStatus(
            suite_runtime=suite_runtime,
            active_test_count=self.registry.count(),
            hanging_test_count=self.registry.count(TestStatus.HANGING),
            memory=self._memory_sampler(),
        )

    def stop(self) -> None:
        """Tear down the run. Safe to call repeatedly and from any state."""

        self.supervisor.terminate("manual stop")
        self._cleanup()

    async def wait_closed(self) -> None:
        """Wait for the runner to exit after a timeout or ``stop``."""

        await self.supervisor.wait_closed()

    def _cleanup(self) -> None:
        self._active = False
        for task in self._tasks:
            task.cancel()
        self._tasks = []
        self.registry.clear()

    def _on_stdout(self, text: str) -> None:
        # Output that arrives after a timeout or stop no longer updates the registry.
        if self._active:
            self.parser.feed_stdout(text)

    def _on_stderr(self, text: str) -> None:
        if self._active:
            self.parser.feed_stderr(text)

    def _on_streams_closed(self) -> None:
        if self._active:
            self.parser.flush()
