from __future__ import annotations

import asyncio
import sys
import time
from functools import partial
from typing import Callable, List, Optional

from .configuration import MonitorConfig
from .events import EventChannel, MonitorEvent
from .registry import ActiveTestRegistry, TestExecutionEntry, TestStatus
from .utils import Color, format_duration

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


class HangDetector:
    """Periodic sweep that flags stale tests and enforces the kill switch.

    ``terminate`` is called with a reason naming the offending test; it is
    expected to tear down the whole runner since tests are not isolated in
    their own processes.
    """

    def __init__(
        self,
        config: MonitorConfig,
        registry: ActiveTestRegistry,
        events: EventChannel,
        terminate: Callable[[str], None],
        *,
        termination_pending: Callable[[], bool] = lambda: False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.registry = registry
        self.events = events
        self.terminate = terminate
        self.termination_pending = termination_pending
        self.clock = clock

    def sweep(self, now: Optional[float] = None) -> List[TestExecutionEntry]:
        """Run one sweep and return the entries that started hanging in it."""

        if now is None:
            now = self.clock()

        newly_hanging: List[TestExecutionEntry] = []

        for entry in self.registry.entries():
            elapsed = entry.elapsed(now)

            if elapsed > self.config.hanging_test_threshold:
                flagged = self.registry.transition(entry.key, (TestStatus.RUNNING,), TestStatus.HANGING)
                if flagged is not None:
                    print(
                        f"{Color.YELLOW}Hanging test detected: {entry.test_name} "
                        f"({format_duration(elapsed)}){Color.RESET}"
                    )
                    newly_hanging.append(flagged)
                    self.events.publish(MonitorEvent.TEST_HANGING, flagged)

            if (
                self.config.enable_kill_switch
                and elapsed > self.config.max_duration_for(entry)
                and not self.termination_pending()
            ):
                killed = self.registry.transition(
                    entry.key,
                    (TestStatus.RUNNING, TestStatus.HANGING),
                    TestStatus.KILLED,
                )
                if killed is None:
                    continue
                self.registry.remove(killed.key)
                print(
                    f"{Color.RED}Killing hanging test: {killed.test_name} "
                    f"({format_duration(elapsed)}){Color.RESET}"
                )
                self.events.publish(MonitorEvent.TEST_KILLED, killed)
                self.terminate(f"test {killed.test_name} exceeded max duration")
                break

        if newly_hanging:
            self.events.publish(MonitorEvent.HANGING_TESTS_DETECTED, newly_hanging)

        return newly_hanging

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            self.sweep()
