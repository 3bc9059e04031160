from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass
from functools import partial
from typing import Callable, Optional

import psutil

from .configuration import MonitorConfig
from .events import EventChannel, MonitorEvent
from .utils import Color, format_size

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


@dataclass(frozen=True)
class MemorySnapshot:
    """Resident memory of the monitor and of the supervised process tree."""

    rss: int
    vms: int
    children_rss: int = 0

    @property
    def total(self) -> int:
        return self.rss + self.children_rss


def _process_tree_rss(pid: int) -> int:
    try:
        root = psutil.Process(pid)
        processes = [root, *root.children(recursive=True)]
    except psutil.Error:
        return 0

    total = 0
    for proc in processes:
        try:
            total += proc.memory_info().rss
        except psutil.Error:
            # Processes exit while we walk the tree.
            continue
    return total


def sample_memory(child_pid: Optional[int] = None) -> MemorySnapshot:
    """Return the current memory snapshot.

    ``child_pid`` is the supervised runner; its whole process tree is counted
    in ``children_rss``.
    """

    info = psutil.Process().memory_info()
    children_rss = _process_tree_rss(child_pid) if child_pid is not None else 0
    return MemorySnapshot(rss=info.rss, vms=info.vms, children_rss=children_rss)


class MemoryWatcher:
    """Periodic sampler that reports when memory use exceeds the threshold."""

    def __init__(
        self,
        config: MonitorConfig,
        events: EventChannel,
        sampler: Callable[[], MemorySnapshot] = sample_memory,
    ) -> None:
        self.config = config
        self.events = events
        self.sampler = sampler

    def sample(self) -> MemorySnapshot:
        snapshot = self.sampler()
        if snapshot.total > self.config.memory_threshold:
            print(
                f"{Color.YELLOW}High memory usage detected: {format_size(snapshot.total)} "
                f"(threshold {format_size(self.config.memory_threshold)}){Color.RESET}"
            )
            self.events.publish(MonitorEvent.HIGH_MEMORY_USAGE, snapshot)
        return snapshot

    async def run(self) -> None:
        while True:
            await asyncio.sleep(self.config.memory_sample_interval)
            self.sample()
