"""Bookkeeping for the tests the runner is currently executing.

Every mutation is a single synchronous call so that the output parser and the
hang detector, which both write to the registry from separate event loop
callbacks, never interleave inside a read-check-write sequence.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional


class TestStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    HANGING = "hanging"
    KILLED = "killed"

    __test__ = False


@dataclass
class TestExecutionEntry:
    """Timing state of a single test case."""

    test_name: str
    file_path: str
    start_time: float
    status: TestStatus = TestStatus.RUNNING
    duration_ms: int = 0
    memory_usage: int = 0

    # Keep pytest from collecting this class when imported into test modules.
    __test__ = False

    @property
    def key(self) -> str:
        return make_key(self.file_path, self.test_name)

    def elapsed(self, now: float) -> float:
        """Return seconds since the start marker was seen."""

        return now - self.start_time


def make_key(file_path: str, test_name: str) -> str:
    return f"{file_path}:{test_name}"


class ActiveTestRegistry:
    """Mapping of ``file:test`` keys to the entries of tests in flight."""

    _COMPLETABLE = (TestStatus.RUNNING, TestStatus.HANGING)

    def __init__(self) -> None:
        self._entries: Dict[str, TestExecutionEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[TestExecutionEntry]:
        return self._entries.get(key)

    def upsert(self, entry: TestExecutionEntry) -> None:
        """Insert ``entry``, replacing any entry with the same key."""

        self._entries.pop(entry.key, None)
        self._entries[entry.key] = entry

    def remove(self, key: str) -> Optional[TestExecutionEntry]:
        return self._entries.pop(key, None)

    def transition(
        self,
        key: str,
        expected: Iterable[TestStatus],
        new_status: TestStatus,
    ) -> Optional[TestExecutionEntry]:
        """Move ``key`` to ``new_status`` if its current status is in ``expected``.

        Returns the updated entry, or None when the key is gone or the guard
        does not hold.
        """

        entry = self.get(key)
        if entry is None or entry.status not in tuple(expected):
            return None
        entry.status = new_status
        return entry

    def complete_matching(self, test_name: str, duration_ms: int) -> Optional[TestExecutionEntry]:
        """Complete and remove the first in-flight entry matching ``test_name``.

        Finish markers carry no file path, so an entry matches when either
        name contains the other. Two active tests whose names are substrings
        of each other are ambiguous; the earliest started one wins.
        """

        for key, entry in self._entries.items():
            # HANGING entries still complete: a test that recovers after being flagged is a slow test.
            if entry.status not in self._COMPLETABLE:
                continue
            if entry.test_name in test_name or test_name in entry.test_name:
                entry.status = TestStatus.COMPLETED
                entry.duration_ms = duration_ms
                del self._entries[key]
                return entry
        return None

    def entries(self, status: Optional[TestStatus] = None) -> List[TestExecutionEntry]:
        """Return a snapshot list of entries, optionally filtered by status."""

        if status is None:
            return list(self._entries.values())
        return [entry for entry in self._entries.values() if entry.status is status]

    def count(self, status: Optional[TestStatus] = None) -> int:
        if status is None:
            return len(self._entries)
        return sum(1 for entry in self._entries.values() if entry.status is status)

    def clear(self) -> None:
        self._entries.clear()
