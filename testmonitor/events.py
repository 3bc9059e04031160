from __future__ import annotations

import sys
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, List

from .utils import Color

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


class MonitorEvent(str, Enum):
    """Lifecycle notifications published by the monitor."""

    TEST_STARTED = "testStarted"
    TEST_COMPLETED = "testCompleted"
    SLOW_TEST = "slowTest"
    TEST_QUEUED = "testQueued"
    TEST_HANGING = "testHanging"
    HANGING_TESTS_DETECTED = "hangingTestsDetected"
    TEST_KILLED = "testKilled"
    HIGH_MEMORY_USAGE = "highMemoryUsage"


Listener = Callable[[Any], None]
WildcardListener = Callable[[MonitorEvent, Any], None]


class EventChannel:
    """Publish/subscribe surface shared by every monitor component.

    Payloads:
        TEST_STARTED, TEST_COMPLETED, SLOW_TEST, TEST_KILLED: ``TestExecutionEntry``
        TEST_HANGING: ``TestExecutionEntry`` from the sweep, or the raw stderr line
        HANGING_TESTS_DETECTED: list of ``TestExecutionEntry``
        TEST_QUEUED: the raw output line
        HIGH_MEMORY_USAGE: ``MemorySnapshot``
    """

    def __init__(self) -> None:
        self._listeners: Dict[MonitorEvent, List[Listener]] = {event: [] for event in MonitorEvent}
        self._wildcard: List[WildcardListener] = []

    def subscribe(self, event: MonitorEvent, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` for ``event``; return a callable that unregisters it."""

        event = MonitorEvent(event)
        self._listeners[event].append(listener)

        def unsubscribe() -> None:
            try:
                self._listeners[event].remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def subscribe_all(self, listener: WildcardListener) -> Callable[[], None]:
        """Register ``listener`` for every event; it receives ``(event, payload)``."""

        self._wildcard.append(listener)

        def unsubscribe() -> None:
            try:
                self._wildcard.remove(listener)
            except ValueError:
                pass

        return unsubscribe

    def publish(self, event: MonitorEvent, payload: Any = None) -> None:
        """Deliver ``payload`` to the listeners of ``event``.

        A failing listener is reported and skipped so that the remaining
        listeners and the monitor itself keep running.
        """

        for listener in list(self._listeners[event]):
            try:
                listener(payload)
            except Exception as exc:
                print(f"{Color.YELLOW}Warning: {event.value} listener {listener!r} failed: {exc}{Color.RESET}")

        for wildcard in list(self._wildcard):
            try:
                wildcard(event, payload)
            except Exception as exc:
                print(f"{Color.YELLOW}Warning: {event.value} listener {wildcard!r} failed: {exc}{Color.RESET}")

    def clear(self) -> None:
        for listeners in self._listeners.values():
            listeners.clear()
        self._wildcard.clear()
