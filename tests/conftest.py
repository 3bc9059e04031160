from __future__ import annotations

import asyncio
import sys
from typing import Any, Callable, List, Optional, Tuple

import pytest

from testmonitor.configuration import MonitorConfig
from testmonitor.events import EventChannel, MonitorEvent
from testmonitor.process import ChildProcess


@pytest.fixture(autouse=True)
def _child_python_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make ``sys.executable -c`` children write unbuffered UTF-8."""

    monkeypatch.setenv("PYTHONIOENCODING", "utf-8")
    monkeypatch.setenv("PYTHONUNBUFFERED", "1")


def python_command(source: str) -> List[str]:
    return [sys.executable, "-c", source]


class EventRecorder:
    def __init__(self, channel: EventChannel) -> None:
        self.received: List[Tuple[MonitorEvent, Any]] = []
        channel.subscribe_all(lambda event, payload: self.received.append((event, payload)))

    def of(self, event: MonitorEvent) -> List[Any]:
        return [payload for kind, payload in self.received if kind is event]

    def names(self) -> List[str]:
        return [kind.value for kind, _ in self.received]


@pytest.fixture()
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture()
def recorder(channel: EventChannel) -> EventRecorder:
    return EventRecorder(channel)


@pytest.fixture()
def fast_config() -> Callable[..., MonitorConfig]:
    """Factory for configs with short intervals; keyword arguments override."""

    def factory(**overrides: Any) -> MonitorConfig:
        values = dict(
            max_test_duration=5.0,
            max_suite_duration=20.0,
            hanging_test_threshold=1.0,
            sweep_interval=0.05,
            memory_sample_interval=0.05,
            kill_grace_period=0.5,
        )
        values.update(overrides)
        return MonitorConfig(**values)

    return factory


class ManualClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


class FakeProcess(ChildProcess):
    """Process double; must be created inside a running event loop."""

    def __init__(
        self,
        *,
        pid: int = 4242,
        exit_on_terminate: bool = True,
        terminate_exit_code: int = -15,
        stdout: Optional[Any] = None,
        stragglers: bool = False,
    ) -> None:
        self.pid = pid
        self.stdout = stdout if stdout is not None else asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self.signals: List[str] = []
        self.exit_on_terminate = exit_on_terminate
        self.terminate_exit_code = terminate_exit_code
        # Workers left in the process group after the runner itself exits.
        self.stragglers = stragglers
        self._returncode: Optional[int] = None
        self._exited = asyncio.Event()

    @property
    def returncode(self) -> Optional[int]:
        return self._returncode

    def emit(self, text: str, *, stderr: bool = False) -> None:
        stream = self.stderr if stderr else self.stdout
        stream.feed_data(text.encode("utf-8"))

    def exit(self, code: int) -> None:
        if self._returncode is not None:
            return
        self._returncode = code
        for stream in (self.stdout, self.stderr):
            if isinstance(stream, asyncio.StreamReader):
                stream.feed_eof()
        self._exited.set()

    def group_alive(self) -> bool:
        return self.is_alive() or self.stragglers

    def terminate(self, escalate: bool) -> None:
        if not self.group_alive():
            raise ProcessLookupError(self.pid)
        self.signals.append("kill" if escalate else "term")
        if escalate:
            self.stragglers = False
            self.exit(-9)
        elif self.exit_on_terminate:
            self.exit(self.terminate_exit_code)

    async def wait(self) -> int:
        await self._exited.wait()
        assert self._returncode is not None
        return self._returncode


class FakeSpawner:
    def __init__(self, process: ChildProcess) -> None:
        self.process = process
        self.calls: List[List[str]] = []

    async def __call__(self, command, *, platform, env) -> ChildProcess:  # type: ignore[no-untyped-def]
        self.calls.append(list(command))
        return self.process


async def settle(rounds: int = 5) -> None:
    """Let pending callbacks and reader tasks run."""

    for _ in range(rounds):
        await asyncio.sleep(0)
