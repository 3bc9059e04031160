from __future__ import annotations

from typing import Callable

import pytest

from conftest import EventRecorder, ManualClock
from testmonitor.configuration import MonitorConfig
from testmonitor.events import EventChannel, MonitorEvent
from testmonitor.parser import OutputParser
from testmonitor.registry import ActiveTestRegistry, TestStatus


@pytest.fixture()
def registry() -> ActiveTestRegistry:
    return ActiveTestRegistry()


@pytest.fixture()
def make_parser(
    registry: ActiveTestRegistry, channel: EventChannel, clock: ManualClock
) -> Callable[..., OutputParser]:
    def factory(**config_overrides: float) -> OutputParser:
        return OutputParser(
            MonitorConfig(**config_overrides),
            registry,
            channel,
            memory_probe=lambda: 1234,
            clock=clock,
        )

    return factory


def test_start_then_finish_completes_and_empties_registry(
    make_parser: Callable[..., OutputParser],
    registry: ActiveTestRegistry,
    recorder: EventRecorder,
    clock: ManualClock,
) -> None:
    parser = make_parser()

    parser.feed_stdout("❯ foo.test.ts renders correctly\n")
    started = recorder.of(MonitorEvent.TEST_STARTED)
    assert len(started) == 1
    assert started[0].file_path == "foo.test.ts"
    assert started[0].test_name == "renders correctly"
    assert started[0].start_time == clock.now
    assert started[0].memory_usage == 1234
    assert len(registry) == 1

    clock.advance(0.05)
    parser.feed_stdout("✓ renders correctly 50ms\n")

    completed = recorder.of(MonitorEvent.TEST_COMPLETED)
    assert len(completed) == 1
    assert completed[0].duration_ms == 50
    assert completed[0].status is TestStatus.COMPLETED
    assert len(registry) == 0
    assert recorder.of(MonitorEvent.TEST_HANGING) == []
    assert recorder.of(MonitorEvent.SLOW_TEST) == []


def test_chunk_with_several_lines(
    make_parser: Callable[..., OutputParser], registry: ActiveTestRegistry, recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout(
        "❯ src/a.test.ts first case\n"
        "❯ src/b.spec.tsx second case\n"
        "✓ first case 3ms\n"
    )

    assert recorder.names() == ["testStarted", "testStarted", "testCompleted"]
    assert [entry.file_path for entry in registry.entries()] == ["src/b.spec.tsx"]


def test_marker_split_across_chunks_is_recognised(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("❯ foo.te")
    assert recorder.received == []
    parser.feed_stdout("st.ts renders\n✓ rend")
    parser.feed_stdout("ers 8ms\n")

    assert recorder.names() == ["testStarted", "testCompleted"]
    assert recorder.of(MonitorEvent.TEST_COMPLETED)[0].duration_ms == 8


def test_flush_processes_trailing_partial_line(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("❯ foo.test.ts no newline")
    assert recorder.received == []

    parser.flush()
    assert recorder.names() == ["testStarted"]


def test_windows_line_endings_and_ansi_codes_are_ignored(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("\x1b[33m❯\x1b[39m foo.test.ts colored name\r\n")

    started = recorder.of(MonitorEvent.TEST_STARTED)
    assert started[0].test_name == "colored name"


def test_slow_completion_publishes_slow_test(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser(hanging_test_threshold=5.0)

    parser.feed_stdout("❯ foo.test.ts loads level\n× loads level 6000ms\n")

    assert recorder.names() == ["testStarted", "testCompleted", "slowTest"]
    assert recorder.of(MonitorEvent.SLOW_TEST)[0].duration_ms == 6000


def test_completion_without_matching_entry_is_ignored(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("✓ never started 10ms\n")

    assert recorder.received == []


def test_restart_of_same_test_overwrites_entry(
    make_parser: Callable[..., OutputParser],
    registry: ActiveTestRegistry,
    clock: ManualClock,
) -> None:
    parser = make_parser()

    parser.feed_stdout("❯ foo.test.ts retried\n")
    clock.advance(3.0)
    parser.feed_stdout("❯ foo.test.ts retried\n")

    assert len(registry) == 1
    assert registry.entries()[0].start_time == clock.now


def test_queued_line_publishes_event_without_registry_entry(
    make_parser: Callable[..., OutputParser], registry: ActiveTestRegistry, recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout(" ❯ src/slow.test.ts [queued]\n")

    assert recorder.of(MonitorEvent.TEST_QUEUED) == [" ❯ src/slow.test.ts [queued]"]
    assert len(registry) == 0


def test_stderr_hang_report_publishes_raw_text(
    make_parser: Callable[..., OutputParser], registry: ActiveTestRegistry, recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stderr("Error: Test timeout of 5000ms exceeded\n")
    parser.feed_stderr("worker HUNG on teardown\n")
    parser.feed_stderr("some other warning\n")

    assert recorder.of(MonitorEvent.TEST_HANGING) == [
        "Error: Test timeout of 5000ms exceeded",
        "worker HUNG on teardown",
    ]
    assert len(registry) == 0


def test_markers_on_stderr_do_not_start_tests(
    make_parser: Callable[..., OutputParser], registry: ActiveTestRegistry
) -> None:
    parser = make_parser()

    parser.feed_stderr("❯ foo.test.ts renders\n")

    assert len(registry) == 0


def test_unmatched_output_is_ignored(
    make_parser: Callable[..., OutputParser], registry: ActiveTestRegistry, recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("\n RUN  v1.6.0 /repo\n Test Files  3 passed (3)\n❯ README.md nothing\n")

    assert recorder.received == []
    assert len(registry) == 0


def test_reset_drops_partial_lines(
    make_parser: Callable[..., OutputParser], recorder: EventRecorder
) -> None:
    parser = make_parser()

    parser.feed_stdout("❯ foo.test.ts half")
    parser.reset()
    parser.flush()

    assert recorder.received == []
