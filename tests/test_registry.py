from __future__ import annotations

from testmonitor.registry import ActiveTestRegistry, TestExecutionEntry, TestStatus, make_key


def _entry(name: str, path: str = "src/foo.test.ts", start: float = 0.0) -> TestExecutionEntry:
    return TestExecutionEntry(test_name=name, file_path=path, start_time=start)


def test_upsert_overwrites_entry_with_same_key() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("renders", start=1.0))
    registry.upsert(_entry("renders", start=2.0))

    assert len(registry) == 1
    entry = registry.get(make_key("src/foo.test.ts", "renders"))
    assert entry is not None
    assert entry.start_time == 2.0
    assert entry.status is TestStatus.RUNNING
    assert entry.duration_ms == 0


def test_same_name_in_different_files_are_distinct() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("renders", path="a.test.ts"))
    registry.upsert(_entry("renders", path="b.test.ts"))

    assert len(registry) == 2
    assert "a.test.ts:renders" in registry


def test_transition_requires_expected_status() -> None:
    registry = ActiveTestRegistry()
    entry = _entry("slow")
    registry.upsert(entry)

    assert registry.transition(entry.key, (TestStatus.RUNNING,), TestStatus.HANGING) is entry
    assert entry.status is TestStatus.HANGING
    # Second attempt finds the guard no longer satisfied.
    assert registry.transition(entry.key, (TestStatus.RUNNING,), TestStatus.HANGING) is None
    assert registry.transition("missing:key", (TestStatus.RUNNING,), TestStatus.KILLED) is None


def test_complete_matching_removes_entry() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("renders correctly"))

    completed = registry.complete_matching("renders correctly", 50)

    assert completed is not None
    assert completed.status is TestStatus.COMPLETED
    assert completed.duration_ms == 50
    assert len(registry) == 0


def test_complete_matching_is_bidirectional() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("renders", path="a.test.ts"))
    registry.upsert(_entry("App > handles resize events", path="b.test.ts"))

    assert registry.complete_matching("App > renders the title", 5).test_name == "renders"
    assert registry.complete_matching("handles resize", 7).test_name == "App > handles resize events"
    assert len(registry) == 0


def test_complete_matching_prefers_first_started_when_ambiguous() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("loads", path="a.test.ts"))
    registry.upsert(_entry("loads assets", path="b.test.ts"))

    completed = registry.complete_matching("loads assets", 12)

    # Known ambiguity: the earlier "loads" entry also matches and wins.
    assert completed is not None
    assert completed.file_path == "a.test.ts"
    assert [entry.test_name for entry in registry.entries()] == ["loads assets"]


def test_complete_matching_accepts_hanging_entries() -> None:
    registry = ActiveTestRegistry()
    entry = _entry("slow one")
    registry.upsert(entry)
    registry.transition(entry.key, (TestStatus.RUNNING,), TestStatus.HANGING)

    completed = registry.complete_matching("slow one", 7000)

    assert completed is entry
    assert completed.status is TestStatus.COMPLETED


def test_complete_matching_without_match_returns_none() -> None:
    registry = ActiveTestRegistry()
    registry.upsert(_entry("renders"))

    assert registry.complete_matching("unrelated", 1) is None
    assert len(registry) == 1


def test_count_and_entries_filter_by_status() -> None:
    registry = ActiveTestRegistry()
    first = _entry("one")
    registry.upsert(first)
    registry.upsert(_entry("two"))
    registry.transition(first.key, (TestStatus.RUNNING,), TestStatus.HANGING)

    assert registry.count() == 2
    assert registry.count(TestStatus.HANGING) == 1
    assert registry.entries(TestStatus.RUNNING)[0].test_name == "two"

    registry.clear()
    assert registry.count() == 0


def test_elapsed_uses_start_time() -> None:
    assert _entry("x", start=10.0).elapsed(12.5) == 2.5
