from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Dict, Mapping, Sequence

if TYPE_CHECKING:
    from .registry import TestExecutionEntry


MIB = 1024 * 1024

KILL_SWITCH_DISABLE_ENV = "TESTMONITOR_DISABLE_KILL_SWITCH"


@dataclass(frozen=True)
class MonitorConfig:
    """Limits for a monitored run.

    Durations and intervals are in seconds, ``memory_threshold`` is in bytes.
    ``duration_overrides`` maps a test file path to the minimum per-test
    duration enforced for tests from that file.
    """

    max_test_duration: float = 10.0
    max_suite_duration: float = 30.0
    hanging_test_threshold: float = 5.0
    memory_threshold: int = 512 * MIB
    enable_kill_switch: bool = True
    sweep_interval: float = 2.0
    memory_sample_interval: float = 5.0
    kill_grace_period: float = 5.0
    duration_overrides: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in (
            "max_test_duration",
            "max_suite_duration",
            "hanging_test_threshold",
            "memory_threshold",
            "sweep_interval",
            "memory_sample_interval",
            "kill_grace_period",
        ):
            value = getattr(self, name)
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value!r}")

        for path, seconds in self.duration_overrides.items():
            if seconds <= 0:
                raise ValueError(f"duration override for {path!r} must be positive, got {seconds!r}")

        # Frozen dataclass: freeze the mapping too so the config stays immutable per run.
        object.__setattr__(self, "duration_overrides", MappingProxyType(dict(self.duration_overrides)))

    def max_duration_for(self, entry: "TestExecutionEntry") -> float:
        """Return the kill limit for ``entry``."""

        override = self.duration_overrides.get(entry.file_path)
        if override is None:
            return self.max_test_duration
        return max(self.max_test_duration, override)

    @property
    def hanging_threshold_ms(self) -> float:
        return self.hanging_test_threshold * 1000.0


def parse_duration_overrides(values: Sequence[str]) -> Dict[str, float]:
    """Parse ``FILE=SECONDS`` pairs into a mapping.

    Raises ValueError on malformed pairs.
    """

    overrides: Dict[str, float] = {}
    for raw in values:
        text = raw.strip()
        if "=" not in text:
            raise ValueError(f"expected FILE=SECONDS, got {raw!r}")
        path, seconds_text = text.rsplit("=", 1)
        path = path.strip()
        if not path:
            raise ValueError(f"missing test file in {raw!r}")
        try:
            seconds = float(seconds_text)
        except ValueError:
            raise ValueError(f"invalid duration in {raw!r}") from None
        overrides[path] = seconds
    return overrides
