from __future__ import annotations

from .configuration import MonitorConfig
from .detector import HangDetector
from .errors import MonitorError, ProcessRuntimeError, SpawnError
from .events import EventChannel, MonitorEvent
from .memory import MemorySnapshot, MemoryWatcher, sample_memory
from .monitor import ExecutionStatus, TestExecutionMonitor
from .parser import OutputParser
from .process import AsyncioChildProcess, ChildProcess, spawn_child
from .registry import ActiveTestRegistry, TestExecutionEntry, TestStatus
from .supervisor import ProcessSupervisor

__version__ = "0.1.0"

__all__ = [
    "ActiveTestRegistry",
    "AsyncioChildProcess",
    "ChildProcess",
    "EventChannel",
    "ExecutionStatus",
    "HangDetector",
    "MemorySnapshot",
    "MemoryWatcher",
    "MonitorConfig",
    "MonitorError",
    "MonitorEvent",
    "OutputParser",
    "ProcessRuntimeError",
    "ProcessSupervisor",
    "SpawnError",
    "TestExecutionEntry",
    "TestExecutionMonitor",
    "TestStatus",
    "sample_memory",
    "spawn_child",
]
