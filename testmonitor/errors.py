from __future__ import annotations


class MonitorError(Exception):
    """Base class for failures that abort a monitored run."""


class SpawnError(MonitorError):
    """The test runner process could not be started."""


class ProcessRuntimeError(MonitorError):
    """The test runner process failed at the OS level after it was started."""
