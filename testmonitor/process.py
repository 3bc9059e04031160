from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional, Sequence

from .platform import PlatformSupport


class ChildProcess(ABC):
    """Capability interface for the supervised test runner.

    Keeps signal semantics out of the supervision policy; tests substitute a
    double that records termination requests.
    """

    pid: int
    stdout: Optional[asyncio.StreamReader] = None
    stderr: Optional[asyncio.StreamReader] = None

    @property
    @abstractmethod
    def returncode(self) -> Optional[int]:
        """Exit status, or None while the process is running."""

    def is_alive(self) -> bool:
        return self.returncode is None

    def group_alive(self) -> bool:
        """Return True while the process or anything left in its group exists."""

        return self.is_alive()

    @abstractmethod
    def terminate(self, escalate: bool) -> None:
        """Ask the process tree to exit; ``escalate`` kills it outright.

        Raises ProcessLookupError when nothing is left to signal.
        """

    @abstractmethod
    async def wait(self) -> int:
        """Wait for the process to exit and return its exit status."""


class AsyncioChildProcess(ChildProcess):
    """A ``asyncio.subprocess.Process`` signalled through the platform adapter."""

    def __init__(self, process: asyncio.subprocess.Process, platform: PlatformSupport) -> None:
        self._process = process
        self._platform = platform
        self.pid = process.pid
        self.stdout = process.stdout
        self.stderr = process.stderr
        # Recorded now: the group cannot be looked up once the leader is reaped.
        self.pgid = platform.process_group(process.pid)

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode

    def group_alive(self) -> bool:
        if self.is_alive():
            return True
        return self.pgid is not None and self._platform.group_alive(self.pgid)

    def terminate(self, escalate: bool) -> None:
        # Workers may outlive the runner in its group; without a group the pid may be reused.
        if not self.is_alive() and self.pgid is None:
            raise ProcessLookupError(self.pid)
        self._platform.terminate_process_tree(self.pid, force=escalate, group=self.pgid)

    async def wait(self) -> int:
        return await self._process.wait()


async def spawn_child(
    command: Sequence[str],
    *,
    platform: PlatformSupport,
    env: Optional[Mapping[str, str]] = None,
) -> ChildProcess:
    """Start ``command`` with piped output in its own process group.

    Raises OSError when the executable cannot be started.
    """

    popen_kwargs: Dict[str, Any] = {
        "stdin": asyncio.subprocess.DEVNULL,
        "stdout": asyncio.subprocess.PIPE,
        "stderr": asyncio.subprocess.PIPE,
    }
    if env is not None:
        popen_kwargs["env"] = dict(env)
    platform.configure_popen(popen_kwargs)

    process = await asyncio.create_subprocess_exec(command[0], *command[1:], **popen_kwargs)
    return AsyncioChildProcess(process, platform)
