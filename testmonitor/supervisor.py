from __future__ import annotations

import asyncio
import codecs
import os
import sys
from functools import partial
from typing import Awaitable, Callable, Dict, List, Optional, Sequence

from .configuration import MonitorConfig
from .errors import ProcessRuntimeError, SpawnError
from .platform import PlatformSupport, get_platform_support
from .process import ChildProcess, spawn_child
from .utils import Color

print = partial(__import__("builtins").print, file=sys.stderr, flush=True)


READ_CHUNK_SIZE = 64 * 1024
# Grandchildren may keep the pipes open after the runner itself exits.
STREAM_DRAIN_TIMEOUT = 1.0
GROUP_POLL_INTERVAL = 0.05

TextCallback = Callable[[str], None]
Spawner = Callable[..., Awaitable[ChildProcess]]


class ProcessSupervisor:
    """Owns the lifecycle of the spawned test runner.

    ``start`` streams decoded output to the callbacks and resolves with the
    run's verdict; ``terminate`` escalates from a graceful to a forceful
    signal after ``kill_grace_period``.
    """

    def __init__(
        self,
        config: MonitorConfig,
        *,
        on_stdout: TextCallback,
        on_stderr: TextCallback,
        on_streams_closed: Optional[Callable[[], None]] = None,
        platform: Optional[PlatformSupport] = None,
        spawner: Spawner = spawn_child,
        verbose: bool = False,
    ) -> None:
        self.config = config
        self.verbose = verbose
        self.platform = platform if platform is not None else get_platform_support(verbose=verbose)
        self._on_stdout = on_stdout
        self._on_stderr = on_stderr
        self._on_streams_closed = on_streams_closed
        self._spawner = spawner

        self._process: Optional[ChildProcess] = None
        self._terminating = False
        self._termination_reason: Optional[str] = None
        self._runtime_error: Optional[BaseException] = None
        self._readers: List[asyncio.Task] = []
        self._exit_task: Optional[asyncio.Task] = None
        self._suite_timer: Optional[asyncio.TimerHandle] = None
        self._escalation_timer: Optional[asyncio.TimerHandle] = None
        self._suite_timed_out: Optional[asyncio.Future] = None

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.is_alive()

    @property
    def terminating(self) -> bool:
        return self._terminating

    @property
    def termination_reason(self) -> Optional[str]:
        return self._termination_reason

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None

    def child_environment(self) -> Dict[str, str]:
        """Return the environment for the test runner."""

        env = os.environ.copy()
        env["FORCE_COLOR"] = "0"
        return env

    async def start(self, command: Sequence[str]) -> bool:
        """Run ``command`` to completion.

        Returns True iff the runner exited with status 0 and no termination
        was requested. A suite timeout returns False as soon as it fires.
        Raises SpawnError if the runner cannot be started and
        ProcessRuntimeError if its output streams fail.
        """

        argv = [str(part) for part in command]
        if not argv:
            raise ValueError("Test command is required")
        if self._exit_task is not None and not self._exit_task.done():
            raise RuntimeError("A test run is already being supervised")

        loop = asyncio.get_running_loop()
        self._terminating = False
        self._termination_reason = None
        self._runtime_error = None

        try:
            process = await self._spawner(argv, platform=self.platform, env=self.child_environment())
        except OSError as exc:
            raise SpawnError(f"Failed to start {argv[0]!r}: {exc}") from exc

        self._process = process
        if self.verbose:
            print(f"[DEBUG] Started {' '.join(argv)} (PID {process.pid})")

        self._suite_timed_out = loop.create_future()
        self._suite_timer = loop.call_later(self.config.max_suite_duration, self._on_suite_timeout)
        self._readers = [
            loop.create_task(self._pump(stream, callback, name))
            for stream, callback, name in (
                (process.stdout, self._on_stdout, "stdout"),
                (process.stderr, self._on_stderr, "stderr"),
            )
            if stream is not None
        ]
        self._exit_task = loop.create_task(self._supervise(process))

        try:
            done, _ = await asyncio.wait(
                {self._exit_task, self._suite_timed_out},
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            self.terminate("monitoring cancelled")
            raise

        if self._exit_task in done:
            returncode = self._exit_task.result()
            return returncode == 0 and not self._terminating

        # Suite timeout: the run is judged now; the exit is reaped in the background.
        self._exit_task.add_done_callback(_consume_result)
        return False

    async def wait_closed(self) -> None:
        """Wait until the runner has exited and its streams are drained.

        While a forceful kill is pending this also waits for the rest of the
        runner's process group, up to the end of the grace period.
        """

        if self._exit_task is not None:
            await asyncio.wait({self._exit_task})

        while self._escalation_timer is not None and self._process is not None:
            if not self._process.group_alive():
                self._escalation_timer.cancel()
                self._escalation_timer = None
                break
            await asyncio.sleep(GROUP_POLL_INTERVAL)

    def terminate(self, reason: str) -> None:
        """Stop the runner. Safe to call repeatedly and from any state."""

        process = self._process
        if process is None or not process.group_alive():
            if self.verbose:
                print(f"[DEBUG] Terminate requested ({reason}) but no test process is running")
            return
        if self._terminating:
            return

        self._terminating = True
        self._termination_reason = reason
        print(f"{Color.RED}Killing test process (PID {process.pid}): {reason}{Color.RESET}")
        self._signal(process, escalate=False)

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            print(f"{Color.YELLOW}Warning: No event loop to schedule escalation; force killing now{Color.RESET}")
            self._signal(process, escalate=True)
            return

        self._escalation_timer = loop.call_later(self.config.kill_grace_period, self._escalate, process)

    def _escalate(self, process: ChildProcess) -> None:
        # Runs even when the runner itself has exited: workers in its group may not have.
        self._escalation_timer = None
        if not process.group_alive():
            return
        print(f"{Color.RED}Force killing test process group (PID {process.pid})...{Color.RESET}")
        self._signal(process, escalate=True)

    def _signal(self, process: ChildProcess, *, escalate: bool) -> None:
        try:
            process.terminate(escalate)
        except ProcessLookupError:
            if self.verbose:
                print(f"[DEBUG] Test process {process.pid} already gone")
        except OSError as exc:
            kind = "kill" if escalate else "terminate"
            print(f"{Color.YELLOW}Warning: Failed to {kind} process {process.pid}: {exc}{Color.RESET}")

    def _on_suite_timeout(self) -> None:
        self._suite_timer = None
        if self._process is None or not self._process.is_alive():
            return
        print(
            f"{Color.RED}Test suite exceeded maximum duration of "
            f"{self.config.max_suite_duration}s, terminating...{Color.RESET}"
        )
        self.terminate("suite timeout")
        if self._suite_timed_out is not None and not self._suite_timed_out.done():
            self._suite_timed_out.set_result(True)

    async def _pump(self, stream: asyncio.StreamReader, callback: TextCallback, name: str) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                data = await stream.read(READ_CHUNK_SIZE)
                if not data:
                    break
                text = decoder.decode(data)
                if text:
                    callback(text)
        except OSError as exc:
            print(f"{Color.RED}Error reading test process {name}: {exc}{Color.RESET}")
            if self._runtime_error is None:
                self._runtime_error = exc
            self.terminate(f"{name} stream failure")
            return

        tail = decoder.decode(b"", final=True)
        if tail:
            callback(tail)

    async def _supervise(self, process: ChildProcess) -> int:
        try:
            returncode = await process.wait()

            readers = list(self._readers)
            if readers:
                done, pending = await asyncio.wait(readers, timeout=STREAM_DRAIN_TIMEOUT)
                if pending:
                    print(
                        f"{Color.YELLOW}Warning: Output streams still open {STREAM_DRAIN_TIMEOUT}s after "
                        f"exit; closing them.{Color.RESET}"
                    )
                    for task in pending:
                        task.cancel()
                    await asyncio.wait(pending)
                for task in done:
                    if not task.cancelled() and task.exception() is not None:
                        raise task.exception()
        finally:
            self._cancel_suite_timer()

        if self._on_streams_closed is not None:
            self._on_streams_closed()

        if self._runtime_error is not None:
            raise ProcessRuntimeError(
                f"Test process {process.pid} failed: {self._runtime_error}"
            ) from self._runtime_error

        if self.verbose:
            print(f"[DEBUG] Test process {process.pid} exited with code {returncode}")
        return returncode

    def _cancel_suite_timer(self) -> None:
        if self._suite_timer is not None:
            self._suite_timer.cancel()
            self._suite_timer = None


def _consume_result(task: asyncio.Task) -> None:
    # Retrieve the outcome of a run that was already judged by the suite timeout.
    if not task.cancelled():
        task.exception()
