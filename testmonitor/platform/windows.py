from __future__ import annotations

import os
import signal
import subprocess
import sys
from typing import Dict, Optional

from .base import PlatformSupport

TASKKILL_TIMEOUT = 5


class WindowsPlatformSupport(PlatformSupport):
    """Platform helpers for Windows hosts.

    Windows has no process group to signal once the leader is gone, so
    ``group`` is ignored and the tree is walked from ``pid``.
    """

    @property
    def is_windows(self) -> bool:
        return True

    def configure_popen(self, popen_kwargs: Dict[str, object]) -> None:
        creationflags = 0
        if hasattr(subprocess, "CREATE_NEW_PROCESS_GROUP"):
            creationflags = subprocess.CREATE_NEW_PROCESS_GROUP
        popen_kwargs["creationflags"] = creationflags

    def terminate_process_tree(self, pid: int, *, force: bool, group: Optional[int] = None) -> None:
        if not force and hasattr(signal, "CTRL_BREAK_EVENT"):
            # Delivered to the whole process group created by CREATE_NEW_PROCESS_GROUP.
            os.kill(pid, signal.CTRL_BREAK_EVENT)
            return

        if self.verbose:
            print(f"[DEBUG] taskkill /F /T /PID {pid}", file=sys.stderr)
        try:
            result = subprocess.run(
                ["taskkill", "/F", "/T", "/PID", str(pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=TASKKILL_TIMEOUT,
            )
        except subprocess.SubprocessError as exc:
            raise OSError(f"taskkill failed for PID {pid}: {exc}") from exc
        if result.returncode == 128:
            raise ProcessLookupError(pid)
        if result.returncode != 0:
            raise OSError(f"taskkill exited with {result.returncode} for PID {pid}")
