from __future__ import annotations

import os
import signal
import sys
from typing import Dict, Optional

from .base import PlatformSupport


class PosixPlatformSupport(PlatformSupport):
    """Platform helpers for Unix-like systems."""

    def configure_popen(self, popen_kwargs: Dict[str, object]) -> None:
        popen_kwargs.setdefault("start_new_session", True)

    def process_group(self, pid: int) -> Optional[int]:
        try:
            pgid = os.getpgid(pid)
        except ProcessLookupError:
            return None

        # Never signal our own group: the child shares it when it was not
        # started in a new session.
        if pgid == os.getpgrp():
            return None
        return pgid

    def group_alive(self, group: int) -> bool:
        try:
            os.killpg(group, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            return True
        return True

    def terminate_process_tree(self, pid: int, *, force: bool, group: Optional[int] = None) -> None:
        sig = signal.SIGKILL if force else signal.SIGTERM

        if group is None:
            group = self.process_group(pid)

        if group is not None:
            if self.verbose:
                print(f"[DEBUG] killpg({group}, {sig.name})", file=sys.stderr)
            os.killpg(group, sig)
        else:
            if self.verbose:
                print(f"[DEBUG] kill({pid}, {sig.name})", file=sys.stderr)
            os.kill(pid, sig)
