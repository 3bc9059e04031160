from __future__ import annotations

from typing import Any, Dict, Optional


class PlatformSupport:
    """Abstract base class describing platform specific behaviour."""

    def __init__(self, *, verbose: bool = False) -> None:
        self.verbose = verbose

    @property
    def is_windows(self) -> bool:
        """Return True when running on Windows."""

        return False

    def configure_popen(self, popen_kwargs: Dict[str, Any]) -> None:
        """Mutate ``popen_kwargs`` so the child gets its own process group."""

        popen_kwargs.setdefault("start_new_session", True)

    def process_group(self, pid: int) -> Optional[int]:
        """Return the process group led by ``pid``, or None if it has none of its own."""

        return None

    def group_alive(self, group: int) -> bool:
        """Return True while any member of ``group`` still exists."""

        return False

    def terminate_process_tree(self, pid: int, *, force: bool, group: Optional[int] = None) -> None:
        """Signal ``pid`` and its process group.

        ``force=False`` asks the tree to exit, ``force=True`` kills it.
        ``group`` is the group recorded at spawn; it is signalled even after
        ``pid`` itself has exited. Raises ProcessLookupError when nothing is
        left to signal.
        """

        raise NotImplementedError
