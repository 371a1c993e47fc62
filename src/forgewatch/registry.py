"""Registry of subscribed directories and their watch handles."""

import logging
import os
from collections.abc import Callable, Iterator
from enum import Enum

from forgewatch.models import EnrollResult
from forgewatch.watchers import SubscriptionError, WatchBackend, WatchHandle

logger = logging.getLogger(__name__)

DEFAULT_MAX_WATCHES = 1024


def _log_walk_error(error: OSError) -> None:
    logger.warning(f"Cannot list directory {error.filename}: {error.strerror}")


def walk_directories(root: str, descend: Callable[[str], bool] | None = None) -> Iterator[str]:
    """Yield ``root`` and every directory below it, top-down.

    Symbolic links are never followed, so cyclic links cannot cause endless
    recursion. Siblings are visited in sorted order.

    Args:
        root: Directory to start from
        descend: Called with each yielded directory once the consumer is done
            with it; returning False skips that directory's children

    Yields:
        Directory paths
    """
    for dirpath, dirnames, _ in os.walk(root, followlinks=False, onerror=_log_walk_error):
        yield dirpath
        if descend is not None and not descend(dirpath):
            dirnames.clear()
        else:
            dirnames.sort()


class _Outcome(Enum):
    ENROLLED = "enrolled"
    PRESENT = "present"
    FAILED = "failed"
    OVER_LIMIT = "over_limit"


class WatchRegistry:
    """Owns directory subscriptions for the lifetime of the daemon.

    The registry only grows while running: a directory deleted mid-run keeps
    its (now silent) handle until release_all() at shutdown.
    """

    def __init__(self, backend: WatchBackend, max_watches: int = DEFAULT_MAX_WATCHES):
        """Initialize registry.

        Args:
            backend: Notification backend issuing handles
            max_watches: Most directories subscribed at once
        """
        self.backend = backend
        self.max_watches = max_watches
        self._handles: dict[str, WatchHandle] = {}

    def __contains__(self, path: str) -> bool:
        return os.path.abspath(path) in self._handles

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def paths(self) -> list[str]:
        """Currently subscribed directories."""
        return list(self._handles)

    def _enroll(self, path: str) -> _Outcome:
        path = os.path.abspath(path)
        if path in self._handles:
            return _Outcome.PRESENT

        if len(self._handles) >= self.max_watches:
            logger.warning(f"Too many watches ({self.max_watches}), not watching {path}")
            return _Outcome.OVER_LIMIT

        try:
            handle = self.backend.subscribe(path)
        except SubscriptionError as e:
            logger.warning(str(e))
            return _Outcome.FAILED

        self._handles[path] = handle
        logger.debug(f"Watching: {path}")
        return _Outcome.ENROLLED

    def enroll_tree(self, root: str) -> EnrollResult:
        """Subscribe ``root`` and every directory below it.

        A directory the backend refuses is skipped along with its children.
        Once the watch limit is reached the remaining directories are skipped
        one by one. Neither stops the walk.

        Args:
            root: Directory tree to enroll

        Returns:
            What was enrolled and what was skipped
        """
        result = EnrollResult(root=root)
        refused: set[str] = set()

        for path in walk_directories(root, descend=lambda p: p not in refused):
            outcome = self._enroll(path)
            if outcome is _Outcome.ENROLLED:
                result.enrolled.append(path)
            elif outcome is _Outcome.FAILED:
                refused.add(path)
                result.failed.append(path)
            elif outcome is _Outcome.OVER_LIMIT:
                result.over_limit.append(path)

        return result

    def enroll_single(self, path: str) -> bool:
        """Subscribe exactly one directory.

        Args:
            path: Directory to enroll

        Returns:
            True if the directory is now watched (including if it already was)
        """
        return self._enroll(path) in (_Outcome.ENROLLED, _Outcome.PRESENT)

    def release_all(self) -> None:
        """Unsubscribe every handle. Errors are logged and ignored."""
        for path, handle in list(self._handles.items()):
            try:
                self.backend.unsubscribe(handle)
            except Exception as e:
                logger.debug(f"Ignoring error while unwatching {path}: {e}")
        self._handles.clear()
