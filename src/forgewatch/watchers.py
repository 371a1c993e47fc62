"""Abstract notification backend protocol for file watching implementations."""

from typing import Any, Protocol

from forgewatch.models import ChangeEvent

WatchHandle = Any
"""Opaque per-directory subscription token issued by a backend."""


class BackendError(RuntimeError):
    """The notification backend failed to start or its channel broke."""


class SubscriptionError(BackendError):
    """A single directory could not be subscribed."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Cannot watch {path}: {reason}")
        self.path = path
        self.reason = reason


class WatchBackend(Protocol):
    """Protocol for change notification backends.

    Exactly one backend is selected at process start. Swapping it must not
    change how events are classified or acted upon.
    """

    def start(self) -> None:
        """Initialize the backend. Raises BackendError on failure."""
        ...

    def subscribe(self, path: str) -> WatchHandle:
        """Watch one directory (non-recursively). Raises SubscriptionError."""
        ...

    def unsubscribe(self, handle: WatchHandle) -> None:
        """Stop watching the directory behind ``handle``."""
        ...

    def next_batch(self, timeout: float | None = None) -> list[ChangeEvent]:
        """Block until events arrive, the timeout expires or wake() is called.

        Raises BackendError when the channel is broken for good.
        """
        ...

    def wake(self) -> None:
        """Unblock a pending next_batch(). Safe to call from a signal handler."""
        ...

    def close(self) -> None:
        """Release backend resources. Idempotent."""
        ...
