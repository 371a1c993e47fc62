"""Notification backend implementation using watchdog."""

import errno
import logging
import os
import queue
from dataclasses import dataclass

from watchdog.events import (
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    FileSystemEvent,
    FileSystemEventHandler,
)
from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver, ObservedWatch
from watchdog.observers.polling import PollingObserver

from forgewatch.models import ChangeEvent, ChangeKind
from forgewatch.watchers import BackendError, SubscriptionError

logger = logging.getLogger(__name__)

# Errors meaning the native backend ran out of kernel watch slots
LIMIT_ERRNOS = frozenset({errno.ENOSPC, errno.EMFILE})

# Most events drained into one batch
MAX_BATCH = 256

_KINDS = {
    EVENT_TYPE_CREATED: ChangeKind.CREATED,
    EVENT_TYPE_MODIFIED: ChangeKind.MODIFIED,
    EVENT_TYPE_DELETED: ChangeKind.DELETED,
}

_WAKE = object()


def _make_change(path: str | bytes, is_directory: bool, kind: ChangeKind, watched_dir: str) -> ChangeEvent:
    path = os.path.normpath(os.fsdecode(path))
    if path == watched_dir:
        return ChangeEvent(affected_path=watched_dir, name="", is_directory=is_directory, kind=kind)
    return ChangeEvent(
        affected_path=os.path.dirname(path),
        name=os.path.basename(path),
        is_directory=is_directory,
        kind=kind,
    )


def translate_event(event: FileSystemEvent, watched_dir: str) -> list[ChangeEvent]:
    """Convert a watchdog event into change events.

    A move is reported as a deletion of the source plus a creation of the
    destination, since editors commonly save by renaming a temp file.

    Args:
        event: Event delivered by a watchdog emitter
        watched_dir: Normalized directory the emitter watches

    Returns:
        One or two ChangeEvents
    """
    if event.event_type == EVENT_TYPE_MOVED:
        return [
            _make_change(event.src_path, event.is_directory, ChangeKind.DELETED, watched_dir),
            _make_change(event.dest_path, event.is_directory, ChangeKind.CREATED, watched_dir),
        ]
    kind = _KINDS.get(event.event_type, ChangeKind.OTHER)
    return [_make_change(event.src_path, event.is_directory, kind, watched_dir)]


class _QueueingHandler(FileSystemEventHandler):
    """Forwards events of one watched directory onto the shared queue."""

    def __init__(self, watched_dir: str, events: queue.SimpleQueue):
        """Initialize handler.

        Args:
            watched_dir: Directory this handler is scheduled for
            events: Queue read by the event loop
        """
        self.watched_dir = os.path.normpath(watched_dir)
        self._events = events

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Translate and enqueue every event (runs on a watchdog thread)."""
        for change in translate_event(event, self.watched_dir):
            self._events.put(change)


@dataclass(frozen=True)
class WatchdogHandle:
    """Subscription handle: the watch plus the observer that owns it."""

    path: str
    observer: BaseObserver
    watch: ObservedWatch


class WatchdogBackend:
    """Per-directory watches on watchdog observers.

    Directories are scheduled non-recursively so that the registry decides
    which subdirectories are covered. When the native observer hits an OS
    watch limit, the directory is scheduled on a polling observer instead.
    """

    def __init__(self, use_polling: bool = False, polling_fallback: bool = True):
        """Initialize backend.

        Args:
            use_polling: Poll every directory instead of using native notifications
            polling_fallback: Poll directories the native observer refuses for lack of watches
        """
        self.use_polling = use_polling
        self._events: queue.SimpleQueue = queue.SimpleQueue()
        self._observer: BaseObserver | None = None
        self._fallback: BaseObserver | None = None
        self._polling_fallback = polling_fallback and not use_polling
        self._started = False
        self._closed = False

    def start(self) -> None:
        """Create and start the observer thread(s)."""
        if self._started:
            return
        try:
            self._observer = PollingObserver() if self.use_polling else Observer()
            self._observer.start()
            if self._polling_fallback:
                self._fallback = PollingObserver()
                self._fallback.start()
        except Exception as e:
            raise BackendError(f"Failed to start file watcher: {e}") from e

        self._started = True
        kind = "polling" if self.use_polling else type(self._observer).__name__
        logger.info(f"File watcher started ({kind})")

    def subscribe(self, path: str) -> WatchdogHandle:
        """Schedule a non-recursive watch on ``path``.

        Args:
            path: Absolute directory path

        Returns:
            Handle for unsubscribe()

        Raises:
            SubscriptionError: If no observer accepts the directory
        """
        if not self._started or self._observer is None:
            raise BackendError("Backend not started - call start() first")

        handler = _QueueingHandler(path, self._events)
        try:
            watch = self._observer.schedule(handler, path, recursive=False)
            return WatchdogHandle(path=path, observer=self._observer, watch=watch)
        except OSError as e:
            if self._fallback is None or e.errno not in LIMIT_ERRNOS:
                raise SubscriptionError(path, e.strerror or str(e)) from e
            logger.debug(f"Native watch limit reached, polling {path}")

        try:
            watch = self._fallback.schedule(handler, path, recursive=False)
        except OSError as e:
            raise SubscriptionError(path, e.strerror or str(e)) from e
        return WatchdogHandle(path=path, observer=self._fallback, watch=watch)

    def unsubscribe(self, handle: WatchdogHandle) -> None:
        """Unschedule a watch previously returned by subscribe()."""
        try:
            handle.observer.unschedule(handle.watch)
        except KeyError as e:
            raise BackendError(f"Unknown watch for {handle.path}") from e

    def next_batch(self, timeout: float | None = None) -> list[ChangeEvent]:
        """Wait for the next events.

        Args:
            timeout: Seconds to wait for the first event; None waits forever

        Returns:
            Events queued so far, possibly empty on timeout or wake()

        Raises:
            BackendError: If the observer thread has died
        """
        if self._observer is not None and self._started and not self._closed and not self._observer.is_alive():
            raise BackendError("File watcher thread stopped unexpectedly")

        try:
            first = self._events.get(timeout=timeout)
        except queue.Empty:
            return []

        batch = [] if first is _WAKE else [first]
        while len(batch) < MAX_BATCH:
            try:
                item = self._events.get_nowait()
            except queue.Empty:
                break
            if item is not _WAKE:
                batch.append(item)
        return batch

    def wake(self) -> None:
        """Unblock a pending next_batch() call."""
        # SimpleQueue.put is reentrant, so this is safe from a signal handler
        self._events.put(_WAKE)

    def close(self) -> None:
        """Stop all observers."""
        if self._closed:
            return
        self._closed = True
        for observer in (self._observer, self._fallback):
            if observer is not None and observer.is_alive():
                observer.stop()
                observer.join(timeout=2.0)
        if self._started:
            logger.info("Stopped file watchers")
