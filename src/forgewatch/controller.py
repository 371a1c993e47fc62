"""Watch controller: the event loop driving the watch-and-rebuild pipeline."""

import logging
import os
import time
from collections.abc import Callable

from forgewatch.debounce import DEFAULT_DEBOUNCE_MS, DebounceGate
from forgewatch.filters import is_noise, is_watched_extension
from forgewatch.models import ChangeEvent, ChangeKind, WatchConfig
from forgewatch.registry import WatchRegistry
from forgewatch.supervisor import NESTED_ENV_VAR, BuildSupervisor
from forgewatch.watchers import BackendError, WatchBackend

logger = logging.getLogger(__name__)

# Seconds a read may block before the shutdown flag is checked again
READ_TIMEOUT = 0.5


class WatchController:
    """Owns the registry, debounce gate and supervisor for one daemon run.

    All state is touched from the thread calling run(). The only method
    meant to be called from elsewhere (a signal handler, another thread) is
    request_shutdown().
    """

    def __init__(
        self,
        config: WatchConfig,
        backend: WatchBackend,
        *,
        registry: WatchRegistry | None = None,
        supervisor: BuildSupervisor | None = None,
        gate: DebounceGate | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        clock: Callable[[], float] = time.monotonic,
        read_timeout: float = READ_TIMEOUT,
    ):
        """Initialize controller.

        Args:
            config: Immutable watch configuration
            backend: Notification backend (not yet started)
            registry: Watch registry (defaults to one over ``backend``)
            supervisor: Build supervisor (defaults to shell children)
            gate: Debounce gate
            debounce_ms: Debounce window in milliseconds
            clock: Monotonic clock in seconds
            read_timeout: Longest single wait for notifications
        """
        self.config = config
        self.backend = backend
        self.registry = registry or WatchRegistry(backend)
        self.supervisor = supervisor or BuildSupervisor()
        self.gate = gate or DebounceGate()
        self.debounce_window = debounce_ms / 1000.0
        self.clock = clock
        self.read_timeout = read_timeout
        self._stop_requested = False
        self._shut_down = False

    def start(self, initial_build: bool = True) -> None:
        """Start the backend, enroll every root and optionally build once.

        Raises:
            BackendError: If the backend cannot be initialized
        """
        self.backend.start()

        for root in self.config.roots:
            result = self.registry.enroll_tree(root)
            if root not in self.registry:
                logger.warning(f"Root directory {root} could not be watched")
            elif not result.ok:
                skipped = len(result.failed) + len(result.over_limit)
                logger.warning(f"{skipped} director(ies) under {root} are not watched")

        logger.info(f"Watching {len(self.registry)} director(ies)")

        # Descendants of the build inherit this and refuse to start another daemon
        os.environ[NESTED_ENV_VAR] = "1"

        if initial_build:
            self.trigger_build()

    def trigger_build(self) -> bool:
        """Restart the build unless the debounce window is still open.

        Returns:
            True if a restart was issued
        """
        if not self.gate.should_accept(self.clock(), self.debounce_window):
            return False
        self.supervisor.restart(self.config.build_command)
        return True

    def _enroll_new_directory(self, path: str) -> None:
        if self.registry.enroll_single(path):
            # Pick up anything created inside before the watch was in place
            self.registry.enroll_tree(path)

    def handle_event(self, event: ChangeEvent) -> bool:
        """Classify one change event and act on it.

        Args:
            event: Event from the backend

        Returns:
            True if the event restarted the build
        """
        if not event.name:
            return False
        if event.kind is ChangeKind.OTHER:
            return False

        logger.debug(f"Detected change: {event.full_path} ({event.kind.value})")

        if event.is_directory:
            if event.kind is ChangeKind.CREATED:
                self._enroll_new_directory(event.full_path)
            return False

        if is_noise(event.name):
            logger.debug(f"Ignored temporary/cache file: {event.name}")
            return False
        if not is_watched_extension(event.name, self.config.extensions):
            return False

        return self.trigger_build()

    def run(self) -> int:
        """Process notifications until shutdown is requested or the channel fails.

        Always runs shutdown() before returning.

        Returns:
            0 after a requested shutdown, 1 if the notification channel broke
        """
        status = 0
        try:
            while not self._stop_requested:
                try:
                    batch = self.backend.next_batch(timeout=self.read_timeout)
                except BackendError as e:
                    logger.error(f"Reading file change notifications failed: {e}")
                    status = 1
                    break

                for event in batch:
                    if self._stop_requested:
                        break
                    self.handle_event(event)
        finally:
            self.shutdown()
        return status

    def request_shutdown(self) -> None:
        """Ask run() to stop at its next read boundary.

        Only sets a flag and wakes the backend, so it is safe to call from a
        signal handler.
        """
        self._stop_requested = True
        self.backend.wake()

    def shutdown(self) -> None:
        """Terminate the build and release all watches. Idempotent."""
        if self._shut_down:
            return
        self._shut_down = True
        logger.info("Shutting down")
        self.supervisor.shutdown()
        self.registry.release_all()
        try:
            self.backend.close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing backend: {e}")
