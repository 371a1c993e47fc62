"""Leading-edge debounce for change bursts."""

import logging

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_MS = 1000


class DebounceGate:
    """Accept the first trigger of a burst and swallow the rest of its window.

    Editors and compilers emit several events per logical save. The first
    event opens a window; anything arriving before the window expires is
    dropped rather than delayed.
    """

    def __init__(self) -> None:
        self.last_accepted_at: float | None = None

    def should_accept(self, now: float, window: float) -> bool:
        """Decide whether a trigger at ``now`` passes the gate.

        Args:
            now: Monotonic timestamp in seconds
            window: Minimum spacing between accepted triggers, in seconds

        Returns:
            True if accepted (state updated), False if swallowed (state untouched)
        """
        if self.last_accepted_at is not None:
            elapsed = now - self.last_accepted_at
            if elapsed < window:
                logger.debug(f"Debounce: skipping build (elapsed {elapsed * 1000:.0f}ms)")
                return False

        self.last_accepted_at = now
        return True

