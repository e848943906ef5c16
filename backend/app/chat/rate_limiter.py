"""Per-connection sliding-window rate limiting.

Every inbound frame (including the connection handshake) is passed through
``RateLimiter.admit`` before anything else looks at it. A rejected
connection is closed by the caller without a reply.
"""
import logging
import time
from collections import deque
from typing import Callable, Deque, Dict

logger = logging.getLogger(__name__)


class RateLimiter:
    """Admit at most ``max_events`` per ``window_seconds`` per connection.

    Args:
        max_events: Events allowed inside one window.
        window_seconds: Length of the trailing window.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_events: int = 5,
        window_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_events = max_events
        self.window_seconds = window_seconds
        self._clock = clock
        # connection_id -> timestamps of admitted events, oldest first
        self._windows: Dict[str, Deque[float]] = {}

    def admit(self, connection_id: str) -> bool:
        """Record an event for ``connection_id`` if it is within budget.

        Returns:
            True if the event is admitted, False if the connection exceeded
            its budget and must be closed.
        """
        now = self._clock()
        window = self._windows.setdefault(connection_id, deque())

        cutoff = now - self.window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

        if len(window) >= self.max_events:
            logger.warning("[RateLimit] Limit exceeded for connection %s", connection_id)
            return False

        window.append(now)
        return True

    def forget(self, connection_id: str) -> None:
        """Drop the window of a closed connection."""
        self._windows.pop(connection_id, None)

    def tracked_connections(self) -> int:
        return len(self._windows)
