"""Message id generation.

Ids are millisecond timestamps nudged forward so that two messages created
in the same millisecond still get distinct, increasing ids.
"""
import time
from typing import Callable


class MessageIdGenerator:
    """Strictly increasing, timestamp-derived integer ids."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last = 0

    def next_id(self) -> int:
        now_ms = int(self._clock() * 1000)
        self._last = max(now_ms, self._last + 1)
        return self._last
