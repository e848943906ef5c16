"""Per-room typing indicators with timed expiry.

A user stays in a room's typing set for ``ttl_seconds`` after their last
typing event. Each (room, username) pair has at most one pending expiry
task; a new typing event cancels it and schedules a fresh one, so the
indicator never drops while the user keeps typing.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from .rooms import RoomRegistry

logger = logging.getLogger(__name__)


class PresenceTracker:
    """Tracks who is typing in which room and broadcasts changes.

    Args:
        rooms: Used to reach the room's members when broadcasting.
        ttl_seconds: Lifetime of a typing entry after its last refresh.
        lock: Held by expiry tasks while they mutate state, so they never
            interleave with event handlers holding the same lock.
    """

    def __init__(
        self,
        rooms: RoomRegistry,
        ttl_seconds: float = 3.0,
        lock: Optional[asyncio.Lock] = None,
    ) -> None:
        self.rooms = rooms
        self.ttl_seconds = ttl_seconds
        self._lock = lock or asyncio.Lock()

        # room -> usernames currently typing
        self.typing: Dict[str, List[str]] = {}

        # (room, username) -> pending expiry task
        self._timers: Dict[Tuple[str, str], asyncio.Task] = {}

    def typing_users(self, room: str) -> List[str]:
        return sorted(self.typing.get(room, []))

    def rooms_typing(self, username: str) -> List[str]:
        """Rooms in which ``username`` is currently marked as typing."""
        return [room for room, users in self.typing.items() if username in users]

    def pending_timers(self) -> int:
        return len(self._timers)

    def mark_typing(self, room: str, username: str) -> None:
        """Mark ``username`` as typing in ``room`` and (re)start its expiry."""
        users = self.typing.setdefault(room, [])
        if username not in users:
            users.append(username)

        self._cancel_timer(room, username)
        self._timers[(room, username)] = asyncio.create_task(
            self._expire(room, username),
            name=f"typing-expiry:{room}:{username}",
        )

        self.rooms.broadcast(room, "typing_users", self.typing_users(room))

    def clear_user(self, room: str, username: str) -> None:
        """Remove ``username`` from ``room``'s typing set right away."""
        self._cancel_timer(room, username)
        if self._discard(room, username):
            self.rooms.broadcast(room, "typing_users", self.typing_users(room))

    def clear_room(self, room: str) -> None:
        """Drop a room's typing set and cancel its expiries without broadcasting."""
        for key in [key for key in self._timers if key[0] == room]:
            self._timers.pop(key).cancel()
        self.typing.pop(room, None)

    def shutdown(self) -> None:
        """Cancel every pending expiry."""
        for task in self._timers.values():
            task.cancel()
        self._timers.clear()

    async def _expire(self, room: str, username: str) -> None:
        await asyncio.sleep(self.ttl_seconds)
        async with self._lock:
            key = (room, username)
            if self._timers.get(key) is asyncio.current_task():
                del self._timers[key]
            if self._discard(room, username):
                logger.debug(f"[Presence] Typing expired for {username} in {room}")
                self.rooms.broadcast(room, "typing_users", self.typing_users(room))

    def _cancel_timer(self, room: str, username: str) -> None:
        task = self._timers.pop((room, username), None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _discard(self, room: str, username: str) -> bool:
        users = self.typing.get(room)
        if not users or username not in users:
            return False
        users.remove(username)
        if not users:
            del self.typing[room]
        return True
