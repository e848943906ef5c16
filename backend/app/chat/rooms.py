"""Room membership, room passwords and public message history.

Key features:
    - At most one member entry per username per room (re-join replaces)
    - Optional per-room password, fixed by the join that creates the room
    - Append-only message history per room, optionally bounded
    - Global, idempotent leave for a closing connection
    - Sweep that garbage-collects rooms nobody is in any more

Every mutating call that changes what room members should see also queues
the corresponding event on the ConnectionHub; nothing here awaits I/O.
Callers are expected to serialize calls (the SessionCoordinator holds one
lock around them).
"""
import logging
from typing import Dict, List, Optional

from .hub import ConnectionHub
from .ids import MessageIdGenerator
from .sanitize import sanitize_text
from .schemas import ChatMessage, JoinResult, Member

logger = logging.getLogger(__name__)


class RoomRegistry:
    """Owns every room's members, password and message history.

    Args:
        hub: Delivery for room broadcasts and history unicasts.
        id_generator: Source of message ids.
        max_history: Messages kept per room; 0 keeps everything.
    """

    def __init__(
        self,
        hub: ConnectionHub,
        id_generator: Optional[MessageIdGenerator] = None,
        max_history: int = 0,
    ) -> None:
        self.hub = hub
        self.ids = id_generator or MessageIdGenerator()
        self.max_history = max_history

        # room -> members in join order
        self.room_members: Dict[str, List[Member]] = {}

        # room -> messages (append-only history)
        self.message_history: Dict[str, List[ChatMessage]] = {}

        # room -> password
        self.room_passwords: Dict[str, str] = {}

    # =========================================================================
    # Membership
    # =========================================================================

    def join(
        self,
        room: str,
        username: str,
        password: Optional[str],
        connection_id: str,
    ) -> JoinResult:
        """Add ``username`` on ``connection_id`` to ``room``.

        A password supplied by the join that creates the room becomes the
        room's password. Later joins must match it exactly.

        Returns:
            JoinResult.INCORRECT_PASSWORD without touching any state when the
            room is protected and the password does not match, else JoinResult.OK.
        """
        stored_password = self.room_passwords.get(room)
        if stored_password is not None and stored_password != password:
            logger.info(f"[Rooms] {username} rejected from {room}: incorrect password")
            return JoinResult.INCORRECT_PASSWORD

        if room not in self.room_members:
            self.room_members[room] = []
            if password:
                self.room_passwords[room] = password
                logger.info(f"[Rooms] Room {room} created with a password")

        # Re-join replaces: drop any earlier entry for this username only
        members = [m for m in self.room_members[room] if m.username != username]
        members.append(Member(username=username, connectionId=connection_id))
        self.room_members[room] = members

        logger.info(f"[Rooms] {username} joined {room} ({len(members)} members)")

        self.broadcast(room, "room_users", self.members_payload(room))

        history = self.message_history.get(room)
        if history:
            self.hub.send(
                connection_id,
                "message_history",
                [msg.model_dump() for msg in history],
            )

        return JoinResult.OK

    def leave(self, connection_id: str) -> List[str]:
        """Remove ``connection_id`` from every room it is a member of.

        Returns:
            Names of the rooms whose membership changed.
        """
        affected = []
        for room, members in self.room_members.items():
            remaining = [m for m in members if m.connectionId != connection_id]
            if len(remaining) != len(members):
                self.room_members[room] = remaining
                affected.append(room)

        for room in affected:
            self.broadcast(room, "room_users", self.members_payload(room))

        if affected:
            logger.info(f"[Rooms] Connection {connection_id} left {', '.join(affected)}")
        return affected

    def members(self, room: str) -> List[Member]:
        return list(self.room_members.get(room, []))

    def members_payload(self, room: str) -> List[dict]:
        return [m.model_dump() for m in self.room_members.get(room, [])]

    def rooms_for_connection(self, connection_id: str) -> List[str]:
        return [
            room for room, members in self.room_members.items()
            if any(m.connectionId == connection_id for m in members)
        ]

    def room_names(self) -> List[str]:
        return list(dict.fromkeys([*self.room_members, *self.message_history]))

    def has_password(self, room: str) -> bool:
        return room in self.room_passwords

    # =========================================================================
    # Messages
    # =========================================================================

    def post_message(
        self, room: str, author: str, raw_text: object
    ) -> Optional[ChatMessage]:
        """Store and broadcast a message from ``author`` to ``room``.

        Returns:
            The stored message, or None if the text sanitized to nothing
            (nothing is stored or sent in that case).
        """
        text = sanitize_text(raw_text)
        if not text:
            return None

        message = ChatMessage(
            id=self.ids.next_id(),
            text=text,
            username=author,
            room=room,
            seenBy=[author],
        )

        history = self.message_history.setdefault(room, [])
        history.append(message)
        if self.max_history > 0 and len(history) > self.max_history:
            del history[: len(history) - self.max_history]

        self.broadcast(room, "receive_message", message.model_dump())
        return message

    def history(self, room: str) -> List[ChatMessage]:
        return list(self.message_history.get(room, []))

    def get_message_count(self, room: str) -> int:
        """Get the number of messages in a room's history."""
        return len(self.message_history.get(room, []))

    # =========================================================================
    # Broadcast + maintenance
    # =========================================================================

    def broadcast(self, room: str, event: str, data) -> None:
        """Queue ``event`` for every current member connection of ``room``."""
        members = self.room_members.get(room, [])
        self.hub.send_many((m.connectionId for m in members), event, data)

    def sweep_empty_rooms(self) -> List[str]:
        """Delete membership, password and history of every empty room.

        Typing state lives in the PresenceTracker; the coordinator clears it
        for the returned rooms.

        Returns:
            Names of the rooms removed.
        """
        known = set(self.room_members) | set(self.message_history) | set(self.room_passwords)
        empty = sorted(room for room in known if not self.room_members.get(room))
        for room in empty:
            self.clear_room(room)

        if empty:
            logger.info(f"[Rooms] Swept {len(empty)} empty room(s): {', '.join(empty)}")
        return empty

    def clear_room(self, room: str) -> None:
        """Remove all data for a room."""
        self.room_members.pop(room, None)
        self.message_history.pop(room, None)
        self.room_passwords.pop(room, None)
