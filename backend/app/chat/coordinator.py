"""Session coordinator: per-connection state machine and event dispatch.

This module wires an authenticated WebSocket to the room, presence,
conversation, identity and rate-limit state, dispatches inbound events and
runs the single disconnect-cleanup path.

Connection lifecycle:
    CONNECTING -> AUTHENTICATING -> ACTIVE -> DISCONNECTED

    1. ``open()`` registers the socket with the hub (CONNECTING)
    2. ``authenticate()`` admits the handshake through the rate limiter
       (AUTHENTICATING), then verifies the credential and binds the identity
       (ACTIVE)
    3. ``handle_event()`` rate-limits and dispatches each inbound event
    4. ``disconnect()`` runs cleanup exactly once, whatever state the
       connection reached

Thread Safety:
    Designed for a single asyncio event loop. One ``asyncio.Lock`` covers
    every handler, the disconnect path, typing expiry and the room sweep, so
    no two of them interleave. Nothing inside it awaits network I/O: outbound
    frames are queued on the ConnectionHub, whose per-connection writers keep
    them in processing order.
    It is NOT thread-safe for concurrent access from multiple threads.
"""
import asyncio
import logging
import uuid
from typing import Any, Callable, Dict, List, Optional

from fastapi import WebSocket

from app.auth.service import AuthenticationError, IdentityVerifier, get_token_service
from app.config import AppConfig, get_config

from .conversations import ConversationStore
from .hub import ConnectionHub
from .identity import IdentityRegistry
from .ids import MessageIdGenerator
from .presence import PresenceTracker
from .rate_limiter import RateLimiter
from .rooms import RoomRegistry
from .schemas import ConnectionInfo, ConnectionState, JoinResult

logger = logging.getLogger(__name__)

EventHandler = Callable[[ConnectionInfo, Dict[str, Any]], None]


def _text_field(data: Dict[str, Any], key: str) -> Optional[str]:
    """Return ``data[key]`` if it is a non-empty string, else None."""
    value = data.get(key)
    if isinstance(value, str) and value:
        return value
    return None


class SessionCoordinator:
    """Owns the chat state for one process and drives every connection.

    Args:
        verifier: Maps a presented credential to a username.
        hub: Live connection table used for all outbound events.
        rate_limiter: Admission control applied to every inbound frame.
        sweep_interval_seconds: Period of the empty-room sweep.
        typing_ttl_seconds: Lifetime of a typing indicator.
        room_history_limit: Messages kept per room (0 = unbounded).
        conversation_history_limit: Messages kept per conversation (0 = unbounded).
    """

    def __init__(
        self,
        verifier: IdentityVerifier,
        hub: Optional[ConnectionHub] = None,
        rate_limiter: Optional[RateLimiter] = None,
        sweep_interval_seconds: float = 3600.0,
        typing_ttl_seconds: float = 3.0,
        room_history_limit: int = 0,
        conversation_history_limit: int = 0,
    ) -> None:
        self.verifier = verifier
        self.lock = asyncio.Lock()
        self.sweep_interval_seconds = sweep_interval_seconds

        id_generator = MessageIdGenerator()
        self.hub = hub or ConnectionHub()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.identities = IdentityRegistry()
        self.rooms = RoomRegistry(self.hub, id_generator, max_history=room_history_limit)
        self.presence = PresenceTracker(self.rooms, typing_ttl_seconds, lock=self.lock)
        self.conversations = ConversationStore(
            self.identities, id_generator, max_history=conversation_history_limit
        )

        # connection_id -> record, for every connection not yet cleaned up
        self.connections: Dict[str, ConnectionInfo] = {}

        self._sweep_task: Optional[asyncio.Task] = None

        self._handlers: Dict[str, EventHandler] = {
            "join_room": self._on_join_room,
            "send_message": self._on_send_message,
            "send_private_message": self._on_send_private_message,
            "request_private_history": self._on_request_private_history,
            "typing": self._on_typing,
        }

    @classmethod
    def from_config(cls, config: AppConfig, verifier: IdentityVerifier) -> "SessionCoordinator":
        return cls(
            verifier=verifier,
            rate_limiter=RateLimiter(
                max_events=config.rate_limit.max_events,
                window_seconds=config.rate_limit.window_seconds,
            ),
            sweep_interval_seconds=config.rooms.sweep_interval_seconds,
            typing_ttl_seconds=config.presence.typing_ttl_seconds,
            room_history_limit=config.rooms.max_history,
            conversation_history_limit=config.conversations.max_history,
        )

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    def open(self, websocket: WebSocket) -> ConnectionInfo:
        """Register an accepted socket and assign it a connection id."""
        info = ConnectionInfo(connectionId=str(uuid.uuid4()))
        self.connections[info.connectionId] = info
        self.hub.register(info.connectionId, websocket)
        logger.info(f"[Session] Connection {info.connectionId} opened")
        return info

    async def authenticate(self, info: ConnectionInfo, credential: Optional[str]) -> bool:
        """Admit the handshake, verify ``credential`` and activate the connection.

        The handshake is rate-limited before the credential is looked at.

        Returns:
            True if the connection is now ACTIVE. False means the caller must
            close the socket; ``disconnect()`` still has to run.
        """
        async with self.lock:
            if info.state is not ConnectionState.CONNECTING:
                return False
            if not self.rate_limiter.admit(info.connectionId):
                return False
            info.state = ConnectionState.AUTHENTICATING

        try:
            username = self.verifier.verify(credential)
        except AuthenticationError as e:
            logger.info(f"[Session] Connection {info.connectionId} failed authentication: {e}")
            return False

        async with self.lock:
            if info.state is not ConnectionState.AUTHENTICATING:
                return False
            info.username = username
            info.state = ConnectionState.ACTIVE
            self.identities.bind(username, info.connectionId)
            self.hub.send(info.connectionId, "connected", {
                "connectionId": info.connectionId,
                "username": username,
            })

        logger.info(f"[Session] Connection {info.connectionId} authenticated as {username}")
        return True

    async def handle_event(
        self, info: ConnectionInfo, event: Optional[str], data: Any
    ) -> bool:
        """Rate-limit and dispatch one inbound event.

        Args:
            info: The sending connection.
            event: Event name, or None if the frame could not be decoded.
            data: Event payload; anything but a dict is treated as empty.

        Returns:
            False if the connection must be closed (not active, or over its
            rate limit); no reply is sent in that case.
        """
        async with self.lock:
            if info.state is not ConnectionState.ACTIVE:
                return False
            if not self.rate_limiter.admit(info.connectionId):
                return False

            if event is None:
                self.hub.send(info.connectionId, "error", "Invalid event format")
                return True

            handler = self._handlers.get(event)
            if handler is None:
                logger.debug(f"[Session] Unknown event {event!r} from {info.connectionId}")
                self.hub.send(info.connectionId, "error", f"Unknown event: {event}")
                return True

            handler(info, data if isinstance(data, dict) else {})
            return True

    async def disconnect(self, info: ConnectionInfo) -> None:
        """Run cleanup for a closed connection. Safe to call more than once."""
        async with self.lock:
            if info.state is ConnectionState.DISCONNECTED:
                return
            previous_state = info.state
            info.state = ConnectionState.DISCONNECTED

            connection_id = info.connectionId
            self.connections.pop(connection_id, None)
            self.hub.unregister(connection_id)
            self.rate_limiter.forget(connection_id)

            self.rooms.leave(connection_id)

            username = self.identities.unbind_by_connection(connection_id)
            if username is not None:
                for room in self.presence.rooms_typing(username):
                    self.presence.clear_user(room, username)

        logger.info(
            f"[Session] Connection {connection_id} disconnected "
            f"(was {previous_state.value}, user={info.username})"
        )

    # =========================================================================
    # Event handlers (called with the lock held, never await)
    # =========================================================================

    def _on_join_room(self, info: ConnectionInfo, data: Dict[str, Any]) -> None:
        room = _text_field(data, "room")
        if room is None or _text_field(data, "username") is None:
            self.hub.send(info.connectionId, "error", "Room and username are required")
            return

        password = data.get("password")
        if not isinstance(password, str):
            password = None

        result = self.rooms.join(room, info.username, password, info.connectionId)
        if result is JoinResult.INCORRECT_PASSWORD:
            self.hub.send(info.connectionId, "error", "Incorrect room password")

    def _on_send_message(self, info: ConnectionInfo, data: Dict[str, Any]) -> None:
        room = _text_field(data, "room")
        text = _text_field(data, "text")
        if room is None or text is None:
            return
        self.rooms.post_message(room, info.username, text)

    def _on_send_private_message(
        self, info: ConnectionInfo, data: Dict[str, Any]
    ) -> None:
        to_username = _text_field(data, "toUsername")
        text = _text_field(data, "text")
        if to_username is None or text is None:
            return

        delivery = self.conversations.send(info.username, to_username, text)
        if delivery is None:
            return

        payload = delivery.message.model_dump()
        recipient_id = delivery.recipientConnectionId

        # Sender always gets its own message back
        self.hub.send(info.connectionId, "receive_private_message", payload)

        if not self.hub.is_online(recipient_id):
            self.hub.send(
                info.connectionId,
                "private_message_error",
                f"{to_username} is not currently online.",
            )
        elif recipient_id != info.connectionId:
            self.hub.send(recipient_id, "receive_private_message", payload)

    def _on_request_private_history(
        self, info: ConnectionInfo, data: Dict[str, Any]
    ) -> None:
        other = _text_field(data, "otherUsername")
        if other is None:
            return
        history = self.conversations.history(info.username, other)
        self.hub.send(info.connectionId, "private_message_history", {
            "otherUsername": other,
            "history": [msg.model_dump() for msg in history],
        })

    def _on_typing(self, info: ConnectionInfo, data: Dict[str, Any]) -> None:
        room = _text_field(data, "room")
        if room is None:
            return
        self.presence.mark_typing(room, info.username)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def sweep_now(self) -> List[str]:
        """Run the empty-room sweep once, atomically with respect to joins."""
        async with self.lock:
            removed = self.rooms.sweep_empty_rooms()
            for room in removed:
                self.presence.clear_room(room)
            return removed

    def start_sweeper(self) -> None:
        """Start the periodic empty-room sweep on the running loop."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(), name="room-sweeper")
        logger.info(f"[Session] Room sweeper started (every {self.sweep_interval_seconds:.0f}s)")

    async def shutdown(self) -> None:
        """Stop the sweeper, pending typing expiries and outbound writers."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.presence.shutdown()
        self.hub.shutdown()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                await self.sweep_now()
            except Exception as e:
                logger.error(f"[Session] Room sweep failed: {e}")


_coordinator: Optional[SessionCoordinator] = None


def get_coordinator() -> SessionCoordinator:
    """Get the global coordinator, building it from config on first use."""
    global _coordinator
    if _coordinator is None:
        _coordinator = SessionCoordinator.from_config(get_config(), get_token_service())
    return _coordinator


def set_coordinator(coordinator: Optional[SessionCoordinator]) -> None:
    """Set the global coordinator instance (``None`` rebuilds from config)."""
    global _coordinator
    _coordinator = coordinator
