"""Pydantic models for chat rooms, messages and the WebSocket envelope."""
import time
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# Connection state
# =============================================================================


class ConnectionState(str, Enum):
    """Lifecycle of a single WebSocket connection.

    Attributes:
        CONNECTING: Socket accepted, handshake not yet admitted.
        AUTHENTICATING: Handshake admitted, credential not yet verified.
        ACTIVE: Identity verified; inbound events are processed.
        DISCONNECTED: Terminal. Cleanup has run.
    """
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class ConnectionInfo(BaseModel):
    """Server-side record of one live connection."""
    connectionId: str = Field(..., description="Server-assigned connection id")
    username: Optional[str] = Field(default=None, description="Verified identity")
    state: ConnectionState = Field(default=ConnectionState.CONNECTING)
    createdAt: float = Field(default_factory=time.time)


# =============================================================================
# Room data
# =============================================================================


class Member(BaseModel):
    """A username present in a room through one connection."""
    model_config = ConfigDict(frozen=True)

    username: str
    connectionId: str


class ChatMessage(BaseModel):
    """Public room message, as stored in history and broadcast to the room.

    Attributes:
        id: Strictly increasing, timestamp-derived message id.
        text: Sanitized message text.
        username: Author.
        room: Room the message was posted to.
        time: Send time (seconds since epoch).
        seenBy: Usernames that have seen the message; only the author at creation.
    """
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    username: str
    room: str
    time: float = Field(default_factory=time.time)
    seenBy: List[str] = Field(default_factory=list)


class PrivateMessage(BaseModel):
    """Direct message between two users."""
    model_config = ConfigDict(frozen=True)

    id: int
    text: str
    fromUsername: str
    toUsername: str
    time: float = Field(default_factory=time.time)


class PrivateDelivery(BaseModel):
    """Outcome of storing a private message.

    ``recipientConnectionId`` is ``None`` when the recipient is offline.
    """
    message: PrivateMessage
    recipientConnectionId: Optional[str] = None


class JoinResult(str, Enum):
    OK = "ok"
    INCORRECT_PASSWORD = "incorrect_password"


# =============================================================================
# WebSocket envelope
# =============================================================================


class EventEnvelope(BaseModel):
    """Frame shape in both directions: ``{"event": ..., "data": ...}``."""
    event: str
    data: Any = None
