"""Private 1:1 message history.

A conversation is keyed by the two participants' usernames, sorted and
joined with ``CONVERSATION_SEPARATOR``, so A->B and B->A share one history.
Conversations are created on the first message and are never removed by
the empty-room sweep.
"""
import logging
from typing import Dict, List, Optional

from .identity import IdentityRegistry
from .ids import MessageIdGenerator
from .sanitize import sanitize_text
from .schemas import PrivateDelivery, PrivateMessage

logger = logging.getLogger(__name__)

CONVERSATION_SEPARATOR = ":"


def conversation_id(user_a: str, user_b: str) -> str:
    """Order-independent id for the conversation between two users."""
    return CONVERSATION_SEPARATOR.join(sorted([user_a, user_b]))


class ConversationStore:
    """Owns all private conversation histories."""

    def __init__(
        self,
        identities: IdentityRegistry,
        id_generator: Optional[MessageIdGenerator] = None,
        max_history: int = 0,
    ) -> None:
        self.identities = identities
        self.ids = id_generator or MessageIdGenerator()
        self.max_history = max_history
        self.conversations: Dict[str, List[PrivateMessage]] = {}

    def send(
        self, from_username: str, to_username: str, raw_text: object
    ) -> Optional[PrivateDelivery]:
        """Store a private message and resolve where to deliver it.

        The message is stored whether or not the recipient is online.

        Returns:
            The stored message and the recipient's connection id (None when
            offline), or None if the text sanitized to nothing.
        """
        text = sanitize_text(raw_text)
        if not text:
            return None

        message = PrivateMessage(
            id=self.ids.next_id(),
            text=text,
            fromUsername=from_username,
            toUsername=to_username,
        )

        history = self.conversations.setdefault(
            conversation_id(from_username, to_username), []
        )
        history.append(message)
        if self.max_history > 0 and len(history) > self.max_history:
            del history[: len(history) - self.max_history]

        return PrivateDelivery(
            message=message,
            recipientConnectionId=self.identities.resolve(to_username),
        )

    def history(self, user_a: str, user_b: str) -> List[PrivateMessage]:
        return list(self.conversations.get(conversation_id(user_a, user_b), []))

    def __len__(self) -> int:
        return len(self.conversations)
