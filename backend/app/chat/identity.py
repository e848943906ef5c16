"""Username -> active connection mapping used for direct-message routing."""
import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class IdentityRegistry:
    """Tracks which connection currently speaks for each username.

    A user reconnecting on a new socket displaces the old mapping (last writer
    wins). The old connection may still be a room member until its own
    disconnect fires; its unbind must then leave the newer mapping alone.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, str] = {}

    def bind(self, username: str, connection_id: str) -> None:
        previous = self._connections.get(username)
        self._connections[username] = connection_id
        if previous and previous != connection_id:
            logger.info(
                "[Identity] %s rebound from connection %s to %s",
                username, previous, connection_id,
            )

    def resolve(self, username: str) -> Optional[str]:
        return self._connections.get(username)

    def unbind_by_connection(self, connection_id: str) -> Optional[str]:
        """Remove the mapping that points at ``connection_id``.

        Returns:
            The unbound username, or None if no username maps to this
            connection any more (never bound, or already displaced).
        """
        for username, bound_id in self._connections.items():
            if bound_id == connection_id:
                del self._connections[username]
                return username
        return None

    def __len__(self) -> int:
        return len(self._connections)
