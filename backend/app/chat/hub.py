"""Live connection table and outbound delivery.

Registries refer to connections only by id. The hub resolves those ids back
to WebSocket objects at send time; an id with no live socket is treated as
an offline recipient and skipped.

Sending never awaits the network. ``send()`` puts the frame on the
connection's outbox and returns; one writer task per connection drains the
outbox in FIFO order. A peer that stops reading therefore only stalls its
own writer, never the caller or any other connection.

Performance Notes:
    - Outboxes are bounded; a peer that falls ``max_pending`` frames behind
      loses further frames until it catches up
    - A failed send is logged and dropped; the peer's own receive loop
      notices the broken socket and runs the disconnect path
"""
import asyncio
import logging
from typing import Any, Dict, Iterable, Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)

MAX_PENDING_FRAMES = 1000


class ConnectionHub:
    """Maps connection ids to live WebSockets and queues events for them.

    Args:
        max_pending: Frames a single connection may have waiting before new
            ones are dropped.
    """

    def __init__(self, max_pending: int = MAX_PENDING_FRAMES) -> None:
        self.max_pending = max_pending
        self._sockets: Dict[str, WebSocket] = {}
        self._outboxes: Dict[str, asyncio.Queue] = {}
        self._writers: Dict[str, asyncio.Task] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self._sockets[connection_id] = websocket
        self._outboxes[connection_id] = asyncio.Queue(maxsize=self.max_pending)

    def unregister(self, connection_id: str) -> None:
        """Forget a connection; frames still queued for it are discarded."""
        self._sockets.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer is not None:
            writer.cancel()

    def is_online(self, connection_id: Optional[str]) -> bool:
        return connection_id is not None and connection_id in self._sockets

    def __len__(self) -> int:
        return len(self._sockets)

    def send(self, connection_id: str, event: str, data: Any) -> bool:
        """Queue one event for one connection.

        Returns:
            True if queued, False if the connection is gone or its outbox is full.
        """
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            logger.debug(f"Skipping send of {event} to offline connection {connection_id}")
            return False

        try:
            outbox.put_nowait({"event": event, "data": data})
        except asyncio.QueueFull:
            logger.warning(
                f"[Hub] Outbox full for {connection_id}, dropping {event}"
            )
            return False

        self._ensure_writer(connection_id)
        return True

    def send_many(self, connection_ids: Iterable[str], event: str, data: Any) -> None:
        """Queue one event for several connections."""
        # dict.fromkeys keeps order and drops duplicate ids
        for cid in dict.fromkeys(connection_ids):
            self.send(cid, event, data)

    async def drain(self, connection_ids: Optional[Iterable[str]] = None) -> None:
        """Wait until every frame queued so far has been handed to its socket.

        Args:
            connection_ids: Connections to wait for; all of them when omitted.
        """
        if connection_ids is None:
            outboxes = list(self._outboxes.values())
        else:
            outboxes = [
                self._outboxes[cid] for cid in connection_ids if cid in self._outboxes
            ]
        await asyncio.gather(*(outbox.join() for outbox in outboxes))

    def shutdown(self) -> None:
        """Cancel every writer task."""
        for writer in self._writers.values():
            writer.cancel()
        self._writers.clear()

    def _ensure_writer(self, connection_id: str) -> None:
        writer = self._writers.get(connection_id)
        if writer is not None and not writer.done():
            return
        self._writers[connection_id] = asyncio.create_task(
            self._write_loop(self._sockets[connection_id], self._outboxes[connection_id]),
            name=f"ws-writer:{connection_id}",
        )

    async def _write_loop(self, websocket: WebSocket, outbox: asyncio.Queue) -> None:
        while True:
            message = await outbox.get()
            try:
                await self._safe_send(websocket, message)
            finally:
                outbox.task_done()

    async def _safe_send(self, connection: WebSocket, message: dict) -> bool:
        """Send a message to a WebSocket connection with error handling.

        Args:
            connection: The WebSocket to send to.
            message: JSON-serializable message to send.

        Returns:
            True if successful, False if connection failed.
        """
        try:
            await connection.send_json(message)
            return True
        except Exception as e:
            logger.debug(f"Failed to send to connection: {e}")
            return False
