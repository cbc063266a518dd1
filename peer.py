import asyncio
import json
import time
import uuid
from typing import Optional, Union

from constants import CLOSE_NORMAL
from errors import SendFailed
from logging_config import get_logger
from schemas.envelopes import Envelope

logger = get_logger(__name__)


class Peer:
    """One live connection and its single ordered outbound path.

    ``room_code`` is only written by the room registry while it holds its lock.
    """

    def __init__(self, websocket, peer_id: Optional[str] = None):
        self.id = peer_id or uuid.uuid4().hex[:12]
        self.websocket = websocket
        self.room_code: Optional[str] = None
        self.connected_at = time.monotonic()
        self.closed = False
        self._close_sent = False
        # asyncio.Lock wakes waiters in FIFO order, which keeps per-destination ordering
        self._send_lock = asyncio.Lock()

    def __repr__(self) -> str:
        return f"Peer(id={self.id!r}, room_code={self.room_code!r})"

    async def send(self, message: Union[Envelope, dict]) -> None:
        """Write one envelope. Raises SendFailed if the socket is closed or the write fails."""
        data = message.to_json() if isinstance(message, Envelope) else json.dumps(message)
        if self.closed:
            raise SendFailed()
        async with self._send_lock:
            if self.closed:
                raise SendFailed()
            try:
                await self.websocket.send_text(data)
            except Exception as e:
                logger.warning(f"Write to peer {self.id} failed: {e}")
                raise SendFailed() from e

    async def notify(self, message: Union[Envelope, dict]) -> bool:
        """Best-effort send for server notices; a dead peer is only logged."""
        try:
            await self.send(message)
            return True
        except SendFailed:
            logger.info(f"Dropped notice for departed peer {self.id}")
            return False

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        # closed stops further sends; the close frame itself goes out once
        self.closed = True
        if self._close_sent:
            return
        self._close_sent = True
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing WebSocket for peer {self.id}: {e}")

    def connection_duration(self) -> float:
        return time.monotonic() - self.connected_at
