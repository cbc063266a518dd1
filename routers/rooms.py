import asyncio
from typing import Optional, Union

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from backend import RoomRegistry
from constants import CLOSE_GOING_AWAY
from errors import (
    FatalServerError,
    InvalidMessageFormat,
    MessageTooLarge,
    RelayError,
    UnknownMessageType,
)
from logging_config import get_logger
from peer import Peer
from relay import MessageRouter
from schemas.envelopes import (
    RELAYED_TYPES,
    Envelope,
    MessageType,
    make_envelope,
    parse_envelope,
    parse_join_code,
)

logger = get_logger(__name__)

rooms_router = APIRouter(tags=["rooms"])


class ConnectionGateway:
    """Terminates peer WebSockets and dispatches their envelopes."""

    def __init__(self, registry: RoomRegistry, router: MessageRouter, max_payload: Optional[int] = None):
        self.registry = registry
        self.router = router
        self.max_payload = max_payload

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        peer = Peer(websocket)
        await self.registry.connect(peer)
        client = f"{websocket.client.host}:{websocket.client.port}" if websocket.client else "unknown"
        logger.info(f"Peer {peer.id} connected from {client}")

        message_count = 0
        try:
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    logger.info(f"Peer {peer.id} disconnected (code={message.get('code')})")
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                message_count += 1
                logger.debug(f"Received frame #{message_count} from peer {peer.id}")
                await self.handle_frame(peer, raw)
        except WebSocketDisconnect as e:
            logger.info(f"Peer {peer.id} disconnected (code={e.code})")
        except Exception as e:
            logger.error(f"WebSocket error for peer {peer.id}: {e}", exc_info=True)
        finally:
            # No more writes to this peer; in-flight relays fail as SendFailed
            peer.closed = True
            # Shielded so a cancelled handler still unlinks the peer and tells its partner
            await asyncio.shield(self._release(peer, message_count))

    async def _release(self, peer: Peer, message_count: int) -> None:
        await self.registry.disconnect(peer)
        await peer.close()
        logger.info(
            f"Peer {peer.id} released after {peer.connection_duration():.1f}s "
            f"({message_count} messages)"
        )

    async def handle_frame(self, peer: Peer, raw: Union[str, bytes, None]) -> None:
        """Process one frame. Errors go back to this peer only; the connection stays open."""
        try:
            if raw is None:
                raise InvalidMessageFormat()
            self._check_size(raw)
            envelope = parse_envelope(raw)
            await self.dispatch(peer, envelope)
        except RelayError as e:
            logger.info(f"Peer {peer.id} request failed: {e.code} ({e.message})")
            await peer.notify(e.to_envelope())
        except Exception as e:
            logger.error(f"Unexpected error handling frame from peer {peer.id}: {e}", exc_info=True)
            await peer.notify(FatalServerError().to_envelope())

    def _check_size(self, raw: Union[str, bytes]) -> None:
        if self.max_payload is None:
            return
        size = len(raw.encode("utf-8")) if isinstance(raw, str) else len(raw)
        if size > self.max_payload:
            raise MessageTooLarge()

    async def dispatch(self, peer: Peer, envelope: Envelope) -> None:
        message_type = envelope.type
        logger.debug(f"Dispatching {message_type} from peer {peer.id}")

        if message_type == MessageType.CREATE_ROOM.value:
            await self.registry.create_room(creator=peer)
        elif message_type == MessageType.JOIN_ROOM.value:
            code = parse_join_code(envelope)
            await self.registry.join_room(
                code, peer, ack=make_envelope(MessageType.CONNECTION_SUCCESS, code=code)
            )
        elif message_type in RELAYED_TYPES:
            await self.router.route(peer, envelope)
        elif message_type == MessageType.LEAVE_ROOM.value:
            await self.registry.leave_room(peer)
            await peer.send(make_envelope(MessageType.ROOM_LEFT))
        elif message_type == MessageType.PING.value:
            await peer.send(make_envelope(MessageType.PONG, **(envelope.model_extra or {})))
        else:
            logger.warning(f"Unknown message type from peer {peer.id}: {message_type}")
            raise UnknownMessageType()

    async def shutdown(self) -> None:
        peers = self.registry.peers()
        logger.info(f"Closing {len(peers)} open connections")
        for peer in peers:
            await peer.close(code=CLOSE_GOING_AWAY, reason="Server shutting down")


@rooms_router.websocket("/")
@rooms_router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    gateway: ConnectionGateway = websocket.app.state.gateway
    await gateway.handle(websocket)
