from backend import RoomRegistry
from errors import SendFailed, UnknownMessageType
from logging_config import get_logger
from peer import Peer
from schemas.envelopes import RELAYED_TYPES, Envelope

logger = get_logger(__name__)


class MessageRouter:
    """Forwards relayable envelopes from a peer to its room partner.

    The payload is opaque here: the envelope is re-serialized as received and
    never validated beyond its ``type``.
    """

    def __init__(self, registry: RoomRegistry):
        self.registry = registry

    async def route(self, from_peer: Peer, envelope: Envelope) -> Peer:
        if envelope.type not in RELAYED_TYPES:
            raise UnknownMessageType()
        # NoRoom / RoomVanished / NoPartner propagate to the sender's handler
        partner = await self.registry.partner_of(from_peer)
        try:
            await partner.send(envelope)
        except SendFailed:
            logger.info(f"Relay {envelope.type} from {from_peer.id} to {partner.id} failed in room {from_peer.room_code}")
            raise
        return partner
