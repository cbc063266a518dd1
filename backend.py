import asyncio
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from constants import (
    CLOSE_GOING_AWAY,
    MAX_PARTICIPANTS,
    ROOM_CODE_ATTEMPTS,
    ROOM_CODE_MAX,
    ROOM_CODE_MIN,
)
from errors import NoPartner, NoRoom, RoomCreationExhausted, RoomUnavailable, RoomVanished
from logging_config import get_logger
from peer import Peer
from schemas.envelopes import Envelope, MessageType, make_envelope

logger = get_logger(__name__)


class RoomStatus(str, Enum):
    WAITING = "waiting"
    PAIRED = "paired"


@dataclass
class Room:
    code: str
    created_at: float
    participants: List[Peer] = field(default_factory=list)
    status: RoomStatus = RoomStatus.WAITING

    @property
    def is_full(self) -> bool:
        return len(self.participants) >= MAX_PARTICIPANTS

    def other(self, peer: Peer) -> Optional[Peer]:
        for participant in self.participants:
            if participant is not peer:
                return participant
        return None


@dataclass(frozen=True)
class ServerStats:
    total_rooms: int
    active_connections: int
    rooms_with_two_peers: int
    uptime: float


class RoomRegistry:
    """Owns the code -> room table and the peer -> room back-reference.

    All mutations run under one asyncio lock. The lock is never held while
    writing to a socket: notices are collected inside the critical section
    and sent after it is released.
    """

    def __init__(
        self,
        max_rooms: Optional[int] = None,
        code_attempts: int = ROOM_CODE_ATTEMPTS,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.max_rooms = max_rooms
        self.code_attempts = code_attempts
        self.clock = clock
        self.rng = rng or random.Random()
        self.started_at = clock()
        self._rooms: Dict[str, Room] = {}
        self._peers: Dict[str, Peer] = {}
        self._lock = asyncio.Lock()
        logger.info(f"Initializing RoomRegistry (max_rooms={max_rooms}, code_attempts={code_attempts})")

    # -- connections --

    async def connect(self, peer: Peer) -> None:
        async with self._lock:
            self._peers[peer.id] = peer
        logger.debug(f"Peer {peer.id} registered ({len(self._peers)} active)")

    async def disconnect(self, peer: Peer) -> None:
        await self.leave_room(peer)
        async with self._lock:
            self._peers.pop(peer.id, None)
        logger.debug(f"Peer {peer.id} unregistered ({len(self._peers)} active)")

    def peers(self) -> List[Peer]:
        return list(self._peers.values())

    # -- rooms --

    def get_room(self, code: str) -> Optional[Room]:
        return self._rooms.get(code)

    def _generate_code(self) -> str:
        for attempt in range(1, self.code_attempts + 1):
            code = str(self.rng.randint(ROOM_CODE_MIN, ROOM_CODE_MAX))
            if code not in self._rooms:
                return code
            logger.debug(f"Room code collision on {code} (attempt {attempt}/{self.code_attempts})")
        raise RoomCreationExhausted()

    async def create_room(self, creator: Optional[Peer] = None) -> Room:
        """Create a waiting room.

        When ``creator`` is given it joins in the same critical section and is
        sent ROOM_CREATED before anything else can reach it through the room.
        """
        notices = []
        async with self._lock:
            if self.max_rooms is not None and len(self._rooms) >= self.max_rooms:
                logger.warning(f"Room creation refused: {len(self._rooms)}/{self.max_rooms} rooms live")
                raise RoomCreationExhausted("Server is at room capacity")
            code = self._generate_code()
            if creator is not None:
                notices.extend(self._leave_locked(creator))
            room = Room(code=code, created_at=self.clock())
            self._rooms[code] = room
            if creator is not None:
                self._add_locked(room, creator)
                notices.insert(0, (creator, make_envelope(MessageType.ROOM_CREATED, code=code)))
        logger.info(f"Room created: {code}")
        await self._deliver(notices)
        return room

    async def join_room(self, code: str, peer: Peer, ack: Optional[Envelope] = None) -> Room:
        """Add ``peer`` to the room.

        Raises RoomUnavailable whether the room is missing or full. After the
        lock is released ``ack`` goes to the joiner, then ROOM_FULL to both
        participants if the room just became paired.
        """
        notices = []
        async with self._lock:
            room = self._rooms.get(code)
            if room is None or room.is_full or peer in room.participants:
                logger.info(f"Join refused for peer {peer.id}: room {code} unavailable")
                raise RoomUnavailable()
            notices.extend(self._leave_locked(peer))
            self._add_locked(room, peer)
            if ack is not None:
                notices.append((peer, ack))
            if room.is_full:
                room.status = RoomStatus.PAIRED
                full = make_envelope(MessageType.ROOM_FULL, code=code)
                notices.extend((participant, full) for participant in room.participants)
            participants = len(room.participants)
        logger.info(f"Peer {peer.id} joined room {code} ({participants}/{MAX_PARTICIPANTS})")
        await self._deliver(notices)
        return room

    async def leave_room(self, peer: Peer) -> None:
        async with self._lock:
            notices = self._leave_locked(peer)
        await self._deliver(notices)

    async def partner_of(self, peer: Peer) -> Peer:
        async with self._lock:
            code = peer.room_code
            if code is None:
                raise NoRoom()
            room = self._rooms.get(code)
            if room is None:
                raise RoomVanished()
            partner = room.other(peer)
            if partner is None:
                raise NoPartner()
            return partner

    async def sweep_expired(self, max_age: float) -> List[str]:
        """Delete rooms older than ``max_age`` seconds and close their members."""
        now = self.clock()
        expired: List[Room] = []
        async with self._lock:
            for code, room in list(self._rooms.items()):
                if now - room.created_at > max_age:
                    del self._rooms[code]
                    for participant in room.participants:
                        participant.room_code = None
                    expired.append(room)
        for room in expired:
            for participant in room.participants:
                await participant.close(code=CLOSE_GOING_AWAY, reason="Room expired")
            logger.info(f"Cleaned up expired room: {room.code} ({len(room.participants)} connections closed)")
        return [room.code for room in expired]

    def stats(self) -> ServerStats:
        rooms = list(self._rooms.values())
        return ServerStats(
            total_rooms=len(rooms),
            active_connections=len(self._peers),
            rooms_with_two_peers=sum(1 for room in rooms if len(room.participants) == MAX_PARTICIPANTS),
            uptime=self.clock() - self.started_at,
        )

    # -- lock-held helpers --

    def _add_locked(self, room: Room, peer: Peer) -> None:
        room.participants.append(peer)
        peer.room_code = room.code

    def _leave_locked(self, peer: Peer) -> list:
        code = peer.room_code
        if code is None:
            return []
        peer.room_code = None
        room = self._rooms.get(code)
        if room is None or peer not in room.participants:
            return []
        room.participants.remove(peer)
        logger.info(f"Peer {peer.id} left room {code} ({len(room.participants)}/{MAX_PARTICIPANTS})")
        if not room.participants:
            del self._rooms[code]
            logger.info(f"Room deleted: {code}")
            return []
        room.status = RoomStatus.WAITING
        return [(p, make_envelope(MessageType.PARTNER_DISCONNECTED, code=code)) for p in room.participants]

    async def _deliver(self, notices: list) -> None:
        for peer, envelope in notices:
            await peer.notify(envelope)
