import json
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, StrictStr, ValidationError

from errors import InvalidMessageFormat, InvalidRoomCode


class MessageType(str, Enum):
    CREATE_ROOM = "CREATE_ROOM"
    ROOM_CREATED = "ROOM_CREATED"
    JOIN_ROOM = "JOIN_ROOM"
    CONNECTION_SUCCESS = "CONNECTION_SUCCESS"
    ROOM_FULL = "ROOM_FULL"
    PARTNER_DISCONNECTED = "PARTNER_DISCONNECTED"
    SENSOR_DATA = "SENSOR_DATA"
    CALIBRATION_DATA = "CALIBRATION_DATA"
    LEAVE_ROOM = "LEAVE_ROOM"
    ROOM_LEFT = "ROOM_LEFT"
    PING = "PING"
    PONG = "PONG"
    ERROR = "ERROR"


RELAYED_TYPES = frozenset({MessageType.SENSOR_DATA.value, MessageType.CALIBRATION_DATA.value})


class Envelope(BaseModel):
    """A single wire message. Fields other than ``type`` are kept as-is.

    An envelope parsed off the wire remembers its text, and ``to_json``
    hands that text back unchanged so relayed frames pass through verbatim.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    type: StrictStr
    _raw: Optional[str] = PrivateAttr(default=None)

    def to_wire(self) -> dict:
        return self.model_dump()

    def to_json(self) -> str:
        if self._raw is not None:
            return self._raw
        return json.dumps(self.to_wire())


class JoinRoomRequest(BaseModel):
    code: StrictStr = Field(pattern=r"^[0-9]{4}$")


def parse_envelope(raw: Union[str, bytes]) -> Envelope:
    try:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else raw
        data = json.loads(text)
    except (ValueError, TypeError) as e:
        # json.JSONDecodeError and UnicodeDecodeError are both ValueErrors
        raise InvalidMessageFormat() from e
    if not isinstance(data, dict):
        raise InvalidMessageFormat()
    try:
        envelope = Envelope.model_validate(data)
    except ValidationError as e:
        raise InvalidMessageFormat() from e
    envelope._raw = text
    return envelope


def parse_join_code(envelope: Envelope) -> str:
    try:
        return JoinRoomRequest.model_validate(envelope.model_extra or {}).code
    except ValidationError as e:
        raise InvalidRoomCode() from e


def make_envelope(message_type: MessageType, /, **fields: Any) -> Envelope:
    return Envelope(type=message_type.value, **fields)
