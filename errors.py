"""Error taxonomy for the relay.

Every failure that reaches a client is a ``RelayError`` and is turned into an
``ERROR`` envelope carrying a machine-readable ``code`` and a ``retryable``
flag so the presentation layer can choose between retrying and asking the
user to act.
"""


class RelayError(Exception):
    code = "ServerError"
    message = "Internal server error"
    retryable = False

    def __init__(self, message: str = None):
        if message is not None:
            self.message = message
        super().__init__(self.message)

    def to_envelope(self) -> dict:
        return {
            "type": "ERROR",
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }


# Malformed input from a client. The connection stays open.
class ClientProtocolError(RelayError):
    pass


class InvalidMessageFormat(ClientProtocolError):
    code = "InvalidMessageFormat"
    message = "Invalid message format"


class UnknownMessageType(ClientProtocolError):
    code = "UnknownMessageType"
    message = "Unknown message type"


class InvalidRoomCode(ClientProtocolError):
    code = "InvalidRoomCode"
    message = "Invalid room code"


class MessageTooLarge(ClientProtocolError):
    code = "MessageTooLarge"
    message = "Message exceeds maximum payload size"


# Room-level failures, reported to the sender only.
class RoomStateError(RelayError):
    pass


class RoomUnavailable(RoomStateError):
    # Same error for missing and full rooms so codes cannot be enumerated
    code = "RoomUnavailable"
    message = "Room not found or is full"


class NoRoom(RoomStateError):
    code = "NoRoom"
    message = "Not in a room"


class RoomVanished(RoomStateError):
    code = "RoomVanished"
    message = "Room no longer exists"


class NoPartner(RoomStateError):
    code = "NoPartner"
    message = "No partner connected"
    retryable = True


class RoomCreationExhausted(RoomStateError):
    code = "RoomCreationExhausted"
    message = "Failed to create room"
    retryable = True


class TransportError(RelayError):
    retryable = True


class SendFailed(TransportError):
    code = "SendFailed"
    message = "Failed to deliver message to partner"


class FatalServerError(RelayError):
    code = "ServerError"
    message = "Internal server error"
    retryable = True
