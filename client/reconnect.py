"""Reconnection state machine for relay peers.

The machine only decides; it never sleeps or touches a socket. A driver
(see ``client.relay_client.RelayClient``) reports what happened on the
transport and honours the delay the machine hands back.

    DISCONNECTED --connect--> CONNECTING --connected--> CONNECTED
    CONNECTING --failed--> RECONNECTING | FAILED
    CONNECTED --closed(clean)--> DISCONNECTED
    CONNECTED --closed(other)--> RECONNECTING | FAILED
    RECONNECTING --retry--> CONNECTING
"""
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional

from logging_config import get_logger

logger = get_logger(__name__)

CLEAN_CLOSE = 1000
# Only a normal closure ends the session; 1001 (room expired, server going away) is redialled
CLEAN_CLOSE_CODES = frozenset({CLEAN_CLOSE})
ABNORMAL_CLOSE = 1006


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    FAILED = "failed"


class FailureKind(str, Enum):
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    ABNORMAL_CLOSE = "abnormal_close"


class InvalidTransition(Exception):
    pass


class ReconnectExhausted(Exception):
    """Raised once the retry budget is spent. Not retryable."""

    retryable = False

    def __init__(self, attempts: int, last_failure: Optional[FailureKind]):
        self.attempts = attempts
        self.last_failure = last_failure
        super().__init__(f"Gave up after {attempts} reconnection attempts (last failure: {last_failure})")


@dataclass(frozen=True)
class ReconnectPolicy:
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_attempts: int = 5
    connect_timeout: float = 10.0

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)


@dataclass(frozen=True)
class Transition:
    previous: ConnectionState
    state: ConnectionState
    delay: Optional[float] = None
    failure: Optional[FailureKind] = None
    close_code: Optional[int] = None


def is_clean_close(code: Optional[int]) -> bool:
    return code in CLEAN_CLOSE_CODES


class ReconnectStateMachine:
    def __init__(self, policy: Optional[ReconnectPolicy] = None):
        self.policy = policy or ReconnectPolicy()
        self.state = ConnectionState.DISCONNECTED
        self.attempt = 0
        self.last_failure: Optional[FailureKind] = None
        self._listeners: List[Callable[[Transition], None]] = []

    def add_listener(self, listener: Callable[[Transition], None]) -> None:
        self._listeners.append(listener)

    def connect(self) -> Transition:
        """Start a fresh connection. Allowed from DISCONNECTED and FAILED."""
        self._expect(ConnectionState.DISCONNECTED, ConnectionState.FAILED)
        self.attempt = 0
        self.last_failure = None
        return self._move(ConnectionState.CONNECTING)

    def connected(self) -> Transition:
        self._expect(ConnectionState.CONNECTING)
        if self.attempt:
            logger.info(f"Reconnected after {self.attempt} attempts")
        self.attempt = 0
        self.last_failure = None
        return self._move(ConnectionState.CONNECTED)

    def connect_failed(self, failure: FailureKind = FailureKind.REJECTED) -> Transition:
        """A handshake rejection or timeout counts the same as an abnormal close."""
        self._expect(ConnectionState.CONNECTING)
        return self._schedule_retry(failure)

    def closed(self, code: Optional[int]) -> Transition:
        self._expect(ConnectionState.CONNECTED)
        if is_clean_close(code):
            return self._move(ConnectionState.DISCONNECTED, close_code=code)
        logger.warning(f"Connection closed abnormally (code={code})")
        return self._schedule_retry(FailureKind.ABNORMAL_CLOSE, close_code=code)

    def retry(self) -> Transition:
        self._expect(ConnectionState.RECONNECTING)
        return self._move(ConnectionState.CONNECTING)

    def disconnect(self) -> Transition:
        """Caller-initiated stop; cancels any pending retry."""
        return self._move(ConnectionState.DISCONNECTED)

    def _schedule_retry(self, failure: FailureKind, close_code: Optional[int] = None) -> Transition:
        self.last_failure = failure
        if self.attempt >= self.policy.max_attempts:
            logger.error(f"Reconnection failed after {self.attempt} attempts ({failure.value})")
            return self._move(ConnectionState.FAILED, failure=failure, close_code=close_code)
        delay = self.policy.delay_for(self.attempt)
        self.attempt += 1
        logger.info(
            f"Reconnecting in {delay}s (attempt {self.attempt}/{self.policy.max_attempts}, {failure.value})"
        )
        return self._move(ConnectionState.RECONNECTING, delay=delay, failure=failure, close_code=close_code)

    def _expect(self, *states: ConnectionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.value for s in states)
            raise InvalidTransition(f"Cannot do that from {self.state.value} (expected {allowed})")

    def _move(self, state: ConnectionState, delay: Optional[float] = None,
              failure: Optional[FailureKind] = None, close_code: Optional[int] = None) -> Transition:
        transition = Transition(previous=self.state, state=state, delay=delay, failure=failure,
                                close_code=close_code)
        self.state = state
        logger.debug(f"Connection state {transition.previous.value} -> {state.value}")
        for listener in self._listeners:
            listener(transition)
        return transition
