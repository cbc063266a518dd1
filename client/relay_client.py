import asyncio
import json
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from client.reconnect import (
    ABNORMAL_CLOSE,
    CLEAN_CLOSE,
    ConnectionState,
    FailureKind,
    ReconnectExhausted,
    ReconnectPolicy,
    ReconnectStateMachine,
    Transition,
)
from logging_config import get_logger

logger = get_logger(__name__)


class NotConnected(Exception):
    retryable = True


class _Stopped(Exception):
    pass


@dataclass(frozen=True)
class ServerErrorNotice:
    code: str
    message: str
    retryable: bool


class RelayClient:
    """Keeps one logical connection to the relay alive across transient failures.

    ``run()`` returns after a clean close or ``close()``, and raises
    ``ReconnectExhausted`` once the policy gives up.
    """

    def __init__(
        self,
        url: str,
        policy: Optional[ReconnectPolicy] = None,
        on_message: Optional[Callable[[dict], None]] = None,
        on_state_change: Optional[Callable[[Transition], None]] = None,
        on_error: Optional[Callable[[ServerErrorNotice], None]] = None,
        connect: Callable[..., Awaitable[Any]] = ws_connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.url = url
        self.fsm = ReconnectStateMachine(policy)
        self.on_message = on_message
        self.on_error = on_error
        if on_state_change is not None:
            self.fsm.add_listener(on_state_change)
        self._connect = connect
        self._sleep = sleep
        self._ws = None
        self._stopping = False
        self._connected = asyncio.Event()
        self._stop = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self.fsm.state

    async def run(self) -> None:
        self._stopping = False
        self._stop.clear()
        self.fsm.connect()
        try:
            while True:
                transition = await self._attempt()
                if transition.state is ConnectionState.DISCONNECTED:
                    logger.info("Connection closed cleanly, not reconnecting")
                    return
                if transition.state is ConnectionState.FAILED:
                    raise ReconnectExhausted(self.fsm.attempt, transition.failure)
                await self._until_stopped(self._sleep(transition.delay))
                self.fsm.retry()
        except _Stopped:
            if self.fsm.state is not ConnectionState.DISCONNECTED:
                self.fsm.disconnect()
            logger.info("Relay client closed")

    async def _until_stopped(self, aw):
        """Await ``aw`` unless ``close()`` comes first; then ``aw`` is cancelled and _Stopped raised."""
        work = asyncio.ensure_future(aw)
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            await asyncio.wait({work, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not work.done():
                work.cancel()
        if work.done() and not work.cancelled():
            return work.result()
        raise _Stopped()

    async def _attempt(self) -> Transition:
        """One CONNECTING phase plus, on success, the CONNECTED phase until the socket closes."""
        timeout = self.fsm.policy.connect_timeout
        try:
            ws = await self._until_stopped(asyncio.wait_for(self._connect(self.url), timeout=timeout))
        except asyncio.TimeoutError:
            logger.warning(f"Connection to {self.url} timed out after {timeout}s")
            return self.fsm.connect_failed(FailureKind.TIMEOUT)
        except (InvalidHandshake, InvalidURI, OSError) as e:
            logger.warning(f"Connection to {self.url} rejected: {e}")
            return self.fsm.connect_failed(FailureKind.REJECTED)

        if self._stopping:
            await self._close_quietly(ws)
            raise _Stopped()

        self._ws = ws
        self.fsm.connected()
        self._connected.set()
        try:
            code = await self._receive_loop(ws)
        except BaseException:
            # a callback raised or run() was cancelled; the socket must not outlive it
            self.fsm.disconnect()
            await self._close_quietly(ws)
            raise
        finally:
            self._ws = None
            self._connected.clear()
        if self._stopping:
            raise _Stopped()
        return self.fsm.closed(code)

    async def _close_quietly(self, ws) -> None:
        try:
            await ws.close(code=CLEAN_CLOSE)
        except Exception as e:
            logger.debug(f"Error closing relay connection: {e}")

    async def _receive_loop(self, ws) -> int:
        try:
            async for raw in ws:
                self._handle_raw(raw)
        except ConnectionClosed as e:
            return e.rcvd.code if e.rcvd is not None else ABNORMAL_CLOSE
        return ws.close_code if ws.close_code is not None else ABNORMAL_CLOSE

    def _handle_raw(self, raw) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            logger.warning("Dropping malformed frame from relay")
            return
        if not isinstance(message, dict):
            logger.warning("Dropping non-object frame from relay")
            return
        if message.get("type") == "ERROR":
            notice = ServerErrorNotice(
                code=message.get("code", "ServerError"),
                message=message.get("message", ""),
                retryable=bool(message.get("retryable", False)),
            )
            logger.info(f"Relay reported {notice.code}: {notice.message}")
            if self.on_error is not None:
                self.on_error(notice)
            return
        if self.on_message is not None:
            self.on_message(message)

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout=timeout)

    async def send(self, message: dict) -> None:
        if self._ws is None or self.fsm.state is not ConnectionState.CONNECTED:
            raise NotConnected(f"Cannot send {message.get('type')} while {self.fsm.state.value}")
        await self._ws.send(json.dumps(message))

    async def create_room(self) -> None:
        await self.send({"type": "CREATE_ROOM"})

    async def join_room(self, code: str) -> None:
        await self.send({"type": "JOIN_ROOM", "code": code})

    async def send_sensor_data(self, payload: Any) -> None:
        await self.send({"type": "SENSOR_DATA", "payload": payload})

    async def send_calibration_data(self, payload: Any) -> None:
        await self.send({"type": "CALIBRATION_DATA", "payload": payload})

    async def close(self) -> None:
        """Stop for good: drops the live socket, or abandons a pending connect or retry."""
        self._stopping = True
        self._stop.set()
        ws = self._ws
        if ws is not None:
            await ws.close(code=CLEAN_CLOSE)
