"""WebSocket sessions: per-connection state machine and the publisher driving it."""
import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Optional
from uuid import uuid4

from fastapi import WebSocket, WebSocketDisconnect, status
from fastapi.websockets import WebSocketState

from .calibration import MapCalibration
from .errors import SessionIOError

if TYPE_CHECKING:
    from .log_aggregator import LogAggregator


class SessionState(Enum):
    """Session lifecycle."""
    CONNECTING = "connecting"
    AWAITING_SUBSCRIBE = "awaiting_subscribe"
    STREAMING = "streaming"
    CLOSED = "closed"


_TRANSITIONS = {
    SessionState.CONNECTING: {SessionState.AWAITING_SUBSCRIBE, SessionState.CLOSED},
    SessionState.AWAITING_SUBSCRIBE: {SessionState.STREAMING, SessionState.CLOSED},
    SessionState.STREAMING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}

WS_NORMAL_CLOSURE = status.WS_1000_NORMAL_CLOSURE
WS_INTERNAL_ERROR = status.WS_1011_INTERNAL_ERROR

# Raised by Starlette/uvicorn when the peer is gone or the socket is already closed
_SOCKET_ERRORS = (WebSocketDisconnect, RuntimeError, OSError)

# RFC 6455 caps the close reason at 123 UTF-8 bytes
_MAX_CLOSE_REASON = 123


def truncate_close_reason(reason: str) -> str:
    """Cut reason to fit a close frame without splitting a UTF-8 sequence."""
    encoded = reason.encode("utf-8")
    if len(encoded) <= _MAX_CLOSE_REASON:
        return reason
    return encoded[:_MAX_CLOSE_REASON].decode("utf-8", errors="ignore")


@dataclass
class Session:
    """One accepted client connection. Owned by the coroutine handling it."""
    session_id: str
    state: SessionState = SessionState.CONNECTING
    history: list = field(default_factory=lambda: [SessionState.CONNECTING])
    handshake: Any = None

    # Streaming
    ticks_sent: int = 0
    dropped: int = 0

    # Termination
    close_code: Optional[int] = None
    close_reason: str = ""
    start_time: datetime = field(default_factory=datetime.now)
    stop_time: Optional[datetime] = None

    logs: deque = field(default_factory=lambda: deque(maxlen=200))

    @property
    def is_closed(self) -> bool:
        return self.state == SessionState.CLOSED

    @property
    def runtime_formatted(self) -> str:
        end = self.stop_time or datetime.now()
        runtime = (end - self.start_time).total_seconds()
        hours = int(runtime // 3600)
        minutes = int((runtime % 3600) // 60)
        seconds = int(runtime % 60)
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"

    def transition(self, new_state: SessionState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise ValueError(f"illegal session transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)

    def add_log(self, message: str, source: str = "SESSION") -> None:
        timestamp = datetime.now().strftime("%H:%M:%S")
        self.logs.append(f"[{timestamp}] [{source}] {message}")

    def to_dict(self) -> dict:
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "ticks_sent": self.ticks_sent,
            "dropped": self.dropped,
            "runtime": self.runtime_formatted,
            "close_code": self.close_code,
            "close_reason": self.close_reason,
        }


class SessionPublisher:
    """Serves the record feed to WebSocket subscribers, one Session per connection.

    Protocol:
      client -> one JSON subscribe message (content echoed back, not interpreted)
      server -> {"type": "subscribed", "session", "echo", "map"}
      server -> {"type": "tick", "tick", "players"} per record, in tick order
      server -> {"type": "end", "ticks", "dropped"} then close 1000

    Any failure closes with 1011. Sessions share nothing but the calibration
    and the feed, which are never mutated by a session.
    """

    def __init__(
        self,
        calibration: MapCalibration,
        feed,
        handshake_timeout: float = 10.0,
        write_timeout: float = 5.0,
        log_aggregator: Optional["LogAggregator"] = None,
        on_closed: Optional[Callable[[Session], None]] = None,
    ) -> None:
        self.calibration = calibration
        self.feed = feed
        self.handshake_timeout = handshake_timeout
        self.write_timeout = write_timeout
        self.log_aggregator = log_aggregator
        self.on_closed = on_closed
        self.sessions: dict[str, Session] = {}
        self.completed = 0

    def _log(self, session: Session, message: str) -> None:
        session.add_log(message)
        if self.log_aggregator is not None:
            self.log_aggregator.add(f"[{session.session_id}] {message}", "SESSION")

    async def handle(self, websocket: WebSocket) -> None:
        """Run one connection to completion. Never raises for I/O problems."""
        session = Session(session_id=uuid4().hex[:8])
        self.sessions[session.session_id] = session
        try:
            await self._run(websocket, session)
        finally:
            self.sessions.pop(session.session_id, None)
            self.completed += 1

    async def _run(self, websocket: WebSocket, session: Session) -> None:
        try:
            await websocket.accept()
        except _SOCKET_ERRORS as e:
            await self._close(websocket, session, WS_INTERNAL_ERROR, f"accept failed: {e}")
            return
        session.transition(SessionState.AWAITING_SUBSCRIBE)
        self._log(session, "Connected, awaiting subscribe message")

        try:
            session.handshake = await self._read_handshake(websocket)
        except SessionIOError as e:
            await self._close(websocket, session, WS_INTERNAL_ERROR, str(e))
            return

        session.transition(SessionState.STREAMING)
        self._log(session, "Subscribed, streaming")
        try:
            await self._send(websocket, {
                "type": "subscribed",
                "session": session.session_id,
                "echo": session.handshake,
                "map": self.calibration.to_dict(),
            })
            await self._stream_until_done(websocket, session)
        except SessionIOError as e:
            await self._close(websocket, session, WS_INTERNAL_ERROR, str(e))
            return
        await self._close(websocket, session, WS_NORMAL_CLOSURE, "")

    async def _read_handshake(self, websocket: WebSocket) -> Any:
        try:
            return await asyncio.wait_for(websocket.receive_json(), timeout=self.handshake_timeout)
        except asyncio.TimeoutError as e:
            raise SessionIOError(f"no subscribe message within {self.handshake_timeout}s") from e
        except WebSocketDisconnect as e:
            raise SessionIOError(f"client closed before subscribing (code {e.code})") from e
        except (ValueError, KeyError) as e:
            # KeyError: binary frame where a JSON text frame was expected
            raise SessionIOError(f"undecodable subscribe message: {e!r}") from e
        except (RuntimeError, OSError) as e:
            raise SessionIOError(f"subscribe read failed: {e}") from e

    async def _send(self, websocket: WebSocket, message: dict) -> None:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self.write_timeout)
        except asyncio.TimeoutError as e:
            raise SessionIOError(f"write timed out after {self.write_timeout}s") from e
        except _SOCKET_ERRORS as e:
            raise SessionIOError(f"write failed: {e!r}") from e

    async def _stream(self, websocket: WebSocket, session: Session) -> None:
        cursor = self.feed.subscribe()
        try:
            while True:
                record = await cursor.next()
                if record is None:
                    break
                await self._send(websocket, record.to_message())
                session.ticks_sent += 1
            session.dropped = cursor.dropped
            if cursor.error is not None:
                raise SessionIOError(f"demo feed failed: {cursor.error}")
            await self._send(websocket, {
                "type": "end",
                "ticks": session.ticks_sent,
                "dropped": session.dropped,
            })
        finally:
            session.dropped = cursor.dropped
            cursor.close()

    async def _watch_disconnect(self, websocket: WebSocket, session: Session) -> Optional[int]:
        """Return the close code once the client goes away."""
        while True:
            try:
                message = await websocket.receive()
            except _SOCKET_ERRORS:
                return None
            if message["type"] == "websocket.disconnect":
                return message.get("code")
            session.add_log("Ignored client message while streaming")

    async def _stream_until_done(self, websocket: WebSocket, session: Session) -> None:
        streamer = asyncio.create_task(self._stream(websocket, session))
        watcher = asyncio.create_task(self._watch_disconnect(websocket, session))
        try:
            done, _ = await asyncio.wait({streamer, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (streamer, watcher):
                if not task.done():
                    task.cancel()
            await asyncio.gather(streamer, watcher, return_exceptions=True)
        if streamer in done:
            streamer.result()
            return
        raise SessionIOError(f"client closed the connection (code {watcher.result()})")

    async def _close(self, websocket: WebSocket, session: Session, code: int, reason: str) -> None:
        session.close_code = code
        session.close_reason = truncate_close_reason(reason)
        session.stop_time = datetime.now()
        session.transition(SessionState.CLOSED)
        if code == WS_NORMAL_CLOSURE:
            self._log(session, f"Closed normally after {session.ticks_sent} ticks")
        else:
            self._log(session, f"Closed with {code}: {reason}")
        if self.on_closed is not None:
            self.on_closed(session)
        if (
            websocket.client_state == WebSocketState.DISCONNECTED
            or websocket.application_state == WebSocketState.DISCONNECTED
        ):
            return
        try:
            await websocket.close(code=code, reason=session.close_reason)
        except _SOCKET_ERRORS as e:
            session.add_log(f"Close handshake failed: {e!r}")

    def summary(self) -> list[dict]:
        return [s.to_dict() for s in self.sessions.values()]
