"""
Session Bridge for the Realtime Proxy
=====================================

Relays one downstream client WebSocket to one upstream realtime WebSocket.

Browsers cannot attach an Authorization header to a WebSocket upgrade, so the
proxy opens the upstream connection on the client's behalf with the
process-wide credential and then forwards frames in both directions.

Per session:
    - Downstream task: client frames -> upstream (verbatim, text stays text)
    - Upstream task: opens the upstream connection, then upstream frames ->
      client (text frames normalized to str, binary passed through)
    - When either task ends, the other is cancelled and both legs are closed

Frames arriving while the destination leg is not open are dropped, never
buffered. Upstream is never retried; the client reconnects if it wants to.
"""

import asyncio
import logging
import secrets
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Union

from fastapi import WebSocket, WebSocketDisconnect, status
from websockets.asyncio.client import connect
from websockets.exceptions import ConnectionClosed, InvalidStatus, WebSocketException

from ..config import Settings
from ..models import SessionSummary

logger = logging.getLogger("realtime_proxy.realtime.bridge")

# connector(url, headers) -> connected upstream WebSocket
UpstreamConnector = Callable[[str, Dict[str, str]], Awaitable[Any]]

MAX_CLOSE_REASON_BYTES = 123

# Codes an endpoint may put in a close frame (RFC 6455 section 7.4)
RELAYABLE_CLOSE_CODES = frozenset({1000, 1001, 1003, 1007, 1008, 1009, 1011, 1012, 1013, 1014})

AUTH_REJECTED_STATUSES = (401, 403)


# ============================================================================
# Frames
# ============================================================================

class FrameKind(str, Enum):
    TEXT = "text"
    BINARY = "binary"


@dataclass(frozen=True)
class Frame:
    """A single WebSocket message and its framing kind."""

    payload: Union[str, bytes]
    kind: FrameKind

    @classmethod
    def from_downstream(cls, message: Dict[str, Any]) -> "Frame":
        """Build a frame from an ASGI ``websocket.receive`` message."""
        text = message.get("text")
        if text is not None:
            return cls(text, FrameKind.TEXT)
        return cls(message.get("bytes") or b"", FrameKind.BINARY)

    @classmethod
    def from_upstream(cls, message: Union[str, bytes]) -> "Frame":
        """Build a frame from a message yielded by the upstream connection."""
        if isinstance(message, str):
            return cls(message, FrameKind.TEXT)
        return cls(bytes(message), FrameKind.BINARY)


def normalize_upstream_frame(frame: Frame) -> Frame:
    """
    Make sure text frames reach the client as character strings.

    Binary frames are returned untouched. A text frame whose payload is a raw
    byte buffer is decoded as UTF-8, so clients always get text frames as
    plain strings rather than blobs.

    Args:
        frame: Frame received from the upstream connection

    Returns:
        Frame safe to send downstream with send_text/send_bytes
    """
    if frame.kind is FrameKind.BINARY or isinstance(frame.payload, str):
        return frame
    return Frame(bytes(frame.payload).decode("utf-8", errors="replace"), FrameKind.TEXT)


# ============================================================================
# Leg State Machine
# ============================================================================

class LegState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSING = "closing"
    CLOSED = "closed"
    ERRORED = "errored"


_TRANSITIONS = {
    LegState.CONNECTING: {LegState.OPEN, LegState.ERRORED, LegState.CLOSING, LegState.CLOSED},
    LegState.OPEN: {LegState.ERRORED, LegState.CLOSING, LegState.CLOSED},
    LegState.ERRORED: {LegState.CLOSING},
    LegState.CLOSING: {LegState.CLOSED},
    LegState.CLOSED: set(),
}


@dataclass
class Leg:
    """Lifecycle state of one side (downstream or upstream) of a session."""

    name: str
    state: LegState = LegState.CONNECTING
    close_code: Optional[int] = None
    close_reason: Optional[str] = None

    @property
    def is_open(self) -> bool:
        return self.state is LegState.OPEN

    @property
    def is_closed(self) -> bool:
        return self.state is LegState.CLOSED

    def transition(self, new_state: LegState) -> bool:
        """Move to new_state if the state machine allows it."""
        if new_state not in _TRANSITIONS[self.state]:
            logger.debug(f"Ignored {self.name} transition {self.state.value} -> {new_state.value}")
            return False
        self.state = new_state
        return True

    def fail(self) -> None:
        # errored is transient: the leg goes straight on to closing
        if self.transition(LegState.ERRORED):
            self.transition(LegState.CLOSING)

    def mark_closed(self, code: Optional[int], reason: Optional[str] = None) -> None:
        if self.close_code is None:
            self.close_code = code
            self.close_reason = reason
        if self.state is not LegState.CLOSING:
            self.transition(LegState.CLOSING)
        self.transition(LegState.CLOSED)


# ============================================================================
# Helpers
# ============================================================================

def relayable_close_code(code: Optional[int]) -> int:
    """Close code to send downstream for an upstream close code."""
    if code is not None and (code in RELAYABLE_CLOSE_CODES or 3000 <= code < 5000):
        return code
    return status.WS_1000_NORMAL_CLOSURE


def clip_close_reason(reason: Optional[str]) -> str:
    """Clip a close reason to the 123-byte limit of a close frame."""
    if not reason:
        return ""
    encoded = reason.encode("utf-8")
    if len(encoded) <= MAX_CLOSE_REASON_BYTES:
        return reason
    return encoded[:MAX_CLOSE_REASON_BYTES].decode("utf-8", errors="ignore")


@contextmanager
def best_effort_close(leg: Leg, session_id: str):
    """Run a peer-close attempt; failures are logged and never interrupt teardown."""
    try:
        yield
    except Exception as e:
        logger.warning(
            f"Error closing {leg.name} connection: {str(e)}",
            extra={"session_id": session_id, "leg": leg.name},
        )


def build_connector(settings: Settings) -> UpstreamConnector:
    """
    Create the default upstream connector.

    Args:
        settings: Application settings (frame size limit, handshake timeout)

    Returns:
        Coroutine function opening a websockets client connection.
    """

    async def connect_upstream(url: str, headers: Dict[str, str]):
        return await connect(
            url,
            additional_headers=headers,
            max_size=settings.MAX_MESSAGE_BYTES,
            open_timeout=settings.UPSTREAM_OPEN_TIMEOUT,
        )

    return connect_upstream


# ============================================================================
# Bridge Session
# ============================================================================

class BridgeSession:
    """
    One relay session: an accepted client WebSocket paired with one upstream
    connection opened on its behalf.

    The session owns both handles exclusively. Call run() once; it returns
    when both legs are closed.

    Attributes:
        downstream: Accepted client WebSocket
        upstream: Upstream connection once the handshake succeeds, else None
        downstream_leg: Client leg state
        upstream_leg: Upstream leg state
        summary: Counters and close details, logged when the session ends
    """

    def __init__(
        self,
        downstream: WebSocket,
        upstream_url: str,
        upstream_headers: Dict[str, str],
        connector: UpstreamConnector,
        session_id: Optional[str] = None,
    ):
        self.downstream = downstream
        self.upstream = None
        self.upstream_url = upstream_url
        self._upstream_headers = upstream_headers
        self._connector = connector
        self.session_id = session_id or secrets.token_hex(4)

        self.downstream_leg = Leg("downstream", LegState.OPEN)
        self.upstream_leg = Leg("upstream")
        self.summary = SessionSummary(session_id=self.session_id, upstream_url=upstream_url)

        # Close frame the client gets if the upstream side ends first
        self._downstream_close: Tuple[int, str] = (status.WS_1000_NORMAL_CLOSURE, "")

    @classmethod
    def from_settings(
        cls,
        downstream: WebSocket,
        settings: Settings,
        connector: UpstreamConnector,
    ) -> "BridgeSession":
        return cls(downstream, settings.upstream_url, settings.upstream_headers, connector)

    @property
    def _log_context(self) -> Dict[str, Any]:
        return {"session_id": self.session_id}

    async def run(self) -> SessionSummary:
        """
        Relay frames until either side closes, then tear both legs down.

        Returns:
            SessionSummary describing the finished session
        """
        logger.info("Client connected", extra={**self._log_context, "upstream_url": self.upstream_url})

        downstream_task = asyncio.create_task(
            self._relay_downstream(), name=f"relay-{self.session_id}-downstream"
        )
        upstream_task = asyncio.create_task(
            self._relay_upstream(), name=f"relay-{self.session_id}-upstream"
        )
        tasks = {downstream_task: self.downstream_leg, upstream_task: self.upstream_leg}

        try:
            await asyncio.wait(list(tasks), return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

            for task, leg in tasks.items():
                self._collect(task, leg)

            await self._teardown()

        self._finish_summary()
        logger.info("Session closed", extra=self.summary.model_dump())
        return self.summary

    # ------------------------------------------------------------------------
    # Downstream -> Upstream
    # ------------------------------------------------------------------------

    async def _relay_downstream(self) -> None:
        """Forward client frames upstream until the client disconnects."""
        while True:
            message = await self.downstream.receive()
            message_type = message["type"]

            if message_type == "websocket.disconnect":
                code = message.get("code", status.WS_1000_NORMAL_CLOSURE)
                self.downstream_leg.mark_closed(code, message.get("reason") or "")
                logger.info("Client disconnected", extra={**self._log_context, "close_code": code})
                return

            if message_type == "websocket.receive":
                await self._send_upstream(Frame.from_downstream(message))

    async def _send_upstream(self, frame: Frame) -> None:
        if not self.upstream_leg.is_open:
            self._drop(frame, "upstream not open")
            return

        try:
            await self.upstream.send(frame.payload)
        except ConnectionClosed:
            self._drop(frame, "upstream closed")
            return

        self.summary.frames_to_upstream += 1

    # ------------------------------------------------------------------------
    # Upstream -> Downstream
    # ------------------------------------------------------------------------

    async def _relay_upstream(self) -> None:
        """Open the upstream connection, then forward its frames to the client."""
        try:
            self.upstream = await self._connector(self.upstream_url, self._upstream_headers)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._fail_upstream(e, handshake=True)
            return

        self.upstream_leg.transition(LegState.OPEN)
        self.summary.upstream_opened = True
        logger.info("Connected to upstream realtime API", extra=self._log_context)

        try:
            async for message in self.upstream:
                await self._send_downstream(normalize_upstream_frame(Frame.from_upstream(message)))
        except ConnectionClosed as e:
            # websockets raises for any close code outside 1000/1001/1005;
            # a received close frame is still a clean close to relay
            if e.rcvd is None:
                self._fail_upstream(e)
            else:
                self._upstream_closed(e.rcvd.code, e.rcvd.reason)
            return

        self._upstream_closed(self.upstream.close_code, self.upstream.close_reason)

    def _upstream_closed(self, code: Optional[int], reason: Optional[str]) -> None:
        reason = reason or ""
        self.upstream_leg.mark_closed(code, reason)
        self._downstream_close = (relayable_close_code(code), reason)
        logger.info(
            "Disconnected from upstream realtime API",
            extra={**self._log_context, "close_code": code, "close_reason": reason},
        )

    async def _send_downstream(self, frame: Frame) -> None:
        if not self.downstream_leg.is_open:
            self._drop(frame, "client not open")
            return

        try:
            if frame.kind is FrameKind.TEXT:
                await self.downstream.send_text(frame.payload)
            else:
                await self.downstream.send_bytes(frame.payload)
        except (WebSocketDisconnect, RuntimeError, OSError):
            self._drop(frame, "client closed")
            return

        self.summary.frames_to_downstream += 1

    def _fail_upstream(self, error: Exception, handshake: bool = False) -> None:
        self.upstream_leg.fail()
        self.summary.error = f"{type(error).__name__}: {error}"

        if isinstance(error, InvalidStatus) and error.response.status_code in AUTH_REJECTED_STATUSES:
            self._downstream_close = (status.WS_1008_POLICY_VIOLATION, "Upstream rejected credentials")
        elif handshake:
            self._downstream_close = (status.WS_1011_INTERNAL_ERROR, "Upstream connection failed")
        else:
            self._downstream_close = (status.WS_1011_INTERNAL_ERROR, "Upstream connection lost")

        if handshake:
            logger.warning(f"Upstream connection failed: {error}", extra=self._log_context)
        else:
            logger.error(f"Upstream WebSocket error: {error}", extra=self._log_context)

    # ------------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------------

    def _collect(self, task: asyncio.Task, leg: Leg) -> None:
        """Record an unexpected exception raised by one of the relay tasks."""
        if task.cancelled() or task.exception() is None:
            return

        error = task.exception()
        logger.error(
            f"{leg.name.capitalize()} WebSocket error: {error}",
            extra=self._log_context,
            exc_info=error,
        )
        leg.fail()
        if leg is self.upstream_leg:
            self.summary.error = f"{type(error).__name__}: {error}"
            self._downstream_close = (status.WS_1011_INTERNAL_ERROR, "Upstream connection error")

    async def _teardown(self) -> None:
        """Drive both legs to closed; close failures are logged only."""
        if not self.downstream_leg.is_closed:
            code, reason = self._downstream_close
            reason = clip_close_reason(reason)
            self.downstream_leg.transition(LegState.CLOSING)
            with best_effort_close(self.downstream_leg, self.session_id):
                await self.downstream.close(code=code, reason=reason)
            self.downstream_leg.mark_closed(code, reason)

        if not self.upstream_leg.is_closed:
            self.upstream_leg.transition(LegState.CLOSING)
            if self.upstream is not None:
                with best_effort_close(self.upstream_leg, self.session_id):
                    await self.upstream.close()
                self.upstream_leg.mark_closed(self.upstream.close_code, self.upstream.close_reason)
            else:
                self.upstream_leg.mark_closed(None)

    def _drop(self, frame: Frame, why: str) -> None:
        self.summary.frames_dropped += 1
        logger.debug(f"Dropped {frame.kind.value} frame: {why}", extra=self._log_context)

    def _finish_summary(self) -> None:
        self.summary.upstream_close_code = self.upstream_leg.close_code
        self.summary.upstream_close_reason = self.upstream_leg.close_reason
        self.summary.downstream_close_code = self.downstream_leg.close_code
        self.summary.downstream_close_reason = self.downstream_leg.close_reason
