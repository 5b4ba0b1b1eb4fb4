"""Real-time channel: one WebSocket per client on ``/ws``.

Connection lifecycle::

    CONNECTING --token resolves--------------> AUTHENTICATED
    CONNECTING --no token (or lookup error)--> UNAUTHENTICATED --auth frame ok--> AUTHENTICATED
    CONNECTING --token does not resolve------> CLOSED (1008 "Authentication failed")
    any state  --transport closes------------> CLOSED

Frames are JSON envelopes ``{type, data?, content?}``; replies are
``{type, data}``. Frames of one connection are handled one at a time in
arrival order. A processing error produces a single ``error`` frame and never
closes the connection. Unknown frame types are ignored.
"""

import json
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.auth.resolver import TokenResolver, websocket_token
from app.errors import MalformedMessage
from app.metrics import WS_CONNECTIONS_OPEN, WS_FRAME_SECONDS, WS_FRAMES_TOTAL, WS_HANDSHAKE_TOTAL
from app.services.chat import ChatService

logger = logging.getLogger("speechbridge.realtime")

POLICY_VIOLATION = 1008
PROCESSING_ERROR = "Failed to process message"


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass
class ConnectionContext:
    connection_id: str
    state: ConnectionState = ConnectionState.CONNECTING
    identity: Optional[Dict[str, Any]] = None

    @property
    def user_id(self) -> Optional[str]:
        return self.identity["id"] if self.identity else None

    def authenticate(self, identity: Dict[str, Any]) -> None:
        self.identity = identity
        self.state = ConnectionState.AUTHENTICATED


FrameHandler = Callable[[WebSocket, ConnectionContext, Dict[str, Any]], Awaitable[None]]


class ChannelManager:
    def __init__(self, resolver: TokenResolver, chat: ChatService):
        self.resolver = resolver
        self.chat = chat
        self.connections: Dict[str, ConnectionContext] = {}
        self.handlers: Dict[str, FrameHandler] = {
            "speech_practice": self._on_speech_practice,
            "chat_message": self._on_chat_message,
        }

    async def handle(self, websocket: WebSocket) -> None:
        await websocket.accept()
        ctx = ConnectionContext(connection_id=str(uuid.uuid4()))
        self.connections[ctx.connection_id] = ctx
        WS_CONNECTIONS_OPEN.inc()
        logger.info(json.dumps({"event": "ws_connected", "connectionId": ctx.connection_id}))
        try:
            if not await self._handshake(websocket, ctx):
                return
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None and message.get("bytes") is not None:
                    raw = message["bytes"].decode("utf-8", errors="replace")
                await self.dispatch(websocket, ctx, raw or "")
        except WebSocketDisconnect:
            pass
        finally:
            ctx.state = ConnectionState.CLOSED
            self.connections.pop(ctx.connection_id, None)
            WS_CONNECTIONS_OPEN.dec()
            logger.info(json.dumps({
                "event": "ws_closed",
                "connectionId": ctx.connection_id,
                "userId": ctx.user_id,
            }))

    async def _handshake(self, websocket: WebSocket, ctx: ConnectionContext) -> bool:
        """Returns False when the connection was rejected and closed."""
        token = websocket_token(websocket)
        if not token:
            ctx.state = ConnectionState.UNAUTHENTICATED
            WS_HANDSHAKE_TOTAL.labels(outcome="anonymous").inc()
            logger.info(json.dumps({"event": "ws_no_token", "connectionId": ctx.connection_id}))
            return True
        try:
            user = await self.resolver.resolve_token(token)
        except Exception:
            # Store unavailable: keep the connection for non-identity features
            ctx.state = ConnectionState.UNAUTHENTICATED
            WS_HANDSHAKE_TOTAL.labels(outcome="error").inc()
            logger.exception(json.dumps({"event": "ws_handshake_error", "connectionId": ctx.connection_id}))
            return True
        if user is None:
            WS_HANDSHAKE_TOTAL.labels(outcome="rejected").inc()
            logger.warning(json.dumps({"event": "ws_invalid_token", "connectionId": ctx.connection_id}))
            ctx.state = ConnectionState.CLOSED
            await websocket.close(code=POLICY_VIOLATION, reason="Authentication failed")
            return False
        ctx.authenticate(user)
        WS_HANDSHAKE_TOTAL.labels(outcome="authenticated").inc()
        logger.info(json.dumps({"event": "ws_authenticated", "connectionId": ctx.connection_id, "userId": ctx.user_id}))
        return True

    async def send(self, websocket: WebSocket, frame: Dict[str, Any]) -> bool:
        """Send if the socket is still open; replies to a closed socket are dropped."""
        if websocket.application_state != WebSocketState.CONNECTED or websocket.client_state != WebSocketState.CONNECTED:
            return False
        try:
            await websocket.send_text(json.dumps(frame))
        except (WebSocketDisconnect, RuntimeError, OSError):
            logger.info(json.dumps({"event": "ws_send_dropped", "type": frame.get("type")}))
            return False
        return True

    async def dispatch(self, websocket: WebSocket, ctx: ConnectionContext, raw: str) -> None:
        t0 = time.perf_counter()
        label = "invalid"
        try:
            try:
                message = json.loads(raw)
            except ValueError as e:
                raise MalformedMessage() from e
            if not isinstance(message, dict):
                raise MalformedMessage()
            msg_type = message.get("type")
            if msg_type == "auth":
                label = "auth"
                await self._on_auth(websocket, ctx, message)
                return
            handler = self.handlers.get(msg_type) if isinstance(msg_type, str) else None
            if handler is None:
                label = "unknown"
                logger.debug(json.dumps({"event": "ws_unknown_type", "connectionId": ctx.connection_id, "type": str(msg_type)}))
                return
            label = msg_type
            await handler(websocket, ctx, message)
        except Exception as e:
            logger.exception(json.dumps({
                "event": "ws_message_error",
                "connectionId": ctx.connection_id,
                "type": label,
                "error": type(e).__name__,
            }))
            await self.send(websocket, {"type": "error", "data": {"message": PROCESSING_ERROR}})
        finally:
            WS_FRAMES_TOTAL.labels(type=label).inc()
            WS_FRAME_SECONDS.labels(type=label).observe(time.perf_counter() - t0)

    async def _on_auth(self, websocket: WebSocket, ctx: ConnectionContext, message: Dict[str, Any]) -> None:
        data = message.get("data")
        token = data.get("token") if isinstance(data, dict) else None
        user = None
        if isinstance(token, str) and token:
            try:
                user = await self.resolver.resolve_token(token)
            except Exception:
                logger.exception(json.dumps({"event": "ws_auth_message_error", "connectionId": ctx.connection_id}))
        if user is None:
            await self.send(websocket, {"type": "auth_error", "data": {"message": "Authentication failed"}})
            return
        if ctx.identity and ctx.user_id != user["id"]:
            logger.info(json.dumps({
                "event": "ws_reauthenticated",
                "connectionId": ctx.connection_id,
                "previousUserId": ctx.user_id,
                "userId": user["id"],
            }))
        ctx.authenticate(user)
        logger.info(json.dumps({"event": "ws_authenticated_message", "connectionId": ctx.connection_id, "userId": ctx.user_id}))
        await self.send(websocket, {"type": "auth_success", "data": {"userId": ctx.user_id}})

    async def _on_speech_practice(self, websocket: WebSocket, ctx: ConnectionContext, message: Dict[str, Any]) -> None:
        await self.send(websocket, {"type": "speech_feedback", "data": {"status": "processing"}})

    async def _on_chat_message(self, websocket: WebSocket, ctx: ConnectionContext, message: Dict[str, Any]) -> None:
        data = message.get("data") if isinstance(message.get("data"), dict) else {}
        content = message.get("content")
        if content is None:
            content = data.get("content")
        if not isinstance(content, str) or not content.strip():
            raise MalformedMessage("chat_message requires content")

        session_id = None
        requested = data.get("sessionId")
        if requested and ctx.user_id:
            session = await self.chat.store.get_emotional_session(str(requested))
            if session and session.get("userId") == ctx.user_id:
                session_id = session["id"]

        analysis = await self.chat.respond(session_id, content, voice_tone=data.get("voiceTone"))
        await self.send(websocket, {
            "type": "ai_response",
            "data": {
                "response": analysis["response"],
                "emotion": analysis["emotion"],
                "supportType": analysis["supportType"],
            },
        })
