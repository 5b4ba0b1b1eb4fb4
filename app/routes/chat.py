from fastapi import APIRouter, Depends, Request

from app.auth.gate import require_auth
from app.auth.identity import Principal
from app.errors import NotFound, ValidationFailure

from .common import json_body, request_id_of, upstream_guard

router = APIRouter(prefix="/api/chat", tags=["chat"])


@router.post("/session", description="Start an emotional-support chat session.")
async def create_chat_session(request: Request, principal: Principal = Depends(require_auth)):
    async with upstream_guard(request, "chat_session_error", "Failed to create chat session"):
        return await request.app.state.store.create_emotional_session(principal.id, "chat")


@router.post("/message", description="Analyze a message, reply supportively, and record both turns.")
async def chat_message(request: Request, principal: Principal = Depends(require_auth)):
    payload = await json_body(request)
    message = payload.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationFailure("message is required")
    session_id = payload.get("sessionId")

    async with upstream_guard(request, "chat_message_error", "Failed to process message"):
        if session_id:
            session = await request.app.state.store.get_emotional_session(str(session_id))
            if not session or session.get("userId") != principal.id:
                raise NotFound("Chat session not found")
        analysis = await request.app.state.chat_service.respond(
            str(session_id) if session_id else None,
            message,
            voice_tone=payload.get("voiceTone"),
            request_id=request_id_of(request),
        )
    return {
        "response": analysis["response"],
        "emotion": analysis["emotion"],
        "confidence": analysis["confidence"],
        "supportType": analysis["supportType"],
    }


@router.get("/messages/{session_id}", description="Messages of a chat session in chronological order.")
async def chat_messages(session_id: str, request: Request, principal: Principal = Depends(require_auth)):
    store = request.app.state.store
    async with upstream_guard(request, "chat_messages_error", "Failed to fetch messages"):
        session = await store.get_emotional_session(session_id)
        if session is None or session.get("userId") != principal.id:
            # Unknown id: fall back to the caller's most recent session
            recent = await store.get_emotional_sessions(principal.id, 1)
            session = recent[0] if recent else None
        return session["messages"] if session else []
