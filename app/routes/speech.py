from fastapi import APIRouter, Depends, Request

from app.auth.gate import require_auth
from app.auth.identity import Principal

from .common import json_body, upstream_guard

router = APIRouter(prefix="/api/speech", tags=["speech"])


@router.post("/session", description="Start a speech practice session.")
async def create_speech_session(request: Request, principal: Principal = Depends(require_auth)):
    payload = await json_body(request) if await request.body() else {}
    async with upstream_guard(request, "speech_session_error", "Failed to create session"):
        return await request.app.state.store.create_speech_session(principal.id, payload.get("sessionType"))


@router.post("/record", description="Score one pronunciation attempt and append it to the session.")
async def record_speech_attempt(request: Request, principal: Principal = Depends(require_auth)):
    payload = await json_body(request)
    async with upstream_guard(request, "speech_record_error", "Failed to record speech attempt"):
        return await request.app.state.speech_service.record_attempt(
            payload.get("sessionId"),
            payload.get("word"),
            payload.get("phonetic") or "",
            payload.get("userTranscription"),
            payload.get("language"),
            payload.get("userAudio"),
            user_id=principal.id,
        )


@router.post("/assessment", description="Score a placement assessment.")
async def conduct_assessment(request: Request, principal: Principal = Depends(require_auth)):
    payload = await json_body(request)
    async with upstream_guard(request, "speech_assessment_error", "Failed to conduct assessment"):
        return await request.app.state.speech_service.conduct_assessment(principal.id, payload.get("assessmentResults"))


@router.get("/progress", description="Aggregated practice progress for the caller.")
async def speech_progress(request: Request, principal: Principal = Depends(require_auth)):
    async with upstream_guard(request, "speech_progress_error", "Failed to fetch progress"):
        return await request.app.state.speech_service.get_user_progress(principal.id)
