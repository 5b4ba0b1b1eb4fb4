import json
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict

from fastapi import Request

from app.errors import AppError, UpstreamFailure, ValidationFailure

logger = logging.getLogger("speechbridge.api")


async def json_body(request: Request) -> Dict[str, Any]:
    try:
        payload = await request.json()
    except Exception:
        raise ValidationFailure("Invalid JSON body")
    if not isinstance(payload, dict):
        raise ValidationFailure("Invalid JSON body")
    return payload


def request_id_of(request: Request):
    return getattr(getattr(request, "state", object()), "request_id", None) or request.headers.get("x-request-id")


@asynccontextmanager
async def upstream_guard(request: Request, event: str, message: str):
    """Map unexpected errors inside a route to a generic 500; AppErrors pass through."""
    try:
        yield
    except AppError:
        raise
    except Exception as e:
        logger.exception(json.dumps({
            "event": event,
            "route": request.url.path,
            "requestId": request_id_of(request),
            "error": type(e).__name__,
        }))
        raise UpstreamFailure(message) from e
