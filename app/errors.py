from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse


class AppError(Exception):
    """Base error carrying an HTTP status and a message that is safe to show clients."""

    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None, *, extra: Optional[Dict[str, Any]] = None):
        self.message = message or self.default_message
        self.extra = extra or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = dict(self.extra)
        body["message"] = self.message
        return body


class AuthenticationFailure(AppError):
    status_code = 401
    default_message = "Unauthorized"


class ValidationFailure(AppError):
    status_code = 400
    default_message = "Invalid request"


class NotFound(AppError):
    status_code = 404
    default_message = "Not found"


class UpstreamFailure(AppError):
    status_code = 500
    default_message = "Internal server error"


class MalformedMessage(AppError):
    status_code = 400
    default_message = "Failed to process message"


async def _app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)  # type: ignore[arg-type]
