"""
Error handling and sanitization

- Store errors -> one status code per error kind, body {"error", "message", "details"}
- Unexpected exceptions -> logged with traceback, generic message outside DEBUG
- Database driver details never reach the client
"""
import logging
import traceback
from typing import Union

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from pharmacy_store.core.config import settings
from pharmacy_store.core.exceptions import StoreError

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "postgresql",
    "sqlite",
    "traceback",
    "file \"",
    "/pharmacy_store/",
]


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """Error message safe for client exposure."""
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message
    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."
    if len(message) > 200:
        return message[:200] + "..."
    return message


async def store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    """Map a domain error to its HTTP status."""
    log = logger.error if exc.http_status >= 500 else logger.info
    log("%s %s -> %d %s: %s", request.method, request.url.path, exc.http_status, exc.code, exc.message)

    body = exc.to_dict()
    body["message"] = sanitize_error_message(exc.message)
    return JSONResponse(status_code=exc.http_status, content=body)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                "Unhandled exception [%s]: %s: %s\nPath: %s\nMethod: %s\nTraceback:\n%s",
                error_id, type(e).__name__, e, request.url.path, request.method, traceback.format_exc(),
            )

            content = {
                "error": "internal_error",
                "message": "An unexpected error occurred. Please try again later.",
                "details": {"error_id": error_id},
            }
            if settings.DEBUG:
                content["message"] = str(e)
                content["details"]["type"] = type(e).__name__
            return JSONResponse(status_code=500, content=content)
