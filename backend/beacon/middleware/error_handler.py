"""
Global error handling middleware.

Uses pure ASGI middleware (not BaseHTTPMiddleware) to avoid breaking
async generator dependencies like get_db_session().
"""
import json

from fastapi import HTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

from beacon.core.exceptions import StoreUnavailableError
from beacon.core.logging import get_logger

logger = get_logger(__name__)


class ErrorHandlerMiddleware:
    """
    Pure ASGI error handler that turns unhandled exceptions into JSON
    responses: 503 when the store is unavailable, 500 otherwise.

    Does NOT catch HTTPException; those are handled by FastAPI's
    default exception handler and must pass through unchanged.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False
        original_send = send

        async def send_wrapper(message):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await original_send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            if isinstance(e, HTTPException):
                raise

            if response_started:
                # Headers already sent, can't change the response
                logger.exception(
                    "Unhandled exception after response started",
                    error=str(e),
                    path=scope.get("path", "unknown"),
                )
                raise

            if isinstance(e, StoreUnavailableError):
                logger.error(
                    "Store unavailable",
                    error=e.message,
                    path=scope.get("path", "unknown"),
                    **e.context,
                )
                status_code = 503
                detail = "Service temporarily unavailable"
            else:
                logger.exception(
                    "Unhandled exception",
                    error=str(e),
                    path=scope.get("path", "unknown"),
                )
                status_code = 500
                detail = "Internal server error"

            body = json.dumps({
                "detail": detail,
                "type": type(e).__name__,
            }).encode("utf-8")

            await original_send({
                "type": "http.response.start",
                "status": status_code,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            })
            await original_send({
                "type": "http.response.body",
                "body": body,
            })
