"""
Global error handling.

Domain errors are mapped to HTTP statuses by exception handlers. Anything
else is caught by a pure ASGI middleware (not BaseHTTPMiddleware) and
returned as a JSON 500.
"""
import json

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from orderdesk.core.logging import get_logger
from orderdesk.domain.exceptions import (
    ConcurrencyConflictError,
    InvalidOrderStateError,
    OrderDeskError,
    OrderNotFoundError,
    StorageUnavailableError,
    ValidationFailureError,
)

logger = get_logger(__name__)

STATUS_CODES: dict[type[OrderDeskError], int] = {
    OrderNotFoundError: 404,
    InvalidOrderStateError: 400,
    ConcurrencyConflictError: 409,
    ValidationFailureError: 422,
    StorageUnavailableError: 503,
}


async def order_error_handler(request: Request, exc: OrderDeskError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in STATUS_CODES.items() if isinstance(exc, error_type)),
        500,
    )
    log = logger.warning if status_code >= 500 else logger.info
    log(
        "Order request failed",
        error=str(exc),
        type=type(exc).__name__,
        status_code=status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "type": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(OrderDeskError, order_error_handler)


class ErrorHandlerMiddleware:
    """
    Pure ASGI error handler that catches unhandled exceptions
    and returns proper JSON 500 responses.

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
            # Let FastAPI handle HTTPException
            if isinstance(e, HTTPException):
                raise

            # Only handle truly unhandled exceptions
            if response_started:
                # Headers already sent, can't change the response
                logger.exception(
                    "Unhandled exception after response started",
                    error=str(e),
                    path=scope.get("path", "unknown"),
                )
                raise

            logger.exception(
                "Unhandled exception",
                error=str(e),
                path=scope.get("path", "unknown"),
            )

            # Return JSON 500 error
            body = json.dumps({
                "detail": "Internal server error",
                "type": type(e).__name__,
            }).encode("utf-8")

            await original_send({
                "type": "http.response.start",
                "status": 500,
                "headers": [
                    [b"content-type", b"application/json"],
                    [b"content-length", str(len(body)).encode()],
                ],
            })
            await original_send({
                "type": "http.response.body",
                "body": body,
            })
