"""Request body parsing, the catch-all 404 and the terminal error handler."""

import json
import traceback
from typing import Any
from urllib.parse import parse_qsl

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from semantic_search_gateway.config import Settings
from semantic_search_gateway.errors import ErrorKind, GatewayError
from semantic_search_gateway.logging_utils import RequestLogger, original_url
from semantic_search_gateway.models.helpers import utc_timestamp

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


async def parse_body(request: Request) -> Any:
    """Parse a JSON or URL-encoded request body; an empty body parses to ``{}``.

    Raises:
        GatewayError: If a JSON body is malformed
    """
    raw = await request.body()
    if not raw.strip():
        return {}

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == FORM_CONTENT_TYPE:
        return dict(parse_qsl(raw.decode("utf-8"), keep_blank_values=True))
    if content_type == "application/json" or content_type.endswith("+json"):
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise GatewayError(
                "Malformed JSON in request body", ErrorKind.BAD_REQUEST
            ) from None
    return {}


def not_found_response(request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": "Not Found",
            "message": f"Route {original_url(request)} not found",
            "timestamp": utc_timestamp(),
        },
    )


def error_response(exc: Exception, settings: Settings) -> JSONResponse:
    """Build the sanitized error payload for ``exc``.

    Raw messages and stack traces are only exposed in development.
    """
    kind = exc.kind if isinstance(exc, GatewayError) else ErrorKind.INTERNAL

    if settings.is_development:
        message = exc.message if isinstance(exc, GatewayError) else str(exc)
        content = {
            "error": message or kind.public_message,
            "timestamp": utc_timestamp(),
            "stack": "".join(
                traceback.format_exception(type(exc), exc, exc.__traceback__)
            ),
        }
    else:
        content = {"error": kind.public_message, "timestamp": utc_timestamp()}

    return JSONResponse(status_code=kind.status_code, content=content)


def register_error_handlers(app: FastAPI, settings: Settings, logger: RequestLogger) -> None:
    """Install the 404 fallback and terminal error handlers on ``app``."""

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # ↳ The router raises 404/405 when no route claims the path and method
        if exc.status_code in (404, 405):
            return not_found_response(request)
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail, "timestamp": utc_timestamp()},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        if exc.kind == ErrorKind.INTERNAL:
            logger.error("Unhandled error:", exc)
        else:
            logger.logger.warning(
                f"{request.method} {request.url.path} failed: {exc.message}"
            )
        return error_response(exc, settings)

    # Only reached by failures in the outer middleware stages
    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.error("Unhandled error:", exc)
        return error_response(exc, settings)


class UnhandledErrorMiddleware:
    """Turns exceptions escaping the routes into the terminal error response.

    Sits inside the CORS and security-header stages so a 500 carries the same
    headers as any other response. Exceptions raised after the response has
    started are re-raised.
    """

    def __init__(self, app: ASGIApp, settings: Settings, logger: RequestLogger) -> None:
        self.app = app
        self.settings = settings
        self.logger = logger

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            if response_started:
                raise
            self.logger.error("Unhandled error:", exc)
            response = error_response(exc, self.settings)
            await response(scope, receive, send)
