"""HTTP middleware that runs ahead of route dispatch.

Security headers and static assets use ``BaseHTTPMiddleware`` like the rest
of the pipeline. The body-size guard is a plain ASGI middleware because it
has to see the raw ``receive`` channel before any handler reads the body.
"""

import json
import os
from pathlib import Path
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import FileResponse, Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from semantic_search_gateway.errors import ErrorKind
from semantic_search_gateway.models.helpers import utc_timestamp

# Mirrors the default header set applied by helmet
SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self';base-uri 'self';font-src 'self' https: data:;"
        "form-action 'self';frame-ancestors 'self';img-src 'self' data:;"
        "object-src 'none';script-src 'self';script-src-attr 'none';"
        "style-src 'self' https: 'unsafe-inline';upgrade-insecure-requests"
    ),
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
    "Referrer-Policy": "no-referrer",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Download-Options": "noopen",
    "X-Frame-Options": "SAMEORIGIN",
    "X-Permitted-Cross-Domain-Policies": "none",
    "X-XSS-Protection": "0",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds hardening headers to every response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        if "server" in response.headers:
            del response.headers["server"]
        return response


def _declared_length(scope: Scope) -> Optional[int]:
    for name, value in scope.get("headers", []):
        if name == b"content-length":
            try:
                return int(value)
            except ValueError:
                return None
    return None


class BodySizeLimitMiddleware:
    """Buffers the request body and rejects it with 413 once it exceeds the cap.

    The body is fully read before the downstream app is called, so an
    oversized request never reaches a handler. The buffered body is replayed
    to the app as a single ``http.request`` message.
    """

    def __init__(self, app: ASGIApp, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = _declared_length(scope)
        if declared is not None and declared > self.max_body_bytes:
            await self._reject(send)
            return

        chunks: list[bytes] = []
        size = 0
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_body_bytes:
                await self._reject(send)
                return
            chunks.append(chunk)
            more_body = message.get("more_body", False)

        body = b"".join(chunks)
        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, send: Send) -> None:
        kind = ErrorKind.PAYLOAD_TOO_LARGE
        payload = json.dumps(
            {
                "error": kind.public_message,
                "message": f"Request body exceeds the {self.max_body_bytes} byte limit",
                "timestamp": utc_timestamp(),
            }
        ).encode("utf-8")
        await send(
            {
                "type": "http.response.start",
                "status": kind.status_code,
                "headers": [
                    (b"content-type", b"application/json"),
                    (b"content-length", str(len(payload)).encode("latin-1")),
                    (b"connection", b"close"),
                ],
            }
        )
        await send({"type": "http.response.body", "body": payload})


class StaticAssetsMiddleware(BaseHTTPMiddleware):
    """Serves files from the public directory; everything else falls through."""

    def __init__(self, app, directory: str) -> None:
        super().__init__(app)
        self.directory = Path(directory).resolve()

    def _lookup(self, path: str) -> Optional[Path]:
        relative = path.lstrip("/")
        if not relative:
            return None
        try:
            candidate = (self.directory / relative).resolve()
            if os.path.commonpath([self.directory, candidate]) != str(self.directory):
                return None
            return candidate if candidate.is_file() else None
        except (ValueError, OSError):
            # Paths the filesystem cannot represent, e.g. with a NUL byte
            return None

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.method in ("GET", "HEAD") and self.directory.is_dir():
            asset = self._lookup(request.url.path)
            if asset is not None:
                return FileResponse(asset)
        return await call_next(request)
