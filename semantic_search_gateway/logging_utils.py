"""Logging setup, access-log formats and the request logger."""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from semantic_search_gateway.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

ACCESS_LOGGER_NAME = "semantic_search_gateway.access"
REQUEST_LOGGER_NAME = "semantic_search_gateway.request"

REQUEST_ID_HEADER = "X-Request-ID"


def configure_logging(settings: Settings) -> None:
    """Configure the root logger once for the process."""
    logging.basicConfig(level=getattr(logging, settings.log_level), format=LOG_FORMAT)


def original_url(request: Request) -> str:
    url = request.url.path
    if request.url.query:
        url = f"{url}?{request.url.query}"
    return url


def format_dev_line(
    request: Request, status_code: int, duration_ms: float, content_length: Optional[str]
) -> str:
    """Short, colourless variant of the ``dev`` access format."""
    return (
        f"{request.method} {original_url(request)} {status_code} "
        f"{duration_ms:.3f} ms - {content_length or '-'}"
    )


def format_combined_line(
    request: Request,
    status_code: int,
    content_length: Optional[str],
    now: Optional[datetime] = None,
) -> str:
    """Apache combined log format."""
    now = now or datetime.now(timezone.utc)
    remote_addr = request.client.host if request.client else "-"
    http_version = request.scope.get("http_version", "1.1")
    referrer = request.headers.get("referer") or request.headers.get("referrer") or "-"
    user_agent = request.headers.get("user-agent", "-")
    timestamp = now.strftime("%d/%b/%Y:%H:%M:%S %z")
    return (
        f'{remote_addr} - - [{timestamp}] "{request.method} {original_url(request)} '
        f'HTTP/{http_version}" {status_code} {content_length or "-"} '
        f'"{referrer}" "{user_agent}"'
    )


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Writes one access line per request, verbose in development."""

    def __init__(self, app, settings: Settings) -> None:
        super().__init__(app)
        self.dev_format = settings.is_development
        self.logger = logging.getLogger(ACCESS_LOGGER_NAME)

    def _write(self, request: Request, status_code: int, started: float, length):
        if self.dev_format:
            duration_ms = (time.perf_counter() - started) * 1000
            self.logger.info(format_dev_line(request, status_code, duration_ms, length))
        else:
            self.logger.info(format_combined_line(request, status_code, length))

    async def dispatch(self, request: Request, call_next) -> Response:
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            self._write(request, 500, started, None)
            raise
        self._write(
            request, response.status_code, started, response.headers.get("content-length")
        )
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ID and logs a structured completion record."""

    def __init__(self, app, logger: logging.Logger) -> None:
        super().__init__(app)
        self.logger = logger

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 3)

        response.headers[REQUEST_ID_HEADER] = request_id
        self.logger.info(
            f"{request.method} {request.url.path} completed with {response.status_code}",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
                "client": request.client.host if request.client else None,
            },
        )
        return response


class RequestLogger:
    """Process-wide logging sink handed to the gateway at construction."""

    def __init__(self, name: str = REQUEST_LOGGER_NAME) -> None:
        self.logger = logging.getLogger(name)

    def request_logger(self):
        """Return the middleware class and its options for ``app.add_middleware``."""
        return RequestLoggingMiddleware, {"logger": self.logger}

    def error(self, message: str, err: BaseException) -> None:
        self.logger.error(f"{message} {err}", exc_info=err)
