"""Error kinds raised inside the gateway and how they map to HTTP."""

from enum import Enum


class ErrorKind(str, Enum):
    """Closed set of failure categories handled by the terminal error handler."""

    BAD_REQUEST = "bad_request"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    PAYLOAD_TOO_LARGE = "payload_too_large"
    UPSTREAM = "upstream"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    INTERNAL = "internal"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]

    @property
    def public_message(self) -> str:
        """Message shown to clients when error details are suppressed."""
        return _PUBLIC_MESSAGES[self]


_STATUS_CODES = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PAYLOAD_TOO_LARGE: 413,
    ErrorKind.UPSTREAM: 502,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.INTERNAL: 500,
}

_PUBLIC_MESSAGES = {
    ErrorKind.BAD_REQUEST: "Bad Request",
    ErrorKind.UNAUTHORIZED: "Unauthorized",
    ErrorKind.NOT_FOUND: "Not Found",
    ErrorKind.PAYLOAD_TOO_LARGE: "Payload Too Large",
    ErrorKind.UPSTREAM: "Bad Gateway",
    ErrorKind.UNAVAILABLE: "Service Unavailable",
    ErrorKind.TIMEOUT: "Gateway Timeout",
    ErrorKind.INTERNAL: "Internal Server Error",
}


class GatewayError(Exception):
    """Base error carrying an explicit :class:`ErrorKind`."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str, kind: ErrorKind | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def status_code(self) -> int:
        return self.kind.status_code


class EmbeddingError(GatewayError):
    """The embedding provider failed or returned an unusable response."""

    kind = ErrorKind.UPSTREAM


class StoreError(GatewayError):
    """The vector store failed to answer a query."""

    kind = ErrorKind.UPSTREAM
