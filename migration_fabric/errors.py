"""Error taxonomy for transport, dictionary and migration failures."""

from typing import Any, Dict, Optional


class FabricError(Exception):
    """
    Base class for all errors raised by the migration fabric.

    Every error carries a ``kind`` (a stable, language-neutral category used by
    retry decisions and reports) and a ``details`` dict with structured context
    such as URL, method, HTTP status, field name or object id.
    """

    kind = "error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    @property
    def status_code(self) -> Optional[int]:
        """HTTP status associated with the error, if any."""
        return self.details.get("status")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "kind": self.kind,
            "type": type(self).__name__,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return self.message


class AuthenticationError(FabricError):
    """Credentials were rejected or a token could not be obtained."""
    kind = "auth"


class ConnectionError(FabricError):
    """Network failure, timeout, or an open circuit breaker."""
    kind = "connection"


class CircuitOpenError(ConnectionError):
    """Raised without touching the network while the circuit breaker is open."""


class RateLimitedError(FabricError):
    """The server answered 429; ``retry_after`` holds the Retry-After header."""
    kind = "rate-limited"

    @property
    def retry_after(self) -> Optional[str]:
        return self.details.get("retry_after")


class RequestError(FabricError):
    """Non-auth 4xx response."""
    kind = "request"

    @property
    def body(self) -> Any:
        return self.details.get("body")


class ServerError(FabricError):
    """5xx response."""
    kind = "server"


class ProtocolError(FabricError):
    """Response could not be parsed or violated the wire protocol."""
    kind = "protocol"


class CsrfError(ProtocolError):
    """A write was rejected for a CSRF token even after a fresh handshake."""


class RecordValidationError(FabricError):
    """A single record failed validation."""
    kind = "validation"


class ObjectNotFoundError(FabricError):
    """A requested migration object, table or entity does not exist."""
    kind = "object-not-found"


class ConfigurationError(FabricError):
    """Required configuration is missing or invalid."""
    kind = "configuration"


class CancelledError(FabricError):
    """The run was cancelled cooperatively."""
    kind = "cancelled"


class DictionaryCallError(FabricError):
    """A dictionary function call returned an error message."""
    kind = "request"


RETRYABLE_KINDS = frozenset({"connection", "server", "rate-limited"})


def is_retryable(error: BaseException) -> bool:
    """Check whether a failure may be retried by the transport."""
    if isinstance(error, CircuitOpenError):
        return False
    return isinstance(error, FabricError) and error.kind in RETRYABLE_KINDS


def error_from_response(
    status: int,
    message: str,
    body: Any = None,
    details: Optional[Dict[str, Any]] = None,
    retry_after: Optional[str] = None,
) -> FabricError:
    """
    Build the error matching an HTTP status code.

    Args:
        status: HTTP status code of the failed response
        message: Human readable message
        body: Parsed (or raw text) response body
        details: Extra structured details (url, method, ...)
        retry_after: Value of the Retry-After header for 429 responses

    Returns:
        A FabricError subclass instance
    """
    info = dict(details or {})
    info["status"] = status
    if body is not None:
        info["body"] = body

    if status == 401:
        return AuthenticationError("Authentication failed", info)
    if status == 429:
        info["retry_after"] = retry_after
        return RateLimitedError("Rate limited", info)
    if 400 <= status < 500:
        return RequestError(message, info)
    return ServerError(message, info)
