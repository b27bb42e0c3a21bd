"""Error taxonomy for orchestrated API calls.

Only `RateLimited` is recovered locally (by backoff retry). Every other kind
is surfaced to all coalesced callers unchanged.
"""

import asyncio
import enum
from typing import Any, Optional


class ErrorKind(str, enum.Enum):
    RATE_LIMITED = "rate_limited"
    TRANSIENT_NETWORK = "transient_network"
    CLIENT = "client"
    SERVER = "server"
    FAILED = "failed"
    UNKNOWN = "unknown"


RATE_LIMIT_MARKERS = ("rate limit", "too many requests")


class OrchestratorError(Exception):
    """Base class for errors raised by the transport or the orchestrator.

    Attributes:
        kind: The error category used by the retry policy.
        status: HTTP-like status code if known.
        attempts: Physical attempts made before the error became terminal.
        signature: The request signature the error belongs to (set by the orchestrator).
    """
    kind = ErrorKind.FAILED
    default_status: Optional[int] = None

    def __init__(self, message: str = "", status: Optional[int] = None, attempts: int = 1):
        super().__init__(message)
        self.message = message
        self.status = status if status is not None else self.default_status
        self.attempts = attempts
        self.signature: Optional[Any] = None

    def __str__(self) -> str:
        suffix = f" (attempts={self.attempts})" if self.attempts > 1 else ""
        return f"{self.message}{suffix}"


class RateLimited(OrchestratorError):
    """The backend rejected the call because of rate limiting."""
    kind = ErrorKind.RATE_LIMITED
    default_status = 429


class TransientNetworkError(OrchestratorError):
    """Connection dropped, timed out or similar."""
    kind = ErrorKind.TRANSIENT_NETWORK


class ClientError(OrchestratorError):
    """4xx-equivalent rejection. Never retried."""
    kind = ErrorKind.CLIENT
    default_status = 400


class ServerError(OrchestratorError):
    """5xx-equivalent failure. Not retried by default."""
    kind = ErrorKind.SERVER
    default_status = 500


class Failed(OrchestratorError):
    """Generic terminal transport failure."""
    kind = ErrorKind.FAILED


class GateReleaseError(RuntimeError):
    """A gate permit was released more than once."""


class OrchestratorClosedError(RuntimeError):
    """The orchestrator was closed while the call was pending."""


def _status_of(exc: BaseException) -> Optional[int]:
    for attr in ("status", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(exc, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def classify_error(exc: BaseException) -> ErrorKind:
    """Maps any exception to an `ErrorKind`."""
    if isinstance(exc, OrchestratorError):
        return exc.kind
    status = _status_of(exc)
    message = str(exc).lower()
    if status == 429 or any(marker in message for marker in RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    if status is not None and 400 <= status < 500:
        return ErrorKind.CLIENT
    if status is not None and status >= 500:
        return ErrorKind.SERVER
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return ErrorKind.TRANSIENT_NETWORK
    return ErrorKind.UNKNOWN


_KIND_TO_ERROR = {
    ErrorKind.RATE_LIMITED: RateLimited,
    ErrorKind.TRANSIENT_NETWORK: TransientNetworkError,
    ErrorKind.CLIENT: ClientError,
    ErrorKind.SERVER: ServerError,
}


def normalize_error(exc: Exception) -> Exception:
    """Converts a foreign transport exception into the taxonomy when recognisable.

    Unrecognised exceptions are returned as-is so callers see them verbatim.
    The original exception is kept as `__cause__`.
    """
    if isinstance(exc, OrchestratorError):
        return exc
    kind = classify_error(exc)
    error_cls = _KIND_TO_ERROR.get(kind)
    if error_cls is None:
        return exc
    normalized = error_cls(str(exc) or type(exc).__name__, status=_status_of(exc))
    normalized.__cause__ = exc
    return normalized
