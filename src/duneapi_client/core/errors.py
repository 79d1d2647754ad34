from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import RateLimit


class DuneError(Exception):
    """Base class for every error raised by the client."""


class ConfigError(DuneError):
    """Raised when required configuration is missing or malformed."""


class RequestUnsuccessfulError(DuneError):
    """A request did not produce a successful response, even after retries."""


class TransportError(RequestUnsuccessfulError):
    """No response could be obtained (connection failure, timeout)."""


class APIError(RequestUnsuccessfulError):
    """The server answered with a non-2xx status after local retries ran out.

    Carries enough of the response for a caller to decide whether to retry at
    a higher level: the status, a truncated body snippet, the parsed
    rate-limit headers and the server-requested retry delay.
    """

    def __init__(
        self,
        status_code: int,
        status_text: str = "",
        body_snippet: str = "",
        *,
        rate_limit: RateLimit | None = None,
        retry_after: float | None = None,
    ):
        self.status_code = status_code
        self.status_text = status_text
        self.body_snippet = body_snippet
        self.rate_limit = rate_limit
        self.retry_after = retry_after
        super().__init__(self._describe())

    def _describe(self) -> str:
        head = f"request was not successful: http {self.status_code} {self.status_text}".rstrip()
        if self.body_snippet:
            return f"{head}: {self.body_snippet}"
        return head

    @property
    def is_rate_limited(self) -> bool:
        return self.status_code == 429


class DecodeError(DuneError):
    """The response body is not the JSON document we expected."""


class ValidationError(DuneError):
    """A well-formed response violates the invariants of its kind."""


class RetriesExhaustedError(DuneError):
    """Polling gave up after too many consecutive fetch failures."""


class QueryFailedError(DuneError):
    """The execution reached a terminal state without results."""

    def __init__(self, execution_id: str, state: str, detail: str | None = None):
        self.execution_id = execution_id
        self.state = state
        self.detail = detail
        message = f"QUERY FAILED execution_id={execution_id} state={state}"
        if detail:
            message += f", error={detail}"
        super().__init__(message)


_ERROR_CODES: dict[type[BaseException], str] = {
    ConfigError: "CONFIG_ERROR",
    TransportError: "TRANSPORT_ERROR",
    APIError: "API_ERROR",
    RequestUnsuccessfulError: "REQUEST_UNSUCCESSFUL",
    DecodeError: "DECODE_ERROR",
    ValidationError: "VALIDATION_ERROR",
    RetriesExhaustedError: "RETRIES_EXHAUSTED",
    QueryFailedError: "QUERY_FAILED",
    TimeoutError: "TIMEOUT",
}


def error_code(exc: BaseException) -> str:
    for cls in type(exc).__mro__:
        code = _ERROR_CODES.get(cls)
        if code is not None:
            return code
    return "UNKNOWN_ERROR"


def error_response(exc: BaseException, *, context: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Render an exception as the structured payload returned to tool callers."""
    error: dict[str, Any] = {
        "code": error_code(exc),
        "message": str(exc),
        "type": type(exc).__name__,
        "context": dict(context or {}),
    }
    if isinstance(exc, APIError):
        error["status_code"] = exc.status_code
        if exc.retry_after is not None:
            error["retry_after"] = exc.retry_after
        if exc.rate_limit is not None:
            error["rate_limit"] = {
                "limit": exc.rate_limit.limit,
                "remaining": exc.rate_limit.remaining,
                "reset": exc.rate_limit.reset,
            }
    if exc.__cause__ is not None:
        error["cause"] = str(exc.__cause__)
    return {"ok": False, "error": error}
