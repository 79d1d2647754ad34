"""Typed views over the Dune execution API payloads.

Every response model decodes itself from the JSON mapping returned by the
server through ``from_dict``. Decoding only checks shapes and types; the
state-conditioned invariants live in :mod:`duneapi_client.core.validation`.
"""

from __future__ import annotations

import dataclasses
import datetime
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from .errors import DecodeError

# server-side maximum page size; requests are always paginated
LIMIT_ROWS = 32_000

STATE_PREFIX = "QUERY_STATE_"
EXECUTION_ID_LENGTH = 26
EXECUTION_ID_PREFIX = "01"

Performance = Literal["medium", "large"]


class ExecutionState(str, Enum):
    PENDING = "QUERY_STATE_PENDING"
    EXECUTING = "QUERY_STATE_EXECUTING"
    COMPLETED = "QUERY_STATE_COMPLETED"
    FAILED = "QUERY_STATE_FAILED"
    CANCELLED = "QUERY_STATE_CANCELLED"
    EXPIRED = "QUERY_STATE_EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {
        ExecutionState.COMPLETED,
        ExecutionState.FAILED,
        ExecutionState.CANCELLED,
        ExecutionState.EXPIRED,
    }
)
NON_TERMINAL_STATES = frozenset({ExecutionState.PENDING, ExecutionState.EXECUTING})


def is_terminal_state(state: str | None) -> bool:
    return state in {s.value for s in TERMINAL_STATES}


def is_non_terminal_state(state: str | None) -> bool:
    return state in {s.value for s in NON_TERMINAL_STATES}


@dataclass(frozen=True)
class RateLimit:
    limit: int
    remaining: int
    reset: int


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for one transport; never mutated per call."""

    max_attempts: int = 3
    initial_backoff: float = 0.5
    max_backoff: float = 5.0
    jitter: float = 0.1
    retryable_status_codes: frozenset[int] = frozenset({429, 500, 502, 503, 504})

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after ``attempt`` (1-based) failed."""
        delay = self.initial_backoff * (2 ** max(attempt - 1, 0))
        delay = min(delay, self.max_backoff)
        if self.jitter > 0:
            delay += self.jitter
        return delay

    def is_retryable(self, status_code: int) -> bool:
        return status_code in self.retryable_status_codes


# ---------------------------------------------------------------------------
# decoding helpers

_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any, *, name: str = "timestamp") -> datetime.datetime | None:
    """Parse an RFC 3339 timestamp, tolerating nanosecond precision."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise DecodeError(f"field {name} must be a timestamp string, got {type(value).__name__}")
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    # datetime only keeps microseconds
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.datetime.fromisoformat(text)
    except ValueError as exc:
        raise DecodeError(f"field {name} is not a valid timestamp: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.UTC)
    return parsed


def _mapping(payload: Any, kind: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise DecodeError(f"{kind} payload must be a JSON object, got {type(payload).__name__}")
    return payload


def _int(payload: Mapping[str, Any], key: str, default: int | None = 0) -> int | None:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise DecodeError(f"field {key} must be an integer, got {value!r}")
    return value


def _str(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DecodeError(f"field {key} must be a string, got {value!r}")
    return value


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime.datetime):
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_jsonable(v) for v in value]
    return value


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return _jsonable(dataclasses.asdict(self))  # type: ignore[call-overload]


# ---------------------------------------------------------------------------
# response models


@dataclass
class ExecutionError(_Serializable):
    type: str = ""
    message: str = ""
    metadata: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> ExecutionError | None:
        if payload is None:
            return None
        if isinstance(payload, str):
            # older payloads carry the error as plain text
            return cls(message=payload)
        data = _mapping(payload, "error")
        metadata = data.get("metadata")
        return cls(
            type=_str(data, "type"),
            message=_str(data, "message"),
            metadata=dict(metadata) if isinstance(metadata, Mapping) else None,
        )


@dataclass
class ResultMetadata(_Serializable):
    column_names: list[str] = field(default_factory=list)
    result_set_bytes: int = 0
    row_count: int = 0
    total_result_set_bytes: int = 0
    total_row_count: int = 0
    datapoint_count: int = 0

    @classmethod
    def from_dict(cls, payload: Any) -> ResultMetadata:
        data = _mapping(payload, "result metadata")
        columns = data.get("column_names") or []
        if not isinstance(columns, list):
            raise DecodeError(f"field column_names must be a list, got {columns!r}")
        return cls(
            column_names=[str(c) for c in columns],
            result_set_bytes=_int(data, "result_set_bytes") or 0,
            row_count=_int(data, "row_count") or 0,
            total_result_set_bytes=_int(data, "total_result_set_bytes") or 0,
            total_row_count=_int(data, "total_row_count") or 0,
            datapoint_count=_int(data, "datapoint_count") or 0,
        )


@dataclass
class Result(_Serializable):
    metadata: ResultMetadata = field(default_factory=ResultMetadata)
    # None when the payload carries no rows at all
    rows: list[dict[str, Any]] | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> Result:
        if payload is None:
            return cls()
        data = _mapping(payload, "result")
        rows = data.get("rows")
        if rows is not None:
            if not isinstance(rows, list) or not all(isinstance(r, Mapping) for r in rows):
                raise DecodeError("field rows must be a list of objects")
            rows = [dict(r) for r in rows]
        metadata = data.get("metadata")
        return cls(
            metadata=ResultMetadata.from_dict(metadata) if metadata is not None else ResultMetadata(),
            rows=rows,
        )


@dataclass
class ExecuteResponse(_Serializable):
    execution_id: str = ""
    state: str = ""

    @classmethod
    def from_dict(cls, payload: Any) -> ExecuteResponse:
        data = _mapping(payload, "execute response")
        return cls(execution_id=_str(data, "execution_id"), state=_str(data, "state"))


@dataclass
class StatusResponse(_Serializable):
    execution_id: str = ""
    query_id: int | None = None
    state: str = ""
    is_execution_finished: bool = False
    submitted_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    execution_started_at: datetime.datetime | None = None
    execution_ended_at: datetime.datetime | None = None
    cancelled_at: datetime.datetime | None = None
    error: ExecutionError | None = None
    result_metadata: ResultMetadata | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> StatusResponse:
        data = _mapping(payload, "status response")
        metadata = data.get("result_metadata")
        return cls(
            execution_id=_str(data, "execution_id"),
            query_id=_int(data, "query_id", None),
            state=_str(data, "state"),
            is_execution_finished=bool(data.get("is_execution_finished", False)),
            submitted_at=parse_timestamp(data.get("submitted_at"), name="submitted_at"),
            expires_at=parse_timestamp(data.get("expires_at"), name="expires_at"),
            execution_started_at=parse_timestamp(
                data.get("execution_started_at"), name="execution_started_at"
            ),
            execution_ended_at=parse_timestamp(data.get("execution_ended_at"), name="execution_ended_at"),
            cancelled_at=parse_timestamp(data.get("cancelled_at"), name="cancelled_at"),
            error=ExecutionError.from_dict(data.get("error")),
            result_metadata=ResultMetadata.from_dict(metadata) if metadata is not None else None,
        )


@dataclass
class ResultsResponse(_Serializable):
    """One page of results, or the merge of several pages."""

    execution_id: str = ""
    query_id: int | None = None
    state: str = ""
    is_execution_finished: bool = False
    submitted_at: datetime.datetime | None = None
    expires_at: datetime.datetime | None = None
    execution_started_at: datetime.datetime | None = None
    execution_ended_at: datetime.datetime | None = None
    cancelled_at: datetime.datetime | None = None
    error: ExecutionError | None = None
    result: Result = field(default_factory=Result)
    next_offset: int | None = None
    next_uri: str | None = None

    @classmethod
    def from_dict(cls, payload: Any) -> ResultsResponse:
        data = _mapping(payload, "results response")
        next_uri = data.get("next_uri")
        return cls(
            execution_id=_str(data, "execution_id"),
            query_id=_int(data, "query_id", None),
            state=_str(data, "state"),
            is_execution_finished=bool(data.get("is_execution_finished", False)),
            submitted_at=parse_timestamp(data.get("submitted_at"), name="submitted_at"),
            expires_at=parse_timestamp(data.get("expires_at"), name="expires_at"),
            execution_started_at=parse_timestamp(
                data.get("execution_started_at"), name="execution_started_at"
            ),
            execution_ended_at=parse_timestamp(data.get("execution_ended_at"), name="execution_ended_at"),
            cancelled_at=parse_timestamp(data.get("cancelled_at"), name="cancelled_at"),
            error=ExecutionError.from_dict(data.get("error")),
            result=Result.from_dict(data.get("result")),
            next_offset=_int(data, "next_offset", None),
            next_uri=str(next_uri) if next_uri is not None else None,
        )

    @property
    def rows(self) -> list[dict[str, Any]]:
        return self.result.rows or []

    @property
    def columns(self) -> list[str]:
        if self.result.metadata.column_names:
            return list(self.result.metadata.column_names)
        if self.result.rows:
            return list(self.result.rows[0].keys())
        return []


@dataclass
class CancelResponse(_Serializable):
    success: bool = False

    @classmethod
    def from_dict(cls, payload: Any) -> CancelResponse:
        data = _mapping(payload, "cancel response")
        return cls(success=bool(data.get("success", False)))


# ---------------------------------------------------------------------------
# request options


@dataclass(frozen=True)
class ResultOptions:
    """Which slice of a result set to request.

    A non-zero ``offset`` or ``limit`` asks for exactly one page; leaving both
    at zero asks for the whole result set, fetched in pages of ``LIMIT_ROWS``.
    """

    offset: int = 0
    limit: int = 0
    columns: Sequence[str] | None = None
    sort_by: str | None = None
    sample_count: int | None = None

    @property
    def single_page(self) -> bool:
        return self.offset > 0 or self.limit > 0

    def with_offset(self, offset: int) -> ResultOptions:
        return dataclasses.replace(self, offset=offset)

    def with_limit(self, limit: int) -> ResultOptions:
        return dataclasses.replace(self, limit=limit)

    def to_params(self) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if self.offset > 0:
            params["offset"] = self.offset
        params["limit"] = self.limit or LIMIT_ROWS
        if self.columns:
            params["columns"] = ",".join(self.columns)
        if self.sort_by:
            params["sort_by"] = self.sort_by
        if self.sample_count is not None:
            params["sample_count"] = self.sample_count
        return params
