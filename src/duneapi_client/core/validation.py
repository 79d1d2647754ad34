"""State-conditioned invariants for decoded API responses.

Each response kind maps to an ordered tuple of rules. A rule inspects the
decoded response and returns a message when the response breaks it.
``validate`` raises on the first broken rule. Validation failures point at a
server contract violation, so callers never retry them.
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Any

from .errors import ValidationError
from .models import (
    EXECUTION_ID_LENGTH,
    EXECUTION_ID_PREFIX,
    STATE_PREFIX,
    ExecutionState,
    is_non_terminal_state,
)

Rule = Callable[[Any], str | None]


class ResponseKind(str, Enum):
    EXECUTE = "execute"
    STATUS = "status"
    RESULTS = "results"
    CANCEL = "cancel"


def is_valid_execution_id(value: str) -> bool:
    # ULID tokens
    return len(value) == EXECUTION_ID_LENGTH and value.startswith(EXECUTION_ID_PREFIX)


def _state_prefix(resp: Any) -> str | None:
    if not resp.state.startswith(STATE_PREFIX):
        return f"bad state: {resp.state!r}"
    return None


def _execution_id(resp: Any) -> str | None:
    if not is_valid_execution_id(resp.execution_id):
        return f"bad execution id: {resp.execution_id!r}"
    return None


def _optional_execution_id(resp: Any) -> str | None:
    if resp.execution_id and not is_valid_execution_id(resp.execution_id):
        return f"bad execution id: {resp.execution_id!r}"
    return None


def _completed_has_end_time(resp: Any) -> str | None:
    if resp.state == ExecutionState.COMPLETED.value and resp.execution_ended_at is None:
        return "missing execution_ended_at for completed execution"
    return None


def _pending_has_no_end_time(resp: Any) -> str | None:
    if is_non_terminal_state(resp.state) and resp.execution_ended_at is not None:
        return f"field execution_ended_at shouldn't be present in state {resp.state}"
    return None


def _cancelled_at(resp: Any) -> str | None:
    if resp.state == ExecutionState.CANCELLED.value:
        if resp.cancelled_at is None:
            return "missing cancelled_at"
    elif resp.cancelled_at is not None:
        return "field cancelled_at shouldn't be present"
    return None


def _status_metadata(resp: Any) -> str | None:
    if resp.state == ExecutionState.COMPLETED.value:
        if resp.result_metadata is None:
            return "missing result_metadata for completed execution"
    elif resp.result_metadata is not None:
        return f"cannot have result_metadata in state {resp.state}"
    return None


def _results_rows(resp: Any) -> str | None:
    rows = resp.result.rows
    if resp.state == ExecutionState.COMPLETED.value:
        # per page: the metadata describes the rows shipped with this response
        n_rows = len(rows or [])
        if n_rows != resp.result.metadata.row_count:
            return (
                f"mismatch row count: len(rows)={n_rows}, "
                f"row_count={resp.result.metadata.row_count}"
            )
    elif rows is not None:
        return f"cannot have result rows in state {resp.state}"
    return None


def _cancel_success(resp: Any) -> str | None:
    if not resp.success:
        return "failed to cancel query execution"
    return None


RULES: dict[ResponseKind, tuple[Rule, ...]] = {
    ResponseKind.EXECUTE: (_execution_id, _state_prefix),
    ResponseKind.STATUS: (
        _execution_id,
        _state_prefix,
        _completed_has_end_time,
        _pending_has_no_end_time,
        _status_metadata,
        _cancelled_at,
    ),
    ResponseKind.RESULTS: (
        _optional_execution_id,
        _state_prefix,
        _completed_has_end_time,
        _pending_has_no_end_time,
        _results_rows,
        _cancelled_at,
    ),
    ResponseKind.CANCEL: (_cancel_success,),
}


def check(kind: ResponseKind, response: Any) -> str | None:
    """Return the first violated rule's message, or None."""
    for rule in RULES[kind]:
        problem = rule(response)
        if problem is not None:
            return problem
    return None


def validate(kind: ResponseKind, response: Any) -> None:
    problem = check(kind, response)
    if problem is not None:
        raise ValidationError(f"invalid {kind.value} response: {problem}")
