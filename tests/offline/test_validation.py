from __future__ import annotations

import pytest

from duneapi_client.core.errors import ValidationError
from duneapi_client.core.models import (
    CancelResponse,
    ExecuteResponse,
    ResultsResponse,
    StatusResponse,
)
from duneapi_client.core.validation import ResponseKind, check, validate
from tests.support.stubs import ENDED_AT, EXECUTION_ID, results_payload, status_payload


def _results(payload) -> ResultsResponse:
    return ResultsResponse.from_dict(payload)


@pytest.mark.parametrize(
    "state",
    ["QUERY_STATE_PENDING", "QUERY_STATE_EXECUTING", "QUERY_STATE_COMPLETED",
     "QUERY_STATE_FAILED", "QUERY_STATE_CANCELLED"],
)
def test_well_formed_results_pass(state):
    rows = [{"a": 1}] if state == "QUERY_STATE_COMPLETED" else None
    validate(ResponseKind.RESULTS, _results(results_payload(state, rows)))


def test_unknown_state_prefix_is_rejected():
    payload = results_payload("QUERY_STATE_PENDING")
    payload["state"] = "RUNNING"
    with pytest.raises(ValidationError, match="bad state"):
        validate(ResponseKind.RESULTS, _results(payload))


def test_non_terminal_with_rows_is_rejected():
    payload = results_payload("QUERY_STATE_EXECUTING")
    payload["result"] = {"rows": [{"a": 1}], "metadata": {"row_count": 1}}
    with pytest.raises(ValidationError, match="cannot have result rows"):
        validate(ResponseKind.RESULTS, _results(payload))


def test_non_terminal_with_end_time_is_rejected():
    payload = results_payload("QUERY_STATE_PENDING", execution_ended_at=ENDED_AT)
    assert "execution_ended_at" in check(ResponseKind.RESULTS, _results(payload))


def test_completed_row_count_mismatch_is_rejected():
    payload = results_payload("QUERY_STATE_COMPLETED", [{"a": 1}, {"a": 2}])
    payload["result"]["metadata"]["row_count"] = 3
    with pytest.raises(ValidationError, match="mismatch row count"):
        validate(ResponseKind.RESULTS, _results(payload))


def test_completed_page_compares_against_page_row_count_not_total():
    payload = results_payload("QUERY_STATE_COMPLETED", [{"a": 1}, {"a": 2}], next_offset=2)
    payload["result"]["metadata"]["total_row_count"] = 5
    validate(ResponseKind.RESULTS, _results(payload))


def test_completed_without_end_time_is_rejected():
    payload = results_payload("QUERY_STATE_COMPLETED", [{"a": 1}])
    del payload["execution_ended_at"]
    with pytest.raises(ValidationError, match="execution_ended_at"):
        validate(ResponseKind.RESULTS, _results(payload))


def test_cancelled_requires_cancelled_at():
    payload = results_payload("QUERY_STATE_CANCELLED")
    del payload["cancelled_at"]
    with pytest.raises(ValidationError, match="missing cancelled_at"):
        validate(ResponseKind.RESULTS, _results(payload))


def test_cancelled_at_outside_cancelled_state_is_rejected():
    payload = results_payload("QUERY_STATE_FAILED", cancelled_at=ENDED_AT)
    with pytest.raises(ValidationError, match="cancelled_at shouldn't be present"):
        validate(ResponseKind.RESULTS, _results(payload))


@pytest.mark.parametrize(
    "execution_id",
    ["", "01ABC", "02HXXXXXXXXXXXXXXXXXXXXXXX", EXECUTION_ID + "X"],
)
def test_execute_rejects_malformed_execution_ids(execution_id):
    resp = ExecuteResponse(execution_id=execution_id, state="QUERY_STATE_PENDING")
    with pytest.raises(ValidationError, match="bad execution id"):
        validate(ResponseKind.EXECUTE, resp)


def test_execute_accepts_ulid():
    validate(ResponseKind.EXECUTE, ExecuteResponse(execution_id=EXECUTION_ID, state="QUERY_STATE_PENDING"))


def test_status_rules():
    for state in ("QUERY_STATE_PENDING", "QUERY_STATE_EXECUTING", "QUERY_STATE_COMPLETED",
                  "QUERY_STATE_FAILED", "QUERY_STATE_CANCELLED"):
        validate(ResponseKind.STATUS, StatusResponse.from_dict(status_payload(state)))

    completed = status_payload("QUERY_STATE_COMPLETED")
    del completed["result_metadata"]
    assert check(ResponseKind.STATUS, StatusResponse.from_dict(completed)) == (
        "missing result_metadata for completed execution"
    )

    executing = status_payload("QUERY_STATE_EXECUTING")
    executing["result_metadata"] = {"row_count": 1}
    assert "cannot have result_metadata" in check(ResponseKind.STATUS, StatusResponse.from_dict(executing))


def test_cancel_requires_success():
    validate(ResponseKind.CANCEL, CancelResponse(success=True))
    with pytest.raises(ValidationError, match="failed to cancel"):
        validate(ResponseKind.CANCEL, CancelResponse(success=False))
