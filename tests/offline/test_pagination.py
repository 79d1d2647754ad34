from __future__ import annotations

from duneapi_client.adapters.dune.client import DuneClient
from duneapi_client.adapters.dune.pagination import fetch_all_pages, merge_page
from duneapi_client.config import Config
from duneapi_client.core.models import LIMIT_ROWS, ResultOptions, ResultsResponse
from tests.support.stubs import EXECUTION_ID, StubHttpClient, StubResponse, results_payload

ROWS = [{"n": i, "label": f"row-{i}"} for i in range(5)]


def _page(rows, next_offset=None, finished=True):
    return ResultsResponse.from_dict(
        results_payload("QUERY_STATE_COMPLETED", rows, next_offset=next_offset, finished=finished)
    )


def test_first_page_is_copied_wholesale():
    page = _page(ROWS[:2], next_offset=2)

    merged = merge_page(None, page)

    assert merged is not page
    assert merged.submitted_at == page.submitted_at
    assert merged.query_id == 42
    assert merged.rows == ROWS[:2]
    assert merged.result.metadata.total_row_count == 2
    assert merged.next_offset == 2


def test_later_pages_append_rows_and_add_counters():
    acc = merge_page(None, _page(ROWS[:2], next_offset=2, finished=True))
    merge_page(acc, _page(ROWS[2:], next_offset=None, finished=True))

    assert acc.rows == ROWS
    assert acc.result.metadata.row_count == 5
    assert acc.result.metadata.result_set_bytes == 50
    assert acc.result.metadata.datapoint_count == 10
    assert acc.next_offset is None
    assert acc.next_uri is None


def test_state_flag_and_cursor_follow_latest_page():
    first = results_payload("QUERY_STATE_COMPLETED", ROWS[:2], next_offset=2, finished=False)
    first["state"] = "QUERY_STATE_EXECUTING"
    acc = merge_page(None, ResultsResponse.from_dict(first))
    assert acc.is_execution_finished is False

    last = _page(ROWS[2:4], next_offset=4, finished=True)
    merge_page(acc, last)

    assert acc.state == "QUERY_STATE_COMPLETED"
    assert acc.is_execution_finished is True
    assert acc.next_offset == 4
    assert acc.next_uri == last.next_uri
    assert acc.next_uri.endswith("offset=4")
    # one-time metadata stays with the first page
    assert acc.submitted_at == ResultsResponse.from_dict(first).submitted_at


def test_fetch_all_takes_finished_flag_from_last_page():
    pages = {
        0: _page(ROWS[0:2], next_offset=2, finished=False),
        2: _page(ROWS[2:5], finished=True),
    }

    merged = fetch_all_pages(lambda options: pages[options.offset], page_size=2)

    assert merged.is_execution_finished is True
    assert merged.next_offset is None
    assert merged.next_uri is None
    assert len(merged.rows) == 5


def test_fetch_all_follows_server_cursor():
    pages = {
        0: _page(ROWS[0:2], next_offset=2),
        2: _page(ROWS[2:4], next_offset=4),
        4: _page(ROWS[4:5]),
    }
    seen: list[ResultOptions] = []

    def fetch(options: ResultOptions) -> ResultsResponse:
        seen.append(options)
        return pages[options.offset]

    merged = fetch_all_pages(fetch, page_size=2)

    assert [o.offset for o in seen] == [0, 2, 4]
    assert all(o.limit == 2 for o in seen)
    assert merged.rows == ROWS
    assert merged.result.metadata.row_count == sum(p.result.metadata.row_count for p in pages.values())
    assert merged.is_execution_finished is True


def test_explicit_page_request_is_returned_unmodified():
    page = _page(ROWS[3:5], next_offset=5)
    calls = []

    def fetch(options):
        calls.append(options)
        return page

    result = fetch_all_pages(fetch, ResultOptions(offset=3, limit=2))

    assert result is page
    assert len(calls) == 1
    assert result.next_offset == 5


def test_client_aggregates_five_rows_over_three_pages():
    http = StubHttpClient(
        [
            StubResponse(results_payload("QUERY_STATE_COMPLETED", ROWS[0:2], next_offset=2)),
            StubResponse(results_payload("QUERY_STATE_COMPLETED", ROWS[2:4], next_offset=4)),
            StubResponse(results_payload("QUERY_STATE_COMPLETED", ROWS[4:5])),
        ]
    )
    client = DuneClient(Config.from_api_key("test-key"), http_client=http)

    merged = client.get_execution_results(EXECUTION_ID, page_size=2)

    assert len(merged.rows) == 5
    assert [r["n"] for r in merged.rows] == [0, 1, 2, 3, 4]
    assert merged.is_execution_finished is True
    assert [kwargs["params"] for _, _, kwargs in http.calls] == [
        {"limit": 2},
        {"offset": 2, "limit": 2},
        {"offset": 4, "limit": 2},
    ]
    assert all(url.endswith(f"/api/v1/execution/{EXECUTION_ID}/results") for _, url, _ in http.calls)


def test_client_defaults_to_maximum_page_size():
    http = StubHttpClient([StubResponse(results_payload("QUERY_STATE_COMPLETED", ROWS))])
    client = DuneClient(Config.from_api_key("test-key"), http_client=http)

    client.get_query_results(42)

    method, url, kwargs = http.calls[0]
    assert url == "https://api.dune.com/api/v1/query/42/results"
    assert kwargs["params"] == {"limit": LIMIT_ROWS}
