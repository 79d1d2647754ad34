from __future__ import annotations

import time
from collections.abc import Mapping
from typing import Any

from ..adapters.dune import urls
from ..adapters.dune.client import DuneClient
from ..config import PollConfig
from ..core.errors import QueryFailedError
from ..core.models import ExecutionState, Performance, ResultOptions, ResultsResponse


def is_sql(query: int | str) -> bool:
    """Tell raw SQL apart from a query id or a dune.com query url."""
    if isinstance(query, int):
        return False
    try:
        urls.get_query_id(query)
    except ValueError:
        return True
    return False


class QueryService:
    """Run queries to completion and shape results for tool callers."""

    def __init__(self, client: DuneClient, *, poll: PollConfig | None = None, preview_rows: int = 20):
        self.client = client
        self.poll = poll or client.config.poll
        self.preview_rows = preview_rows

    def execute(
        self,
        query: int | str,
        *,
        parameters: Mapping[str, Any] | None = None,
        performance: Performance | None = None,
        limit: int | None = None,
        offset: int | None = None,
        poll_interval: float | None = None,
        max_retries: int | None = None,
    ) -> dict[str, Any]:
        if isinstance(query, str) and not query.strip():
            raise ValueError("empty query")

        t0 = time.time()
        if is_sql(query):
            if parameters:
                raise ValueError("parameters are only supported for saved queries")
            execution = self.client.run_sql(str(query), performance=performance)
        else:
            execution = self.client.run_query(
                urls.get_query_id(query), parameters, performance=performance
            )

        options = ResultOptions(offset=offset or 0, limit=limit or 0)
        results = execution.wait_get_results(
            self.poll.interval if poll_interval is None else poll_interval,
            self.poll.max_retries if max_retries is None else max_retries,
            options=options,
        )
        if results.state != ExecutionState.COMPLETED.value:
            detail = results.error.message if results.error is not None else None
            raise QueryFailedError(execution.id, results.state, detail)

        summary = self.summarize(results)
        summary["execution"] = execution.to_dict()
        summary["duration_ms"] = int((time.time() - t0) * 1000)
        return summary

    def status(self, execution_id: str) -> dict[str, Any]:
        return self.client.get_execution_status(execution_id).to_dict()

    def results(
        self,
        *,
        execution_id: str | None = None,
        query: int | str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> dict[str, Any]:
        options = ResultOptions(offset=offset or 0, limit=limit or 0)
        if execution_id:
            results = self.client.get_execution_results(execution_id, options)
        elif query is not None:
            results = self.client.get_query_results(urls.get_query_id(query), options)
        else:
            raise ValueError("must specify execution_id or query")
        return self.summarize(results)

    def cancel(self, execution_id: str) -> dict[str, Any]:
        self.client.cancel_execution(execution_id)
        return {"ok": True, "execution_id": execution_id}

    def summarize(self, results: ResultsResponse) -> dict[str, Any]:
        rows = results.rows
        return {
            "execution_id": results.execution_id or None,
            "query_id": results.query_id,
            "state": results.state,
            "is_execution_finished": results.is_execution_finished,
            "rowcount": len(rows),
            "columns": results.columns,
            "data_preview": rows[: self.preview_rows],
            "next_offset": results.next_offset,
            "metadata": results.result.metadata.to_dict(),
        }
