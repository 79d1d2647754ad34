from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol

from .models import (
    ExecuteResponse,
    Performance,
    ResultOptions,
    ResultsResponse,
    StatusResponse,
)

if TYPE_CHECKING:
    import requests


class HttpRequester(Protocol):
    """Port for the retrying HTTP transport."""

    def request(
        self,
        method: str,
        url: str,
        *,
        api_key: str | None = None,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> requests.Response:
        ...


class Submitter(Protocol):
    """Port for submitting new executions."""

    def execute_query(
        self,
        query_id: int,
        parameters: Mapping[str, Any] | None = None,
        *,
        performance: Performance | None = None,
    ) -> ExecuteResponse:
        ...

    def execute_sql(self, sql: str, *, performance: Performance | None = None) -> ExecuteResponse:
        ...


class Poller(Protocol):
    """Port for observing and steering a running execution."""

    def get_execution_status(self, execution_id: str) -> StatusResponse:
        ...

    def cancel_execution(self, execution_id: str) -> None:
        ...


class ResultFetcher(Protocol):
    """Port for reading (paginated) results."""

    def get_execution_results(
        self, execution_id: str, options: ResultOptions | None = None
    ) -> ResultsResponse:
        ...

    def get_query_results(
        self, query_id: int | str, options: ResultOptions | None = None
    ) -> ResultsResponse:
        ...

    def get_execution_results_csv(self, execution_id: str) -> str:
        ...

    def get_query_results_csv(self, query_id: int | str) -> str:
        ...


class ExecutionBackend(Submitter, Poller, ResultFetcher, Protocol):
    """Everything an :class:`~duneapi_client.adapters.dune.execution.Execution` needs."""
