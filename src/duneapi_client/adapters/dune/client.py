from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from typing import Any, TypeVar

from ...config import Config
from ...core.errors import DecodeError, QueryFailedError
from ...core.models import (
    LIMIT_ROWS,
    CancelResponse,
    ExecuteResponse,
    ExecutionState,
    Performance,
    ResultOptions,
    ResultsResponse,
    StatusResponse,
)
from ...core.ports import HttpRequester
from ...core.validation import ResponseKind, validate
from ..http_client import HttpClient
from . import pagination
from .execution import DEFAULT_MAX_RETRIES, DEFAULT_POLL_INTERVAL, Execution
from .urls import Endpoints

logger = logging.getLogger(__name__)

M = TypeVar("M")


def decode_json(response: Any) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise DecodeError(f"failed to parse response: {exc}") from exc


class DuneClient:
    """Stateless client for the Dune execution API.

    Satisfies the ``Submitter``, ``Poller`` and ``ResultFetcher`` ports. Every
    decoded response is validated before it is returned.
    """

    def __init__(
        self,
        config: Config,
        *,
        http_client: HttpRequester | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.api_key = config.dune.api_key
        self.endpoints = Endpoints.from_host(config.dune.host)
        self.http_client = http_client or HttpClient(config.http)
        self._sleep = sleep

    @classmethod
    def from_env(cls, **kwargs: Any) -> DuneClient:
        return cls(Config.from_env(), **kwargs)

    # ------------------------------------------------------------------
    # plumbing

    def _call(
        self,
        method: str,
        url: str,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        logger.debug("%s %s params=%s", method, url, params)
        return self.http_client.request(method, url, api_key=self.api_key, json=json, params=params)

    def _fetch(
        self,
        method: str,
        url: str,
        model: Callable[[Any], M],
        kind: ResponseKind,
        *,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
    ) -> M:
        response = self._call(method, url, json=json, params=params)
        decoded = model(decode_json(response))
        validate(kind, decoded)
        return decoded

    # ------------------------------------------------------------------
    # Submitter

    def execute_query(
        self,
        query_id: int,
        parameters: Mapping[str, Any] | None = None,
        *,
        performance: Performance | None = None,
    ) -> ExecuteResponse:
        body: dict[str, Any] = {}
        if parameters:
            body["query_parameters"] = dict(parameters)
        if performance is not None:
            body["performance"] = performance
        logger.info("executing query, query_id=%s", query_id)
        return self._fetch(
            "POST",
            self.endpoints.execute(query_id),
            ExecuteResponse.from_dict,
            ResponseKind.EXECUTE,
            json=body,
        )

    def execute_sql(self, sql: str, *, performance: Performance | None = None) -> ExecuteResponse:
        if not sql.strip():
            raise ValueError("empty query")
        body: dict[str, Any] = {"sql": sql}
        if performance is not None:
            body["performance"] = performance
        logger.info("executing raw sql")
        return self._fetch(
            "POST",
            self.endpoints.execute_sql(),
            ExecuteResponse.from_dict,
            ResponseKind.EXECUTE,
            json=body,
        )

    def run_query(
        self,
        query_id: int,
        parameters: Mapping[str, Any] | None = None,
        *,
        performance: Performance | None = None,
    ) -> Execution:
        submitted = self.execute_query(query_id, parameters, performance=performance)
        return Execution(
            self, submitted.execution_id, query_id=query_id, state=submitted.state, sleep=self._sleep
        )

    def run_sql(self, sql: str, *, performance: Performance | None = None) -> Execution:
        submitted = self.execute_sql(sql, performance=performance)
        return Execution(self, submitted.execution_id, state=submitted.state, sleep=self._sleep)

    def run_query_get_rows(
        self,
        query_id: int,
        parameters: Mapping[str, Any] | None = None,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> list[dict[str, Any]]:
        """Submit, block until finished, and return just the rows."""
        execution = self.run_query(query_id, parameters)
        results = execution.wait_get_results(poll_interval, max_retries)
        if results.state != ExecutionState.COMPLETED.value:
            detail = results.error.message if results.error is not None else None
            raise QueryFailedError(execution.id, results.state, detail)
        return results.rows

    def execution(self, execution_id: str) -> Execution:
        """Handle on an execution submitted elsewhere."""
        return Execution(self, execution_id, sleep=self._sleep)

    # ------------------------------------------------------------------
    # Poller

    def get_execution_status(self, execution_id: str) -> StatusResponse:
        return self._fetch(
            "GET",
            self.endpoints.status(execution_id),
            StatusResponse.from_dict,
            ResponseKind.STATUS,
        )

    def cancel_execution(self, execution_id: str) -> None:
        logger.info("cancelling execution, execution_id=%s", execution_id)
        self._fetch(
            "POST",
            self.endpoints.cancel(execution_id),
            CancelResponse.from_dict,
            ResponseKind.CANCEL,
        )

    # ------------------------------------------------------------------
    # ResultFetcher

    def _get_results(self, url: str, options: ResultOptions | None, page_size: int) -> ResultsResponse:
        def fetch_page(page_options: ResultOptions) -> ResultsResponse:
            return self._fetch(
                "GET",
                url,
                ResultsResponse.from_dict,
                ResponseKind.RESULTS,
                params=page_options.to_params(),
            )

        return pagination.fetch_all_pages(fetch_page, options, page_size=page_size)

    def get_execution_results(
        self,
        execution_id: str,
        options: ResultOptions | None = None,
        *,
        page_size: int = LIMIT_ROWS,
    ) -> ResultsResponse:
        """Results (or just the state) of an execution, all pages merged."""
        return self._get_results(self.endpoints.execution_results(execution_id), options, page_size)

    def get_query_results(
        self,
        query_id: int | str,
        options: ResultOptions | None = None,
        *,
        page_size: int = LIMIT_ROWS,
    ) -> ResultsResponse:
        """Results of the latest execution of a saved query, all pages merged."""
        return self._get_results(self.endpoints.query_results(query_id), options, page_size)

    def get_execution_results_csv(self, execution_id: str) -> str:
        # the whole body is read into memory; no pagination for csv
        return self._call("GET", self.endpoints.execution_results(execution_id, csv=True)).text

    def get_query_results_csv(self, query_id: int | str) -> str:
        return self._call("GET", self.endpoints.query_results(query_id, csv=True)).text
