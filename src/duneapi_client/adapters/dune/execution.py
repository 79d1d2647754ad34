from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

from ...core.errors import DecodeError, RequestUnsuccessfulError, RetriesExhaustedError
from ...core.models import ResultOptions, ResultsResponse, StatusResponse, is_terminal_state

if TYPE_CHECKING:
    import polars as pl

    from ...core.ports import ExecutionBackend

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_MAX_RETRIES = 10

# failures that say nothing about the execution itself; worth polling again
_TRANSIENT_ERRORS = (RequestUnsuccessfulError, DecodeError)


def wait_for_completion(
    fetch: Callable[[], ResultsResponse],
    execution_id: str,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    max_retries: int = DEFAULT_MAX_RETRIES,
    sleep: Callable[[float], None] = time.sleep,
    on_response: Callable[[ResultsResponse], None] | None = None,
) -> ResultsResponse:
    """Poll ``fetch`` until the execution reaches a terminal state.

    ``max_retries`` bounds consecutive failed fetches (after the transport's
    own retries); a successful fetch resets the count. ``max_retries=0``
    polls forever. Validation errors are not retried.
    """
    errors = 0
    t_start = time.monotonic()
    while True:
        try:
            response = fetch()
        except _TRANSIENT_ERRORS as exc:
            errors += 1
            if max_retries != 0 and errors > max_retries:
                raise RetriesExhaustedError(
                    f"retries have been exhausted for execution_id={execution_id}: {exc}"
                ) from exc
            logger.warning(
                "failed to retrieve results for execution_id=%s (%d consecutive), retrying: %s",
                execution_id, errors, exc,
            )
        else:
            errors = 0
            if on_response is not None:
                on_response(response)
            if response.is_execution_finished or is_terminal_state(response.state):
                return response
            logger.info(
                "waiting for results, execution_id=%s, state=%s, t=%.02f",
                execution_id, response.state, time.monotonic() - t_start,
            )
        sleep(poll_interval)


class Execution:
    """Handle on one remote execution.

    The handle never changes state on its own; ``state`` is the last value
    observed from the server.
    """

    def __init__(
        self,
        client: ExecutionBackend,
        execution_id: str,
        *,
        query_id: int | None = None,
        state: str | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.client = client
        self.id = execution_id
        self.query_id = query_id
        self.state = state
        self._sleep = sleep

    def __repr__(self) -> str:
        return f"Execution(id={self.id!r}, query_id={self.query_id!r}, state={self.state!r})"

    def _observe(self, response: StatusResponse | ResultsResponse) -> None:
        if response.state:
            self.state = response.state
        if self.query_id is None and response.query_id is not None:
            self.query_id = response.query_id

    def cancel(self) -> None:
        self.client.cancel_execution(self.id)

    def get_status(self) -> StatusResponse:
        status = self.client.get_execution_status(self.id)
        self._observe(status)
        return status

    def get_results(self, options: ResultOptions | None = None) -> ResultsResponse:
        results = self.client.get_execution_results(self.id, options)
        self._observe(results)
        return results

    def get_results_csv(self) -> str:
        return self.client.get_execution_results_csv(self.id)

    def get_results_frame(
        self,
        *,
        types: Sequence[type[pl.DataType]] | Mapping[str, type[pl.DataType]] | None = None,
    ) -> pl.DataFrame:
        from .extract import process_raw_table

        return process_raw_table(self.get_results_csv(), types=types)

    def wait_get_results(
        self,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_retries: int = DEFAULT_MAX_RETRIES,
        *,
        options: ResultOptions | None = None,
    ) -> ResultsResponse:
        """Block until the execution is finished and return its results.

        All pages are merged unless ``options`` asks for a single page. Keep
        ``poll_interval`` at a few seconds to stay clear of rate limits.
        """
        return wait_for_completion(
            lambda: self.client.get_execution_results(self.id, options),
            self.id,
            poll_interval=poll_interval,
            max_retries=max_retries,
            sleep=self._sleep,
            on_response=self._observe,
        )

    def to_dict(self) -> dict[str, Any]:
        return {"execution_id": self.id, "query_id": self.query_id, "state": self.state}
