from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType

url_templates = MappingProxyType(
    {
        "execute": "{host}/api/v1/query/{query_id}/execute",
        "execution_sql": "{host}/api/v1/sql/execute",
        "execution_status": "{host}/api/v1/execution/{execution_id}/status",
        "execution_results": "{host}/api/v1/execution/{execution_id}/results",
        "execution_results_csv": "{host}/api/v1/execution/{execution_id}/results/csv",
        "execution_cancel": "{host}/api/v1/execution/{execution_id}/cancel",
        "query_results": "{host}/api/v1/query/{query_id}/results",
        "query_results_csv": "{host}/api/v1/query/{query_id}/results/csv",
    }
)

_QUERY_URL = re.compile(r"^(?:https?://)?(?:www\.)?(?:api\.)?dune\.com/(?:api/v1/)?(?:queries|query)/(\d+)")


def get_query_id(query: int | str) -> int:
    """Accept an int, a numeric string or a dune.com query URL."""
    if isinstance(query, bool):
        raise ValueError(f"invalid query id: {query!r}")
    if isinstance(query, int):
        return query
    text = query.strip()
    if text.isdigit():
        return int(text)
    match = _QUERY_URL.match(text)
    if match is None:
        raise ValueError(f"invalid query id or url: {query!r}")
    return int(match.group(1))


@dataclass(frozen=True)
class Endpoints:
    """URL templates resolved once against a base host."""

    host: str

    @classmethod
    def from_host(cls, host: str) -> Endpoints:
        return cls(host=host.rstrip("/"))

    def _url(self, name: str, **kwargs: object) -> str:
        return url_templates[name].format(host=self.host, **kwargs)

    def execute(self, query_id: int) -> str:
        return self._url("execute", query_id=query_id)

    def execute_sql(self) -> str:
        return self._url("execution_sql")

    def status(self, execution_id: str) -> str:
        return self._url("execution_status", execution_id=execution_id)

    def execution_results(self, execution_id: str, *, csv: bool = False) -> str:
        name = "execution_results_csv" if csv else "execution_results"
        return self._url(name, execution_id=execution_id)

    def query_results(self, query_id: int | str, *, csv: bool = False) -> str:
        name = "query_results_csv" if csv else "query_results"
        return self._url(name, query_id=query_id)

    def cancel(self, execution_id: str) -> str:
        return self._url("execution_cancel", execution_id=execution_id)
