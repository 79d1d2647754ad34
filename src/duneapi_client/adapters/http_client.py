"""Retrying HTTP transport shared by every Dune endpoint.

One call to :meth:`HttpClient.request` is one logical request: connection
failures and retryable status codes are retried with exponential backoff,
anything else is classified and raised right away.
"""

from __future__ import annotations

import json as _json
import logging
import math
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import requests

from ..core.errors import APIError, TransportError
from ..core.models import RateLimit, RetryPolicy

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-Dune-API-Key"
USER_AGENT = "duneapi-client/0.1.0"


@dataclass(frozen=True)
class HttpClientConfig:
    timeout: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    # bytes of an error body kept on the raised APIError
    body_snippet_limit: int = 1024
    user_agent: str = USER_AGENT


def parse_rate_limit(headers: Mapping[str, str]) -> RateLimit | None:
    """Snapshot of the X-RateLimit-* headers, None when the server sent none.

    A header that is present but unparsable reads as 0, so a zero quota
    still yields a snapshot.
    """
    names = ("X-RateLimit-Limit", "X-RateLimit-Remaining", "X-RateLimit-Reset")
    if not any(headers.get(name) is not None for name in names):
        return None

    def _read(name: str) -> int:
        raw = headers.get(name)
        if not raw:
            return 0
        try:
            return int(raw)
        except ValueError:
            return 0

    limit, remaining, reset = (_read(name) for name in names)
    return RateLimit(limit=limit, remaining=remaining, reset=reset)


def parse_retry_after(headers: Mapping[str, str]) -> float | None:
    raw = headers.get("Retry-After")
    if not raw:
        return None
    try:
        seconds = float(raw)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


def parse_error_message(snippet: str) -> str:
    """Prefer the server's ``{"error": ...}`` message over the raw body."""
    try:
        payload = _json.loads(snippet)
    except ValueError:
        return snippet
    if isinstance(payload, Mapping):
        message = payload.get("error")
        if isinstance(message, str) and message:
            return message
    return snippet


def _read_snippet(response: requests.Response, limit: int) -> str:
    buf = b""
    try:
        for chunk in response.iter_content(chunk_size=limit):
            buf += chunk
            if len(buf) >= limit:
                break
    except requests.RequestException as exc:
        logger.debug("could not read error body: %s", exc)
    finally:
        response.close()
    return buf[:limit].decode("utf-8", errors="replace").strip()


class HttpClient:
    """Synchronous HTTP client with retry/backoff classification."""

    def __init__(
        self,
        config: HttpClientConfig | None = None,
        *,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or HttpClientConfig()
        self._session = session
        self._sleep = sleep

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> HttpClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

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
        policy = self.config.retry
        req_headers = {"User-Agent": self.config.user_agent}
        if headers:
            req_headers.update(headers)
        if api_key is not None:
            req_headers[API_KEY_HEADER] = api_key

        attempt = 1
        while True:
            try:
                response = self.session.request(
                    method,
                    url,
                    headers=req_headers,
                    json=json,
                    params=params,
                    timeout=timeout if timeout is not None else self.config.timeout,
                    stream=True,
                )
            except (requests.ConnectionError, requests.Timeout) as exc:
                if attempt >= policy.max_attempts:
                    raise TransportError(f"failed to send request: {method} {url}: {exc}") from exc
                delay = policy.backoff(attempt)
                logger.warning(
                    "%s %s failed (%s), attempt %d/%d, retrying in %.2fs",
                    method, url, exc, attempt, policy.max_attempts, delay,
                )
                self._sleep(delay)
                attempt += 1
                continue

            if 200 <= response.status_code < 300:
                return response

            error = self._api_error(response)
            if policy.is_retryable(error.status_code) and attempt < policy.max_attempts:
                delay = policy.backoff(attempt)
                if error.retry_after is not None and error.retry_after > delay:
                    delay = error.retry_after
                logger.warning(
                    "%s %s returned %d, attempt %d/%d, retrying in %.2fs",
                    method, url, error.status_code, attempt, policy.max_attempts, delay,
                )
                self._sleep(delay)
                attempt += 1
                continue
            raise error

    def _api_error(self, response: requests.Response) -> APIError:
        snippet = _read_snippet(response, self.config.body_snippet_limit)
        return APIError(
            response.status_code,
            response.reason or "",
            parse_error_message(snippet),
            rate_limit=parse_rate_limit(response.headers),
            retry_after=parse_retry_after(response.headers),
        )
