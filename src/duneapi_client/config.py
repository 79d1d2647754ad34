from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from .adapters.http_client import HttpClientConfig
from .core.errors import ConfigError
from .core.models import RetryPolicy

DEFAULT_HOST = "https://api.dune.com"


@dataclass(frozen=True)
class DuneConfig:
    api_key: str
    host: str = DEFAULT_HOST


@dataclass(frozen=True)
class PollConfig:
    """How long to wait between polls and how many failed polls to tolerate.

    ``max_retries=0`` disables the limit, which can block forever when the API
    stays unreachable.
    """

    interval: float = 5.0
    max_retries: int = 10


@dataclass(frozen=True)
class Config:
    dune: DuneConfig
    http: HttpClientConfig = field(default_factory=HttpClientConfig)
    poll: PollConfig = field(default_factory=PollConfig)

    @classmethod
    def from_api_key(cls, api_key: str, *, host: str = DEFAULT_HOST) -> Config:
        if not api_key:
            raise ConfigError("api key must not be empty")
        return cls(dune=DuneConfig(api_key=api_key, host=host.rstrip("/")))

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Config:
        env = os.environ if environ is None else environ

        api_key = env.get("DUNE_API_KEY")
        if not api_key:
            raise ConfigError("environment variable DUNE_API_KEY must be set")
        host = env.get("DUNE_API_HOST", DEFAULT_HOST).rstrip("/")

        defaults = RetryPolicy()
        retry = RetryPolicy(
            max_attempts=_int_env(env, "DUNE_RETRY_MAX_ATTEMPTS", defaults.max_attempts, minimum=1),
            initial_backoff=_float_env(env, "DUNE_RETRY_INITIAL_BACKOFF", defaults.initial_backoff),
            max_backoff=_float_env(env, "DUNE_RETRY_MAX_BACKOFF", defaults.max_backoff),
            jitter=_float_env(env, "DUNE_RETRY_JITTER", defaults.jitter),
        )
        http = HttpClientConfig(
            timeout=_float_env(env, "DUNE_HTTP_TIMEOUT", HttpClientConfig.timeout),
            retry=retry,
        )
        poll = PollConfig(
            interval=_float_env(env, "DUNE_POLL_INTERVAL", PollConfig.interval),
            max_retries=_int_env(env, "DUNE_POLL_MAX_RETRIES", PollConfig.max_retries),
        )
        return cls(dune=DuneConfig(api_key=api_key, host=host), http=http, poll=poll)


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigError(f"environment variable {name} must be a number, got {raw!r}") from exc
    if value < 0:
        raise ConfigError(f"environment variable {name} must not be negative")
    return value


def _int_env(env: Mapping[str, str], name: str, default: int, *, minimum: int = 0) -> int:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"environment variable {name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"environment variable {name} must be >= {minimum}")
    return value
