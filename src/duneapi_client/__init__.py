"""Synchronous client for the Dune query-execution API."""

from .adapters.dune import DuneClient, Execution
from .config import Config, DuneConfig, PollConfig
from .core.errors import (
    APIError,
    ConfigError,
    DecodeError,
    DuneError,
    QueryFailedError,
    RequestUnsuccessfulError,
    RetriesExhaustedError,
    TransportError,
    ValidationError,
)
from .core.models import ExecutionState, ResultOptions, ResultsResponse, RetryPolicy

__version__ = "0.1.0"

__all__ = [
    "APIError",
    "Config",
    "ConfigError",
    "DecodeError",
    "DuneClient",
    "DuneConfig",
    "DuneError",
    "Execution",
    "ExecutionState",
    "PollConfig",
    "QueryFailedError",
    "RequestUnsuccessfulError",
    "ResultOptions",
    "ResultsResponse",
    "RetriesExhaustedError",
    "RetryPolicy",
    "TransportError",
    "ValidationError",
]
