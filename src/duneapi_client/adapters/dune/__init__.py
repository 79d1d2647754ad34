"""Dune execution API adapter.

The client submits executions, polls them to completion and merges paginated
results; ``urls`` is re-exported for callers needing the raw endpoints.
"""

from . import urls
from .client import DuneClient
from .execution import Execution, wait_for_completion

__all__ = ["DuneClient", "Execution", "urls", "wait_for_completion"]
