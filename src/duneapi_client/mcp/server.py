from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Literal

os.environ.setdefault("FASTMCP_LOG_LEVEL", "ERROR")

from fastmcp import FastMCP

from ..adapters.dune.client import DuneClient
from ..adapters.http_client import HttpClient
from ..config import Config
from ..core.errors import error_response
from ..service_layer.query_service import QueryService

logger = logging.getLogger(__name__)


# Global handles initialized on demand
CONFIG: Config | None = None
HTTP_CLIENT: HttpClient | None = None
DUNE_CLIENT: DuneClient | None = None
QUERY_SERVICE: QueryService | None = None


app = FastMCP("duneapi-client")


def _best_effort_load_dotenv() -> None:
    """Load a local .env (cwd or home) if DUNE_API_KEY is missing."""
    if os.environ.get("DUNE_API_KEY") or os.environ.get("DUNE_SKIP_DOTENV"):
        return
    for candidate in (os.path.join(os.getcwd(), ".env"), os.path.expanduser("~/.env")):
        if not os.path.exists(candidate):
            continue
        try:
            with open(candidate, encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith("#") or "=" not in line:
                        continue
                    k, v = line.split("=", 1)
                    k, v = k.strip(), v.strip().strip('"').strip("'")
                    if k and v and k not in os.environ:
                        os.environ[k] = v
        except OSError as exc:
            logger.warning("could not read %s: %s", candidate, exc)


def _ensure_initialized() -> None:
    """Build configuration, client and service on first use."""
    global CONFIG, HTTP_CLIENT, DUNE_CLIENT, QUERY_SERVICE

    if QUERY_SERVICE is not None:
        return

    logger.info("Initializing duneapi-client MCP server...")
    _best_effort_load_dotenv()
    CONFIG = Config.from_env()
    HTTP_CLIENT = HttpClient(CONFIG.http)
    DUNE_CLIENT = DuneClient(CONFIG, http_client=HTTP_CLIENT)
    QUERY_SERVICE = QueryService(DUNE_CLIENT)
    logger.info("duneapi-client MCP server ready")


def compute_health_status() -> dict[str, Any]:
    """Lightweight health status that does not require full init."""
    _best_effort_load_dotenv()
    has_api_key = bool(os.getenv("DUNE_API_KEY") or (CONFIG and CONFIG.dune.api_key))
    host = CONFIG.dune.host if CONFIG is not None else os.getenv("DUNE_API_HOST", "https://api.dune.com")
    return {
        "api_key_present": has_api_key,
        "host": host,
        "initialized": QUERY_SERVICE is not None,
        "status": "ok" if has_api_key else "degraded",
    }


# Sync implementations, kept apart from the async tool wrappers for testing

def _dune_query_impl(
    query: str,
    parameters: dict[str, Any] | None = None,
    limit: int | None = None,
    offset: int | None = None,
    performance: Literal["medium", "large"] | None = None,
    poll_interval: float | None = None,
    max_retries: int | None = None,
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    try:
        result = QUERY_SERVICE.execute(
            query,
            parameters=parameters,
            performance=performance,
            limit=limit,
            offset=offset,
            poll_interval=poll_interval,
            max_retries=max_retries,
        )
        return {"ok": True, **result}
    except Exception as e:
        return error_response(e, context={
            "tool": "dune_query",
            "query": query,
            "limit": limit,
            "offset": offset,
        })


def _dune_execution_status_impl(execution_id: str) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    try:
        return {"ok": True, **QUERY_SERVICE.status(execution_id)}
    except Exception as e:
        return error_response(e, context={"tool": "dune_execution_status", "execution_id": execution_id})


def _dune_results_impl(
    execution_id: str | None = None,
    query: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    try:
        result = QUERY_SERVICE.results(execution_id=execution_id, query=query, limit=limit, offset=offset)
        return {"ok": True, **result}
    except Exception as e:
        return error_response(e, context={
            "tool": "dune_results",
            "execution_id": execution_id,
            "query": query,
        })


def _dune_cancel_impl(execution_id: str) -> dict[str, Any]:
    _ensure_initialized()
    assert QUERY_SERVICE is not None
    try:
        return QUERY_SERVICE.cancel(execution_id)
    except Exception as e:
        return error_response(e, context={"tool": "dune_cancel_execution", "execution_id": execution_id})


@app.tool(
    name="dune_query",
    title="Run Dune Query",
    description="Execute a saved query (id or url) or raw SQL, wait for completion and return a preview.",
    tags={"dune", "query"},
)
async def dune_query(
    query: str,
    parameters: dict[str, Any] | None = None,
    limit: int | None = None,
    offset: int | None = None,
    performance: Literal["medium", "large"] | None = None,
    poll_interval: float | None = None,
    max_retries: int | None = None,
) -> dict[str, Any]:
    return await asyncio.to_thread(
        _dune_query_impl,
        query,
        parameters=parameters,
        limit=limit,
        offset=offset,
        performance=performance,
        poll_interval=poll_interval,
        max_retries=max_retries,
    )


@app.tool(
    name="dune_execution_status",
    title="Execution Status",
    description="Fetch the lifecycle state of an execution.",
    tags={"dune", "execution"},
)
async def dune_execution_status(execution_id: str) -> dict[str, Any]:
    return await asyncio.to_thread(_dune_execution_status_impl, execution_id)


@app.tool(
    name="dune_results",
    title="Fetch Results",
    description="Fetch results by execution id or latest results by query id; all pages unless limit/offset is set.",
    tags={"dune", "execution"},
)
async def dune_results(
    execution_id: str | None = None,
    query: str | None = None,
    limit: int | None = None,
    offset: int | None = None,
) -> dict[str, Any]:
    return await asyncio.to_thread(
        _dune_results_impl, execution_id=execution_id, query=query, limit=limit, offset=offset
    )


@app.tool(
    name="dune_cancel_execution",
    title="Cancel Execution",
    description="Cancel a pending or executing execution.",
    tags={"dune", "execution"},
)
async def dune_cancel_execution(execution_id: str) -> dict[str, Any]:
    return await asyncio.to_thread(_dune_cancel_impl, execution_id)


@app.tool(
    name="dune_health_check",
    title="Health Check",
    description="Validate Dune API key presence and client setup.",
    tags={"health"},
)
async def dune_health_check() -> dict[str, Any]:
    return compute_health_status()


def main() -> None:
    # Defer initialization to the first tool call so env issues don't break
    # the MCP handshake.
    app.run(show_banner=False)


if __name__ == "__main__":
    main()
