"""Run a Dune query (or follow an existing execution) and print its results.

Usage:
    duneapi-client -q 1234 -p '{"chain": "ethereum"}'
    duneapi-client -e 01HXXXXXXXXXXXXXXXXXXXXXXX --poll-interval 2
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from collections.abc import Sequence

from .adapters.dune.client import DuneClient
from .config import Config
from .core.errors import DuneError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="duneapi-client",
        description="Execute a Dune query and wait for its results.",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("-q", "--query-id", type=int, help="ID of the query to execute")
    target.add_argument("-e", "--execution-id", help="ID of an existing execution to follow")
    parser.add_argument(
        "-p",
        "--parameters",
        default="{}",
        help="query parameters as a JSON object (default: {})",
    )
    parser.add_argument(
        "--max-retries",
        type=int,
        default=5,
        help="failed polls tolerated before giving up, 0 for no limit (default: 5)",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=5.0,
        help="seconds between polls (default: 5)",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="log progress to stderr")
    return parser


def parse_parameters(raw: str) -> dict[str, object]:
    try:
        parameters = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"failed to parse query parameters: {exc}") from exc
    if not isinstance(parameters, dict):
        raise ValueError("query parameters must be a JSON object")
    return parameters


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        parameters = parse_parameters(args.parameters)
        client = DuneClient(Config.from_env())
        if args.execution_id:
            execution = client.execution(args.execution_id)
        else:
            execution = client.run_query(args.query_id, parameters or None)
        result = execution.wait_get_results(args.poll_interval, args.max_retries)
    except (DuneError, ValueError) as exc:
        print(f"failed to retrieve results: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(result.to_dict()))
    return 0


if __name__ == "__main__":
    sys.exit(main())
