"""Merge paginated results into one logical result set.

The server owns pagination progress: the offset of the next request is always
the ``next_offset`` it reported, never something computed from row counts.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable

from ...core.models import LIMIT_ROWS, ResultOptions, ResultsResponse

logger = logging.getLogger(__name__)

PageFetcher = Callable[[ResultOptions], ResultsResponse]


def merge_page(acc: ResultsResponse | None, page: ResultsResponse) -> ResultsResponse:
    """Fold ``page`` into the accumulator and return it.

    The first page becomes the accumulator, one-time metadata included.
    Later pages append their rows and add their incremental counters; state,
    cursor and the finished flag always follow the latest page.
    """
    if acc is None:
        return copy.deepcopy(page)

    if page.result.rows is not None:
        acc.result.rows = [*(acc.result.rows or []), *page.result.rows]
    meta, page_meta = acc.result.metadata, page.result.metadata
    meta.row_count += page_meta.row_count
    meta.result_set_bytes += page_meta.result_set_bytes
    meta.datapoint_count += page_meta.datapoint_count

    acc.state = page.state
    acc.is_execution_finished = page.is_execution_finished
    acc.next_offset = page.next_offset
    acc.next_uri = page.next_uri
    return acc


def fetch_all_pages(
    fetch_page: PageFetcher,
    options: ResultOptions | None = None,
    *,
    page_size: int = LIMIT_ROWS,
) -> ResultsResponse:
    """Fetch every page of a result set and merge them in arrival order.

    An explicit page request (non-zero ``offset`` or ``limit``) is fetched once
    and returned untouched. Otherwise pages of ``page_size`` rows are requested
    until the server stops returning a cursor.
    """
    options = options or ResultOptions()
    if options.single_page:
        return fetch_page(options)

    options = options.with_limit(page_size or LIMIT_ROWS)
    acc: ResultsResponse | None = None
    while True:
        page = fetch_page(options)
        logger.info(
            "page offset=%d state=%s rows=%d next_offset=%s finished=%s",
            options.offset,
            page.state,
            page.result.metadata.row_count,
            page.next_offset,
            page.is_execution_finished,
        )
        acc = merge_page(acc, page)
        if page.next_offset is None:
            break
        options = options.with_offset(page.next_offset)
    return acc
