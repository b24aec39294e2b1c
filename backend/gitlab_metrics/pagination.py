"""Generic cursor-following pagination for GitLab GraphQL connections."""

import logging
from typing import Callable, Optional, Tuple

from gitlab_metrics.errors import ScopeNotFoundError
from gitlab_metrics.rate_limit import ISSUE_PAGE_DELAY_MS

logger = logging.getLogger(__name__)

Page = Tuple[list, bool, Optional[str]]


def connection(scope_key: str, *path: str, scope_label: str = None) -> Callable[[dict], Page]:
    """Build an extractor for `data[scope_key][path...]` connections.

    A missing top-level scope (group/project/issue) raises
    ScopeNotFoundError. A present scope without the connection yields an
    empty, final page.

    Args:
        scope_key: Top-level response key, e.g. "group"
        path: Keys from the scope down to the connection, e.g. "issues"
        scope_label: Human-readable scope named in the not-found message
    """
    label = scope_label or scope_key

    def extract(data: dict) -> Page:
        node = (data or {}).get(scope_key)
        if node is None:
            raise ScopeNotFoundError(f"{scope_key.capitalize()} not found: {label}")

        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
            if node is None:
                return [], False, None

        page_info = node.get("pageInfo") or {}
        return (
            node.get("nodes") or [],
            bool(page_info.get("hasNextPage")),
            page_info.get("endCursor"),
        )

    return extract


def paginate(executor, rate_limiter, query: str, variables: dict,
             extract: Callable[[dict], Page], context: str,
             delay_ms: int = ISSUE_PAGE_DELAY_MS,
             after: Optional[str] = None) -> list:
    """Follow `pageInfo.endCursor` until `hasNextPage` is false.

    Pages are fetched strictly in cursor order. The rate limiter is asked
    for a delay between pages only, so it runs `pages - 1` times. Any page
    failure aborts the whole operation and propagates.

    Args:
        executor: Object with `execute(query, variables, context)`
        rate_limiter: Object with `delay(ms)`
        query: GraphQL query using an `$after` cursor variable
        variables: Base variables (cursor is added per page)
        extract: Maps a page response to (items, has_next_page, end_cursor)
        context: Operation description for errors and logs
        delay_ms: Pause between pages in milliseconds
        after: Cursor to start from (None requests the first page)

    Returns:
        All items across pages, in page order.
    """
    items = []
    pages = 0
    cursor = after

    while True:
        data = executor.execute(query, {**variables, "after": cursor}, context)
        nodes, has_next_page, end_cursor = extract(data)
        items.extend(nodes)
        pages += 1

        logger.debug(
            f"Fetched page {pages} ({context})",
            extra={"context": {"page": pages, "count": len(nodes), "hasNextPage": has_next_page}}
        )

        if not has_next_page:
            break

        rate_limiter.delay(delay_ms)
        cursor = end_cursor

    return items
