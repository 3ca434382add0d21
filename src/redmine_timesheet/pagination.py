"""Offset pagination over Redmine list endpoints."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .models import RedmineResponse

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 100

ListPage = Callable[[Dict[str, Any]], Awaitable[RedmineResponse]]


async def fetch_all_pages(
    list_page: ListPage,
    limit: int = DEFAULT_PAGE_SIZE,
    params: Optional[Dict[str, Any]] = None,
) -> RedmineResponse:
    """Call ``list_page`` with growing offsets until a page comes back empty.

    Pages are fetched one after another because each offset depends on the
    previous page having had data. Paging also stops on the first error; the
    returned envelope then carries everything gathered so far together with
    that error status.

    Args:
        list_page: A paged client operation such as ``client.projects``
        limit: Page size sent to Redmine
        params: Extra filters sent with every page

    Returns:
        Envelope with the concatenated data and the status of the last call

    Raises:
        ValueError: If limit is not positive
    """
    if limit <= 0:
        raise ValueError(f"limit must be positive, not {limit}")
    items: List[Any] = []
    offset = 0
    while True:
        page = await list_page({**(params or {}), "offset": offset, "limit": limit})
        if page.status.has_error:
            logger.warning(
                "Stopped paging at offset %d: HTTP %s %s",
                offset,
                page.status.status_code,
                page.status.status_text,
            )
            return RedmineResponse(data=items, status=page.status)
        if not page.data:
            return RedmineResponse(data=items, status=page.status)
        items.extend(page.data)
        offset += limit


async def fetch_all(
    list_page: ListPage,
    limit: int = DEFAULT_PAGE_SIZE,
    params: Optional[Dict[str, Any]] = None,
) -> List[Any]:
    """Like :func:`fetch_all_pages` but returns only the accumulated data."""
    return (await fetch_all_pages(list_page, limit, params)).data
