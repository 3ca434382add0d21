"""Use cases built on top of the Redmine client."""

import asyncio
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from .aggregations import (
    hours_by_connection,
    hours_by_day,
    hours_by_project,
    hours_by_week,
)
from .connections import Connection
from .crypto import SecretCipher
from .models import (
    Project,
    RedmineApiOptions,
    RedmineResponse,
    StatusResponse,
    TimeEntryBatch,
    TimeEntryRequest,
)
from .pagination import fetch_all_pages
from .projects import build_project_tree
from .redmine_client import RedmineClient

logger = logging.getLogger(__name__)

PROJECT_PAGE_SIZE = 100
TIME_ENTRY_PAGE_SIZE = 100
DEFAULT_RANGE_DAYS = 7

# Redmine alias for the authenticated user
CURRENT_USER = "me"


def client_for_connection(
    connection: Connection,
    cipher: Optional[SecretCipher],
    timeout: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RedmineClient:
    """Client for a saved connection.

    The stored key is used with the stored username. A connection without a
    key but with a username and password falls back to basic auth.
    """
    return connection.client(cipher, timeout, transport)


async def check_credentials(
    url: str,
    api_key: Optional[str] = None,
    username: Optional[str] = None,
    password: Optional[str] = None,
    cipher: Optional[SecretCipher] = None,
    timeout: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RedmineResponse:
    """Authenticate against ``url`` with a plaintext key or a login.

    Returns the ``current_user`` envelope; on success its ``api_key`` is
    already encrypted and ready to be stored.
    """
    if api_key:
        options = RedmineApiOptions.build(
            host=url, auth_type="apikey", api_key=api_key, timeout=timeout
        )
    else:
        options = RedmineApiOptions.build(
            host=url,
            auth_type="password",
            username=username,
            password=password,
            timeout=timeout,
        )
    async with RedmineClient(options, cipher=cipher, transport=transport) as client:
        return await client.current_user()


async def sync_projects(client: RedmineClient) -> Tuple[List[Project], StatusResponse]:
    """Fetch every project page and build the two-level tree."""
    result = await fetch_all_pages(client.projects, limit=PROJECT_PAGE_SIZE)
    return build_project_tree(result.data), result.status


def default_date_range(today: Optional[date] = None) -> Tuple[date, date]:
    today = today or date.today()
    return today - timedelta(days=DEFAULT_RANGE_DAYS), today


def build_time_entry_request(
    form: Dict[str, Any],
    redmine_user_id: Optional[int] = None,
    today: Optional[date] = None,
) -> TimeEntryRequest:
    """Turn submitted form values into a create request for ``redmine_user_id``."""
    return TimeEntryRequest.from_form(
        spent_on=form.get("spent_on"),
        hours=form.get("hours"),
        activity_id=form.get("activity_id"),
        comments=form.get("comments"),
        user_id=redmine_user_id,
        issue_id=form.get("issue_id"),
        sub_project_id=form.get("sub_project_id"),
        project_id=form.get("project_id"),
        today=today,
    )


def time_entry_filters(
    connection: Connection,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Dict[str, Any]:
    default_from, default_to = default_date_range()
    return {
        "from": (date_from or default_from).isoformat(),
        "to": (date_to or default_to).isoformat(),
        "user_id": connection.redmine_user_id or CURRENT_USER,
    }


async def fetch_connection_time_entries(
    connection: Connection,
    cipher: Optional[SecretCipher],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    timeout: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> RedmineResponse:
    """All time entries of one connection's user within the date range."""
    params = time_entry_filters(connection, date_from, date_to)
    async with client_for_connection(connection, cipher, timeout, transport) as client:
        return await fetch_all_pages(
            client.time_entries, limit=TIME_ENTRY_PAGE_SIZE, params=params
        )


async def collect_time_entries(
    connections: Sequence[Connection],
    cipher: Optional[SecretCipher],
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    timeout: float = 30,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Tuple[List[TimeEntryBatch], Dict[str, StatusResponse]]:
    """Fetch time entries from every connection concurrently.

    All fetches are awaited whether they succeed or not. A failed connection
    contributes an empty batch, and its status is reported alongside.
    """
    results = await asyncio.gather(
        *(
            fetch_connection_time_entries(
                connection, cipher, date_from, date_to, timeout, transport
            )
            for connection in connections
        ),
        return_exceptions=True,
    )

    batches = []
    statuses = {}
    for connection, result in zip(connections, results):
        if isinstance(result, Exception):
            logger.error(
                "Fetching time entries for connection %s failed: %s",
                connection.id,
                result,
            )
            result = RedmineResponse(data=[], status=StatusResponse.from_error(result))
        batches.append(TimeEntryBatch(connection_id=connection.id, data=result.data))
        statuses[connection.id] = result.status
    return batches, statuses


def summarize_hours(
    batches: Optional[Sequence[TimeEntryBatch]],
    connections: Sequence[Connection],
) -> Dict[str, List[Dict[str, Any]]]:
    """All dashboard series, ready to be serialized."""
    series = {
        "by_day": hours_by_day(batches),
        "by_week": hours_by_week(batches),
        "by_project": hours_by_project(batches, connections),
        "by_connection": hours_by_connection(batches, connections),
    }
    return {
        name: [bucket.model_dump(exclude_none=True) for bucket in buckets]
        for name, buckets in series.items()
    }

