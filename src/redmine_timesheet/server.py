"""Redmine timesheet MCP server - Main entry point."""

import logging
import sys
from datetime import date
from typing import Optional

from mcp.server.fastmcp import FastMCP

from .connections import Connection, ConnectionRegistry
from .crypto import SecretCipher
from .logging_config import configure_logging
from .models import RedmineError, UpstreamError, User
from .redmine_client import RedmineClient
from .services import (
    build_time_entry_request,
    check_credentials,
    client_for_connection,
    collect_time_entries,
    fetch_connection_time_entries,
    summarize_hours,
    sync_projects as fetch_project_tree,
)
from .settings import Settings, load_settings

logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("Redmine Timesheet")

_settings: Settings | None = None
_cipher: SecretCipher | None = None
_registry: ConnectionRegistry | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def get_cipher() -> SecretCipher:
    """Get or create the cipher for stored API keys.

    Raises:
        ConfigError: If REDMINE_TIMESHEET_SECRET_KEY is missing or malformed
    """
    global _cipher
    if _cipher is None:
        settings = get_settings()
        _cipher = SecretCipher(settings.secret_key, settings.cipher)
    return _cipher


def get_registry() -> ConnectionRegistry:
    global _registry
    if _registry is None:
        _registry = ConnectionRegistry.from_settings(get_settings())
    return _registry


def _client(connection: Connection) -> RedmineClient:
    return client_for_connection(connection, get_cipher(), get_settings().timeout)


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value[:10]) if value else None


# Connection Operations


@mcp.tool()
async def test_connection(
    url: str,
    api_key: str | None = None,
    username: str | None = None,
    password: str | None = None,
) -> dict:
    """Check credentials against a Redmine host without saving them.

    Args:
        url: Redmine instance URL
        api_key: API key (either this or username + password)
        username: Redmine login
        password: Redmine password

    Returns:
        Dictionary with "data" (the Redmine user, API key encrypted) and
        "status" (status_code, status_text, error_text, has_error)
    """
    response = await check_credentials(
        url,
        api_key=api_key,
        username=username,
        password=password,
        cipher=get_cipher(),
        timeout=get_settings().timeout,
    )
    return response.model_dump()


@mcp.tool()
async def save_connection(
    url: str,
    name: str = "",
    api_key: str | None = None,
    username: str | None = None,
    password: str | None = None,
    connection_id: str | None = None,
) -> dict:
    """Authenticate against Redmine and store the connection on success.

    When neither an API key nor a login is given, the stored key of
    connection_id is used again.

    Args:
        url: Redmine instance URL
        name: Display name for the connection
        api_key: API key (optional)
        username: Redmine login (optional)
        password: Redmine password (optional)
        connection_id: Existing connection to update (optional)

    Returns:
        The current_user envelope plus "connection_id" when it was saved
    """
    registry = get_registry()
    cipher = get_cipher()
    timeout = get_settings().timeout

    if api_key or (username and password):
        response = await check_credentials(
            url,
            api_key=api_key,
            username=username,
            password=password,
            cipher=cipher,
            timeout=timeout,
        )
    elif connection_id:
        stored = registry.get(connection_id).model_copy(update={"url": url})
        async with client_for_connection(stored, cipher, timeout) as client:
            response = await client.current_user()
    else:
        raise ValueError("Either api_key, username and password, or connection_id is required")

    result = response.model_dump()
    if response.ok and isinstance(response.data, User):
        connection = registry.upsert_from_user(
            url,
            response.data,
            name=name,
            connection_id=connection_id,
            password=password or "",
        )
        logger.info("Saved Redmine connection %s for %s", connection.id, url)
        result["connection_id"] = connection.id
    return result


@mcp.tool()
async def list_connections() -> list[dict]:
    """List saved Redmine connections that are not deleted.

    Returns:
        List of connections without credentials or cached projects
    """
    return [
        c.model_dump(exclude={"api_key", "password", "projects"})
        for c in get_registry().active()
    ]


@mcp.tool()
async def delete_connection(connection_id: str, hard: bool = False) -> dict:
    """Delete a saved connection.

    Args:
        connection_id: Connection to delete
        hard: Remove the record instead of flagging it as deleted

    Returns:
        Status dictionary
    """
    registry = get_registry()
    if hard:
        registry.delete(connection_id)
    else:
        registry.soft_delete(connection_id)
    return {
        "data": [],
        "status": {
            "status_code": 200,
            "status_text": "Delete",
            "error_text": "",
            "has_error": False,
        },
    }


# Project Operations


@mcp.tool()
async def sync_projects(connection_id: str) -> list[dict]:
    """Fetch all projects of a connection and cache the two-level tree.

    Args:
        connection_id: Saved connection ID

    Returns:
        Active top-level projects, each with its active sub-projects in "children"
    """
    registry = get_registry()
    connection = registry.get(connection_id)
    async with _client(connection) as client:
        tree, status = await fetch_project_tree(client)
    if status.has_error:
        raise UpstreamError.from_status(status)
    registry.update_projects(connection_id, tree)
    return [project.model_dump(exclude_none=True) for project in tree]


@mcp.tool()
async def list_projects(connection_id: str, limit: int = 25, offset: int = 0) -> dict:
    """List one page of projects of a connection.

    Args:
        connection_id: Saved connection ID
        limit: Maximum number of projects to return (default: 25, max: 100)
        offset: Offset for pagination (default: 0)

    Returns:
        Envelope with the projects of this page
    """
    connection = get_registry().get(connection_id)
    params = {"limit": min(limit, 100), "offset": offset}
    async with _client(connection) as client:
        response = await client.projects(params)
    return response.model_dump()


@mcp.tool()
async def list_activities(connection_id: str) -> dict:
    """List time entry activities (e.g. Development, QA) of a connection.

    Args:
        connection_id: Saved connection ID

    Returns:
        Envelope with the activities
    """
    connection = get_registry().get(connection_id)
    async with _client(connection) as client:
        response = await client.activities()
    return response.model_dump()


# Time Entry Operations


@mcp.tool()
async def list_time_entries(
    connection_id: str,
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict:
    """List the connection user's time entries in a date range.

    Args:
        connection_id: Saved connection ID
        date_from: First day in YYYY-MM-DD format (default: 7 days ago)
        date_to: Last day in YYYY-MM-DD format (default: today)

    Returns:
        Envelope with every time entry in the range
    """
    connection = get_registry().get(connection_id)
    response = await fetch_connection_time_entries(
        connection,
        get_cipher(),
        _parse_date(date_from),
        _parse_date(date_to),
        timeout=get_settings().timeout,
    )
    return response.model_dump()


@mcp.tool()
async def create_time_entry(
    connection_id: str,
    hours: float,
    activity_id: int,
    spent_on: str | None = None,
    comments: str | None = None,
    issue_id: int | None = None,
    sub_project_id: int | None = None,
    project_id: int | None = None,
) -> dict:
    """Log time in Redmine.

    The entry is booked on the issue when issue_id is given, otherwise on
    sub_project_id, otherwise on project_id.

    Args:
        connection_id: Saved connection ID
        hours: Hours spent
        activity_id: Time entry activity ID
        spent_on: Day in YYYY-MM-DD format (default: today)
        comments: Short description (optional)
        issue_id: Issue to book on (optional)
        sub_project_id: Sub-project to book on (optional)
        project_id: Project to book on (optional)

    Returns:
        Envelope with the created time entry
    """
    if hours < 0:
        raise ValueError("hours must be non-negative")

    connection = get_registry().get(connection_id)
    request = build_time_entry_request(
        {
            "spent_on": spent_on,
            "hours": hours,
            "activity_id": activity_id,
            "comments": comments,
            "issue_id": issue_id,
            "sub_project_id": sub_project_id,
            "project_id": project_id,
        },
        redmine_user_id=connection.redmine_user_id,
    )
    async with _client(connection) as client:
        response = await client.create_time_entry(request.payload())
    return response.model_dump()


@mcp.tool()
async def update_time_entry(
    connection_id: str,
    time_entry_id: int,
    hours: float | None = None,
    activity_id: int | None = None,
    spent_on: str | None = None,
    comments: str | None = None,
    issue_id: int | None = None,
    project_id: int | None = None,
) -> dict:
    """Update an existing time entry.

    Args:
        connection_id: Saved connection ID
        time_entry_id: Time entry to update
        hours: New hours (optional)
        activity_id: New activity ID (optional)
        spent_on: New day in YYYY-MM-DD format (optional)
        comments: New comments (optional)
        issue_id: New issue (optional)
        project_id: New project (optional)

    Returns:
        Status envelope (Redmine returns no content on success)
    """
    fields = {
        "hours": hours,
        "activity_id": activity_id,
        "spent_on": spent_on,
        "comments": comments,
        "issue_id": issue_id,
        "project_id": project_id,
    }
    time_entry = {key: value for key, value in fields.items() if value is not None}
    if not time_entry:
        raise ValueError("At least one field must be specified for update")

    connection = get_registry().get(connection_id)
    async with _client(connection) as client:
        response = await client.update_time_entry(
            time_entry_id, {"time_entry": time_entry}
        )
    return response.model_dump()


@mcp.tool()
async def delete_time_entry(connection_id: str, time_entry_id: int) -> dict:
    """Delete a time entry.

    Args:
        connection_id: Saved connection ID
        time_entry_id: Time entry to delete

    Returns:
        Status envelope
    """
    connection = get_registry().get(connection_id)
    async with _client(connection) as client:
        response = await client.delete_time_entry(time_entry_id)
    return response.model_dump()


# Dashboard


@mcp.tool()
async def hours_summary(
    date_from: str | None = None,
    date_to: str | None = None,
) -> dict:
    """Summarize logged hours across all saved connections.

    Args:
        date_from: First day in YYYY-MM-DD format (default: 7 days ago)
        date_to: Last day in YYYY-MM-DD format (default: today)

    Returns:
        Dictionary containing:
        - by_day: hours per day, most recent first
        - by_week: hours per week (weeks start on Sunday)
        - by_project: hours per top-level project, largest first
        - by_connection: hours per connection
        - statuses: per-connection fetch status
    """
    connections = get_registry().active()
    batches, statuses = await collect_time_entries(
        connections,
        get_cipher(),
        _parse_date(date_from),
        _parse_date(date_to),
        timeout=get_settings().timeout,
    )
    summary = summarize_hours(batches, connections)
    summary["statuses"] = {
        connection_id: status.model_dump() for connection_id, status in statuses.items()
    }
    return summary


def main():
    """Main entry point for the MCP server."""
    try:
        settings = get_settings()
        configure_logging(settings.log_level)
        # Validate configuration on startup
        get_cipher()
        get_registry()

        # Run the server with stdio transport
        mcp.run(transport="stdio")
    except RedmineError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        print(f"Unexpected error: {str(e)}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
