"""Redmine time tracking: API client, hours aggregation and MCP server."""

__version__ = "0.1.0"
