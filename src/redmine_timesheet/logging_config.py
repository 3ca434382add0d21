"""Process-wide logging setup."""

import logging
from typing import Optional


def configure_logging(level: Optional[str] = None) -> None:
    """Configure logging once for the whole process.

    Records go to stderr so they never mix with the stdio MCP stream.
    """
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        level=numeric_level,
        force=True,
    )
    # httpx logs every request URL at INFO, and query strings may carry user ids
    logging.getLogger("httpx").setLevel(max(numeric_level, logging.WARNING))
