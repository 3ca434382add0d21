"""Environment-driven configuration."""

import os
from typing import Literal, Optional

from dotenv import find_dotenv, load_dotenv
from pydantic import BaseModel, Field

from .models import ConfigError


class Settings(BaseModel):
    """Process-wide settings, read once at startup."""

    secret_key: Optional[str] = Field(
        default=None, description="256-bit key used to encrypt stored API keys"
    )
    cipher: Literal["gcm", "cbc"] = Field(
        default="gcm", description="Scheme used for newly encrypted API keys"
    )
    connections_file: Optional[str] = Field(
        default=None, description="JSON file holding saved connections"
    )
    redmine_url: Optional[str] = None
    redmine_api_key: Optional[str] = None
    redmine_username: Optional[str] = None
    redmine_password: Optional[str] = None
    timeout: float = Field(default=30, description="Request timeout in seconds")
    log_level: str = "INFO"

    class Config:
        frozen = True


def load_settings() -> Settings:
    """Read settings from the environment, loading a ``.env`` file first.

    Raises:
        ConfigError: If a value is present but malformed
    """
    load_dotenv(find_dotenv(usecwd=True))

    cipher = os.getenv("REDMINE_TIMESHEET_CIPHER", "gcm").lower()
    if cipher not in ("gcm", "cbc"):
        raise ConfigError(
            f"REDMINE_TIMESHEET_CIPHER must be 'gcm' or 'cbc', not {cipher!r}."
        )

    raw_timeout = os.getenv("REDMINE_TIMEOUT", "30")
    try:
        timeout = float(raw_timeout)
    except ValueError:
        raise ConfigError(
            f"REDMINE_TIMEOUT must be a number of seconds, not {raw_timeout!r}."
        ) from None

    return Settings(
        secret_key=os.getenv("REDMINE_TIMESHEET_SECRET_KEY") or None,
        cipher=cipher,
        connections_file=os.getenv("REDMINE_TIMESHEET_CONNECTIONS_FILE") or None,
        redmine_url=os.getenv("REDMINE_URL") or None,
        redmine_api_key=os.getenv("REDMINE_API_KEY") or None,
        redmine_username=os.getenv("REDMINE_USERNAME") or None,
        redmine_password=os.getenv("REDMINE_PASSWORD") or None,
        timeout=timeout,
        log_level=os.getenv("REDMINE_TIMESHEET_LOG_LEVEL", "INFO"),
    )
