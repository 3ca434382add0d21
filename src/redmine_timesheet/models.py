"""Pydantic models for Redmine API responses and requests."""

from datetime import date
from typing import Any, List, Literal, Optional, Union

import httpx
from pydantic import BaseModel, Field


class RedmineError(Exception):
    """Base exception for Redmine API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class ConfigError(RedmineError):
    """Client options or encryption settings are missing or invalid."""


class AuthConfigError(RedmineError):
    """No usable credential was available when a request was built."""


class CryptoError(RedmineError):
    """A secret could not be encrypted or decrypted."""


class UpstreamError(RedmineError):
    """The Redmine host failed or could not be reached."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        status_text: str = "",
    ):
        super().__init__(message, status_code)
        self.status_text = status_text

    @classmethod
    def from_status(cls, status: "StatusResponse") -> "UpstreamError":
        message = status.error_text or status.status_text
        return cls(message, status.status_code, status.status_text)


# Authentication variants


class ApiKeyAuth(BaseModel):
    """API key authentication.

    ``encrypted`` marks a key produced by ``SecretCipher.encrypt`` that must be
    decrypted before use. ``username`` is only needed for that decryption.
    """

    kind: Literal["apikey"] = "apikey"
    api_key: str = ""
    username: str = ""
    encrypted: bool = False

    class Config:
        frozen = True


class PasswordAuth(BaseModel):
    """HTTP basic authentication with Redmine login and password."""

    kind: Literal["password"] = "password"
    username: str = ""
    password: str = ""

    class Config:
        frozen = True


class RedmineApiOptions(BaseModel):
    """Configuration for Redmine API client."""

    host: str = Field(..., description="Redmine instance URL")
    auth: Union[ApiKeyAuth, PasswordAuth] = Field(..., discriminator="kind")
    timeout: float = Field(default=30, description="Request timeout in seconds")

    class Config:
        frozen = True

    @classmethod
    def build(
        cls,
        host: str,
        auth_type: str = "apikey",
        api_key: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        need_to_decrypt_api_key: bool = False,
        timeout: float = 30,
    ) -> "RedmineApiOptions":
        """Map the flat option bag used by connection records onto an auth variant."""
        if auth_type == "password":
            auth = PasswordAuth(username=username or "", password=password or "")
        elif auth_type == "apikey":
            auth = ApiKeyAuth(
                api_key=api_key or "",
                username=username or "",
                encrypted=need_to_decrypt_api_key,
            )
        else:
            raise ConfigError(f"Unknown authentication type: {auth_type!r}")
        return cls(host=host, auth=auth, timeout=timeout)


# Response envelope


class StatusResponse(BaseModel):
    """Outcome of a single Redmine API call."""

    status_code: int
    status_text: str
    error_text: str = ""
    has_error: bool = False

    @classmethod
    def ok(cls, response: httpx.Response) -> "StatusResponse":
        return cls(
            status_code=response.status_code,
            status_text=response.reason_phrase,
        )

    @classmethod
    def from_error(cls, error: Exception) -> "StatusResponse":
        """Build a failure status, keeping upstream details when there are any."""
        if isinstance(error, httpx.HTTPStatusError):
            return cls(
                status_code=error.response.status_code,
                status_text=error.response.reason_phrase,
                error_text=error.response.text,
                has_error=True,
            )
        if isinstance(error, CryptoError):
            error_text = f"Unable to decrypt API key: {error.message}"
        else:
            error_text = "Internal server error (Redmine)"
        return cls(
            status_code=500,
            status_text="Internal Server Error",
            error_text=error_text,
            has_error=True,
        )


class RedmineResponse(BaseModel):
    """Uniform ``{data, status}`` envelope returned by every client operation."""

    data: Any = Field(default_factory=list)
    status: StatusResponse

    @property
    def ok(self) -> bool:
        return not self.status.has_error


# Redmine resources


class NamedRef(BaseModel):
    id: int
    name: str = ""


class IdRef(BaseModel):
    id: int


class CustomField(BaseModel):
    id: int
    name: str = ""
    value: Any = None


class User(BaseModel):
    id: int
    login: str = ""
    firstname: str = ""
    lastname: str = ""
    mail: str = ""
    created_on: Optional[str] = None
    last_login_on: Optional[str] = None
    api_key: str = ""
    status: int = 1
    custom_fields: List[CustomField] = Field(default_factory=list)

    class Config:
        extra = "allow"


class Project(BaseModel):
    id: int
    name: str
    identifier: str = ""
    description: Optional[str] = ""
    parent: Optional[NamedRef] = None
    children: Optional[List["Project"]] = None
    status: int = 1
    custom_fields: List[CustomField] = Field(default_factory=list)
    created_on: Optional[str] = None
    updated_on: Optional[str] = None

    class Config:
        extra = "allow"


class TimeEntryActivity(BaseModel):
    id: int
    name: str
    is_default: bool = False
    active: bool = True


class TimeEntry(BaseModel):
    id: int
    project: NamedRef
    issue: Optional[IdRef] = None
    user: Optional[NamedRef] = None
    activity: Optional[NamedRef] = None
    hours: float = 0
    comments: Optional[str] = ""
    spent_on: str
    created_on: Optional[str] = None
    updated_on: Optional[str] = None

    class Config:
        extra = "allow"


class TimeEntryRequest(BaseModel):
    """Body of ``POST /time_entries.json`` (wrapped in ``time_entry``)."""

    spent_on: str
    hours: float = 0
    activity_id: int = 0
    comments: Optional[str] = None
    user_id: Optional[int] = None
    issue_id: Optional[int] = None
    project_id: Optional[int] = None

    @classmethod
    def from_form(
        cls,
        spent_on: Union[str, date, None] = None,
        hours: Optional[float] = None,
        activity_id: Union[int, str, None] = None,
        comments: Optional[str] = None,
        user_id: Optional[int] = None,
        issue_id: Union[int, str, None] = None,
        sub_project_id: Union[int, str, None] = None,
        project_id: Union[int, str, None] = None,
        today: Optional[date] = None,
    ) -> "TimeEntryRequest":
        """Build a request from loosely typed form values.

        The booking target is the issue when one is given, else the
        sub-project, else the project. Only one of them is sent.
        """
        if isinstance(spent_on, date):
            spent_on = spent_on.isoformat()[:10]
        elif spent_on:
            spent_on = spent_on[:10]
        else:
            spent_on = (today or date.today()).isoformat()

        request = cls(
            spent_on=spent_on,
            hours=hours or 0,
            activity_id=_to_int(activity_id),
            comments=comments,
            user_id=user_id,
        )
        issue = _to_int(issue_id)
        sub_project = _to_int(sub_project_id)
        if issue > 0:
            request.issue_id = issue
        elif sub_project > 0:
            request.project_id = sub_project
        else:
            request.project_id = _to_int(project_id)
        return request

    def payload(self) -> dict:
        return {"time_entry": self.model_dump(exclude_none=True)}


class TimeEntryBatch(BaseModel):
    """Time entries fetched from one connection."""

    connection_id: str
    data: List[TimeEntry] = Field(default_factory=list)


class HoursBucket(BaseModel):
    """One bar or slice of an hours chart."""

    key: str
    hours: float
    label: Optional[str] = None


def _to_int(value: Union[int, str, None]) -> int:
    if value in (None, ""):
        return 0
    return int(value)
