"""Redmine API client implementation."""

import logging
from typing import Any, Dict, List, Optional

import httpx

from .crypto import SecretCipher
from .models import (
    ApiKeyAuth,
    AuthConfigError,
    ConfigError,
    PasswordAuth,
    Project,
    RedmineApiOptions,
    RedmineResponse,
    StatusResponse,
    TimeEntry,
    TimeEntryActivity,
    User,
)

logger = logging.getLogger(__name__)

UPLOAD_PATH = "/uploads.json"
BODY_METHODS = ("PATCH", "POST", "PUT")


class RedmineClient:
    """Async HTTP client for Redmine REST API.

    Every public operation returns a :class:`RedmineResponse`. Failures are
    reported through ``status.has_error`` instead of being raised.
    """

    def __init__(
        self,
        options: RedmineApiOptions,
        cipher: Optional[SecretCipher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize Redmine client.

        Args:
            options: Host, credentials and timeout
            cipher: Used to decrypt a stored API key and to encrypt the key
                returned by ``current_user``
            transport: Optional httpx transport, mainly for tests

        Raises:
            ConfigError: If the credentials required by the auth mode are blank
        """
        _validate_auth(options, cipher)
        self.options = options
        self.host = options.host.rstrip("/")
        self.auth = options.auth
        self.cipher = cipher
        self.timeout = options.timeout
        self._http_client = httpx.AsyncClient(
            base_url=self.host,
            timeout=self.timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make an authenticated HTTP request to Redmine API.

        GET parameters go into the query string, PATCH/POST/PUT parameters
        into the JSON body.

        Raises:
            AuthConfigError: If no credential can be attached
            CryptoError: If a stored API key cannot be decrypted
            httpx.HTTPError: If the request fails or Redmine answers >= 400
        """
        method = method.upper()
        params = params or {}
        is_upload = path == UPLOAD_PATH
        headers = {
            "Content-Type": "application/octet-stream"
            if is_upload
            else "application/json",
        }
        request_kwargs: Dict[str, Any] = {"headers": headers}

        if method == "GET":
            request_kwargs["params"] = {
                key: value for key, value in params.items() if value is not None
            }
        elif method in BODY_METHODS:
            if is_upload:
                request_kwargs["content"] = params.get("content", b"")
            else:
                request_kwargs["json"] = params

        if isinstance(self.auth, ApiKeyAuth):
            headers["X-Redmine-API-Key"] = self._api_key()
        elif self.auth.username and self.auth.password:
            request_kwargs["auth"] = (self.auth.username, self.auth.password)
        else:
            raise AuthConfigError("Neither api key nor username/password provided")

        response = await self._http_client.request(method, path, **request_kwargs)
        response.raise_for_status()
        return response

    def _api_key(self) -> str:
        api_key = self.auth.api_key
        if self.auth.encrypted:
            api_key = self.cipher.decrypt(api_key, self.auth.username or None)
        if not api_key.strip():
            raise AuthConfigError("API key is empty")
        return api_key

    async def current_user(
        self, params: Optional[Dict[str, Any]] = None
    ) -> RedmineResponse:
        """Fetch the authenticated user.

        The returned ``api_key`` is encrypted before it leaves the client, so
        it can be stored as-is.

        Raises:
            ConfigError: If Redmine returned a key but no cipher is configured
        """
        try:
            response = await self._request("GET", "/users/current.json", params)
            payload = _json(response).get("user")
            user = User.model_validate(payload) if payload else []
        except Exception as e:
            return self._failure("current_user", e)

        if user and user.api_key:
            if self.cipher is None:
                raise ConfigError(
                    "REDMINE_TIMESHEET_SECRET_KEY is required to store API keys."
                )
            try:
                encrypted = self.cipher.encrypt(user.api_key, user.login or None)
            except Exception as e:
                return self._failure("current_user", e)
            user = user.model_copy(update={"api_key": encrypted})

        return RedmineResponse(data=user, status=StatusResponse.ok(response))

    async def projects(
        self, params: Optional[Dict[str, Any]] = None
    ) -> RedmineResponse:
        """Fetch one page of projects (``offset``/``limit`` in params)."""
        return await self._list(
            "projects", "/projects.json", "projects", Project, params
        )

    async def activities(
        self, params: Optional[Dict[str, Any]] = None
    ) -> RedmineResponse:
        """Fetch the time entry activity enumeration."""
        return await self._list(
            "activities",
            "/enumerations/time_entry_activities.json",
            "time_entry_activities",
            TimeEntryActivity,
            params,
        )

    async def time_entries(
        self, params: Optional[Dict[str, Any]] = None
    ) -> RedmineResponse:
        """Fetch one page of time entries.

        Args:
            params: Redmine filters such as ``from``, ``to``, ``user_id``,
                ``project_id``, ``offset`` and ``limit``
        """
        return await self._list(
            "time_entries", "/time_entries.json", "time_entries", TimeEntry, params
        )

    async def create_time_entry(self, params: Dict[str, Any]) -> RedmineResponse:
        """Create a time entry.

        Args:
            params: Request body, ``{"time_entry": {...}}``
        """
        try:
            response = await self._request("POST", "/time_entries.json", params)
            payload = _json(response).get("time_entry")
            entry = TimeEntry.model_validate(payload) if payload else []
            return RedmineResponse(data=entry, status=StatusResponse.ok(response))
        except Exception as e:
            return self._failure("create_time_entry", e)

    async def update_time_entry(
        self, time_entry_id: int, params: Dict[str, Any]
    ) -> RedmineResponse:
        """Update a time entry. Redmine replies with no content on success."""
        return await self._mutate(
            "update_time_entry", "PUT", f"/time_entries/{time_entry_id}.json", params
        )

    async def delete_time_entry(self, time_entry_id: int) -> RedmineResponse:
        """Delete a time entry."""
        return await self._mutate(
            "delete_time_entry", "DELETE", f"/time_entries/{time_entry_id}.json"
        )

    async def _list(
        self,
        operation: str,
        path: str,
        field: str,
        model: type,
        params: Optional[Dict[str, Any]],
    ) -> RedmineResponse:
        try:
            response = await self._request("GET", path, params)
            items: List[Any] = [
                model.model_validate(item) for item in _json(response).get(field, [])
            ]
            return RedmineResponse(data=items, status=StatusResponse.ok(response))
        except Exception as e:
            return self._failure(operation, e)

    async def _mutate(
        self,
        operation: str,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> RedmineResponse:
        try:
            response = await self._request(method, path, params)
            return RedmineResponse(data=[], status=StatusResponse.ok(response))
        except Exception as e:
            return self._failure(operation, e)

    def _failure(self, operation: str, error: Exception) -> RedmineResponse:
        status = StatusResponse.from_error(error)
        if isinstance(error, httpx.HTTPStatusError):
            logger.warning(
                "Redmine %s on %s failed: HTTP %s",
                operation,
                self.host,
                status.status_code,
            )
        else:
            logger.exception("Redmine %s on %s failed", operation, self.host)
        return RedmineResponse(data=[], status=status)

    async def aclose(self) -> None:
        """Close the HTTP client and release resources."""
        await self._http_client.aclose()

    async def __aenter__(self) -> "RedmineClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


def _validate_auth(
    options: RedmineApiOptions, cipher: Optional[SecretCipher]
) -> None:
    auth = options.auth
    if not options.host or not options.host.strip():
        raise ConfigError("Host is required.")
    if isinstance(auth, ApiKeyAuth):
        if not auth.api_key.strip():
            raise ConfigError("API key is required.")
        if auth.encrypted and cipher is None:
            raise ConfigError("A cipher is required to decrypt the stored API key.")
    elif isinstance(auth, PasswordAuth):
        if not auth.username.strip():
            raise ConfigError("Username is required.")
        if not auth.password.strip():
            raise ConfigError("Password is required.")


def _json(response: httpx.Response) -> Dict[str, Any]:
    # PUT and DELETE answer with an empty body
    if not response.text.strip():
        return {}
    return response.json()
