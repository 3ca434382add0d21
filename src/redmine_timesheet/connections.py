"""Saved Redmine connections."""

import json
import logging
import uuid
from pathlib import Path
from typing import Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, Field, TypeAdapter

from .crypto import SecretCipher
from .models import ConfigError, Project, RedmineApiOptions, User
from .projects import dump_project_tree, load_project_tree
from .redmine_client import RedmineClient
from .settings import Settings

logger = logging.getLogger(__name__)


class Connection(BaseModel):
    """One user's link to a Redmine host.

    ``api_key`` holds the value returned by ``RedmineClient.current_user``,
    which is already encrypted. ``projects`` is the cached project tree as a
    JSON string.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    url: str
    auth_type: Literal["apikey", "password"] = "apikey"
    api_key: str = ""
    api_key_encrypted: bool = True
    username: str = ""
    password: str = ""
    redmine_user_id: Optional[int] = None
    firstname: str = ""
    lastname: str = ""
    redmine_email: str = ""
    redmine_created_on: Optional[str] = None
    redmine_last_login_on: Optional[str] = None
    projects: str = ""
    deleted: bool = False

    def project_tree(self) -> List[Project]:
        return load_project_tree(self.projects)

    def uses_password(self) -> bool:
        """Basic auth is used when chosen, or when no key is stored but a login is."""
        if self.auth_type == "password":
            return True
        return not self.api_key and bool(self.username and self.password)

    def options(self, timeout: float = 30) -> RedmineApiOptions:
        if not self.uses_password():
            return RedmineApiOptions.build(
                host=self.url,
                auth_type="apikey",
                api_key=self.api_key,
                username=self.username,
                need_to_decrypt_api_key=self.api_key_encrypted,
                timeout=timeout,
            )
        return RedmineApiOptions.build(
            host=self.url,
            auth_type="password",
            username=self.username,
            password=self.password,
            timeout=timeout,
        )

    def client(
        self,
        cipher: Optional[SecretCipher],
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> RedmineClient:
        return RedmineClient(self.options(timeout), cipher=cipher, transport=transport)


_connection_list = TypeAdapter(List[Connection])


class ConnectionRegistry:
    """Connections keyed by id, optionally persisted to a JSON file."""

    def __init__(
        self,
        connections: Optional[List[Connection]] = None,
        path: Optional[str] = None,
    ):
        self.path = Path(path) if path else None
        self._connections: Dict[str, Connection] = {
            c.id: c for c in connections or []
        }

    @classmethod
    def load(cls, path: str) -> "ConnectionRegistry":
        file = Path(path)
        if not file.exists():
            return cls(path=path)
        try:
            connections = _connection_list.validate_json(file.read_bytes())
        except ValueError as e:
            raise ConfigError(f"Invalid connections file {path}: {e}") from e
        return cls(connections, path=path)

    @classmethod
    def from_settings(cls, settings: Settings) -> "ConnectionRegistry":
        """Load the connections file, or describe one connection from REDMINE_* variables."""
        if settings.connections_file:
            return cls.load(settings.connections_file)
        if not settings.redmine_url:
            return cls()
        if settings.redmine_api_key:
            default = Connection(
                id="default",
                name="default",
                url=settings.redmine_url,
                api_key=settings.redmine_api_key,
                api_key_encrypted=False,
                username=settings.redmine_username or "",
            )
        else:
            default = Connection(
                id="default",
                name="default",
                url=settings.redmine_url,
                auth_type="password",
                username=settings.redmine_username or "",
                password=settings.redmine_password or "",
            )
        return cls([default])

    def save(self) -> None:
        if self.path is None:
            return
        self.path.write_bytes(_connection_list.dump_json(self.all(), indent=2))
        logger.debug("Saved %d connections to %s", len(self._connections), self.path)

    def all(self) -> List[Connection]:
        return list(self._connections.values())

    def active(self) -> List[Connection]:
        return [c for c in self._connections.values() if not c.deleted]

    def get(self, connection_id: str) -> Connection:
        try:
            return self._connections[connection_id]
        except KeyError:
            raise KeyError(f"Redmine connection {connection_id!r} is not found") from None

    def find_by_url(self, url: str) -> Optional[Connection]:
        for connection in self.active():
            if connection.url == url:
                return connection
        return None

    def put(self, connection: Connection) -> Connection:
        self._connections[connection.id] = connection
        self.save()
        return connection

    def upsert_from_user(
        self,
        url: str,
        user: User,
        name: str = "",
        connection_id: Optional[str] = None,
        password: str = "",
    ) -> Connection:
        """Store the identity returned by ``current_user``.

        An existing connection is matched by id, else by url among connections
        that are not deleted. When Redmine hands back no API key the
        connection keeps using ``password``.
        """
        existing = None
        if connection_id and connection_id in self._connections:
            existing = self._connections[connection_id]
        if existing is None:
            existing = self.find_by_url(url)

        fields = {
            "url": url,
            "auth_type": "apikey" if user.api_key else "password",
            "api_key": user.api_key,
            "api_key_encrypted": True,
            "username": user.login,
            "password": "" if user.api_key else password,
            "redmine_user_id": user.id,
            "firstname": user.firstname,
            "lastname": user.lastname,
            "redmine_email": user.mail,
            "redmine_created_on": user.created_on,
            "redmine_last_login_on": user.last_login_on,
        }
        if existing is not None:
            if name:
                fields["name"] = name
            return self.put(existing.model_copy(update=fields))
        return self.put(Connection(name=name or url, **fields))

    def update_projects(self, connection_id: str, tree: List[Project]) -> Connection:
        connection = self.get(connection_id)
        return self.put(connection.model_copy(update={"projects": dump_project_tree(tree)}))

    def soft_delete(self, connection_id: str) -> Connection:
        connection = self.get(connection_id)
        return self.put(connection.model_copy(update={"deleted": True}))

    def delete(self, connection_id: str) -> None:
        self.get(connection_id)
        del self._connections[connection_id]
        self.save()
