import json

import httpx
import pytest

from redmine_timesheet.crypto import SecretCipher
from redmine_timesheet.models import RedmineApiOptions
from redmine_timesheet.redmine_client import RedmineClient

SECRET_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
HOST = "https://redmine.example.com"


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it served."""

    def __init__(self, handler):
        self.requests = []

        def record(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(record)


def json_response(status_code=200, payload=None):
    if payload is None:
        return httpx.Response(status_code)
    return httpx.Response(status_code, content=json.dumps(payload))


@pytest.fixture
def cipher():
    return SecretCipher(SECRET_KEY, "gcm")


@pytest.fixture
def legacy_cipher():
    return SecretCipher(SECRET_KEY, "cbc")


@pytest.fixture
def make_client(cipher):
    def factory(handler, **option_overrides):
        options = {"host": HOST, "auth_type": "apikey", "api_key": "plain-key"}
        options.update(option_overrides)
        transport = RecordingTransport(handler)
        client = RedmineClient(
            RedmineApiOptions.build(**options), cipher=cipher, transport=transport
        )
        return client, transport

    return factory


def project(id, name=None, parent=None, status=1):
    data = {"id": id, "name": name or f"Project {id}", "identifier": f"p{id}", "status": status}
    if parent is not None:
        data["parent"] = {"id": parent, "name": f"Project {parent}"}
    return data


def time_entry(id, spent_on, hours, project_id=1, project_name="Project 1"):
    return {
        "id": id,
        "project": {"id": project_id, "name": project_name},
        "user": {"id": 5, "name": "Sandy Tu"},
        "activity": {"id": 9, "name": "Development"},
        "hours": hours,
        "comments": "",
        "spent_on": spent_on,
    }
