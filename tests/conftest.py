"""
tests/conftest.py -- Shared fixtures for the client core tests.

This module provides:
  - make_response(): a real requests.Response with a canned body
  - store:   CredentialStore over an in-memory SQLite database
  - http:    MagicMock standing in for requests.Session
  - sleeps:  list that records every retry delay instead of sleeping
  - session / client: SessionManager + ApiClient wired to the mocks above

Design: the transport is mocked at requests.Session.request, so every stage
of the pipeline (routing, auth, refresh, error mapping, retry) runs for real.
Responses are genuine requests.Response objects so raise_for_status(),
json() and iter_content() behave exactly as they do against a live server.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests

from api.client import ApiClient
from auth.session import SessionManager
from core.config import Settings
from core.models import Building, User
from storage.credentials import CredentialStore

BASE_URL = "https://api.automatedlife.io/api/v1"

USER_JSON = {
    "id": 7,
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "preferred_name": None,
    "is_admin": False,
    "is_active": True,
}

TOWER_JSON = {"id": 1, "name": "Harbour Tower", "api_subdomain": "tower"}
ANNEX_JSON = {"id": 2, "name": "River Annex", "api_subdomain": "annex"}


# ---------------------------------------------------------------------------
# Response helpers
# ---------------------------------------------------------------------------


def make_response(
    status: int = 200,
    body: Any = None,
    url: str = f"{BASE_URL}/",
    headers: dict[str, str] | None = None,
) -> requests.Response:
    """Build a requests.Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp.url = url
    resp.reason = "OK" if status < 400 else "Error"
    if body is None:
        resp._content = b""
    elif isinstance(body, bytes):
        resp._content = body
    else:
        resp._content = json.dumps(body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    resp._content_consumed = True
    resp.headers.update(headers or {})
    return resp


def login_body(buildings: list[dict] | None = None) -> dict:
    return {
        "access_token": "access-1",
        "refresh_token": "refresh-1",
        "user": USER_JSON,
        "buildings": [TOWER_JSON] if buildings is None else buildings,
    }


def sent(http: MagicMock, index: int = -1) -> tuple[str, str, dict]:
    """(method, url, kwargs) of one recorded transport call."""
    call = http.request.call_args_list[index]
    return call.args[0], call.args[1], call.kwargs


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def settings() -> Settings:
    return Settings(_env_file=None, max_retries=3, retry_delays=[1.0, 2.0, 3.0])


@pytest.fixture()
def store():
    s = CredentialStore("sqlite://")
    yield s
    s.close()


@pytest.fixture()
def http() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def session(store: CredentialStore) -> SessionManager:
    return SessionManager(store)


@pytest.fixture()
def client(session: SessionManager, settings: Settings, http: MagicMock, sleeps: list[float]) -> ApiClient:
    return ApiClient(session, settings=settings, http=http, retry_sleep=sleeps.append)


@pytest.fixture()
def signed_in(store: CredentialStore, session: SessionManager, client: ApiClient) -> SessionManager:
    """A session restored from storage with one selected building."""
    tower = Building.model_validate(TOWER_JSON)
    store.store_auth_token("access-1")
    store.store_refresh_token("refresh-1")
    store.store_user(User.model_validate(USER_JSON))
    store.store_buildings([tower])
    store.store_selected_building(tower)
    session.hydrate()
    return session
