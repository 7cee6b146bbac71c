"""Tests for auth/session.py -- login, building selection, logout, validation.

Network is a MagicMock requests.Session; storage is in-memory SQLite.
"""

import pytest
import requests
from conftest import ANNEX_JSON, TOWER_JSON, USER_JSON, login_body, make_response, sent

from auth.models import AuthResult, AuthState
from auth.session import SessionManager
from core.exceptions import (
    AuthException,
    BuildingConfigException,
    NetworkException,
    StorageException,
    TimeoutException,
    ValidationException,
)
from core.models import Building

# ---------------------------------------------------------------------------
# TestLogin
# ---------------------------------------------------------------------------


class TestLogin:
    def test_single_building_is_auto_selected(self, session, client, http, store):
        http.request.return_value = make_response(200, login_body([TOWER_JSON]))

        result = session.login("ada@example.com", "secret")

        assert result.success
        assert not result.needs_building_selection
        assert session.state == AuthState.BUILDING_SELECTED
        assert session.state.is_authenticated
        assert session.get_selected_building().id == TOWER_JSON["id"]
        assert store.get_auth_token() == "access-1"
        assert store.get_refresh_token() == "refresh-1"
        assert store.get_selected_building().id == TOWER_JSON["id"]

    def test_multiple_buildings_need_selection(self, session, client, http, store):
        http.request.return_value = make_response(200, login_body([TOWER_JSON, ANNEX_JSON]))

        result = session.login("ada@example.com", "secret")

        assert result.needs_building_selection
        assert session.state == AuthState.NEEDS_BUILDING_SELECTION
        assert session.get_selected_building() is None
        assert store.get_selected_building() is None
        assert [b.id for b in store.get_buildings()] == [1, 2]

    def test_no_buildings_is_authenticated_without_selection(self, session, client, http):
        http.request.return_value = make_response(200, login_body([]))
        session.login("ada@example.com", "secret")
        assert session.state == AuthState.AUTHENTICATED
        assert session.is_authenticated()

    def test_login_posts_credentials_without_bearer(self, session, client, http):
        http.request.return_value = make_response(200, login_body())
        session.login("  ada@example.com ", "secret")
        method, url, kwargs = sent(http)
        assert (method, url) == ("POST", "https://api.automatedlife.io/api/v1/auth/login")
        assert kwargs["json"] == {"email": "ada@example.com", "password": "secret"}
        assert "Authorization" not in kwargs["headers"]

    def test_building_subdomain_targets_building_host(self, session, client, http):
        http.request.return_value = make_response(200, login_body())
        session.login("ada@example.com", "secret", building_subdomain="annex")
        _, url, _ = sent(http)
        assert url == "https://annex.automatedlife.io/api/v1/auth/login"

    def test_login_emits_authenticating_then_final_state(self, session, client, http):
        http.request.return_value = make_response(200, login_body())
        states = []
        session.auth_state_stream.subscribe(states.append)
        session.login("ada@example.com", "secret")
        assert states == [AuthState.UNKNOWN, AuthState.AUTHENTICATING, AuthState.BUILDING_SELECTED]

    def test_user_stream_receives_signed_in_user(self, session, client, http):
        http.request.return_value = make_response(200, login_body())
        users = []
        session.user_stream.subscribe(users.append, replay=False)
        session.login("ada@example.com", "secret")
        assert users[-1].email == USER_JSON["email"]

    def test_empty_inputs_rejected_without_request(self, session, client, http):
        with pytest.raises(ValidationException) as exc_info:
            session.login("", "")
        assert set(exc_info.value.errors) == {"email", "password"}
        http.request.assert_not_called()

    def test_rejected_credentials_raise_auth(self, session, client, http, store, sleeps):
        http.request.return_value = make_response(401, {"message": "Unauthenticated."})

        with pytest.raises(AuthException, match="Invalid email or password"):
            session.login("ada@example.com", "wrong")

        assert session.state == AuthState.UNAUTHENTICATED
        assert store.get_auth_token() is None
        assert sleeps == []

    def test_422_becomes_auth_with_first_message(self, session, client, http):
        http.request.return_value = make_response(422, {"errors": {"email": ["These credentials do not match."]}})
        with pytest.raises(AuthException, match="These credentials do not match."):
            session.login("ada@example.com", "wrong")

    def test_network_failure_stays_distinguishable(self, session, client, http, store):
        http.request.side_effect = requests.ConnectionError("no route to host")

        with pytest.raises(NetworkException) as exc_info:
            session.login("ada@example.com", "secret")

        assert not isinstance(exc_info.value, AuthException)
        assert session.state == AuthState.UNAUTHENTICATED
        assert store.get_auth_token() is None

    def test_response_without_token_is_auth_failure(self, session, client, http):
        http.request.return_value = make_response(200, {"user": USER_JSON})
        with pytest.raises(AuthException):
            session.login("ada@example.com", "secret")
        assert session.state == AuthState.UNAUTHENTICATED

    def test_storage_failure_leaves_memory_signed_out(self, session, client, http, store, monkeypatch):
        http.request.return_value = make_response(200, login_body())

        def broken(_token):
            raise StorageException("disk full")

        monkeypatch.setattr(store, "store_auth_token", broken)
        with pytest.raises(StorageException):
            session.login("ada@example.com", "secret")
        assert session.access_token is None
        assert session.state == AuthState.UNAUTHENTICATED


# ---------------------------------------------------------------------------
# TestBuildingSelection
# ---------------------------------------------------------------------------


class TestBuildingSelection:
    def test_select_candidate_building(self, session, client, http, store):
        http.request.return_value = make_response(200, login_body([TOWER_JSON, ANNEX_JSON]))
        session.login("ada@example.com", "secret")
        selected = []
        session.selected_building_stream.subscribe(selected.append, replay=False)

        session.select_building(Building.model_validate(ANNEX_JSON))

        assert session.state == AuthState.BUILDING_SELECTED
        assert store.get_selected_building().id == ANNEX_JSON["id"]
        assert selected[-1].api_base_url == "https://annex.automatedlife.io/api/v1"

    def test_selection_routes_later_requests(self, session, client, http):
        http.request.return_value = make_response(200, login_body([TOWER_JSON, ANNEX_JSON]))
        session.login("ada@example.com", "secret")
        session.select_building(Building.model_validate(ANNEX_JSON))

        client.get("/me")
        _, url, _ = sent(http)
        assert url == "https://annex.automatedlife.io/api/v1/me"

    def test_unknown_building_rejected(self, session, client, http):
        http.request.return_value = make_response(200, login_body([TOWER_JSON, ANNEX_JSON]))
        session.login("ada@example.com", "secret")
        with pytest.raises(BuildingConfigException):
            session.select_building(Building(id=99, name="Elsewhere"))
        assert session.state == AuthState.NEEDS_BUILDING_SELECTION

    def test_select_without_candidates_rejected(self, session, client):
        with pytest.raises(BuildingConfigException):
            session.select_building(Building.model_validate(TOWER_JSON))

    def test_set_buildings_drops_missing_selection(self, signed_in, store):
        signed_in.set_buildings([Building.model_validate(ANNEX_JSON)])
        assert signed_in.get_selected_building() is None
        assert store.get_selected_building() is None
        assert signed_in.state == AuthState.AUTHENTICATED


# ---------------------------------------------------------------------------
# TestHydrate
# ---------------------------------------------------------------------------


class TestHydrate:
    def test_empty_store_is_unauthenticated(self, session):
        assert session.hydrate() == AuthState.UNAUTHENTICATED
        assert session.get_current_user() is None

    def test_restores_selected_building(self, signed_in):
        assert signed_in.state == AuthState.BUILDING_SELECTED
        assert signed_in.get_current_user().first_name == "Ada"

    def test_selection_outside_building_list_is_dropped(self, session, store):
        store.store_auth_token("access-1")
        store.store_buildings([Building.model_validate(TOWER_JSON), Building.model_validate(ANNEX_JSON)])
        store.store_selected_building(Building(id=42, name="Gone"))

        assert session.hydrate() == AuthState.NEEDS_BUILDING_SELECTION
        assert store.get_selected_building() is None


# ---------------------------------------------------------------------------
# TestLogout
# ---------------------------------------------------------------------------


class TestLogout:
    def test_logout_clears_everything(self, signed_in, client, http, store):
        http.request.return_value = make_response(204)
        store.save_email("ada@example.com")

        signed_in.logout()

        method, url, kwargs = sent(http)
        assert (method, url) == ("POST", "https://tower.automatedlife.io/api/v1/auth/logout")
        assert kwargs["headers"]["Authorization"] == "Bearer access-1"
        assert store.keys() == []
        assert signed_in.state == AuthState.UNAUTHENTICATED
        assert signed_in.get_current_user() is None
        assert signed_in.get_selected_building() is None

    def test_logout_survives_server_failure(self, signed_in, client, http, store, sleeps):
        http.request.side_effect = requests.ConnectionError("offline")
        signed_in.logout()
        assert store.get_auth_token() is None
        assert signed_in.state == AuthState.UNAUTHENTICATED
        assert sleeps == []

    def test_logout_is_idempotent(self, signed_in, client, http):
        http.request.return_value = make_response(200, {})
        signed_in.logout()
        signed_in.logout()
        assert http.request.call_count == 1
        assert signed_in.state == AuthState.UNAUTHENTICATED

    def test_logout_without_pipeline(self, store):
        store.store_auth_token("access-1")
        manager = SessionManager(store)
        manager.logout()
        assert store.get_auth_token() is None


# ---------------------------------------------------------------------------
# TestValidateToken
# ---------------------------------------------------------------------------


class TestValidateToken:
    def test_live_token(self, signed_in, client, http):
        http.request.return_value = make_response(200, {"user": USER_JSON})
        assert signed_in.validate_token() is True
        _, url, kwargs = sent(http)
        assert url.endswith("/auth/user")
        assert kwargs["headers"]["Authorization"] == "Bearer access-1"

    def test_rejected_token_signs_out(self, signed_in, client, http, store):
        http.request.side_effect = [make_response(401, {}), make_response(200, {})]
        assert signed_in.validate_token() is False
        assert store.get_auth_token() is None
        assert signed_in.state == AuthState.UNAUTHENTICATED

    def test_transient_failure_keeps_session(self, signed_in, client, http, store):
        http.request.side_effect = requests.Timeout("slow")
        with pytest.raises(TimeoutException):
            signed_in.validate_token()
        assert store.get_auth_token() == "access-1"
        assert signed_in.state == AuthState.BUILDING_SELECTED

    def test_no_token_is_invalid_without_request(self, session, client, http):
        assert session.validate_token() is False
        http.request.assert_not_called()


# ---------------------------------------------------------------------------
# TestAuthResult
# ---------------------------------------------------------------------------


class TestAuthResult:
    def test_failed_carries_error_only(self):
        result = AuthResult.failed("Invalid email or password")
        assert not result.success
        assert result.error == "Invalid email or password"
        assert result.user is None
        assert result.buildings == []
        assert not result.needs_building_selection
