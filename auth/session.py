"""
auth/session.py -- Single source of truth for authentication state.

SessionManager owns the current user, tokens and building selection. Every
transition (login, refresh, building selection, profile update, logout) goes
through one of its methods, persists through the CredentialStore, and is
broadcast on three replaying Observables:

    auth_state_stream          AuthState
    user_stream                User | None
    selected_building_stream   Building | None

Persistence order: the store is written first and the in-memory Session
second. If a store write fails, StorageException propagates and memory is
left as it was, so an in-memory token always has a stored twin.

Network calls go through the request pipeline attached with attach(). The
session's own calls (login, refresh, logout, validate) opt out of automatic
auth headers so a 401 on them can never recurse into another refresh.

Refresh is single-flight: concurrent 401s that all carry the same stale
token are served by one /auth/refresh call, which matters because refresh
tokens may be single-use on the server.

Layer rule: imports core/ and storage/. The pipeline type is referenced for
type checking only.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from auth.models import AuthResult, AuthState, Session
from core.exceptions import (
    AuthException,
    BuildingConfigException,
    CoreException,
    StorageException,
    ValidationException,
    first_validation_message,
)
from core.models import DEFAULT_API_BASE_URL, Building, User, api_base_url_for
from core.observable import Observable
from storage.credentials import CredentialStore

if TYPE_CHECKING:
    from api.pipeline import Pipeline

logger = logging.getLogger("automatedlife.session")

_buildings_adapter = TypeAdapter(list[Building])


class SessionManager:
    def __init__(self, store: CredentialStore) -> None:
        self._store = store
        self._session = Session()
        self._pipeline: Pipeline | None = None
        self._refresh_lock = threading.Lock()

        self.auth_state_stream: Observable[AuthState] = Observable(AuthState.UNKNOWN)
        self.user_stream: Observable[User | None] = Observable(None)
        self.selected_building_stream: Observable[Building | None] = Observable(None)

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    def attach(self, pipeline: Pipeline) -> None:
        """Give the session the pipeline it uses for its own network calls."""
        self._pipeline = pipeline

    def _http(self) -> Pipeline:
        if self._pipeline is None:
            raise RuntimeError("SessionManager has no request pipeline; construct an ApiClient first")
        return self._pipeline

    def _base_url(self) -> str:
        building = self.get_selected_building()
        if building is not None:
            return building.api_base_url
        if self._pipeline is not None:
            return self._pipeline.base_url
        return DEFAULT_API_BASE_URL

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> AuthState:
        return self.auth_state_stream.value

    def _resolve_state(self) -> AuthState:
        if not self._session.auth_token:
            return AuthState.UNAUTHENTICATED
        if self._session.selected_building is not None:
            return AuthState.BUILDING_SELECTED
        if self._session.buildings and len(self._session.buildings) > 1:
            return AuthState.NEEDS_BUILDING_SELECTION
        return AuthState.AUTHENTICATED

    def _publish(self) -> None:
        self.user_stream.emit(self._session.current_user)
        self.selected_building_stream.emit(self._session.selected_building)
        self.auth_state_stream.emit(self._resolve_state())

    def hydrate(self) -> AuthState:
        """Load the persisted session and broadcast it. Call once at startup."""
        selected = self._store.get_selected_building()
        buildings = self._store.get_buildings()
        if selected is not None and buildings is not None and selected.id not in {b.id for b in buildings}:
            logger.warning("Stored building selection %s is not in the building list; dropping it", selected.id)
            self._store.delete_selected_building()
            selected = None
        self._session = Session(
            current_user=self._store.get_user(),
            auth_token=self._store.get_auth_token(),
            refresh_token=self._store.get_refresh_token(),
            selected_building=selected,
            buildings=buildings,
        )
        self._publish()
        return self.state

    # ------------------------------------------------------------------
    # Reads (hydrate lazily from the store)
    # ------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        if self._session.auth_token is None:
            self._session.auth_token = self._store.get_auth_token()
        return self._session.auth_token

    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def get_current_user(self) -> User | None:
        if self._session.current_user is None:
            self._session.current_user = self._store.get_user()
        return self._session.current_user

    def get_selected_building(self) -> Building | None:
        if self._session.selected_building is None:
            self._session.selected_building = self._store.get_selected_building()
        return self._session.selected_building

    def get_buildings(self) -> list[Building] | None:
        if self._session.buildings is None:
            self._session.buildings = self._store.get_buildings()
        return self._session.buildings

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, building_subdomain: str | None = None) -> AuthResult:
        """Authenticate with email and password.

        Raises:
            ValidationException: email or password is empty (no request sent).
            AuthException: the server rejected the credentials (401/422) or
                returned an unusable login response.
            NetworkException / TimeoutException: the server was unreachable.
        """
        email = (email or "").strip()
        errors: dict[str, list[str]] = {}
        if not email:
            errors["email"] = ["Email is required"]
        if not password:
            errors["password"] = ["Password is required"]
        if errors:
            raise ValidationException(first_validation_message(errors), errors=errors)

        base_url = api_base_url_for(building_subdomain) if building_subdomain else self._base_url()
        pipeline = self._http()
        self.auth_state_stream.emit(AuthState.AUTHENTICATING)
        try:
            response = pipeline.request(
                "POST",
                f"{base_url}/auth/login",
                json={"email": email, "password": password},
                authenticate=False,
            )
            result = self._complete_login(response.data)
        except AuthException as exc:
            self.auth_state_stream.emit(AuthState.UNAUTHENTICATED)
            if exc.code == "401":
                raise AuthException("Invalid email or password", code=exc.code, original_error=exc) from exc
            raise
        except ValidationException as exc:
            self.auth_state_stream.emit(AuthState.UNAUTHENTICATED)
            raise AuthException(exc.message, code=exc.code, original_error=exc) from exc
        except CoreException:
            self.auth_state_stream.emit(AuthState.UNAUTHENTICATED)
            raise

        logger.info("Signed in user %s (%d building(s))", result.user.id if result.user else "?", len(result.buildings))
        return result

    def _complete_login(self, data: object) -> AuthResult:
        if not isinstance(data, dict) or not data.get("access_token") or not isinstance(data.get("user"), dict):
            raise AuthException("Login response did not include credentials")
        try:
            user = User.model_validate(data["user"])
            buildings = _buildings_adapter.validate_python(data.get("buildings") or [])
        except ValidationError as exc:
            raise AuthException("Login response could not be read", original_error=exc) from exc

        access_token: str = data["access_token"]
        refresh_token: str | None = data.get("refresh_token")
        selected = buildings[0] if len(buildings) == 1 else None

        try:
            self._store.store_auth_token(access_token)
            if refresh_token:
                self._store.store_refresh_token(refresh_token)
            else:
                self._store.delete_refresh_token()
            self._store.store_user(user)
            self._store.store_buildings(buildings)
            if selected is not None:
                self._store.store_selected_building(selected)
            else:
                self._store.delete_selected_building()
        except StorageException:
            self._clear_store()
            raise

        self._session = Session(
            current_user=user,
            auth_token=access_token,
            refresh_token=refresh_token,
            selected_building=selected,
            buildings=buildings,
        )
        self._publish()
        return AuthResult.succeeded(user, buildings)

    # ------------------------------------------------------------------
    # Building selection
    # ------------------------------------------------------------------

    def select_building(self, building: Building) -> Building:
        """Make `building` the routing target for every relative request.

        Raises BuildingConfigException unless the building is one of the
        candidates returned at login (or set through set_buildings()).
        """
        candidates = self.get_buildings()
        if not candidates:
            raise BuildingConfigException("No buildings are available for this account")
        match = next((b for b in candidates if b.id == building.id), None)
        if match is None:
            raise BuildingConfigException(f"Building {building.id} is not available for this account")

        self._store.store_selected_building(match)
        self._session.selected_building = match
        logger.info("Selected building %s (%s)", match.id, match.api_base_url)
        self.selected_building_stream.emit(match)
        self.auth_state_stream.emit(self._resolve_state())
        return match

    def set_buildings(self, buildings: list[Building]) -> None:
        """Replace the candidate list, dropping a selection that left it."""
        self._store.store_buildings(buildings)
        self._session.buildings = list(buildings)
        selected = self.get_selected_building()
        if selected is not None and selected.id not in {b.id for b in buildings}:
            self._store.delete_selected_building()
            self._session.selected_building = None
            self.selected_building_stream.emit(None)
        self.auth_state_stream.emit(self._resolve_state())

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------

    def set_current_user(self, user: User) -> None:
        """Persist and broadcast a user returned by a profile update."""
        self._store.store_user(user)
        self._session.current_user = user
        self.user_stream.emit(user)

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def refresh_token(self, stale_token: str | None = None) -> str:
        """Exchange the refresh token for a new access token.

        Args:
            stale_token: The access token the failing request carried. When
                another caller has already replaced it, the current token is
                returned without a network call.

        Raises AuthException on any network or server failure, and
        StorageException when the new pair cannot be persisted (the old pair
        is restored first). Never retried here; the caller decides whether
        the session survives.
        """
        with self._refresh_lock:
            current = self.access_token
            if stale_token is not None and current and current != stale_token:
                logger.info("Access token already refreshed by a concurrent request")
                return current

            refresh_token = self._session.refresh_token or self._store.get_refresh_token()
            if not refresh_token:
                raise AuthException("No refresh token available")

            try:
                response = self._http().request(
                    "POST",
                    f"{self._base_url()}/auth/refresh",
                    json={"refresh_token": refresh_token},
                    authenticate=False,
                    retry=False,
                )
            except AuthException as exc:
                raise AuthException("Session expired", code=exc.code, original_error=exc) from exc
            except CoreException as exc:
                raise AuthException(f"Token refresh failed: {exc.message}", code=exc.code, original_error=exc) from exc

            data = response.data if isinstance(response.data, dict) else {}
            new_access = data.get("access_token")
            if not new_access:
                raise AuthException("Token refresh response did not include an access token")
            new_refresh = data.get("refresh_token")

            try:
                self._store.store_auth_token(new_access)
                if new_refresh:
                    self._store.store_refresh_token(new_refresh)
            except StorageException:
                self._restore_tokens(current, refresh_token)
                raise
            self._session.auth_token = new_access
            if new_refresh:
                self._session.refresh_token = new_refresh
            logger.info("Access token refreshed")
            return new_access

    def _restore_tokens(self, access_token: str | None, refresh_token: str) -> None:
        """Put the pre-refresh pair back so the store matches memory again."""
        try:
            if access_token:
                self._store.store_auth_token(access_token)
            self._store.store_refresh_token(refresh_token)
        except StorageException as exc:
            logger.error("Could not restore tokens after a failed refresh write: %s", exc)

    def validate_token(self) -> bool:
        """Ask the server whether the stored token is still live.

        Returns False (after signing out) only when the server definitively
        rejects the token. Transient failures propagate and leave the session
        untouched, so a flaky network on app resume never logs anyone out.
        """
        token = self.access_token
        if not token:
            return False
        try:
            self._http().request(
                "GET",
                f"{self._base_url()}/auth/user",
                headers={"Authorization": f"Bearer {token}"},
                authenticate=False,
                retry=False,
            )
        except AuthException:
            logger.info("Stored token was rejected by the server; signing out")
            self.logout()
            return False
        return True

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self) -> None:
        """Revoke the token if possible, then clear everything locally.

        Always succeeds from the caller's point of view and is idempotent.
        """
        token = self._session.auth_token or self._store.get_auth_token()
        if token and self._pipeline is not None:
            try:
                self._pipeline.request(
                    "POST",
                    f"{self._base_url()}/auth/logout",
                    headers={"Authorization": f"Bearer {token}"},
                    authenticate=False,
                    retry=False,
                )
            except CoreException as exc:
                logger.info("Server-side logout failed; clearing the local session anyway: %s", exc)

        self._clear_store()
        self._session = Session()
        self._publish()
        logger.info("Signed out")

    def _clear_store(self) -> None:
        try:
            self._store.clear_all()
        except StorageException as exc:
            logger.error("Could not clear credential storage: %s", exc)

    def dispose(self) -> None:
        self.auth_state_stream.close()
        self.user_stream.close()
        self.selected_building_stream.close()
