"""
storage/credentials.py -- Typed credential storage on top of SecureStore.

CredentialStore owns the storage keys and the text encoding of domain
objects. Users and buildings are stored as their wire JSON
(model_dump(by_alias=True)), so a snapshot written today still parses after
the model grows new optional fields.

Self-healing reads: a stored snapshot that fails to parse is deleted and
reported as absent. A parse error is never surfaced to the caller -- the
worst case is that the session looks logged-out and the user signs in again.
"""

from __future__ import annotations

import logging

from pydantic import TypeAdapter, ValidationError

from core.models import Building, User
from storage.store import SecureStore

logger = logging.getLogger("automatedlife.storage")

AUTH_TOKEN_KEY = "auth_token"
REFRESH_TOKEN_KEY = "refresh_token"
USER_KEY = "user_data"
SELECTED_BUILDING_KEY = "selected_building"
BUILDINGS_KEY = "buildings_data"
BIOMETRIC_ENABLED_KEY = "biometric_enabled"
SAVED_EMAIL_KEY = "saved_email"

_buildings_adapter = TypeAdapter(list[Building])


class CredentialStore(SecureStore):
    """SecureStore with one typed accessor pair per persisted session value."""

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    def store_auth_token(self, token: str) -> None:
        self.write(AUTH_TOKEN_KEY, token)

    def get_auth_token(self) -> str | None:
        return self.read(AUTH_TOKEN_KEY)

    def delete_auth_token(self) -> None:
        self.delete(AUTH_TOKEN_KEY)

    def store_refresh_token(self, token: str) -> None:
        self.write(REFRESH_TOKEN_KEY, token)

    def get_refresh_token(self) -> str | None:
        return self.read(REFRESH_TOKEN_KEY)

    def delete_refresh_token(self) -> None:
        self.delete(REFRESH_TOKEN_KEY)

    def is_logged_in(self) -> bool:
        return bool(self.get_auth_token())

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def store_user(self, user: User) -> None:
        self.write(USER_KEY, user.model_dump_json(by_alias=True))

    def get_user(self) -> User | None:
        raw = self.read(USER_KEY)
        if raw is None:
            return None
        try:
            return User.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored user snapshot is corrupt; discarding it")
            self._discard(USER_KEY)
            return None

    def delete_user(self) -> None:
        self.delete(USER_KEY)

    def store_selected_building(self, building: Building) -> None:
        self.write(SELECTED_BUILDING_KEY, building.model_dump_json(by_alias=True))

    def get_selected_building(self) -> Building | None:
        raw = self.read(SELECTED_BUILDING_KEY)
        if raw is None:
            return None
        try:
            return Building.model_validate_json(raw)
        except ValidationError:
            logger.warning("Stored building selection is corrupt; discarding it")
            self._discard(SELECTED_BUILDING_KEY)
            return None

    def delete_selected_building(self) -> None:
        self.delete(SELECTED_BUILDING_KEY)

    def store_buildings(self, buildings: list[Building]) -> None:
        self.write(BUILDINGS_KEY, _buildings_adapter.dump_json(buildings, by_alias=True).decode("utf-8"))

    def get_buildings(self) -> list[Building] | None:
        raw = self.read(BUILDINGS_KEY)
        if raw is None:
            return None
        try:
            return _buildings_adapter.validate_json(raw)
        except ValidationError:
            logger.warning("Stored building list is corrupt; discarding it")
            self._discard(BUILDINGS_KEY)
            return None

    def delete_buildings(self) -> None:
        self.delete(BUILDINGS_KEY)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    def set_biometric_enabled(self, enabled: bool) -> None:
        self.write(BIOMETRIC_ENABLED_KEY, "true" if enabled else "false")

    def is_biometric_enabled(self) -> bool:
        return self.read(BIOMETRIC_ENABLED_KEY) == "true"

    def delete_biometric_preference(self) -> None:
        self.delete(BIOMETRIC_ENABLED_KEY)

    def save_email(self, email: str) -> None:
        """Remember the last sign-in email so the login form can prefill it."""
        self.write(SAVED_EMAIL_KEY, email)

    def get_saved_email(self) -> str | None:
        return self.read(SAVED_EMAIL_KEY)

    def delete_saved_email(self) -> None:
        self.delete(SAVED_EMAIL_KEY)

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def clear_all(self) -> None:
        self.delete_all()

    def contains_key(self, key: str) -> bool:
        return self.contains(key)
