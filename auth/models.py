"""
auth/models.py -- Session state types.

Pattern: Data class (pure data container, zero logic beyond derived flags).
SessionManager in auth/session.py owns the only mutable Session instance;
everything else receives copies of its fields through the observable streams.

Layer rule: imports core/ only.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from core.models import Building, User


class AuthState(str, Enum):
    UNKNOWN = "unknown"  # before the store has been read
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATING = "authenticating"
    NEEDS_BUILDING_SELECTION = "needs_building_selection"
    BUILDING_SELECTED = "building_selected"
    AUTHENTICATED = "authenticated"  # signed in, no building granted

    @property
    def is_authenticated(self) -> bool:
        return self in (
            AuthState.NEEDS_BUILDING_SELECTION,
            AuthState.BUILDING_SELECTED,
            AuthState.AUTHENTICATED,
        )


@dataclass
class Session:
    """In-memory mirror of the persisted credentials.

    auth_token set here implies the credential store holds the same value:
    the store is written first, this object second.
    """

    current_user: User | None = None
    auth_token: str | None = None
    refresh_token: str | None = None
    selected_building: Building | None = None
    buildings: list[Building] | None = None


@dataclass
class AuthResult:
    """Outcome of a login attempt. Transient -- never persisted."""

    success: bool
    user: User | None = None
    buildings: list[Building] = field(default_factory=list)
    error: str | None = None
    needs_building_selection: bool = False

    @classmethod
    def succeeded(cls, user: User, buildings: list[Building] | None = None) -> AuthResult:
        buildings = buildings or []
        return cls(
            success=True,
            user=user,
            buildings=buildings,
            needs_building_selection=len(buildings) > 1,
        )

    @classmethod
    def failed(cls, error: str) -> AuthResult:
        return cls(success=False, error=error)
