"""
core/models.py -- Domain entities for the building-management backend.

These Pydantic v2 models are both the domain representation and the wire
contract: field aliases map the backend's JSON names (e.g. "reference",
"sortOrder", "lote_created") onto snake_case attributes, and populate_by_name
lets code and tests construct them by attribute name.

model_dump(by_alias=True) round-trips through model_validate(), which is how
the credential store persists snapshots of users and buildings.

Layer rule: no imports from api/, auth/, or storage/.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.exceptions import CapabilityException

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

DEFAULT_API_BASE_URL = "https://api.automatedlife.io/api/v1"
BUILDING_API_URL_TEMPLATE = "https://{subdomain}.automatedlife.io/api/v1"

# Available (not yet enabled) capabilities sort after every enabled one.
AVAILABLE_SORT_ORDER = 999


def api_base_url_for(subdomain: Optional[str]) -> str:
    """Return the API base URL for a building subdomain, or the global default."""
    if subdomain:
        return BUILDING_API_URL_TEMPLATE.format(subdomain=subdomain)
    return DEFAULT_API_BASE_URL


class _Entity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class User(_Entity):
    """The signed-in identity. Replaced wholesale by a profile update."""

    id: int
    first_name: str
    last_name: str = ""
    email: str
    preferred_name: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True
    created_at: Optional[datetime] = Field(default=None, alias="lote_created")
    updated_at: Optional[datetime] = Field(default=None, alias="lote_updated")

    @property
    def display_name(self) -> str:
        return self.preferred_name if self.preferred_name else self.first_name

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


_ALIAS_TYPE_NAMES = {
    "username": "Username",
    "display_name": "Display Name",
    "nickname": "Nickname",
}


class UserAlias(_Entity):
    id: str
    alias: str
    type: str
    is_public: bool = True
    is_primary: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, value: Any) -> str:
        # Some backends send numeric ids; alias ids are opaque strings here.
        return str(value)

    @property
    def type_display_name(self) -> str:
        known = _ALIAS_TYPE_NAMES.get(self.type)
        if known:
            return known
        return " ".join(word.capitalize() for word in self.type.replace("_", " ").split())


# ---------------------------------------------------------------------------
# Capabilities
# ---------------------------------------------------------------------------


class Capability(_Entity):
    """Shared field set of every capability variant."""

    id: int
    name: str
    key: str = Field(alias="reference")
    description: Optional[str] = None
    type: str
    category: Optional[str] = None
    icon: Optional[dict[str, Any]] = None
    apps: Optional[dict[str, Any]] = None
    settings: Optional[dict[str, Any]] = None


class EnabledCapability(Capability):
    """A capability switched on for a building, with its per-building extras."""

    sort_order: int = Field(alias="sortOrder")
    link_id: Optional[int] = Field(default=None, alias="linkId")
    # Badge counts and similar dynamic values, e.g. {"messagesCount": 3}.
    data: Optional[dict[str, Any]] = None

    @field_validator("data", mode="before")
    @classmethod
    def empty_list_means_none(cls, value: Any) -> Optional[dict[str, Any]]:
        # The backend serializes an empty PHP array as [] rather than {}.
        if isinstance(value, dict):
            return value
        return None


class AvailableCapability(Capability):
    """A capability the building could enable but has not."""


BuildingCapability = Union[EnabledCapability, AvailableCapability]


@dataclass(frozen=True)
class CapabilityTile:
    """Normalized projection of either capability variant, ready to render."""

    capability: Capability
    is_enabled: bool
    sort_order: int
    link_id: Optional[int] = None
    data: Optional[dict[str, Any]] = None

    def badge_count(self, key: str) -> Optional[int]:
        if not self.data:
            return None
        value = self.data.get(key)
        return value if isinstance(value, int) else None

    @property
    def is_external_app(self) -> bool:
        return self.capability.type == "external_app"

    @property
    def app_info(self) -> Optional[dict[str, Any]]:
        return self.capability.apps


def to_tile(capability: BuildingCapability) -> CapabilityTile:
    """Project a capability variant onto a CapabilityTile. Pure function."""
    if isinstance(capability, EnabledCapability):
        return CapabilityTile(
            capability=capability,
            is_enabled=True,
            sort_order=capability.sort_order,
            link_id=capability.link_id,
            data=capability.data,
        )
    return CapabilityTile(capability=capability, is_enabled=False, sort_order=AVAILABLE_SORT_ORDER)


class BuildingCapabilities(_Entity):
    """Body of GET /buildings/{id}/capabilities -> data."""

    enabled: list[EnabledCapability] = Field(default_factory=list)
    available: list[AvailableCapability] = Field(default_factory=list)

    def get_all_capabilities_sorted(self) -> list[CapabilityTile]:
        # sorted() is stable, so ties keep server order with enabled first.
        tiles = [to_tile(c) for c in self.enabled] + [to_tile(c) for c in self.available]
        return sorted(tiles, key=lambda tile: tile.sort_order)

    def get_enabled_capabilities_sorted(self) -> list[CapabilityTile]:
        return sorted((to_tile(c) for c in self.enabled), key=lambda tile: tile.sort_order)

    def find(self, key: str) -> CapabilityTile:
        """Return the tile for a capability key.

        Raises CapabilityException if the building neither has nor offers it.
        """
        for capability in (*self.enabled, *self.available):
            if capability.key == key:
                return to_tile(capability)
        raise CapabilityException(f"Capability '{key}' is not available for this building")


# ---------------------------------------------------------------------------
# Buildings
# ---------------------------------------------------------------------------


class BuildingBranding(_Entity):
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    logo_url: Optional[str] = None
    banner_url: Optional[str] = None
    welcome_message: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    website_url: Optional[str] = None
    app_name: Optional[str] = None


class Building(_Entity):
    """A tenant building. Its api_subdomain decides where requests are routed."""

    id: int
    name: str
    description: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    time_zone: Optional[str] = None
    is_active: bool = True
    branding: Optional[BuildingBranding] = None
    capabilities: Optional[list[Capability]] = None
    api_subdomain: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def api_base_url(self) -> str:
        return api_base_url_for(self.api_subdomain)
