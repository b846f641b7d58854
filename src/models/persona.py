"""Persona model type definitions for database operations."""

from enum import Enum
from typing import Any, TypedDict


class ProfileKind(str, Enum):
    """Profile kind values."""

    MAIN = "MAIN"
    SECONDARY = "SECONDARY"


class InheritMode(str, Enum):
    """How a secondary profile derives its fields from the base record."""

    FULL_INHERIT = "FULL_INHERIT"
    OVERRIDE_FIELDS = "OVERRIDE_FIELDS"
    OVERRIDE_ALL = "OVERRIDE_ALL"


class PhotosMode(str, Enum):
    """How a secondary profile derives its photo list."""

    INHERIT = "INHERIT"
    REPLACE = "REPLACE"
    ADD = "ADD"


class RuleType(str, Enum):
    """Visibility rule types."""

    PUBLIC = "PUBLIC"
    FILTER_VIEWER_ATTRIBUTES = "FILTER_VIEWER_ATTRIBUTES"


class FilterOperator(str, Enum):
    """Operators for normalized viewer filter rows."""

    EQ = "EQ"
    NE = "NE"
    IN = "IN"
    NOT_IN = "NOT_IN"
    GTE = "GTE"
    LTE = "LTE"
    RADIUS_KM = "RADIUS_KM"


# Profile types offered by the UI type picker
SYSTEM_PROFILE_TYPES = ("MAIN", "TRAVEL", "WEEKEND")


class ProfileRow(TypedDict, total=False):
    """profiles table row representation.

    One MAIN row per account plus any number of SECONDARY rows bounded by
    the account's tier. `version` is bumped on every update.
    """

    id: str
    account_id: str
    kind: str
    type_key: str | None
    type_label: str | None
    active: bool
    expires_at: str | None
    inherit_mode: str | None
    override_location_enabled: bool
    override_location_lat: float | None
    override_location_lng: float | None
    override_location_label: str | None
    version: int
    deleted_at: str | None
    created_at: str
    updated_at: str


class BaseRecord(TypedDict, total=False):
    """User table row: the account-level data a persona inherits from.

    Only the fields the resolver reads are declared; every other column is
    carried through to the effective profile untouched.
    """

    id: str
    auth_user_id: str
    lat: float | None
    lng: float | None
    city: str | None
    bio: str | None
    photos: list[Any] | None
    gender: str | None
    subscription_tier: str | None


class ProfileOverridesRow(TypedDict, total=False):
    """profile_overrides table row (1:1 with a SECONDARY profile)."""

    profile_id: str
    overrides_json: dict[str, Any] | None
    photos_mode: str | None
    photos_json: list[Any] | None


class VisibilityRuleRow(TypedDict, total=False):
    """profile_visibility_rules table row."""

    id: str
    profile_id: str
    rule_type: str
    rule_config: dict[str, Any] | None
    priority: int
    enabled: bool


class ViewerFilterRow(TypedDict, total=False):
    """profile_viewer_filters table row."""

    id: str
    profile_id: str
    attribute: str
    operator: str
    value_json: Any


class ListEntryRow(TypedDict):
    """Row shared by profile_blocklist_users and profile_allowlist_users."""

    profile_id: str
    viewer_user_id: str
