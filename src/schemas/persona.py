"""Persona Pydantic schemas for API request/response models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class VisibilityReason(str, Enum):
    """Reason codes attached to every visibility decision."""

    PROFILE_NOT_FOUND = "profile_not_found"
    PROFILE_DELETED = "profile_deleted"
    PROFILE_INACTIVE_OR_EXPIRED = "profile_inactive_or_expired"
    OWNER_PREVIEW = "owner_preview"
    BLOCKED = "blocked"
    ALLOWLISTED = "allowlisted"
    NOT_ON_ALLOWLIST = "not_on_allowlist"
    RULES_ERROR = "rules_error"
    NO_PUBLIC_RULE = "no_public_rule"
    FILTER_NOT_MATCHED = "filter_not_matched"
    VIEWER_FILTER_NOT_MATCHED = "viewer_filter_not_matched"
    PUBLIC = "public"


class VisibilityDecision(BaseModel):
    """Allow/deny answer for one viewer and one profile."""

    model_config = ConfigDict(frozen=True)

    allowed: bool = Field(description="Whether the viewer may see the profile")
    reason: VisibilityReason = Field(description="Why the decision was made")


class ValidationResult(BaseModel):
    """Outcome of validating a profile payload."""

    valid: bool = Field(description="Whether the payload passed every check")
    errors: list[str] = Field(default_factory=list, description="Human-readable violations")


class EffectiveProfile(BaseModel):
    """Viewer-facing merge of a base record and a profile.

    Base record columns (bio, gender, ...) are carried as extra fields. The
    location and photo fields can come from free-form overrides, so they are
    passed through untyped.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    profile_id: str = Field(description="Profile the data was resolved for")
    profile_kind: str = Field(description="MAIN or SECONDARY")
    profile_type_key: str | None = Field(default=None, description="Profile type key")
    profile_type_label: str | None = Field(default=None, description="Profile type label")
    profile_active: bool | None = Field(default=None, description="Profile active flag")
    profile_expires_at: str | None = Field(default=None, description="Profile expiry timestamp")
    effective_lat: Any = Field(default=None, description="Latitude shown to viewers")
    effective_lng: Any = Field(default=None, description="Longitude shown to viewers")
    effective_location_label: Any = Field(default=None, description="Location label shown to viewers")
    photos: Any = Field(default=None, description="Photos shown to viewers")


class ProfileFields(BaseModel):
    """Mutable profile fields shared by create and update payloads.

    Business rules are checked by validate_profile_data so every violation
    can be reported at once; the types here are intentionally loose.
    """

    type_key: str | None = Field(default=None, description="Profile type key (e.g. TRAVEL)")
    type_label: str | None = Field(default=None, description="Display label for the profile type")
    active: bool | None = Field(default=None, description="Whether the profile is active")
    expires_at: str | None = Field(default=None, description="ISO-8601 expiry timestamp")
    inherit_mode: str | None = Field(default=None, description="FULL_INHERIT, OVERRIDE_FIELDS or OVERRIDE_ALL")
    override_location_enabled: bool | None = Field(default=None, description="Use the override location")
    override_location_lat: float | None = Field(default=None, description="Override latitude")
    override_location_lng: float | None = Field(default=None, description="Override longitude")
    override_location_label: str | None = Field(default=None, description="Override location label")


class ProfileCreate(ProfileFields):
    """Schema for creating a secondary profile."""

    kind: str = Field(default="SECONDARY", description="Profile kind; only SECONDARY can be created")


class ProfileUpdate(ProfileFields):
    """Schema for updating a profile with an optimistic-concurrency check."""

    expected_version: int = Field(ge=1, description="Version the client last read")


class OverridesUpsert(BaseModel):
    """Schema for writing a secondary profile's overrides."""

    overrides_json: dict[str, Any] = Field(default_factory=dict, description="Field overrides")
    photos_mode: str = Field(default="INHERIT", description="INHERIT, REPLACE or ADD")
    photos_json: list[Any] | None = Field(default=None, description="Photos for REPLACE/ADD modes")


class ProfileResponse(BaseModel):
    """Schema for profile API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Profile unique identifier")
    account_id: str = Field(description="Owning account ID")
    kind: str = Field(description="MAIN or SECONDARY")
    type_key: str | None = None
    type_label: str | None = None
    active: bool = True
    expires_at: datetime | None = None
    inherit_mode: str | None = None
    override_location_enabled: bool = False
    override_location_lat: float | None = None
    override_location_lng: float | None = None
    override_location_label: str | None = None
    version: int = Field(default=1, description="Optimistic-concurrency version")


class OverridesResponse(BaseModel):
    """Schema for overrides API responses."""

    model_config = ConfigDict(from_attributes=True)

    profile_id: str
    overrides_json: dict[str, Any] | None = None
    photos_mode: str | None = None
    photos_json: list[Any] | None = None


class VisibilityCheckRequest(BaseModel):
    """Viewer attributes supplied for a visibility check."""

    viewer_attributes: dict[str, Any] = Field(default_factory=dict, description="Viewer lat/lng, age, tribes, ...")


class BatchVisibilityRequest(VisibilityCheckRequest):
    """Discovery-grid batch visibility request."""

    profile_ids: list[str] = Field(default_factory=list, description="Profiles to check")


class BatchVisibilityResponse(BaseModel):
    """Batch visibility results keyed by profile ID.

    Profiles that no longer exist have no entry.
    """

    results: dict[str, bool] = Field(default_factory=dict)


class ProfileValidationRequest(ProfileCreate):
    """Dry-run validation payload."""

    is_create: bool = Field(default=False, description="Validate with create-time rules")
