"""Effective profile resolution.

Merges an account's base record with a profile (and, for secondary
profiles, its overrides) into the data a viewer actually sees.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.models.persona import (
    BaseRecord,
    InheritMode,
    PhotosMode,
    ProfileKind,
    ProfileOverridesRow,
    ProfileRow,
)
from src.schemas.persona import EffectiveProfile
from src.services.record_store import RecordStore, StoreUnavailableError

logger = logging.getLogger(__name__)

MAIN_PROFILE_DEFAULT_LABEL = "Main Profile"

# Both modes overlay every non-null override; OVERRIDE_ALL only changes how
# clients present the result.
OVERLAY_MODES = (InheritMode.OVERRIDE_FIELDS.value, InheritMode.OVERRIDE_ALL.value)


class ResolutionError(str, Enum):
    """Why a profile could not be resolved."""

    PROFILE_NOT_FOUND = "profile_not_found"
    BASE_RECORD_MISSING = "base_record_missing"
    STORE_UNAVAILABLE = "store_unavailable"


@dataclass(frozen=True)
class ResolutionResult:
    """Resolved profile or the reason there is none."""

    profile: EffectiveProfile | None = None
    error: ResolutionError | None = None

    @property
    def found(self) -> bool:
        """Check whether a profile was resolved."""
        return self.profile is not None


def _location_fields(profile: ProfileRow, fallback: dict[str, Any]) -> dict[str, Any]:
    if profile.get("override_location_enabled"):
        return {
            "effective_lat": profile.get("override_location_lat"),
            "effective_lng": profile.get("override_location_lng"),
            "effective_location_label": profile.get("override_location_label"),
        }
    return {
        "effective_lat": fallback.get("lat"),
        "effective_lng": fallback.get("lng"),
        "effective_location_label": fallback.get("city"),
    }


def _metadata_fields(profile: ProfileRow, type_label: str | None) -> dict[str, Any]:
    return {
        "profile_id": profile["id"],
        "profile_kind": profile.get("kind"),
        "profile_type_key": profile.get("type_key"),
        "profile_type_label": type_label,
        "profile_active": profile.get("active"),
        "profile_expires_at": profile.get("expires_at"),
    }


def merge_main_profile(profile: ProfileRow, base: BaseRecord) -> EffectiveProfile:
    """Build the effective profile of a MAIN profile.

    Args:
        profile: The MAIN profile row.
        base: The account's base record.

    Returns:
        EffectiveProfile: Base fields plus profile metadata and location.
    """
    return EffectiveProfile(
        **{
            **copy.deepcopy(dict(base)),
            **_metadata_fields(profile, profile.get("type_label") or MAIN_PROFILE_DEFAULT_LABEL),
            **_location_fields(profile, base),
        }
    )


def merge_secondary_profile(
    profile: ProfileRow,
    base: BaseRecord,
    overrides: ProfileOverridesRow | None,
) -> EffectiveProfile:
    """Build the effective profile of a SECONDARY profile.

    Args:
        profile: The SECONDARY profile row.
        base: The account's base record.
        overrides: The profile's overrides row, if any.

    Returns:
        EffectiveProfile: Base fields overlaid per inherit/photos mode.
    """
    overrides = overrides or {}
    overrides_json = overrides.get("overrides_json") or {}
    photos_mode = overrides.get("photos_mode") or PhotosMode.INHERIT.value
    photos_json = overrides.get("photos_json")

    effective: dict[str, Any] = copy.deepcopy(dict(base))

    if profile.get("inherit_mode") in OVERLAY_MODES:
        for key, value in overrides_json.items():
            if value is not None:
                effective[key] = copy.deepcopy(value)

    photos = effective.get("photos")
    if not isinstance(photos, list):
        # a scalar photo from overrides_json counts as a single photo
        photos = [photos] if photos else []
    if photos_mode == PhotosMode.REPLACE.value and photos_json is not None:
        photos = list(photos_json)
    elif photos_mode == PhotosMode.ADD.value and photos_json is not None:
        # Concatenation: duplicates are kept in order
        photos = [*photos, *photos_json]

    return EffectiveProfile(
        **{
            **effective,
            "photos": photos,
            **_metadata_fields(profile, profile.get("type_label")),
            **_location_fields(profile, effective),
        }
    )


class EffectiveProfileResolver:
    """Resolves profiles into their viewer-facing representation."""

    def __init__(self, store: RecordStore) -> None:
        """Initialize resolver.

        Args:
            store: Record store to read profiles, base records and overrides.
        """
        self.store = store

    async def resolve(self, profile_id: str) -> ResolutionResult:
        """Resolve a profile by ID.

        Never raises for expected outcomes; missing data and store failures
        come back as a ResolutionResult error.

        Args:
            profile_id: The profile to resolve.

        Returns:
            ResolutionResult: The effective profile or the failure reason.
        """
        try:
            profile = await self.store.get_profile(profile_id, include_deleted=False)
        except StoreUnavailableError:
            return ResolutionResult(error=ResolutionError.STORE_UNAVAILABLE)

        if not profile:
            logger.debug("Profile %s not found for resolution", profile_id)
            return ResolutionResult(error=ResolutionError.PROFILE_NOT_FOUND)

        account_id = profile["account_id"]
        try:
            base = await self.store.get_base_record(account_id)
        except StoreUnavailableError:
            return ResolutionResult(error=ResolutionError.STORE_UNAVAILABLE)

        if not base:
            logger.error(
                "Base record missing for account %s (profile %s exists)",
                account_id,
                profile_id,
            )
            return ResolutionResult(error=ResolutionError.BASE_RECORD_MISSING)

        if profile.get("kind") == ProfileKind.MAIN.value:
            return ResolutionResult(profile=merge_main_profile(profile, base))

        try:
            overrides = await self.store.get_overrides(profile_id)
        except StoreUnavailableError:
            logger.warning("Overrides unavailable for profile %s; using inherited data", profile_id)
            overrides = None

        return ResolutionResult(profile=merge_secondary_profile(profile, base, overrides))

    async def resolve_effective_profile(self, profile_id: str) -> EffectiveProfile | None:
        """Resolve a profile, returning None when it cannot be resolved."""
        result = await self.resolve(profile_id)
        return result.profile
