"""Persona lifecycle business logic service."""

import logging
from typing import Any

from src.api.middleware.error_handler import (
    APIError,
    AuthorizationError,
    ConcurrencyConflictError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from src.models.persona import InheritMode, PhotosMode, ProfileKind, ProfileOverridesRow, ProfileRow
from src.schemas.persona import OverridesUpsert, ProfileCreate, ProfileUpdate
from src.services.profile_validation import validate_profile_data
from src.services.record_store import RecordStore
from src.services.tier_quota import get_max_secondary_profiles_for_tier
from src.services.visibility_cache import VisibilityCache

logger = logging.getLogger(__name__)


class PersonaService:
    """Service for creating, updating and deleting an account's profiles."""

    def __init__(self, store: RecordStore, cache: VisibilityCache | None = None) -> None:
        """Initialize persona service.

        Args:
            store: Record store holding profiles and overrides.
            cache: Visibility cache to invalidate on mutation.
        """
        self.store = store
        self.cache = cache

    def _invalidate(self, profile_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_profile(profile_id)

    async def list_profiles(self, account_id: str) -> list[ProfileRow]:
        """List the account's non-deleted profiles, MAIN first.

        Args:
            account_id: The owning account ID.

        Returns:
            list[ProfileRow]: The account's profiles.
        """
        return await self.store.list_profiles(account_id)

    async def get_main_profile(self, account_id: str) -> ProfileRow | None:
        """Get the account's MAIN profile."""
        return await self.store.get_main_profile(account_id)

    async def get_owned_profile(self, account_id: str, profile_id: str) -> ProfileRow:
        """Get a non-deleted profile owned by the account.

        Args:
            account_id: The caller's account ID.
            profile_id: The profile's ID.

        Returns:
            ProfileRow: The profile.

        Raises:
            NotFoundError: If the profile does not exist or is deleted.
            AuthorizationError: If the profile belongs to another account.
        """
        profile = await self.store.get_profile(profile_id, include_deleted=False)
        if not profile:
            raise NotFoundError("Profile not found")
        if profile.get("account_id") != account_id:
            raise AuthorizationError("You do not own this profile")
        return profile

    async def create_secondary_profile(
        self,
        account_id: str,
        tier: str | None,
        data: ProfileCreate,
    ) -> ProfileRow:
        """Create a secondary profile after quota and payload checks.

        Args:
            account_id: The owning account ID.
            tier: The account's subscription tier.
            data: Profile fields from the request.

        Returns:
            ProfileRow: The created profile.

        Raises:
            ValidationError: If the payload is invalid or asks for a MAIN profile.
            QuotaExceededError: If the tier's secondary quota is used up.
        """
        if data.kind != ProfileKind.SECONDARY.value:
            raise ValidationError.from_messages(["Only SECONDARY profiles can be created"])

        limit = get_max_secondary_profiles_for_tier(tier)
        current = await self.store.count_secondary_profiles(account_id)
        if current >= limit:
            logger.info("Account %s hit secondary profile quota (%d/%d)", account_id, current, limit)
            raise QuotaExceededError(limit=limit, tier=tier)

        payload = data.model_dump(exclude_none=True)
        result = validate_profile_data(payload, is_create=True)
        if not result.valid:
            raise ValidationError.from_messages(result.errors)

        row: dict[str, Any] = {
            "active": True,
            "inherit_mode": InheritMode.FULL_INHERIT.value,
            "override_location_enabled": False,
            **payload,
            "account_id": account_id,
            "kind": ProfileKind.SECONDARY.value,
            "version": 1,
        }
        profile = await self.store.insert_profile(row)
        logger.info("Created secondary profile %s for account %s", profile.get("id"), account_id)
        return profile

    async def update_profile(
        self,
        account_id: str,
        profile_id: str,
        data: ProfileUpdate,
    ) -> ProfileRow:
        """Update a profile if the caller's version is current.

        Args:
            account_id: The caller's account ID.
            profile_id: The profile's ID.
            data: Patch fields plus the version the caller last read.

        Returns:
            ProfileRow: The updated profile with its new version.

        Raises:
            NotFoundError: If the profile does not exist or is deleted.
            AuthorizationError: If the profile belongs to another account.
            ValidationError: If the patch is invalid.
            ConcurrencyConflictError: If the stored version differs.
        """
        profile = await self.get_owned_profile(account_id, profile_id)

        patch = data.model_dump(exclude_unset=True, exclude={"expected_version"})
        result = validate_profile_data(patch, is_create=False)
        if not result.valid:
            raise ValidationError.from_messages(result.errors)

        current_version = profile.get("version")
        if current_version != data.expected_version:
            raise ConcurrencyConflictError(profile_id, data.expected_version, current_version)

        updated = await self.store.update_profile_if_version(profile_id, data.expected_version, patch)
        if updated is None:
            # Another writer got in between our read and the conditional update
            raise ConcurrencyConflictError(profile_id, data.expected_version)

        self._invalidate(profile_id)
        logger.info("Updated profile %s to version %s", profile_id, updated.get("version"))
        return updated

    async def delete_profile(self, account_id: str, profile_id: str) -> ProfileRow:
        """Soft-delete a secondary profile.

        Args:
            account_id: The caller's account ID.
            profile_id: The profile's ID.

        Returns:
            ProfileRow: The deleted profile row.

        Raises:
            NotFoundError: If the profile does not exist or is already deleted.
            AuthorizationError: If the profile belongs to another account.
            APIError: If the profile is the account's MAIN profile.
        """
        profile = await self.get_owned_profile(account_id, profile_id)
        if profile.get("kind") == ProfileKind.MAIN.value:
            raise APIError(
                message="The main profile cannot be deleted",
                status_code=400,
                error_type="main_profile_not_deletable",
            )

        deleted = await self.store.soft_delete_profile(profile_id)
        if deleted is None:
            raise NotFoundError("Profile not found")

        self._invalidate(profile_id)
        logger.info("Soft-deleted profile %s", profile_id)
        return deleted

    async def upsert_overrides(
        self,
        account_id: str,
        profile_id: str,
        data: OverridesUpsert,
    ) -> ProfileOverridesRow:
        """Write a secondary profile's overrides.

        Args:
            account_id: The caller's account ID.
            profile_id: The profile's ID.
            data: Overrides, photos mode and photos.

        Returns:
            ProfileOverridesRow: The stored overrides.

        Raises:
            ValidationError: If the profile is MAIN or photos_mode is unknown.
        """
        profile = await self.get_owned_profile(account_id, profile_id)
        if profile.get("kind") != ProfileKind.SECONDARY.value:
            raise ValidationError.from_messages(["Overrides are only supported for secondary profiles"])

        valid_modes = [mode.value for mode in PhotosMode]
        if data.photos_mode not in valid_modes:
            raise ValidationError.from_messages([f"photos_mode must be one of: {', '.join(valid_modes)}"])

        overrides = await self.store.upsert_overrides({
            "profile_id": profile_id,
            "overrides_json": data.overrides_json,
            "photos_mode": data.photos_mode,
            "photos_json": data.photos_json,
        })
        return overrides
