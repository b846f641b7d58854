"""Unit tests for PersonaService."""

import pytest
from conftest import OWNER_ID, VIEWER_ID, FakeRecordStore

from src.api.middleware.error_handler import (
    APIError,
    AuthorizationError,
    ConcurrencyConflictError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)
from src.schemas.persona import OverridesUpsert, ProfileCreate, ProfileUpdate, VisibilityDecision, VisibilityReason
from src.services.persona_service import PersonaService
from src.services.visibility_cache import VisibilityCache


@pytest.fixture
def cache() -> VisibilityCache:
    """Create an empty decision cache."""
    return VisibilityCache()


@pytest.fixture
def service(record_store: FakeRecordStore, cache: VisibilityCache) -> PersonaService:
    """Create PersonaService over the in-memory store."""
    return PersonaService(record_store, cache=cache)


class TestListProfiles:
    """Tests for list_profiles and get_main_profile."""

    @pytest.mark.asyncio
    async def test_main_first(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that the MAIN profile is listed before secondary profiles."""
        record_store.add_profile("sec-1")
        record_store.add_profile("main-1", kind="MAIN", type_key="MAIN")
        record_store.add_profile("other", account_id=VIEWER_ID)

        profiles = await service.list_profiles(OWNER_ID)

        assert [p["id"] for p in profiles] == ["main-1", "sec-1"]

    @pytest.mark.asyncio
    async def test_get_main_profile(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test fetching the account's MAIN profile."""
        record_store.add_profile("main-1", kind="MAIN")

        profile = await service.get_main_profile(OWNER_ID)

        assert profile["id"] == "main-1"


class TestCreateSecondaryProfile:
    """Tests for create_secondary_profile."""

    @pytest.mark.asyncio
    async def test_creates_with_defaults(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that a new secondary profile gets default state and version 1."""
        profile = await service.create_secondary_profile(
            OWNER_ID, "basic", ProfileCreate(type_key="TRAVEL", type_label="Trip")
        )

        assert profile["account_id"] == OWNER_ID
        assert profile["kind"] == "SECONDARY"
        assert profile["active"] is True
        assert profile["inherit_mode"] == "FULL_INHERIT"
        assert profile["version"] == 1
        assert profile["id"] in record_store.profiles

    @pytest.mark.asyncio
    async def test_quota_exceeded(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that the basic tier stops at five secondary profiles."""
        for index in range(5):
            record_store.add_profile(f"sec-{index}")

        with pytest.raises(QuotaExceededError) as exc_info:
            await service.create_secondary_profile(OWNER_ID, None, ProfileCreate(type_key="TRAVEL"))

        assert exc_info.value.limit == 5
        assert exc_info.value.status_code == 403
        assert "insert_profile" not in record_store.calls

    @pytest.mark.asyncio
    async def test_deleted_profiles_do_not_count(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that soft-deleted profiles free up quota."""
        for index in range(5):
            record_store.add_profile(f"sec-{index}", deleted_at="2026-01-01T00:00:00Z" if index == 0 else None)

        profile = await service.create_secondary_profile(OWNER_ID, "basic", ProfileCreate(type_key="TRAVEL"))

        assert profile["kind"] == "SECONDARY"

    @pytest.mark.asyncio
    async def test_premium_tier_allows_more(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that premium accounts can exceed the basic limit."""
        for index in range(5):
            record_store.add_profile(f"sec-{index}")

        profile = await service.create_secondary_profile(OWNER_ID, "Premium", ProfileCreate(type_key="WEEKEND"))

        assert profile["type_key"] == "WEEKEND"

    @pytest.mark.asyncio
    async def test_invalid_payload(self, service: PersonaService) -> None:
        """Test that validation errors are reported as details."""
        with pytest.raises(ValidationError) as exc_info:
            await service.create_secondary_profile(OWNER_ID, "basic", ProfileCreate(inherit_mode="PARTIAL"))

        messages = [detail["msg"] for detail in exc_info.value.details]
        assert "type_key is required for secondary profiles" in messages
        assert len(messages) == 2

    @pytest.mark.asyncio
    async def test_main_kind_rejected(self, service: PersonaService) -> None:
        """Test that MAIN profiles cannot be created."""
        with pytest.raises(ValidationError):
            await service.create_secondary_profile(OWNER_ID, "basic", ProfileCreate(kind="MAIN", type_key="MAIN"))


class TestUpdateProfile:
    """Tests for update_profile."""

    @pytest.mark.asyncio
    async def test_bumps_version(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that a matching version updates and increments the version."""
        record_store.add_profile("sec-1", version=3)

        updated = await service.update_profile(
            OWNER_ID, "sec-1", ProfileUpdate(expected_version=3, type_label="Summer")
        )

        assert updated["version"] == 4
        assert updated["type_label"] == "Summer"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that a stale version raises a conflict and writes nothing."""
        record_store.add_profile("sec-1", version=3)

        with pytest.raises(ConcurrencyConflictError) as exc_info:
            await service.update_profile(OWNER_ID, "sec-1", ProfileUpdate(expected_version=2, type_label="Old"))

        assert exc_info.value.status_code == 409
        assert exc_info.value.error_type == "version_conflict"
        assert exc_info.value.current_version == 3
        assert "update_profile_if_version" not in record_store.calls
        assert record_store.profiles["sec-1"]["type_label"] is None

    @pytest.mark.asyncio
    async def test_lost_race_conflicts(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that a concurrent write between read and update is a conflict."""
        record_store.add_profile("sec-1", version=3)
        original_update = record_store.update_profile_if_version

        async def concurrent_update(profile_id, expected_version, patch):
            record_store.profiles[profile_id]["version"] = expected_version + 1
            return await original_update(profile_id, expected_version, patch)

        record_store.update_profile_if_version = concurrent_update

        with pytest.raises(ConcurrencyConflictError):
            await service.update_profile(OWNER_ID, "sec-1", ProfileUpdate(expected_version=3, active=False))

    @pytest.mark.asyncio
    async def test_not_owner(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that another account's profile cannot be updated."""
        record_store.add_profile("sec-1")

        with pytest.raises(AuthorizationError):
            await service.update_profile(VIEWER_ID, "sec-1", ProfileUpdate(expected_version=1))

    @pytest.mark.asyncio
    async def test_invalid_patch(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that an invalid patch is rejected before the version check."""
        record_store.add_profile("sec-1")

        with pytest.raises(ValidationError):
            await service.update_profile(
                OWNER_ID, "sec-1", ProfileUpdate(expected_version=1, override_location_enabled=True)
            )

    @pytest.mark.asyncio
    async def test_invalidates_cached_decisions(
        self, service: PersonaService, record_store: FakeRecordStore, cache: VisibilityCache
    ) -> None:
        """Test that updating a profile drops its cached visibility decisions."""
        record_store.add_profile("sec-1")
        cache.set(VIEWER_ID, "sec-1", {}, VisibilityDecision(allowed=True, reason=VisibilityReason.PUBLIC))

        await service.update_profile(OWNER_ID, "sec-1", ProfileUpdate(expected_version=1, active=False))

        assert cache.get(VIEWER_ID, "sec-1", {}) is None


class TestDeleteProfile:
    """Tests for delete_profile."""

    @pytest.mark.asyncio
    async def test_soft_deletes(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that deleting sets deleted_at and deactivates the profile."""
        record_store.add_profile("sec-1")

        await service.delete_profile(OWNER_ID, "sec-1")

        assert record_store.profiles["sec-1"]["deleted_at"] is not None
        assert record_store.profiles["sec-1"]["active"] is False

    @pytest.mark.asyncio
    async def test_main_profile_not_deletable(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that the MAIN profile cannot be deleted."""
        record_store.add_profile("main-1", kind="MAIN")

        with pytest.raises(APIError) as exc_info:
            await service.delete_profile(OWNER_ID, "main-1")

        assert exc_info.value.error_type == "main_profile_not_deletable"

    @pytest.mark.asyncio
    async def test_already_deleted(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that deleting twice is a not-found error."""
        record_store.add_profile("sec-1", deleted_at="2026-01-01T00:00:00Z")

        with pytest.raises(NotFoundError):
            await service.delete_profile(OWNER_ID, "sec-1")


class TestUpsertOverrides:
    """Tests for upsert_overrides."""

    @pytest.mark.asyncio
    async def test_writes_overrides(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that overrides are stored for a secondary profile."""
        record_store.add_profile("sec-1")

        overrides = await service.upsert_overrides(
            OWNER_ID,
            "sec-1",
            OverridesUpsert(overrides_json={"bio": "Weekend only"}, photos_mode="ADD", photos_json=["p2"]),
        )

        assert overrides["photos_mode"] == "ADD"
        assert record_store.overrides["sec-1"]["overrides_json"] == {"bio": "Weekend only"}

    @pytest.mark.asyncio
    async def test_main_profile_rejected(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that MAIN profiles do not take overrides."""
        record_store.add_profile("main-1", kind="MAIN")

        with pytest.raises(ValidationError):
            await service.upsert_overrides(OWNER_ID, "main-1", OverridesUpsert())

    @pytest.mark.asyncio
    async def test_unknown_photos_mode(self, service: PersonaService, record_store: FakeRecordStore) -> None:
        """Test that unknown photo modes are rejected."""
        record_store.add_profile("sec-1")

        with pytest.raises(ValidationError):
            await service.upsert_overrides(OWNER_ID, "sec-1", OverridesUpsert(photos_mode="MERGE"))
