"""Record store for persona data.

The visibility and resolution services only depend on the ``RecordStore``
protocol; ``SupabaseRecordStore`` binds it to the Supabase tables.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol

from starlette.concurrency import run_in_threadpool

from src.core.supabase import get_supabase_client
from src.models.persona import (
    BaseRecord,
    ListEntryRow,
    ProfileKind,
    ProfileOverridesRow,
    ProfileRow,
    ViewerFilterRow,
    VisibilityRuleRow,
)

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
BASE_RECORDS_TABLE = "User"
OVERRIDES_TABLE = "profile_overrides"
RULES_TABLE = "profile_visibility_rules"
VIEWER_FILTERS_TABLE = "profile_viewer_filters"
BLOCKLIST_TABLE = "profile_blocklist_users"
ALLOWLIST_TABLE = "profile_allowlist_users"


class StoreUnavailableError(Exception):
    """Raised when a record store read or write fails."""

    def __init__(self, operation: str, cause: Exception | None = None) -> None:
        """Initialize store error.

        Args:
            operation: Name of the store operation that failed.
            cause: Underlying client exception.
        """
        self.operation = operation
        self.cause = cause
        super().__init__(f"Record store operation failed: {operation}")


class RecordStore(Protocol):
    """Operations the persona services need from persistence."""

    async def get_profile(self, profile_id: str, include_deleted: bool = True) -> ProfileRow | None: ...

    async def get_profiles_by_ids(self, profile_ids: list[str]) -> list[ProfileRow]: ...

    async def get_base_record(self, account_id: str) -> BaseRecord | None: ...

    async def get_overrides(self, profile_id: str) -> ProfileOverridesRow | None: ...

    async def get_blocklist_entry(self, profile_id: str, viewer_user_id: str) -> bool: ...

    async def get_blocklist_entries(self, profile_ids: list[str], viewer_user_id: str) -> set[str]: ...

    async def get_allowlist_entries(self, profile_id: str) -> list[ListEntryRow]: ...

    async def get_allowlist_entries_for_profiles(
        self, profile_ids: list[str], viewer_user_id: str | None = None
    ) -> list[ListEntryRow]: ...

    async def get_enabled_rules(self, profile_id: str) -> list[VisibilityRuleRow]: ...

    async def get_enabled_rules_for_profiles(self, profile_ids: list[str]) -> list[VisibilityRuleRow]: ...

    async def get_viewer_filters(self, profile_id: str) -> list[ViewerFilterRow]: ...

    async def count_secondary_profiles(self, account_id: str) -> int: ...

    async def get_main_profile(self, account_id: str) -> ProfileRow | None: ...

    async def list_profiles(self, account_id: str) -> list[ProfileRow]: ...

    async def insert_profile(self, row: dict[str, Any]) -> ProfileRow: ...

    async def update_profile_if_version(
        self, profile_id: str, expected_version: int, patch: dict[str, Any]
    ) -> ProfileRow | None: ...

    async def soft_delete_profile(self, profile_id: str) -> ProfileRow | None: ...

    async def upsert_overrides(self, row: dict[str, Any]) -> ProfileOverridesRow: ...


class SupabaseRecordStore:
    """RecordStore backed by the Supabase PostgREST client."""

    def __init__(self) -> None:
        """Initialize record store with Supabase client."""
        self.client = get_supabase_client()

    async def _execute(self, operation: str, query: Any) -> Any:
        """Execute a query builder off the event loop, wrapping client failures.

        Args:
            operation: Name used in logs and in the raised error.
            query: A PostgREST query builder ready to execute.

        Returns:
            The PostgREST response (may be None for maybe_single misses).

        Raises:
            StoreUnavailableError: If the client raises.
        """
        try:
            return await run_in_threadpool(query.execute)
        except Exception as e:
            logger.error("Record store %s failed: %s", operation, e)
            raise StoreUnavailableError(operation, e) from e

    async def get_profile(self, profile_id: str, include_deleted: bool = True) -> ProfileRow | None:
        """Get a profile by ID.

        Args:
            profile_id: The profile's ID.
            include_deleted: Return soft-deleted rows as well.

        Returns:
            ProfileRow | None: The profile or None if not found.
        """
        query = self.client.table(PROFILES_TABLE).select("*").eq("id", profile_id)
        if not include_deleted:
            query = query.is_("deleted_at", "null")
        response = await self._execute("get_profile", query.maybe_single())
        return response.data if response and response.data else None

    async def get_profiles_by_ids(self, profile_ids: list[str]) -> list[ProfileRow]:
        """Get all non-deleted profiles among the given IDs."""
        response = await self._execute(
            "get_profiles_by_ids",
            self.client.table(PROFILES_TABLE)
            .select("*")
            .in_("id", profile_ids)
            .is_("deleted_at", "null"),
        )
        return response.data or []

    async def get_base_record(self, account_id: str) -> BaseRecord | None:
        """Get the account-level User record a profile inherits from."""
        response = await self._execute(
            "get_base_record",
            self.client.table(BASE_RECORDS_TABLE)
            .select("*")
            .eq("auth_user_id", account_id)
            .maybe_single(),
        )
        return response.data if response and response.data else None

    async def get_overrides(self, profile_id: str) -> ProfileOverridesRow | None:
        """Get the overrides row for a secondary profile."""
        response = await self._execute(
            "get_overrides",
            self.client.table(OVERRIDES_TABLE)
            .select("*")
            .eq("profile_id", profile_id)
            .maybe_single(),
        )
        return response.data if response and response.data else None

    async def get_blocklist_entry(self, profile_id: str, viewer_user_id: str) -> bool:
        """Check whether a viewer is on a profile's blocklist."""
        response = await self._execute(
            "get_blocklist_entry",
            self.client.table(BLOCKLIST_TABLE)
            .select("viewer_user_id")
            .eq("profile_id", profile_id)
            .eq("viewer_user_id", viewer_user_id)
            .limit(1),
        )
        return bool(response.data)

    async def get_blocklist_entries(self, profile_ids: list[str], viewer_user_id: str) -> set[str]:
        """Get the IDs of the given profiles that block the viewer."""
        response = await self._execute(
            "get_blocklist_entries",
            self.client.table(BLOCKLIST_TABLE)
            .select("profile_id")
            .in_("profile_id", profile_ids)
            .eq("viewer_user_id", viewer_user_id),
        )
        return {entry["profile_id"] for entry in response.data or []}

    async def get_allowlist_entries(self, profile_id: str) -> list[ListEntryRow]:
        """Get every allowlist entry of a profile."""
        response = await self._execute(
            "get_allowlist_entries",
            self.client.table(ALLOWLIST_TABLE)
            .select("profile_id, viewer_user_id")
            .eq("profile_id", profile_id),
        )
        return response.data or []

    async def get_allowlist_entries_for_profiles(
        self, profile_ids: list[str], viewer_user_id: str | None = None
    ) -> list[ListEntryRow]:
        """Get allowlist entries for many profiles.

        Args:
            profile_ids: Profiles to look up.
            viewer_user_id: Restrict to this viewer's entries when given.

        Returns:
            list[ListEntryRow]: Matching entries.
        """
        query = (
            self.client.table(ALLOWLIST_TABLE)
            .select("profile_id, viewer_user_id")
            .in_("profile_id", profile_ids)
        )
        if viewer_user_id is not None:
            query = query.eq("viewer_user_id", viewer_user_id)
        response = await self._execute("get_allowlist_entries_for_profiles", query)
        return response.data or []

    async def get_enabled_rules(self, profile_id: str) -> list[VisibilityRuleRow]:
        """Get enabled visibility rules of a profile ordered by priority."""
        response = await self._execute(
            "get_enabled_rules",
            self.client.table(RULES_TABLE)
            .select("*")
            .eq("profile_id", profile_id)
            .eq("enabled", True)
            .order("priority"),
        )
        return response.data or []

    async def get_enabled_rules_for_profiles(self, profile_ids: list[str]) -> list[VisibilityRuleRow]:
        """Get enabled visibility rules for many profiles."""
        response = await self._execute(
            "get_enabled_rules_for_profiles",
            self.client.table(RULES_TABLE)
            .select("*")
            .in_("profile_id", profile_ids)
            .eq("enabled", True)
            .order("priority"),
        )
        return response.data or []

    async def get_viewer_filters(self, profile_id: str) -> list[ViewerFilterRow]:
        """Get the normalized viewer filter rows of a profile."""
        response = await self._execute(
            "get_viewer_filters",
            self.client.table(VIEWER_FILTERS_TABLE)
            .select("*")
            .eq("profile_id", profile_id),
        )
        return response.data or []

    async def count_secondary_profiles(self, account_id: str) -> int:
        """Count the account's non-deleted secondary profiles."""
        response = await self._execute(
            "count_secondary_profiles",
            self.client.table(PROFILES_TABLE)
            .select("id", count="exact")
            .eq("account_id", account_id)
            .eq("kind", ProfileKind.SECONDARY.value)
            .is_("deleted_at", "null"),
        )
        return response.count or 0

    async def get_main_profile(self, account_id: str) -> ProfileRow | None:
        """Get the account's non-deleted MAIN profile."""
        response = await self._execute(
            "get_main_profile",
            self.client.table(PROFILES_TABLE)
            .select("*")
            .eq("account_id", account_id)
            .eq("kind", ProfileKind.MAIN.value)
            .is_("deleted_at", "null")
            .maybe_single(),
        )
        return response.data if response and response.data else None

    async def list_profiles(self, account_id: str) -> list[ProfileRow]:
        """List the account's non-deleted profiles, MAIN first."""
        response = await self._execute(
            "list_profiles",
            self.client.table(PROFILES_TABLE)
            .select("*")
            .eq("account_id", account_id)
            .is_("deleted_at", "null")
            .order("created_at"),
        )
        rows = response.data or []
        return sorted(rows, key=lambda row: row.get("kind") != ProfileKind.MAIN.value)

    async def insert_profile(self, row: dict[str, Any]) -> ProfileRow:
        """Insert a new profile row."""
        response = await self._execute(
            "insert_profile",
            self.client.table(PROFILES_TABLE).insert(row),
        )
        return response.data[0]

    async def update_profile_if_version(
        self, profile_id: str, expected_version: int, patch: dict[str, Any]
    ) -> ProfileRow | None:
        """Apply a patch only if the stored version still matches.

        Args:
            profile_id: The profile's ID.
            expected_version: Version the caller last read.
            patch: Column values to write.

        Returns:
            ProfileRow | None: The updated row, or None if the version moved on
            (or the row is gone).
        """
        update_data = {
            **patch,
            "version": expected_version + 1,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        response = await self._execute(
            "update_profile_if_version",
            self.client.table(PROFILES_TABLE)
            .update(update_data)
            .eq("id", profile_id)
            .eq("version", expected_version)
            .is_("deleted_at", "null"),
        )
        return response.data[0] if response.data else None

    async def soft_delete_profile(self, profile_id: str) -> ProfileRow | None:
        """Mark a profile deleted and inactive."""
        response = await self._execute(
            "soft_delete_profile",
            self.client.table(PROFILES_TABLE)
            .update({
                "deleted_at": datetime.now(timezone.utc).isoformat(),
                "active": False,
            })
            .eq("id", profile_id)
            .is_("deleted_at", "null"),
        )
        return response.data[0] if response.data else None

    async def upsert_overrides(self, row: dict[str, Any]) -> ProfileOverridesRow:
        """Insert or replace the overrides row keyed by profile_id."""
        response = await self._execute(
            "upsert_overrides",
            self.client.table(OVERRIDES_TABLE).upsert(row, on_conflict="profile_id"),
        )
        return response.data[0]
