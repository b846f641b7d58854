"""Pytest configuration and fixtures."""

import os
from collections.abc import Generator
from datetime import datetime, timezone
from typing import Any
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("SUPABASE_SIGNING_KEY_JWK", "test-signing-key-jwk")

from src.services.record_store import StoreUnavailableError  # noqa: E402

OWNER_ID = "acct-owner"
VIEWER_ID = "acct-viewer"


class FakeRecordStore:
    """In-memory RecordStore used by service and route tests.

    Operations named in ``failing`` raise StoreUnavailableError, and every
    call is recorded in ``calls`` so tests can assert on query counts.
    """

    def __init__(self) -> None:
        self.profiles: dict[str, dict[str, Any]] = {}
        self.base_records: dict[str, dict[str, Any]] = {}
        self.overrides: dict[str, dict[str, Any]] = {}
        self.rules: list[dict[str, Any]] = []
        self.viewer_filters: list[dict[str, Any]] = []
        self.blocklist: list[dict[str, Any]] = []
        self.allowlist: list[dict[str, Any]] = []
        self.failing: set[str] = set()
        self.calls: list[str] = []
        self._next_id = 1

    def _call(self, operation: str) -> None:
        self.calls.append(operation)
        if operation in self.failing:
            raise StoreUnavailableError(operation, RuntimeError("connection refused"))

    # Builders

    def add_profile(self, profile_id: str, account_id: str = OWNER_ID, **fields: Any) -> dict[str, Any]:
        row = {
            "id": profile_id,
            "account_id": account_id,
            "kind": "SECONDARY",
            "type_key": "TRAVEL",
            "type_label": None,
            "active": True,
            "expires_at": None,
            "inherit_mode": "FULL_INHERIT",
            "override_location_enabled": False,
            "version": 1,
            "deleted_at": None,
            **fields,
        }
        self.profiles[profile_id] = row
        return row

    def add_base_record(self, account_id: str = OWNER_ID, **fields: Any) -> dict[str, Any]:
        record = {"id": f"user-{account_id}", "auth_user_id": account_id, **fields}
        self.base_records[account_id] = record
        return record

    def add_rule(self, profile_id: str, rule_type: str, rule_config: dict | None = None, priority: int = 0) -> None:
        self.rules.append({
            "id": f"rule-{len(self.rules) + 1}",
            "profile_id": profile_id,
            "rule_type": rule_type,
            "rule_config": rule_config,
            "priority": priority,
            "enabled": True,
        })

    def add_viewer_filter(self, profile_id: str, attribute: str, operator: str, value: Any) -> None:
        self.viewer_filters.append({
            "id": f"filter-{len(self.viewer_filters) + 1}",
            "profile_id": profile_id,
            "attribute": attribute,
            "operator": operator,
            "value_json": value,
        })

    def block(self, profile_id: str, viewer_user_id: str) -> None:
        self.blocklist.append({"profile_id": profile_id, "viewer_user_id": viewer_user_id})

    def allow(self, profile_id: str, viewer_user_id: str) -> None:
        self.allowlist.append({"profile_id": profile_id, "viewer_user_id": viewer_user_id})

    # RecordStore protocol

    async def get_profile(self, profile_id: str, include_deleted: bool = True) -> dict[str, Any] | None:
        self._call("get_profile")
        profile = self.profiles.get(profile_id)
        if profile and not include_deleted and profile.get("deleted_at"):
            return None
        return dict(profile) if profile else None

    async def get_profiles_by_ids(self, profile_ids: list[str]) -> list[dict[str, Any]]:
        self._call("get_profiles_by_ids")
        return [
            dict(self.profiles[pid])
            for pid in profile_ids
            if pid in self.profiles and not self.profiles[pid].get("deleted_at")
        ]

    async def get_base_record(self, account_id: str) -> dict[str, Any] | None:
        self._call("get_base_record")
        record = self.base_records.get(account_id)
        return dict(record) if record else None

    async def get_overrides(self, profile_id: str) -> dict[str, Any] | None:
        self._call("get_overrides")
        return self.overrides.get(profile_id)

    async def get_blocklist_entry(self, profile_id: str, viewer_user_id: str) -> bool:
        self._call("get_blocklist_entry")
        return any(
            e["profile_id"] == profile_id and e["viewer_user_id"] == viewer_user_id for e in self.blocklist
        )

    async def get_blocklist_entries(self, profile_ids: list[str], viewer_user_id: str) -> set[str]:
        self._call("get_blocklist_entries")
        return {
            e["profile_id"]
            for e in self.blocklist
            if e["profile_id"] in profile_ids and e["viewer_user_id"] == viewer_user_id
        }

    async def get_allowlist_entries(self, profile_id: str) -> list[dict[str, Any]]:
        self._call("get_allowlist_entries")
        return [e for e in self.allowlist if e["profile_id"] == profile_id]

    async def get_allowlist_entries_for_profiles(
        self, profile_ids: list[str], viewer_user_id: str | None = None
    ) -> list[dict[str, Any]]:
        self._call("get_allowlist_entries_for_profiles")
        return [
            e
            for e in self.allowlist
            if e["profile_id"] in profile_ids and (viewer_user_id is None or e["viewer_user_id"] == viewer_user_id)
        ]

    async def get_enabled_rules(self, profile_id: str) -> list[dict[str, Any]]:
        self._call("get_enabled_rules")
        rules = [r for r in self.rules if r["profile_id"] == profile_id and r["enabled"]]
        return sorted(rules, key=lambda r: r["priority"])

    async def get_enabled_rules_for_profiles(self, profile_ids: list[str]) -> list[dict[str, Any]]:
        self._call("get_enabled_rules_for_profiles")
        rules = [r for r in self.rules if r["profile_id"] in profile_ids and r["enabled"]]
        return sorted(rules, key=lambda r: r["priority"])

    async def get_viewer_filters(self, profile_id: str) -> list[dict[str, Any]]:
        self._call("get_viewer_filters")
        return [f for f in self.viewer_filters if f["profile_id"] == profile_id]

    async def count_secondary_profiles(self, account_id: str) -> int:
        self._call("count_secondary_profiles")
        return sum(
            1
            for p in self.profiles.values()
            if p["account_id"] == account_id and p["kind"] == "SECONDARY" and not p.get("deleted_at")
        )

    async def get_main_profile(self, account_id: str) -> dict[str, Any] | None:
        self._call("get_main_profile")
        for profile in self.profiles.values():
            if profile["account_id"] == account_id and profile["kind"] == "MAIN" and not profile.get("deleted_at"):
                return dict(profile)
        return None

    async def list_profiles(self, account_id: str) -> list[dict[str, Any]]:
        self._call("list_profiles")
        rows = [
            dict(p) for p in self.profiles.values() if p["account_id"] == account_id and not p.get("deleted_at")
        ]
        return sorted(rows, key=lambda row: row.get("kind") != "MAIN")

    async def insert_profile(self, row: dict[str, Any]) -> dict[str, Any]:
        self._call("insert_profile")
        profile_id = row.get("id") or f"profile-{self._next_id}"
        self._next_id += 1
        stored = {"deleted_at": None, **row, "id": profile_id}
        self.profiles[profile_id] = stored
        return dict(stored)

    async def update_profile_if_version(
        self, profile_id: str, expected_version: int, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        self._call("update_profile_if_version")
        profile = self.profiles.get(profile_id)
        if not profile or profile.get("deleted_at") or profile.get("version") != expected_version:
            return None
        profile.update(patch)
        profile["version"] = expected_version + 1
        return dict(profile)

    async def soft_delete_profile(self, profile_id: str) -> dict[str, Any] | None:
        self._call("soft_delete_profile")
        profile = self.profiles.get(profile_id)
        if not profile or profile.get("deleted_at"):
            return None
        profile["deleted_at"] = datetime.now(timezone.utc).isoformat()
        profile["active"] = False
        return dict(profile)

    async def upsert_overrides(self, row: dict[str, Any]) -> dict[str, Any]:
        self._call("upsert_overrides")
        self.overrides[row["profile_id"]] = dict(row)
        return dict(row)


@pytest.fixture
def record_store() -> FakeRecordStore:
    """Provide an empty in-memory record store."""
    return FakeRecordStore()


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    get_settings.cache_clear()


@pytest.fixture
def mock_supabase_client() -> Generator[MagicMock, None, None]:
    """Provide a mocked Supabase client.

    Yields:
        MagicMock: Mocked Supabase client for testing.
    """
    mock_client = MagicMock()

    mock_response = MagicMock()
    mock_response.data = []
    mock_client.table.return_value.select.return_value.limit.return_value.execute.return_value = (
        mock_response
    )

    with patch("src.core.supabase.get_supabase_client", return_value=mock_client):
        yield mock_client


@pytest.fixture
def client(mock_supabase_client: MagicMock) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        mock_supabase_client: Mocked Supabase client fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def api_client(record_store: FakeRecordStore) -> Generator[TestClient, None, None]:
    """Provide a test client authenticated as the viewer and backed by the fake store.

    Tests can switch the caller by overriding ``get_current_user`` again.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.api.deps import get_current_user, get_decision_cache, get_record_store
    from src.main import app
    from src.schemas.auth import UserContext

    app.dependency_overrides[get_record_store] = lambda: record_store
    app.dependency_overrides[get_current_user] = lambda: UserContext(user_id=VIEWER_ID, role="authenticated")
    app.dependency_overrides[get_decision_cache] = lambda: None

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
