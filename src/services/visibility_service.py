"""Profile visibility policy evaluation.

A visibility decision is an ordered, short-circuiting sequence of steps.
Each step either produces a decision or hands over to the next one:

    LOAD_PROFILE -> CHECK_DELETED -> CHECK_ACTIVE -> CHECK_OWNER
    -> CHECK_BLOCKLIST -> CHECK_ALLOWLIST -> LOAD_RULES -> CHECK_PUBLIC_RULE
    -> CHECK_RULE_FILTERS -> CHECK_VIEWER_FILTERS -> COMPLETE

The step that decided is logged together with the reason code, which makes
the log line an audit record of the decision.

The batch evaluator used by the discovery grid preloads everything in a
handful of queries and runs the same pure step functions, except that it
does not consult the normalized viewer filters table (CHECK_VIEWER_FILTERS).
A grid and a profile page can therefore disagree for profiles that only
restrict viewers through that table.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from src.models.persona import ProfileRow, RuleType, ViewerFilterRow, VisibilityRuleRow
from src.schemas.persona import VisibilityDecision, VisibilityReason
from src.services.attribute_filters import ConfigFilter, NormalizedFilter, evaluate_filter
from src.services.profile_validation import parse_datetime
from src.services.record_store import RecordStore, StoreUnavailableError
from src.services.visibility_cache import VisibilityCache

logger = logging.getLogger(__name__)


class VisibilityStep(str, Enum):
    """Steps of the visibility decision sequence, in evaluation order."""

    LOAD_PROFILE = "load_profile"
    CHECK_DELETED = "check_deleted"
    CHECK_ACTIVE = "check_active"
    CHECK_OWNER = "check_owner"
    CHECK_BLOCKLIST = "check_blocklist"
    CHECK_ALLOWLIST = "check_allowlist"
    LOAD_RULES = "load_rules"
    CHECK_PUBLIC_RULE = "check_public_rule"
    CHECK_RULE_FILTERS = "check_rule_filters"
    CHECK_VIEWER_FILTERS = "check_viewer_filters"
    COMPLETE = "complete"


def allow(reason: VisibilityReason) -> VisibilityDecision:
    """Build an allow decision."""
    return VisibilityDecision(allowed=True, reason=reason)


def deny(reason: VisibilityReason) -> VisibilityDecision:
    """Build a deny decision."""
    return VisibilityDecision(allowed=False, reason=reason)


def utc_now() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def is_profile_expired(profile: ProfileRow, now: datetime | None = None) -> bool:
    """Check whether a profile's expiry time has passed.

    An unparseable expiry is treated as not expired.
    """
    expires_at = parse_datetime(profile.get("expires_at"))
    if expires_at is None:
        return False
    return expires_at <= (now or utc_now())


def is_profile_active(profile: ProfileRow | None, now: datetime | None = None) -> bool:
    """Check whether a profile is active, not deleted and not expired."""
    if not profile:
        return False
    if profile.get("deleted_at"):
        return False
    if not profile.get("active"):
        return False
    return not is_profile_expired(profile, now)


def is_owner(profile: ProfileRow, viewer_user_id: str) -> bool:
    """Check whether the viewer owns the profile."""
    return profile.get("account_id") == viewer_user_id


# Pure step functions shared by the single and batch evaluators.
# Each returns a decision to stop, or None to continue.


def check_active(profile: ProfileRow, viewer_user_id: str, now: datetime) -> VisibilityDecision | None:
    """Inactive or expired profiles are only visible to their owner."""
    if is_profile_active(profile, now):
        return None
    if is_owner(profile, viewer_user_id):
        return allow(VisibilityReason.OWNER_PREVIEW)
    return deny(VisibilityReason.PROFILE_INACTIVE_OR_EXPIRED)


def check_owner(profile: ProfileRow, viewer_user_id: str) -> VisibilityDecision | None:
    """Owners always see their own profile."""
    if is_owner(profile, viewer_user_id):
        return allow(VisibilityReason.OWNER_PREVIEW)
    return None


def check_blocklist(is_blocked: bool) -> VisibilityDecision | None:
    """A blocklisted viewer is denied."""
    return deny(VisibilityReason.BLOCKED) if is_blocked else None


def check_allowlist(has_allowlist: bool, is_allowlisted: bool) -> VisibilityDecision | None:
    """An allowlist, if present, fully decides visibility."""
    if not has_allowlist:
        return None
    if is_allowlisted:
        return allow(VisibilityReason.ALLOWLISTED)
    return deny(VisibilityReason.NOT_ON_ALLOWLIST)


def check_public_rule(rules: list[VisibilityRuleRow]) -> VisibilityDecision | None:
    """Non-owners need an enabled PUBLIC rule."""
    if any(rule.get("rule_type") == RuleType.PUBLIC.value for rule in rules):
        return None
    return deny(VisibilityReason.NO_PUBLIC_RULE)


def check_rule_filters(
    rules: list[VisibilityRuleRow], viewer_attributes: dict[str, Any]
) -> VisibilityDecision | None:
    """Every FILTER_VIEWER_ATTRIBUTES rule config must match the viewer."""
    for rule in rules:
        if rule.get("rule_type") != RuleType.FILTER_VIEWER_ATTRIBUTES.value:
            continue
        if not evaluate_filter(ConfigFilter(rule.get("rule_config") or {}), viewer_attributes):
            return deny(VisibilityReason.FILTER_NOT_MATCHED)
    return None


def check_viewer_filters(
    filters: list[ViewerFilterRow], viewer_attributes: dict[str, Any]
) -> VisibilityDecision | None:
    """Every normalized viewer filter row must match the viewer."""
    for row in filters:
        if not evaluate_filter(NormalizedFilter.from_row(row), viewer_attributes):
            return deny(VisibilityReason.VIEWER_FILTER_NOT_MATCHED)
    return None


@dataclass
class _Evaluation:
    """State carried between the steps of one single-profile evaluation."""

    viewer_user_id: str
    viewer_attributes: dict[str, Any]
    profile_id: str
    now: datetime
    profile: ProfileRow = field(default_factory=dict)  # type: ignore[assignment]
    rules: list[VisibilityRuleRow] = field(default_factory=list)


StepHandler = Callable[[_Evaluation], Awaitable["VisibilityDecision | None"]]


class VisibilityPolicyEvaluator:
    """Decides whether one viewer may see one profile."""

    def __init__(
        self,
        store: RecordStore,
        cache: VisibilityCache | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize evaluator.

        Args:
            store: Record store to read profile and rule data from.
            cache: Optional decision cache.
            clock: Source of the current time, used for expiry checks.
        """
        self.store = store
        self.cache = cache
        self.clock = clock
        self._steps: list[tuple[VisibilityStep, StepHandler]] = [
            (VisibilityStep.LOAD_PROFILE, self._load_profile),
            (VisibilityStep.CHECK_DELETED, self._check_deleted),
            (VisibilityStep.CHECK_ACTIVE, self._check_active),
            (VisibilityStep.CHECK_OWNER, self._check_owner),
            (VisibilityStep.CHECK_BLOCKLIST, self._check_blocklist),
            (VisibilityStep.CHECK_ALLOWLIST, self._check_allowlist),
            (VisibilityStep.LOAD_RULES, self._load_rules),
            (VisibilityStep.CHECK_PUBLIC_RULE, self._check_public_rule),
            (VisibilityStep.CHECK_RULE_FILTERS, self._check_rule_filters),
            (VisibilityStep.CHECK_VIEWER_FILTERS, self._check_viewer_filters),
        ]

    async def can_view(
        self,
        viewer_user_id: str,
        viewer_attributes: dict[str, Any] | None,
        target_profile_id: str,
    ) -> VisibilityDecision:
        """Evaluate whether a viewer can see a profile.

        Args:
            viewer_user_id: Verified account ID of the viewer.
            viewer_attributes: Viewer attributes for filter matching.
            target_profile_id: Profile being viewed.

        Returns:
            VisibilityDecision: allowed flag and reason code.
        """
        attributes = viewer_attributes or {}

        if self.cache is not None:
            cached = self.cache.get(viewer_user_id, target_profile_id, attributes)
            if cached is not None:
                return cached

        evaluation = _Evaluation(
            viewer_user_id=viewer_user_id,
            viewer_attributes=attributes,
            profile_id=target_profile_id,
            now=self.clock(),
        )
        step, decision = await self._evaluate(evaluation)

        logger.debug(
            "visibility decision profile=%s viewer=%s step=%s reason=%s allowed=%s",
            target_profile_id,
            viewer_user_id,
            step.value,
            decision.reason.value,
            decision.allowed,
        )

        if self.cache is not None and decision.reason != VisibilityReason.RULES_ERROR:
            profile_expiry = parse_datetime(evaluation.profile.get("expires_at"))
            self.cache.set(
                viewer_user_id,
                target_profile_id,
                attributes,
                decision,
                not_after=profile_expiry.timestamp() if profile_expiry else None,
            )

        return decision

    async def _evaluate(self, evaluation: _Evaluation) -> tuple[VisibilityStep, VisibilityDecision]:
        for step, handler in self._steps:
            decision = await handler(evaluation)
            if decision is not None:
                return step, decision
        return VisibilityStep.COMPLETE, allow(VisibilityReason.PUBLIC)

    async def _load_profile(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        try:
            profile = await self.store.get_profile(evaluation.profile_id, include_deleted=True)
        except StoreUnavailableError:
            return deny(VisibilityReason.PROFILE_NOT_FOUND)
        if not profile:
            return deny(VisibilityReason.PROFILE_NOT_FOUND)
        evaluation.profile = profile
        return None

    async def _check_deleted(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        if evaluation.profile.get("deleted_at"):
            return deny(VisibilityReason.PROFILE_DELETED)
        return None

    async def _check_active(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        return check_active(evaluation.profile, evaluation.viewer_user_id, evaluation.now)

    async def _check_owner(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        return check_owner(evaluation.profile, evaluation.viewer_user_id)

    async def _check_blocklist(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        try:
            blocked = await self.store.get_blocklist_entry(evaluation.profile_id, evaluation.viewer_user_id)
        except StoreUnavailableError:
            return deny(VisibilityReason.RULES_ERROR)
        return check_blocklist(blocked)

    async def _check_allowlist(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        try:
            entries = await self.store.get_allowlist_entries(evaluation.profile_id)
        except StoreUnavailableError:
            return deny(VisibilityReason.RULES_ERROR)
        listed = any(entry.get("viewer_user_id") == evaluation.viewer_user_id for entry in entries)
        return check_allowlist(bool(entries), listed)

    async def _load_rules(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        try:
            evaluation.rules = await self.store.get_enabled_rules(evaluation.profile_id)
        except StoreUnavailableError:
            logger.error("Visibility rules unavailable for profile %s; denying", evaluation.profile_id)
            return deny(VisibilityReason.RULES_ERROR)
        return None

    async def _check_public_rule(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        return check_public_rule(evaluation.rules)

    async def _check_rule_filters(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        return check_rule_filters(evaluation.rules, evaluation.viewer_attributes)

    async def _check_viewer_filters(self, evaluation: _Evaluation) -> VisibilityDecision | None:
        try:
            filters = await self.store.get_viewer_filters(evaluation.profile_id)
        except StoreUnavailableError:
            logger.error("Viewer filters unavailable for profile %s; denying", evaluation.profile_id)
            return deny(VisibilityReason.RULES_ERROR)
        return check_viewer_filters(filters, evaluation.viewer_attributes)


class BatchVisibilityEvaluator:
    """Decides visibility of many profiles for one viewer without N+1 reads."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utc_now) -> None:
        """Initialize evaluator.

        Args:
            store: Record store to read profile and rule data from.
            clock: Source of the current time, used for expiry checks.
        """
        self.store = store
        self.clock = clock

    async def can_view_batch(
        self,
        viewer_user_id: str,
        viewer_attributes: dict[str, Any] | None,
        profile_ids: list[str],
    ) -> dict[str, bool]:
        """Evaluate visibility of many profiles for one viewer.

        Profiles that do not exist (or are deleted) get no entry. If any read
        fails, every requested ID maps to False.

        Args:
            viewer_user_id: Verified account ID of the viewer.
            viewer_attributes: Viewer attributes for filter matching.
            profile_ids: Profiles to check.

        Returns:
            dict[str, bool]: Profile ID to allowed flag.
        """
        results: dict[str, bool] = {}
        if not profile_ids:
            return results

        attributes = viewer_attributes or {}
        ids = list(dict.fromkeys(profile_ids))

        loaded = await asyncio.gather(
            self.store.get_profiles_by_ids(ids),
            self.store.get_blocklist_entries(ids, viewer_user_id),
            self.store.get_allowlist_entries_for_profiles(ids, viewer_user_id),
            self.store.get_allowlist_entries_for_profiles(ids),
            self.store.get_enabled_rules_for_profiles(ids),
            return_exceptions=True,
        )
        for outcome in loaded:
            if isinstance(outcome, StoreUnavailableError):
                logger.error("Batch visibility read failed (%s); denying %d profiles", outcome.operation, len(ids))
                return {profile_id: False for profile_id in ids}
            if isinstance(outcome, BaseException):
                raise outcome

        profiles, blocked_ids, viewer_allow_entries, allow_entries, rules = loaded

        allowlisted_ids = {entry["profile_id"] for entry in viewer_allow_entries}
        gated_ids = {entry["profile_id"] for entry in allow_entries}
        rules_by_profile: dict[str, list[VisibilityRuleRow]] = {}
        for rule in rules:
            rules_by_profile.setdefault(rule["profile_id"], []).append(rule)

        now = self.clock()
        for profile in profiles:
            profile_id = profile["id"]
            step, decision = self._decide(
                profile,
                viewer_user_id,
                attributes,
                now,
                blocked=profile_id in blocked_ids,
                gated=profile_id in gated_ids,
                allowlisted=profile_id in allowlisted_ids,
                rules=rules_by_profile.get(profile_id, []),
            )
            logger.debug(
                "batch visibility decision profile=%s viewer=%s step=%s reason=%s",
                profile_id,
                viewer_user_id,
                step.value,
                decision.reason.value,
            )
            results[profile_id] = decision.allowed

        return results

    @staticmethod
    def _decide(
        profile: ProfileRow,
        viewer_user_id: str,
        viewer_attributes: dict[str, Any],
        now: datetime,
        *,
        blocked: bool,
        gated: bool,
        allowlisted: bool,
        rules: list[VisibilityRuleRow],
    ) -> tuple[VisibilityStep, VisibilityDecision]:
        steps: list[tuple[VisibilityStep, Callable[[], VisibilityDecision | None]]] = [
            (VisibilityStep.CHECK_ACTIVE, lambda: check_active(profile, viewer_user_id, now)),
            (VisibilityStep.CHECK_OWNER, lambda: check_owner(profile, viewer_user_id)),
            (VisibilityStep.CHECK_BLOCKLIST, lambda: check_blocklist(blocked)),
            (VisibilityStep.CHECK_ALLOWLIST, lambda: check_allowlist(gated, allowlisted)),
            (VisibilityStep.CHECK_PUBLIC_RULE, lambda: check_public_rule(rules)),
            (VisibilityStep.CHECK_RULE_FILTERS, lambda: check_rule_filters(rules, viewer_attributes)),
        ]
        for step, check in steps:
            decision = check()
            if decision is not None:
                return step, decision
        return VisibilityStep.COMPLETE, allow(VisibilityReason.PUBLIC)
