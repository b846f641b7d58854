"""In-memory TTL cache for single-profile visibility decisions."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from hashlib import sha256
from threading import Lock
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from src.schemas.persona import VisibilityDecision

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    """A cached decision with expiration."""

    profile_id: str
    value: VisibilityDecision
    expires_at: float

    def is_expired(self) -> bool:
        """Check if this entry has expired."""
        return time.time() >= self.expires_at


@dataclass
class VisibilityCacheConfig:
    """Configuration for visibility decision caching."""

    max_size: int = 5000
    ttl_seconds: int = 60
    cleanup_interval_seconds: int = 300

    @classmethod
    def from_settings(cls) -> "VisibilityCacheConfig":
        """Create config from application settings."""
        from src.core.config import get_settings
        settings = get_settings()
        return cls(
            max_size=settings.visibility_cache_size,
            ttl_seconds=settings.visibility_cache_ttl,
        )


class VisibilityCache:
    """Thread-safe in-memory cache of visibility decisions with TTL.

    Injected into VisibilityPolicyEvaluator; the evaluator itself keeps no
    state between calls.
    """

    def __init__(self, config: VisibilityCacheConfig | None = None) -> None:
        """Initialize the visibility cache.

        Args:
            config: Optional cache configuration.
        """
        self.config = config or VisibilityCacheConfig()
        self._cache: dict[str, CacheEntry] = {}
        self._lock = Lock()
        self._cleanup_task: asyncio.Task | None = None

    async def start_cleanup_task(self) -> None:
        """Start background cleanup task."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("Visibility cache cleanup task started")

    async def stop_cleanup_task(self) -> None:
        """Stop background cleanup task."""
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
            logger.info("Visibility cache cleanup task stopped")

    async def _cleanup_loop(self) -> None:
        """Background loop to cleanup expired entries."""
        while True:
            await asyncio.sleep(self.config.cleanup_interval_seconds)
            count = self.cleanup()
            if count > 0:
                logger.debug("Visibility cache cleaned up %d expired entries", count)

    @staticmethod
    def _generate_key(viewer_user_id: str, profile_id: str, viewer_attributes: dict[str, Any]) -> str:
        """Generate a deterministic key from the decision inputs."""
        payload = json.dumps(
            {"viewer": viewer_user_id, "profile": profile_id, "attributes": viewer_attributes},
            sort_keys=True,
            default=str,
        )
        return sha256(payload.encode()).hexdigest()[:32]

    def get(
        self, viewer_user_id: str, profile_id: str, viewer_attributes: dict[str, Any]
    ) -> VisibilityDecision | None:
        """Get a cached decision if available and not expired."""
        key = self._generate_key(viewer_user_id, profile_id, viewer_attributes)

        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None

            if entry.is_expired():
                del self._cache[key]
                return None

            logger.debug("Visibility cache hit for profile %s", profile_id)
            return entry.value

    def set(
        self,
        viewer_user_id: str,
        profile_id: str,
        viewer_attributes: dict[str, Any],
        decision: VisibilityDecision,
        not_after: float | None = None,
    ) -> None:
        """Cache a decision with TTL.

        Args:
            viewer_user_id: Viewer the decision was made for.
            profile_id: Profile the decision is about.
            viewer_attributes: Attributes the decision was evaluated with.
            decision: The decision to cache.
            not_after: Epoch seconds after which the decision may no longer
                hold (the profile's expiry). Caps the TTL.
        """
        key = self._generate_key(viewer_user_id, profile_id, viewer_attributes)
        expires_at = time.time() + self.config.ttl_seconds
        if not_after is not None:
            expires_at = min(expires_at, not_after)

        with self._lock:
            if len(self._cache) >= self.config.max_size:
                self._evict_oldest()

            self._cache[key] = CacheEntry(profile_id=profile_id, value=decision, expires_at=expires_at)

    def invalidate_profile(self, profile_id: str) -> int:
        """Drop every cached decision about a profile.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            keys = [k for k, v in self._cache.items() if v.profile_id == profile_id]
            for key in keys:
                del self._cache[key]
            return len(keys)

    def _evict_oldest(self) -> None:
        """Evict oldest entries to make room. Must be called with lock held."""
        expired_keys = [k for k, v in self._cache.items() if v.is_expired()]
        for key in expired_keys:
            del self._cache[key]

        if len(self._cache) >= self.config.max_size:
            sorted_entries = sorted(self._cache.items(), key=lambda x: x[1].expires_at)
            to_remove = max(1, len(self._cache) // 10)
            for key, _ in sorted_entries[:to_remove]:
                del self._cache[key]
            logger.debug("Evicted %d entries from visibility cache", to_remove)

    def cleanup(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            expired_keys = [k for k, v in self._cache.items() if v.is_expired()]
            for key in expired_keys:
                del self._cache[key]
            return len(expired_keys)

    def clear(self) -> int:
        """Clear all cached entries.

        Returns:
            Number of entries cleared.
        """
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)


_visibility_cache: VisibilityCache | None = None


def get_visibility_cache() -> VisibilityCache:
    """Get or create the application's visibility cache instance."""
    global _visibility_cache
    if _visibility_cache is None:
        _visibility_cache = VisibilityCache(VisibilityCacheConfig.from_settings())
    return _visibility_cache


async def init_visibility_cache() -> VisibilityCache:
    """Initialize visibility cache with cleanup task. Call at app startup."""
    cache = get_visibility_cache()
    await cache.start_cleanup_task()
    return cache


async def shutdown_visibility_cache() -> None:
    """Shutdown visibility cache cleanup task. Call at app shutdown."""
    if _visibility_cache:
        await _visibility_cache.stop_cleanup_task()
