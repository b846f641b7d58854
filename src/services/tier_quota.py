"""Secondary profile quotas per subscription tier."""

MAX_SECONDARY_PROFILES: dict[str, int] = {
    "basic": 5,
    "premium": 10,
    "enterprise": 20,
}

DEFAULT_TIER = "basic"


def get_max_secondary_profiles_for_tier(tier: str | None) -> int:
    """Get the maximum number of secondary profiles for a tier.

    Lookup is case-insensitive; unknown or missing tiers get the basic limit.

    Args:
        tier: The account's subscription tier.

    Returns:
        int: Maximum number of non-deleted secondary profiles.
    """
    normalized = str(tier or DEFAULT_TIER).strip().lower()
    return MAX_SECONDARY_PROFILES.get(normalized, MAX_SECONDARY_PROFILES[DEFAULT_TIER])
