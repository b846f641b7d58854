"""Validation of profile mutation payloads."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from src.models.persona import InheritMode, ProfileKind
from src.schemas.persona import ValidationResult

TYPE_LABEL_MAX_LENGTH = 50


def parse_datetime(value: Any) -> datetime | None:
    """Parse a timestamp from the store or a request payload.

    Accepts datetimes, ISO-8601 strings (a trailing ``Z`` is allowed) and
    epoch milliseconds. Naive values are treated as UTC.

    Args:
        value: The raw timestamp.

    Returns:
        datetime | None: Timezone-aware datetime, or None if unparseable.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def validate_profile_data(data: dict[str, Any], is_create: bool = False) -> ValidationResult:
    """Validate a profile create/update payload.

    Never raises; every violation found is reported.

    Args:
        data: Raw profile fields from the request.
        is_create: Whether the payload creates a new profile.

    Returns:
        ValidationResult: ``valid`` plus the list of error messages.
    """
    errors: list[str] = []

    if is_create and data.get("kind") == ProfileKind.SECONDARY.value and not data.get("type_key"):
        errors.append("type_key is required for secondary profiles")

    type_label = data.get("type_label")
    if type_label and len(str(type_label)) > TYPE_LABEL_MAX_LENGTH:
        errors.append(f"type_label must be {TYPE_LABEL_MAX_LENGTH} characters or less")

    expires_at = data.get("expires_at")
    if expires_at:
        expiry = parse_datetime(expires_at)
        if expiry is None:
            errors.append("expires_at must be a valid date")
        elif expiry <= datetime.now(timezone.utc):
            errors.append("expires_at must be in the future")

    inherit_mode = data.get("inherit_mode")
    valid_modes = [mode.value for mode in InheritMode]
    if inherit_mode and inherit_mode not in valid_modes:
        errors.append(f"inherit_mode must be one of: {', '.join(valid_modes)}")

    if data.get("override_location_enabled"):
        if data.get("override_location_lat") is None:
            errors.append("override_location_lat is required when override_location_enabled is true")
        if data.get("override_location_lng") is None:
            errors.append("override_location_lng is required when override_location_enabled is true")

    return ValidationResult(valid=not errors, errors=errors)
