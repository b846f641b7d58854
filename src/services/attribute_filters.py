"""Viewer attribute filter evaluation.

Two independent filter shapes decide whether a viewer matches a profile's
audience:

- ``ConfigFilter``: the ``rule_config`` object of a FILTER_VIEWER_ATTRIBUTES
  visibility rule (radius around a center, sexual preferences, age range,
  tribes).
- ``NormalizedFilter``: one row of the ``profile_viewer_filters`` table, a
  single ``attribute operator value`` condition.

They come from different tables and have different semantics, so each has its
own evaluator. ``evaluate_filter`` dispatches on the union.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Union

from src.models.persona import FilterOperator, ViewerFilterRow
from src.services.geo import haversine_distance


@dataclass(frozen=True)
class ConfigFilter:
    """Config-shaped filter taken from a visibility rule."""

    config: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NormalizedFilter:
    """Single-condition filter taken from the viewer filters table."""

    attribute: str
    operator: str
    value: Any = None

    @classmethod
    def from_row(cls, row: ViewerFilterRow) -> NormalizedFilter:
        """Build a filter from a profile_viewer_filters row."""
        return cls(
            attribute=row.get("attribute", ""),
            operator=row.get("operator", ""),
            value=row.get("value_json"),
        )


Filter = Union[ConfigFilter, NormalizedFilter]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    return value if isinstance(value, list) else [value]


def _strict_equals(left: Any, right: Any) -> bool:
    # bool is an int subclass; True must not equal 1
    if isinstance(left, bool) != isinstance(right, bool):
        return False
    return left == right


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_attribute_filters(config: dict[str, Any] | None, viewer_attributes: dict[str, Any]) -> bool:
    """Evaluate a rule_config filter object against viewer attributes.

    Every configured filter must pass. Filters whose inputs are missing on
    the viewer side (no location, unknown age) are skipped.

    Args:
        config: The rule_config of a FILTER_VIEWER_ATTRIBUTES rule.
        viewer_attributes: Attributes of the viewer (lat, lng, age, ...).

    Returns:
        True if the viewer passes all configured filters.
    """
    if not config or not isinstance(config, dict):
        return True

    # Location radius, skipped when any coordinate is missing or non-numeric
    radius_km = _to_number(config.get("location_radius_km"))
    viewer_lat = _to_number(viewer_attributes.get("lat"))
    viewer_lng = _to_number(viewer_attributes.get("lng"))
    if radius_km and viewer_lat and viewer_lng:
        location = config.get("location")
        if not isinstance(location, dict):
            location = {}
        center_lat = _to_number(config.get("center_lat") or location.get("lat"))
        center_lng = _to_number(config.get("center_lng") or location.get("lng"))
        if center_lat and center_lng:
            distance = haversine_distance(viewer_lat, viewer_lng, center_lat, center_lng)
            if distance > radius_km * 1000:
                return False

    # Sexual preferences: any overlap passes
    wanted_preferences = config.get("sexual_preferences")
    if isinstance(wanted_preferences, list):
        viewer_preferences = viewer_attributes.get("sexual_preferences")
        if viewer_preferences is None:
            viewer_preferences = viewer_attributes.get("looking_for")
        viewer_preferences = _as_list(viewer_preferences)
        if not any(pref in viewer_preferences for pref in wanted_preferences):
            return False

    # Age range (inclusive), skipped when the viewer's age is unknown
    age_min = _to_number(config.get("age_min"))
    age_max = _to_number(config.get("age_max"))
    if age_min or age_max:
        viewer_age = _to_number(viewer_attributes.get("age"))
        if viewer_age is not None:
            if age_min and viewer_age < age_min:
                return False
            if age_max and viewer_age > age_max:
                return False

    # Tribes: any overlap passes
    wanted_tribes = config.get("tribes")
    if isinstance(wanted_tribes, list):
        viewer_tribes = _as_list(viewer_attributes.get("tribes"))
        if not any(tribe in viewer_tribes for tribe in wanted_tribes):
            return False

    return True


def evaluate_single_filter(condition: NormalizedFilter, viewer_attributes: dict[str, Any]) -> bool:
    """Evaluate one normalized viewer filter.

    Args:
        condition: The attribute/operator/value condition.
        viewer_attributes: Attributes of the viewer.

    Returns:
        True if the viewer matches the condition. Unknown operators and
        radius checks without coordinates pass.
    """
    value = condition.value
    viewer_value = viewer_attributes.get(condition.attribute)
    operator = condition.operator

    if operator == FilterOperator.EQ:
        return _strict_equals(viewer_value, value)

    if operator == FilterOperator.NE:
        return not _strict_equals(viewer_value, value)

    if operator == FilterOperator.IN:
        if isinstance(value, list):
            return any(_strict_equals(viewer_value, item) for item in value)
        return False

    if operator == FilterOperator.NOT_IN:
        if isinstance(value, list):
            return not any(_strict_equals(viewer_value, item) for item in value)
        return True

    if operator in (FilterOperator.GTE, FilterOperator.LTE):
        left = _to_number(viewer_value)
        right = _to_number(value)
        if left is None or right is None:
            return False
        return left >= right if operator == FilterOperator.GTE else left <= right

    if operator == FilterOperator.RADIUS_KM:
        if not isinstance(value, dict):
            return True
        viewer_lat = _to_number(viewer_attributes.get("lat"))
        viewer_lng = _to_number(viewer_attributes.get("lng"))
        center_lat = _to_number(value.get("lat"))
        center_lng = _to_number(value.get("lng"))
        radius = _to_number(value.get("radius"))
        if viewer_lat and viewer_lng and center_lat and center_lng and radius:
            distance = haversine_distance(viewer_lat, viewer_lng, center_lat, center_lng)
            return distance <= radius * 1000
        return True

    return True


def evaluate_filter(condition: Filter, viewer_attributes: dict[str, Any]) -> bool:
    """Evaluate either filter shape against viewer attributes."""
    if isinstance(condition, ConfigFilter):
        return evaluate_attribute_filters(condition.config, viewer_attributes)
    return evaluate_single_filter(condition, viewer_attributes)
