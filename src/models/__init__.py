"""Database model type definitions."""

from src.models.persona import (
    SYSTEM_PROFILE_TYPES,
    BaseRecord,
    FilterOperator,
    InheritMode,
    ListEntryRow,
    PhotosMode,
    ProfileKind,
    ProfileOverridesRow,
    ProfileRow,
    RuleType,
    ViewerFilterRow,
    VisibilityRuleRow,
)

__all__ = [
    "SYSTEM_PROFILE_TYPES",
    "BaseRecord",
    "FilterOperator",
    "InheritMode",
    "ListEntryRow",
    "PhotosMode",
    "ProfileKind",
    "ProfileOverridesRow",
    "ProfileRow",
    "RuleType",
    "ViewerFilterRow",
    "VisibilityRuleRow",
]
