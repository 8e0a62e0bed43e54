"""
Enum Utilities for VARCHAR-based Status Fields

Statuses are stored as lowercase VARCHAR, not database enums. Services
compare and assign plain strings; Python enums are used for validation
at the API edge and as the single source of the allowed values.

USAGE PATTERNS:
    item.status = RunItemStatus.PICKED.value
    if get_enum_value(data.status) == ReturnStatus.PROCESSED.value: ...
"""

from enum import Enum
from typing import Any, Optional, Set, Type


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Returns None for None input.
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> Set[str]:
    """All string values of an enum class."""
    return {member.value for member in enum_class}


def normalize_to_lowercase(value: Any, enum_class: Optional[Type[Enum]] = None) -> Optional[str]:
    """
    Normalize a status-like value to its stored lowercase form.

    Raises:
        ValueError: if enum_class is given and the value is not one of its members
    """
    raw = get_enum_value(value)
    if raw is None:
        return None
    normalized = raw.strip().lower()
    if enum_class is not None and normalized not in enum_values(enum_class):
        raise ValueError(
            f"Invalid value '{raw}'. Must be one of: {', '.join(sorted(enum_values(enum_class)))}"
        )
    return normalized
