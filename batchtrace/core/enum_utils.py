"""
Enum Utilities for VARCHAR-based Status Fields

STORAGE STANDARD:
━━━━━━━━━━━━━━━━━
• Database: VARCHAR - NOT PostgreSQL ENUM
• SQLAlchemy: String(n) with Mapped[str]
• Pydantic: Python Enum for input validation
• Case: All enum values stored in lowercase (matches the compliance exports)

USAGE PATTERNS:
━━━━━━━━━━━━━━━
1. In SQLAlchemy Models:
   status: Mapped[str] = mapped_column(String(20), default=BatchStatus.ACTIVE.value,
                                       comment=enum_comment(BatchStatus))

2. Writing from a schema:
   output_type=get_enum_value(data.output_type)

3. Comparing a stored string:
   if not is_status(batch.status, BatchStatus.ACTIVE): ...
"""

from enum import Enum
from typing import Any, Optional, Type, Set


def get_enum_value(value: Any) -> Optional[str]:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OutputType.WASTE)
        'waste'
        >>> get_enum_value("waste")
        'waste'
        >>> get_enum_value(None)
        None
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> list:
    """Get all values from an enum class."""
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for VARCHAR column.

    Examples:
        >>> enum_comment(BatchStatus)
        'active, expired, quarantined, recalled'
    """
    return ", ".join(enum_values(enum_class))


def is_status(db_value: str, enum_value: Enum) -> bool:
    """Compare a database string with an enum value."""
    if db_value is None:
        return False
    return db_value == enum_value.value


def normalize_to_lowercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to lowercase if it's a valid enum value.

    Use this in Pydantic field_validators to accept case-insensitive input.
    Invalid values are returned as-is for Pydantic to reject.

    Examples:
        >>> normalize_to_lowercase('WASTE', {'waste', 'byproduct'})
        'waste'
        >>> normalize_to_lowercase('scrap', {'waste', 'byproduct'})
        'scrap'
    """
    if value is None:
        return value
    if isinstance(value, str):
        lower_v = value.strip().lower()
        if lower_v in valid_values:
            return lower_v
    return value
