"""Raw value -> typed column value conversion and importability checks."""

from .compatibility import is_supported, linked_primary_types_by_table_id
from .field_types import LinkValueError, convert, format_value

__all__ = [
    "LinkValueError",
    "convert",
    "format_value",
    "is_supported",
    "linked_primary_types_by_table_id",
]
