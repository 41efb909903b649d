from __future__ import annotations

from typing import Any, Callable, Sequence

from ..models.column import LinkRef
from ..models.row_data import ExistingRow

"""Merge key matching and the value normalization shared with the diff engine."""

__all__ = [
    "create_matcher",
    "normalize_for_comparison",
]


def normalize_for_comparison(value: Any) -> Any:
    """Normalize a stored or incoming value before equality checks.

    Strings are trimmed with CRLF folded to LF (the store keeps LF only).
    Sequences compare as unordered sets. Everything else is returned as is.
    """
    if isinstance(value, str):
        return value.strip().replace("\r\n", "\n")
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(_normalize_member(v) for v in value)
    return value


def _normalize_member(value: Any) -> Any:
    if isinstance(value, LinkRef):
        # link は名前で比較 (未解決の場合 id は無い)
        return normalize_for_comparison(value.name) if value.name is not None else ("id", value.id)
    if isinstance(value, str):
        return normalize_for_comparison(value)
    return value


def create_matcher(key_column_ids: Sequence[str]) -> Callable[[dict[str, Any], ExistingRow], bool]:
    keys = tuple(key_column_ids)

    def matches(projected: dict[str, Any], candidate: ExistingRow) -> bool:
        for column_id in keys:
            candidate_value = candidate.get(column_id)
            incoming_value = projected.get(column_id)
            # null キーは決して一致しない
            if candidate_value is None or incoming_value is None:
                return False
            if normalize_for_comparison(candidate_value) != normalize_for_comparison(incoming_value):
                return False
        return True

    return matches
