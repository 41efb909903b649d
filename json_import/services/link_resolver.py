from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..conversion.field_types import FIELD_CONFIG_BY_TYPE, convert, format_value
from ..db.store import TableStore
from ..models.column import Column, LinkRef, Table
from .progress import ProgressCounter

"""Link resolution pre-pass.

Before the main batch write, every link-column value is rewritten from
``LinkRef(name=...)`` placeholders to ``LinkRef(id=...)`` references:

1. Collect the distinct referenced names per linked table (``LinkedRecordPlan``).
2. Per linked table, load its rows and map primary display value -> row id.
   Names already present count as touched.
3. Create one linked row per missing name via ``store.create_row`` (one at a
   time, so progress can be reported every ``batch_size`` creations).
   When the linked primary column is computed, or the linked table is gone, no
   rows can be created: those names count as touched and stay unresolved.
4. Rewrite the rows in place: refs that already carry an id pass through,
   unresolved names are dropped, and each cell is deduplicated by id.
"""

logger = logging.getLogger(__name__)

__all__ = [
    "LinkResolution",
    "LinkResolutionError",
    "LinkedRecordPlan",
    "build_linked_record_plan",
    "resolve_linked_records",
]


class LinkResolutionError(Exception):
    """Raised when a link column cannot be resolved at all (schema problem)."""


@dataclass(frozen=True)
class LinkedRecordPlan:
    names_by_table_id: dict[str, list[str]]  # 参照名 (重複なし, 出現順)
    link_column_table_ids: dict[str, str]  # link 列 id -> 参照先 table id

    @property
    def total_names(self) -> int:
        return sum(len(names) for names in self.names_by_table_id.values())


@dataclass
class LinkResolution:
    created_count: int = 0
    unresolved: dict[str, list[str]] = field(default_factory=dict)

    @property
    def unresolved_count(self) -> int:
        return sum(len(v) for v in self.unresolved.values())


def build_linked_record_plan(table: Table, rows: Sequence[dict[str, Any]]) -> LinkedRecordPlan:
    link_column_table_ids: dict[str, str] = {}
    for column in table.link_columns:
        if not column.linked_table_id:
            raise LinkResolutionError(f"link column '{column.id}' has no linked table")
        link_column_table_ids[column.id] = column.linked_table_id

    names_by_table_id: dict[str, list[str]] = {}
    seen: dict[str, set[str]] = {}
    for row in rows:
        for column_id, table_id in link_column_table_ids.items():
            value = row.get(column_id)
            if not value:
                continue
            bucket = names_by_table_id.setdefault(table_id, [])
            bucket_seen = seen.setdefault(table_id, set())
            for ref in value:
                if ref.id is not None or not ref.name:
                    continue
                if ref.name not in bucket_seen:
                    bucket_seen.add(ref.name)
                    bucket.append(ref.name)
    names_by_table_id = {k: v for k, v in names_by_table_id.items() if v}
    return LinkedRecordPlan(names_by_table_id=names_by_table_id, link_column_table_ids=link_column_table_ids)


def _display_value(value: Any, primary: Column) -> str:
    if primary.type in FIELD_CONFIG_BY_TYPE:
        return format_value(value, primary)
    # formula / auto number は表示文字列そのもので照合
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _check_primary(linked_table: Table) -> Column:
    primary = linked_table.primary_column
    if primary.is_computed:
        return primary
    if primary.type not in FIELD_CONFIG_BY_TYPE or primary.is_link:
        raise LinkResolutionError(
            f"linked table '{linked_table.id}' primary column '{primary.id}' "
            f"has unsupported type {primary.type.value}"
        )
    return primary


def _resolve_table_names(
    store: TableStore,
    linked_table: Table,
    names: list[str],
    progress: ProgressCounter,
    batch_size: int,
    resolution: LinkResolution,
) -> dict[str, Any]:
    primary = _check_primary(linked_table)
    id_by_name: dict[str, Any] = {}
    for existing in store.load_existing_rows(linked_table):
        value = existing.get(primary.id)
        if value is None:
            continue
        id_by_name.setdefault(_display_value(value, primary), existing.id)

    missing = [n for n in names if n not in id_by_name]
    progress.advance(len(names) - len(missing))

    if primary.is_computed:
        # 計算列の primary には新規行を作れない: 未解決として数える
        logger.debug(
            "linked primary is computed, dropping names: table=%s count=%s", linked_table.id, len(missing)
        )
        progress.advance(len(missing))
        if missing:
            resolution.unresolved.setdefault(linked_table.id, []).extend(missing)
        progress.report()
        return id_by_name

    created_here = 0
    for name in missing:
        typed = convert(name, primary)
        if typed is None:
            resolution.unresolved.setdefault(linked_table.id, []).append(name)
        else:
            id_by_name[name] = store.create_row(linked_table, {primary.id: typed})
            created_here += 1
            resolution.created_count += 1
        progress.advance()
        if created_here and created_here % batch_size == 0:
            progress.report()
    # バッチ途中で終わった分もここで通知
    progress.report()
    logger.debug(
        "linked rows resolved: table=%s existing=%s created=%s",
        linked_table.id,
        len(names) - len(missing),
        created_here,
    )
    return id_by_name


def _rewrite_cell(value: list[LinkRef], id_by_name: dict[str, Any]) -> list[LinkRef]:
    out: list[LinkRef] = []
    seen_ids: set[Any] = set()
    for ref in value:
        if ref.id is None:
            row_id = id_by_name.get(ref.name)
            if row_id is None:
                continue
            ref = LinkRef(id=row_id, name=ref.name)
        if ref.id in seen_ids:
            continue
        seen_ids.add(ref.id)
        out.append(ref)
    return out


def resolve_linked_records(
    store: TableStore,
    table: Table,
    rows: Sequence[dict[str, Any]],
    progress: ProgressCounter,
    *,
    plan: LinkedRecordPlan | None = None,
    batch_size: int = 50,
) -> LinkResolution:
    """Resolve link names in ``rows`` (mutated in place) against the linked tables."""
    plan = plan or build_linked_record_plan(table, rows)
    resolution = LinkResolution()
    id_by_name_by_table_id: dict[str, dict[str, Any]] = {}

    for table_id, names in plan.names_by_table_id.items():
        linked_table = store.get_table(table_id)
        if linked_table is None:
            logger.warning("linked table not found, dropping %s name(s): table=%s", len(names), table_id)
            progress.advance(len(names))
            progress.report()
            resolution.unresolved.setdefault(table_id, []).extend(names)
            id_by_name_by_table_id[table_id] = {}
            continue
        id_by_name_by_table_id[table_id] = _resolve_table_names(
            store, linked_table, names, progress, batch_size, resolution
        )

    for row in rows:
        for column_id, table_id in plan.link_column_table_ids.items():
            value = row.get(column_id)
            if not value:
                continue
            row[column_id] = _rewrite_cell(value, id_by_name_by_table_id.get(table_id, {}))
    return resolution
