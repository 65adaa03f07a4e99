"""quarry_import.changes

Change detection for rows that matched an existing record.

Comparisons are loose: both sides are reduced to strings and
compared with plain inequality.  A stored number 5 against an incoming
"5.0" therefore reports a change.

Order of the returned changes: core fields, taxonomies, custom fields,
meta fields, featured media.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterator

from quarry_import.codec import (
    EMPTY_PLACEHOLDER,
    MEDIA_TYPES,
    FieldCodec,
    display_value,
    encode_terms,
    normalize_terms,
)
from quarry_import.columns import ColumnSet, MediaColumn
from quarry_import.normalize import is_identity, trim
from quarry_import.store import ContentRecord, RecordStore


# ---------------------------------------------------------------------------
# ChangeSet
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FieldChange:
    field: str
    label: str
    old: str
    new: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "label": self.label, "old": self.old, "new": self.new}


@dataclass
class ChangeSet:
    changes: list[FieldChange] = field(default_factory=list)

    def add(self, field_name: str, label: str, old: str, new: str) -> None:
        self.changes.append(FieldChange(field_name, label, old, new))

    def fields(self) -> list[str]:
        return [c.field for c in self.changes]

    def __bool__(self) -> bool:
        return bool(self.changes)

    def __len__(self) -> int:
        return len(self.changes)

    def __iter__(self) -> Iterator[FieldChange]:
        return iter(self.changes)

    def to_list(self) -> list[dict[str, str]]:
        return [c.to_dict() for c in self.changes]


def _or_placeholder(value: str) -> str:
    return value if value else EMPTY_PLACEHOLDER


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

def detect_changes(
    store: RecordStore,
    record: ContentRecord,
    core_fields: dict[str, Any],
    row: dict[str, str],
    columns: ColumnSet,
    codec: FieldCodec,
    checked_fields: tuple[str, ...],
) -> ChangeSet:
    """Compare prepared row values against the stored record.

    core_fields holds only the core values present in the row; absent
    columns and empty cells are never compared (except taxonomies, where an
    empty cell means "clear").
    """
    changes = ChangeSet()
    _compare_core(changes, record, core_fields, checked_fields, columns)
    _compare_taxonomies(changes, store, record.id, row, columns)
    _compare_custom_fields(changes, store, record.id, row, columns, codec)
    _compare_meta(changes, store, record.id, row, columns)
    if columns.media is not None:
        _compare_media(changes, store, record.id, row, columns.media)
    return changes


def _compare_core(
    changes: ChangeSet,
    record: ContentRecord,
    core_fields: dict[str, Any],
    checked_fields: tuple[str, ...],
    columns: ColumnSet,
) -> None:
    labels = {c.field: c.label for c in columns.core}
    for name in checked_fields:
        if name not in core_fields:
            continue
        current = _as_str(record.core_value(name))
        incoming = _as_str(core_fields[name])
        if current != incoming:
            changes.add(name, labels.get(name, name), _or_placeholder(current), _or_placeholder(incoming))


def _compare_taxonomies(
    changes: ChangeSet,
    store: RecordStore,
    identity: int,
    row: dict[str, str],
    columns: ColumnSet,
) -> None:
    for col in columns.taxonomies:
        if not store.taxonomy_exists(col.taxonomy):
            continue
        current = encode_terms(store.get_taxonomy_terms(identity, col.taxonomy))
        incoming = normalize_terms(row.get(col.header))
        if current != incoming:
            changes.add(col.header, col.label, _or_placeholder(current), _or_placeholder(incoming))


def _compare_custom_fields(
    changes: ChangeSet,
    store: RecordStore,
    identity: int,
    row: dict[str, str],
    columns: ColumnSet,
    codec: FieldCodec,
) -> None:
    for col in columns.custom_fields:
        cell = trim(row.get(col.header))
        if cell is None:
            continue
        field_type = store.get_field_type(col.name)
        current = store.get_custom_field(identity, col.name)
        if field_type in MEDIA_TYPES and is_identity(cell):
            same = _as_str(current) == str(int(cell))
        else:
            same = codec.encode(current, field_type) == cell
        if not same:
            changes.add(col.header, col.label, _or_placeholder(display_value(current)), cell)


def _compare_meta(
    changes: ChangeSet,
    store: RecordStore,
    identity: int,
    row: dict[str, str],
    columns: ColumnSet,
) -> None:
    for col in columns.meta:
        cell = trim(row.get(col.header))
        if cell is None:
            continue
        current = _as_str(store.get_meta(identity, col.key))
        if current != cell:
            changes.add(col.header, col.label, _or_placeholder(current), cell)


def _compare_media(
    changes: ChangeSet,
    store: RecordStore,
    identity: int,
    row: dict[str, str],
    col: MediaColumn,
) -> None:
    cell = trim(row.get(col.header))
    if cell is None:
        return
    current_id = store.get_media(identity)
    current_url = (store.media_url(current_id) if current_id else None) or ""
    if is_identity(cell):
        changed = (current_id or 0) != int(cell)
        old = str(current_id) if current_id else ""
    else:
        changed = current_url != cell
        old = current_url
    if changed:
        changes.add(col.header, col.label, _or_placeholder(old), cell)
