"""quarry_import.row_importer

Validate, diff and apply one CSV row.

Per row:
  1. Require post_title or ID.
  2. Resolve identity: ID given + update_existing + record exists → update
     candidate; anything else → create candidate.
  3. Prepare core fields (type resolution, defaults on create only).
  4. Update candidates: detect changes BEFORE writing; no changes → skipped.
  5. Write core fields, then featured media, taxonomies, custom fields, meta.
     An update whose changes all fail to resolve (unknown media, undecodable
     custom field) writes nothing and is reported as skipped.

Validation and store failures come back as a failed RowResult; nothing
but unexpected exceptions escape import_row().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from quarry_import.changes import ChangeSet, detect_changes
from quarry_import.codec import FieldCodec, decode_terms
from quarry_import.columns import ID_COLUMN, ColumnSet
from quarry_import.config import ImportOptions
from quarry_import.media import MediaResolver
from quarry_import.normalize import (
    DATETIME_FORMAT,
    is_identity,
    parse_datetime,
    parse_int,
    slug_name,
    trim,
)
from quarry_import.store import ContentRecord, RecordStore, StoreError

log = logging.getLogger(__name__)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"

# Core fields copied verbatim (not trimmed) when the cell is non-blank.
_VERBATIM_FIELDS = ("post_title", "post_content", "post_excerpt")


def _as_str(value: Any) -> str:
    return "" if value is None else str(value)


# ---------------------------------------------------------------------------
# Exceptions / results
# ---------------------------------------------------------------------------

class RowError(Exception):
    """Raised when a row cannot be imported."""


@dataclass
class RowPlan:
    action: str
    record: ContentRecord | None
    core_fields: dict[str, Any]
    changes: ChangeSet | None = None


@dataclass
class RowResult:
    action: str
    identity: int | None = None
    message: str | None = None
    changes: ChangeSet | None = None
    # Headers whose new value could not be resolved and was left as stored.
    unapplied: list[str] = field(default_factory=list)

    @property
    def failed(self) -> bool:
        return self.action == FAILED

    @classmethod
    def failure(cls, message: str) -> "RowResult":
        return cls(action=FAILED, message=message)


# ---------------------------------------------------------------------------
# RowImporter
# ---------------------------------------------------------------------------

class RowImporter:
    """Import rows of one CSV (one classified header row) into a store."""

    def __init__(
        self,
        store: RecordStore,
        columns: ColumnSet,
        options: ImportOptions,
        media_resolver: MediaResolver | None = None,
    ) -> None:
        self.store = store
        self.columns = columns
        self.options = options
        self.media = media_resolver or MediaResolver(store)
        self.codec = FieldCodec(media_resolver=self.media, media_url=store.media_url)

    # -- public -------------------------------------------------------------

    def import_row(self, row: dict[str, str], row_num: int | None = None) -> RowResult:
        """Import one row.  The row's writes share one store row_scope."""
        label = f"row_{row_num}" if row_num is not None else "row"
        try:
            with self.store.row_scope(label):
                plan = self.plan(row)
                if plan.action == SKIPPED:
                    return RowResult(SKIPPED, plan.record.id, changes=plan.changes)  # type: ignore[union-attr]
                identity, wrote, unapplied = self._apply(row, plan)
        except RowError as exc:
            return RowResult.failure(str(exc))
        except StoreError as exc:
            return RowResult.failure(str(exc))
        if plan.action == UPDATED and not wrote:
            return RowResult(
                SKIPPED, identity,
                message=f"Changes not applied: {', '.join(unapplied)}",
                changes=plan.changes, unapplied=unapplied,
            )
        return RowResult(plan.action, identity, changes=plan.changes, unapplied=unapplied)

    def plan(self, row: dict[str, str]) -> RowPlan:
        """Decide created/updated/skipped without writing anything.

        Raises RowError for rows that cannot be imported.
        """
        raw_id = trim(row.get(ID_COLUMN))
        title = trim(row.get("post_title"))
        if title is None and raw_id is None:
            raise RowError("Row missing required post_title or ID")

        record = None
        if raw_id is not None and self.options.update_existing and is_identity(raw_id):
            record = self.store.resolve(int(raw_id))

        core_fields = self.prepare_core_fields(row, for_update=record is not None)

        if record is None:
            return RowPlan(CREATED, None, core_fields)

        changes = detect_changes(
            self.store, record, core_fields, row, self.columns, self.codec,
            self.options.checked_fields,
        )
        return RowPlan(UPDATED if changes else SKIPPED, record, core_fields, changes)

    def prepare_core_fields(self, row: dict[str, str], for_update: bool) -> dict[str, Any]:
        """Build the core field set from a row.

        Defaults (title, status, author) are applied to new records only; an
        update writes just the cells present in the row.
        """
        fields: dict[str, Any] = {"post_type": self._resolve_post_type(row)}

        for name in _VERBATIM_FIELDS:
            raw = row.get(name)
            if trim(raw) is not None:
                fields[name] = raw
        if "post_title" not in fields and not for_update:
            fields["post_title"] = "Untitled"

        status = trim(row.get("post_status"))
        if status is not None:
            fields["post_status"] = status.lower()
        elif not for_update:
            fields["post_status"] = self.options.default_post_status

        slug = slug_name(row.get("post_name"))
        if slug is not None:
            fields["post_name"] = slug

        for name in ("post_parent", "menu_order"):
            value = parse_int(row.get(name))
            if value is not None:
                fields[name] = value

        posted = parse_datetime(row.get("post_date"))
        if posted is not None:
            fields["post_date"] = posted.strftime(DATETIME_FORMAT)

        author = self._resolve_author(row.get("post_author"))
        if author is not None:
            fields["post_author"] = author
        elif not for_update and self.options.default_post_author is not None:
            fields["post_author"] = self.options.default_post_author

        return fields

    # -- helpers ------------------------------------------------------------

    def _resolve_post_type(self, row: dict[str, str]) -> str:
        post_type = trim(self.options.default_post_type) or trim(row.get("post_type"))
        if post_type is None:
            raise RowError(
                "Post type is required. Either include a post_type column in "
                "your CSV or select a default post type."
            )
        if not self.store.type_exists(post_type):
            raise RowError(f"Post type does not exist: {post_type}")
        return post_type

    def _resolve_author(self, value: str | None) -> int | None:
        v = trim(value)
        if v is None:
            return None
        user_id = self.store.find_user(v)
        if user_id is None:
            log.warning("author %r not found; using default author", v)
        return user_id

    def _apply(self, row: dict[str, str], plan: RowPlan) -> tuple[int, bool, list[str]]:
        """Write the plan; returns (identity, anything written, unapplied headers)."""
        applied: list[str] = []
        unapplied: list[str] = []
        if plan.record is not None:
            identity = plan.record.id
            changed = set(plan.changes.fields()) if plan.changes else set()
            core = {
                k: v for k, v in plan.core_fields.items()
                if k in changed or _as_str(plan.record.core_value(k)) != _as_str(v)
            }
            if core:
                self.store.update(identity, core)
                applied.append("core")
        else:
            identity = self.store.create(plan.core_fields)
            changed = None

        def wanted(header: str) -> bool:
            return changed is None or header in changed

        self._apply_media(identity, row, wanted, applied, unapplied)
        self._apply_taxonomies(identity, row, wanted, applied)
        self._apply_custom_fields(identity, row, wanted, applied, unapplied)
        self._apply_meta(identity, row, wanted, applied)
        if unapplied:
            log.warning("record %s: %s not applied", identity, ", ".join(unapplied))
        return identity, bool(applied), unapplied

    def _apply_media(self, identity: int, row: dict[str, str], wanted, applied, unapplied) -> None:
        col = self.columns.media
        if col is None or not wanted(col.header):
            return
        cell = trim(row.get(col.header))
        if cell is None:
            return
        media_id = self.media.resolve(cell, parent_id=identity)
        if media_id is None:
            unapplied.append(col.header)
            return
        self.store.set_media(identity, media_id)
        applied.append(col.header)

    def _apply_taxonomies(self, identity: int, row: dict[str, str], wanted, applied) -> None:
        for col in self.columns.taxonomies:
            if not wanted(col.header):
                continue
            if not self.store.taxonomy_exists(col.taxonomy):
                log.warning("taxonomy %r does not exist; column %s ignored", col.taxonomy, col.header)
                continue
            result = decode_terms(row.get(col.header))
            self.store.set_taxonomy_terms(
                identity, col.taxonomy, result.value, self.options.create_taxonomies,
            )
            applied.append(col.header)

    def _apply_custom_fields(
        self, identity: int, row: dict[str, str], wanted, applied, unapplied,
    ) -> None:
        for col in self.columns.custom_fields:
            if not wanted(col.header):
                continue
            field_type = self.store.get_field_type(col.name)
            result = self.codec.decode(row.get(col.header), field_type, parent_id=identity)
            if result.has_value:
                self.store.set_custom_field(identity, col.name, result.value)
                applied.append(col.header)
            elif trim(row.get(col.header)) is not None:
                unapplied.append(col.header)

    def _apply_meta(self, identity: int, row: dict[str, str], wanted, applied) -> None:
        for col in self.columns.meta:
            if not wanted(col.header):
                continue
            cell = trim(row.get(col.header))
            if cell is not None:
                self.store.set_meta(identity, col.key, cell)
                applied.append(col.header)
