"""quarry_import.export

Build CSV rows from stored records using the same field codec the importer
decodes with, so an unmodified export re-imports as all-skipped.
"""

from __future__ import annotations

from datetime import datetime

from quarry_import.codec import FieldCodec, encode_terms
from quarry_import.columns import ColumnSet, classify_headers
from quarry_import.normalize import DATETIME_FORMAT
from quarry_import.store import ContentRecord, RecordStore

DEFAULT_EXPORT_HEADERS = [
    "ID",
    "post_title",
    "post_content",
    "post_excerpt",
    "post_status",
    "post_type",
    "post_name",
    "post_parent",
    "menu_order",
    "post_author",
    "post_date",
    "featured_image",
]


def _core_cell(record: ContentRecord, name: str) -> str:
    if name == "ID":
        return str(record.id)
    value = record.core_value(name)
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.strftime(DATETIME_FORMAT)
    return str(value)


def _author_cell(store: RecordStore, record: ContentRecord) -> str:
    if record.post_author is None:
        return ""
    return store.user_login(record.post_author) or str(record.post_author)


def export_record_row(
    store: RecordStore,
    record: ContentRecord,
    columns: ColumnSet,
    codec: FieldCodec | None = None,
) -> dict[str, str]:
    codec = codec or FieldCodec(media_url=store.media_url)
    row: dict[str, str] = {}

    for col in columns.core:
        if col.field == "post_author":
            row[col.header] = _author_cell(store, record)
        else:
            row[col.header] = _core_cell(record, col.field)

    for col in columns.taxonomies:
        row[col.header] = encode_terms(store.get_taxonomy_terms(record.id, col.taxonomy))

    for col in columns.custom_fields:
        value = store.get_custom_field(record.id, col.name)
        row[col.header] = codec.encode(value, store.get_field_type(col.name))

    for col in columns.meta:
        row[col.header] = store.get_meta(record.id, col.key) or ""

    if columns.media is not None:
        media_id = store.get_media(record.id)
        row[columns.media.header] = (store.media_url(media_id) or str(media_id)) if media_id else ""

    for col in columns.ignored:
        row[col.header] = ""
    return row


def default_export_headers(store: RecordStore, post_type: str) -> list[str]:
    headers = list(DEFAULT_EXPORT_HEADERS)
    headers += [f"tax_{t}" for t in store.list_taxonomies(post_type)]
    headers += [f"acf_{f}" for f in store.list_field_names(post_type)]
    headers += [f"meta_{k}" for k in store.list_meta_keys(post_type)]
    return headers


def export_rows(
    store: RecordStore,
    post_type: str,
    headers: list[str] | None = None,
) -> tuple[list[str], list[dict[str, str]]]:
    """Export every record of post_type; returns (headers, rows).

    Without explicit headers the core columns are followed by one column per
    taxonomy and custom field bound to post_type and per meta key in use.
    """
    headers = headers or default_export_headers(store, post_type)
    columns = classify_headers(headers)
    codec = FieldCodec(media_url=store.media_url)

    rows: list[dict[str, str]] = []
    for identity in store.list_identities(post_type):
        record = store.resolve(identity)
        if record is None:
            continue
        rows.append(export_record_row(store, record, columns, codec))
    return list(columns.headers), rows
