"""quarry_import.columns

Header-row classification.

Every CSV column is classified exactly once per run into one of:
  - CoreColumn           a fixed record field (post_title, post_status, ...)
  - TaxonomyColumn       tax_<taxonomy>
  - CustomFieldColumn    acf_<field_name>
  - MetaColumn           meta_<key>
  - MediaColumn          featured_image
  - IgnoredColumn        anything else (kept for logging only)

Rows are then read through the classified columns instead of re-sniffing
prefixes on every row.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ID_COLUMN = "ID"
MEDIA_COLUMN = "featured_image"

TAXONOMY_PREFIX = "tax_"
CUSTOM_FIELD_PREFIX = "acf_"
META_PREFIX = "meta_"

CORE_FIELDS: dict[str, str] = {
    "ID":           "ID",
    "post_title":   "Title",
    "post_content": "Content",
    "post_excerpt": "Excerpt",
    "post_status":  "Status",
    "post_type":    "Post Type",
    "post_name":    "Slug",
    "post_parent":  "Parent",
    "menu_order":   "Menu Order",
    "post_author":  "Author",
    "post_date":    "Date",
}

# Common header spellings used by spreadsheets exported from other tools.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "post_title":   ("title", "post_title", "name", "heading"),
    "post_content": ("content", "post_content", "body", "description"),
    "post_excerpt": ("excerpt", "post_excerpt", "summary"),
    "post_status":  ("status", "post_status", "state"),
    "post_type":    ("type", "post_type", "content_type"),
    "post_date":    ("date", "post_date", "published", "publish_date"),
}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class HeaderValidationError(ValueError):
    """Raised when the header row cannot support an import."""


# ---------------------------------------------------------------------------
# Column variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CoreColumn:
    header: str
    field: str

    @property
    def label(self) -> str:
        return CORE_FIELDS.get(self.field, self.field)


@dataclass(frozen=True)
class TaxonomyColumn:
    header: str
    taxonomy: str

    @property
    def label(self) -> str:
        return f"Taxonomy: {self.taxonomy}"


@dataclass(frozen=True)
class CustomFieldColumn:
    header: str
    name: str

    @property
    def label(self) -> str:
        return f"Field: {self.name}"


@dataclass(frozen=True)
class MetaColumn:
    header: str
    key: str

    @property
    def label(self) -> str:
        return f"Meta: {self.key}"


@dataclass(frozen=True)
class MediaColumn:
    header: str

    @property
    def label(self) -> str:
        return "Featured Image"


@dataclass(frozen=True)
class IgnoredColumn:
    header: str


Column = Union[CoreColumn, TaxonomyColumn, CustomFieldColumn, MetaColumn, MediaColumn, IgnoredColumn]


@dataclass(frozen=True)
class ColumnSet:
    """Classified header row for one import run."""

    headers: tuple[str, ...]
    core: tuple[CoreColumn, ...]
    taxonomies: tuple[TaxonomyColumn, ...]
    custom_fields: tuple[CustomFieldColumn, ...]
    meta: tuple[MetaColumn, ...]
    media: MediaColumn | None
    ignored: tuple[IgnoredColumn, ...]

    def has(self, field: str) -> bool:
        return any(c.field == field for c in self.core)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

def classify_header(header: str) -> Column:
    h = header.strip()
    if h in CORE_FIELDS:
        return CoreColumn(header=h, field=h)
    if h == MEDIA_COLUMN:
        return MediaColumn(header=h)
    if h.startswith(TAXONOMY_PREFIX) and len(h) > len(TAXONOMY_PREFIX):
        return TaxonomyColumn(header=h, taxonomy=h[len(TAXONOMY_PREFIX):])
    if h.startswith(CUSTOM_FIELD_PREFIX) and len(h) > len(CUSTOM_FIELD_PREFIX):
        return CustomFieldColumn(header=h, name=h[len(CUSTOM_FIELD_PREFIX):])
    if h.startswith(META_PREFIX) and len(h) > len(META_PREFIX):
        return MetaColumn(header=h, key=h[len(META_PREFIX):])
    return IgnoredColumn(header=h)


def classify_headers(headers: list[str]) -> ColumnSet:
    """Classify every header once; order within each group follows the CSV."""
    core: list[CoreColumn] = []
    taxonomies: list[TaxonomyColumn] = []
    custom_fields: list[CustomFieldColumn] = []
    meta: list[MetaColumn] = []
    ignored: list[IgnoredColumn] = []
    media: MediaColumn | None = None

    for header in headers:
        col = classify_header(header)
        if isinstance(col, CoreColumn):
            core.append(col)
        elif isinstance(col, TaxonomyColumn):
            taxonomies.append(col)
        elif isinstance(col, CustomFieldColumn):
            custom_fields.append(col)
        elif isinstance(col, MetaColumn):
            meta.append(col)
        elif isinstance(col, MediaColumn):
            media = col
        else:
            ignored.append(col)

    return ColumnSet(
        headers=tuple(h.strip() for h in headers),
        core=tuple(core),
        taxonomies=tuple(taxonomies),
        custom_fields=tuple(custom_fields),
        meta=tuple(meta),
        media=media,
        ignored=tuple(ignored),
    )


def validate_headers(headers: list[str], default_post_type: str | None = None) -> None:
    """Raise HeaderValidationError if the header row cannot identify records.

    Requires post_title or ID, and post_type unless a default type is set.
    """
    header_set = {h.strip() for h in headers}
    if not header_set:
        raise HeaderValidationError("CSV has no header row")
    if "post_title" not in header_set and ID_COLUMN not in header_set:
        raise HeaderValidationError(
            'Required field "post_title" (or "ID") is missing from CSV'
        )
    if "post_type" not in header_set and not default_post_type:
        raise HeaderValidationError(
            'Required field "post_type" is missing from CSV and no default post type is set'
        )


# ---------------------------------------------------------------------------
# Field mapping
# ---------------------------------------------------------------------------

def apply_field_mapping(
    headers: list[str],
    rows: list[dict[str, str]],
    mapping: dict[str, str],
) -> tuple[list[str], list[dict[str, str]]]:
    """Rename columns per mapping (csv header → record field). Unmapped headers pass through."""
    if not mapping:
        return headers, rows
    mapped_headers = [mapping.get(h, h) for h in headers]
    mapped_rows = [{mapping.get(k, k): v for k, v in row.items()} for row in rows]
    return mapped_headers, mapped_rows


def suggest_field_mapping(headers: list[str]) -> dict[str, str]:
    """Suggest csv header → record field for common aliases; identity otherwise."""
    mapping: dict[str, str] = {}
    for header in headers:
        lowered = header.strip().lower()
        mapping[header] = header
        for field, aliases in FIELD_ALIASES.items():
            if lowered in aliases:
                mapping[header] = field
                break
    return mapping
