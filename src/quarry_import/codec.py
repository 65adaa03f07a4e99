"""quarry_import.codec

Field codec: structured field value ↔ single CSV cell.

Encoding rules by field class:
  taxonomy terms      "News, Updates"            comma list of term names
  simple list         "x|y|z"                    pipe list (all elements scalar)
  structured          '[{"a": 1}]'               JSON (repeater, group, nested values)
  relationship        "12,15"                    comma list of record ids
  media               "https://…/a.jpg" or "7"   URL when known, else media id
  gallery             "https://…/a.jpg|…"        pipe list of media
  boolean             "1" / "0"
  date                "2024-05-01[ 09:30:00]"

Decode failures never raise.  They are reported through DecodeResult.status:
  DECODED          value parsed
  RAW_PASSTHROUGH  value could not be parsed; the raw string is kept
  ABSENT           empty cell (or unresolvable media): leave the field alone
  CLEARED          empty taxonomy cell: remove all terms
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from quarry_import.media import MediaResolver
from quarry_import.normalize import (
    format_datetime,
    is_identity,
    parse_bool,
    parse_datetime,
    parse_numeric,
    split_list,
    trim,
)

log = logging.getLogger(__name__)

TERM_SEPARATOR = ","
TERM_JOINER = ", "
LIST_SEPARATOR = "|"
RELATION_SEPARATOR = ","
EMPTY_PLACEHOLDER = "(empty)"

# Custom-field definition types
STRUCTURED_TYPES = frozenset({"repeater", "group", "flexible_content"})
RELATION_TYPES = frozenset({"relationship", "post_object"})
MEDIA_TYPES = frozenset({"image", "file"})
GALLERY_TYPE = "gallery"
BOOLEAN_TYPE = "true_false"
DATE_TYPE = "date_picker"
DATETIME_TYPE = "date_time_picker"
NUMBER_TYPE = "number"
LIST_TYPES = frozenset({"checkbox", "select"})


class DecodeStatus(str, Enum):
    DECODED = "decoded"
    RAW_PASSTHROUGH = "raw_passthrough"
    ABSENT = "absent"
    CLEARED = "cleared"


@dataclass(frozen=True)
class DecodeResult:
    status: DecodeStatus
    value: Any = None

    @property
    def has_value(self) -> bool:
        return self.status in (DecodeStatus.DECODED, DecodeStatus.RAW_PASSTHROUGH)

    @classmethod
    def decoded(cls, value: Any) -> "DecodeResult":
        return cls(DecodeStatus.DECODED, value)

    @classmethod
    def raw(cls, value: str) -> "DecodeResult":
        return cls(DecodeStatus.RAW_PASSTHROUGH, value)


ABSENT = DecodeResult(DecodeStatus.ABSENT)


# ---------------------------------------------------------------------------
# Taxonomy terms
# ---------------------------------------------------------------------------

def encode_terms(names: list[str]) -> str:
    return TERM_JOINER.join(names)


def decode_terms(cell: str | None) -> DecodeResult:
    """Split on comma, trim, drop empties.  An empty cell clears the taxonomy."""
    names = split_list(cell, TERM_SEPARATOR)
    if not names:
        return DecodeResult(DecodeStatus.CLEARED, [])
    return DecodeResult.decoded(names)


def normalize_terms(cell: str | None) -> str:
    """Canonical comparison form of a term cell: 'A, B'."""
    return TERM_JOINER.join(split_list(cell, TERM_SEPARATOR))


# ---------------------------------------------------------------------------
# Simple lists
# ---------------------------------------------------------------------------

def _is_scalar(value: Any) -> bool:
    return value is None or isinstance(value, (str, int, float, bool, Decimal))


def is_simple_list(value: Any) -> bool:
    return isinstance(value, (list, tuple)) and all(_is_scalar(v) for v in value)


def encode_list(values: list[Any]) -> str:
    return LIST_SEPARATOR.join(_scalar_to_str(v) for v in values)


def decode_list(cell: str | None) -> DecodeResult:
    v = trim(cell)
    if v is None:
        return ABSENT
    return DecodeResult.decoded([t.strip() for t in v.split(LIST_SEPARATOR)])


# ---------------------------------------------------------------------------
# Structured values
# ---------------------------------------------------------------------------

def encode_structured(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def decode_structured(cell: str | None) -> DecodeResult:
    v = trim(cell)
    if v is None:
        return ABSENT
    try:
        return DecodeResult.decoded(json.loads(v))
    except ValueError:
        log.warning("structured value is not valid JSON; keeping raw text: %.60r", v)
        return DecodeResult.raw(v)


# ---------------------------------------------------------------------------
# Booleans / dates / numbers
# ---------------------------------------------------------------------------

def encode_bool(value: Any) -> str:
    if isinstance(value, str):
        return "1" if parse_bool(value) else "0"
    return "1" if value else "0"


def decode_bool(cell: str | None) -> DecodeResult:
    if trim(cell) is None:
        return ABSENT
    return DecodeResult.decoded(parse_bool(cell))


def encode_date(value: Any) -> str:
    if value is None or value == "":
        return ""
    if hasattr(value, "strftime"):
        return format_datetime(value) if hasattr(value, "hour") else value.strftime("%Y-%m-%d")
    parsed = parse_datetime(str(value))
    return format_datetime(parsed) if parsed else str(value)


def decode_date(cell: str | None, with_time: bool = False) -> DecodeResult:
    v = trim(cell)
    if v is None:
        return ABSENT
    parsed = parse_datetime(v)
    if parsed is None:
        return DecodeResult.raw(v)
    if with_time:
        return DecodeResult.decoded(format_datetime(parsed))
    return DecodeResult.decoded(parsed.strftime("%Y-%m-%d"))


def decode_number(cell: str | None) -> DecodeResult:
    v = trim(cell)
    if v is None:
        return ABSENT
    d = parse_numeric(v)
    if d is None:
        return DecodeResult.raw(v)
    if d == d.to_integral_value():
        return DecodeResult.decoded(int(d))
    return DecodeResult.decoded(float(d))


def _scalar_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Display
# ---------------------------------------------------------------------------

def display_value(value: Any) -> str:
    """Human-readable rendering for change previews: lists joined by ', '."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        if is_simple_list(value):
            return TERM_JOINER.join(_scalar_to_str(v) for v in value)
        return encode_structured(value)
    if isinstance(value, dict):
        return encode_structured(value)
    return _scalar_to_str(value)


# ---------------------------------------------------------------------------
# Custom fields
# ---------------------------------------------------------------------------

class FieldCodec:
    """Type-aware encode/decode for custom-field cells.

    media_resolver is only needed for media/gallery decoding; media_url maps
    a media id to its URL for encoding.
    """

    def __init__(
        self,
        media_resolver: MediaResolver | None = None,
        media_url: Callable[[int], str | None] | None = None,
    ) -> None:
        self._media = media_resolver
        self._media_url = media_url

    # -- encode -------------------------------------------------------------

    def encode(self, value: Any, field_type: str | None) -> str:
        if value is None:
            return ""
        if field_type in STRUCTURED_TYPES:
            return encode_structured(value)
        if field_type in RELATION_TYPES:
            if isinstance(value, (list, tuple)):
                return RELATION_SEPARATOR.join(_scalar_to_str(v) for v in value)
            return _scalar_to_str(value)
        if field_type in MEDIA_TYPES:
            return self._encode_media(value)
        if field_type == GALLERY_TYPE:
            items = value if isinstance(value, (list, tuple)) else [value]
            return LIST_SEPARATOR.join(self._encode_media(v) for v in items)
        if field_type == BOOLEAN_TYPE:
            return encode_bool(value)
        if field_type in (DATE_TYPE, DATETIME_TYPE):
            return encode_date(value)
        return self.encode_untyped(value)

    @staticmethod
    def encode_untyped(value: Any) -> str:
        if isinstance(value, (list, tuple)):
            if is_simple_list(value):
                return encode_list(list(value))
            return encode_structured(value)
        if isinstance(value, dict):
            return encode_structured(value)
        return _scalar_to_str(value)

    def _encode_media(self, value: Any) -> str:
        if isinstance(value, dict):
            return str(value.get("url") or value.get("id") or "")
        if isinstance(value, int) or is_identity(str(value)):
            url = self._media_url(int(value)) if self._media_url else None
            return url or str(value)
        return _scalar_to_str(value)

    # -- decode -------------------------------------------------------------

    def decode(
        self,
        cell: str | None,
        field_type: str | None,
        parent_id: int | None = None,
    ) -> DecodeResult:
        v = trim(cell)
        if v is None:
            return ABSENT
        if field_type in STRUCTURED_TYPES:
            return decode_structured(v)
        if field_type in RELATION_TYPES:
            return self._decode_relation(v)
        if field_type in MEDIA_TYPES:
            return self._decode_media(v, parent_id)
        if field_type == GALLERY_TYPE:
            return self._decode_gallery(v, parent_id)
        if field_type == BOOLEAN_TYPE:
            return decode_bool(v)
        if field_type == DATE_TYPE:
            return decode_date(v)
        if field_type == DATETIME_TYPE:
            return decode_date(v, with_time=True)
        if field_type == NUMBER_TYPE:
            return decode_number(v)
        if field_type == "checkbox":
            return decode_list(v)
        if field_type == "select":
            return decode_list(v) if LIST_SEPARATOR in v else DecodeResult.decoded(v)
        if field_type is None:
            return self.decode_untyped(v)
        return DecodeResult.decoded(v)

    @staticmethod
    def decode_untyped(cell: str) -> DecodeResult:
        """Shape-based decoding for fields with no known definition."""
        if cell[:1] in ("[", "{"):
            result = decode_structured(cell)
            if result.status is DecodeStatus.DECODED:
                return result
            return DecodeResult.raw(cell)
        if LIST_SEPARATOR in cell:
            return decode_list(cell)
        return DecodeResult.decoded(cell)

    @staticmethod
    def _decode_relation(cell: str) -> DecodeResult:
        tokens = split_list(cell, RELATION_SEPARATOR)
        if not all(is_identity(t) for t in tokens):
            return DecodeResult.raw(cell)
        ids = [int(t) for t in tokens]
        if RELATION_SEPARATOR in cell:
            return DecodeResult.decoded(ids)
        return DecodeResult.decoded(ids[0])

    def _decode_media(self, cell: str, parent_id: int | None) -> DecodeResult:
        if self._media is None:
            return DecodeResult.raw(cell)
        media_id = self._media.resolve(cell, parent_id=parent_id)
        if media_id is None:
            return ABSENT
        return DecodeResult.decoded(media_id)

    def _decode_gallery(self, cell: str, parent_id: int | None) -> DecodeResult:
        if self._media is None:
            return DecodeResult.raw(cell)
        ids: list[int] = []
        for token in split_list(cell, LIST_SEPARATOR):
            media_id = self._media.resolve(token, parent_id=parent_id)
            if media_id is not None:
                ids.append(media_id)
        if not ids:
            return ABSENT
        return DecodeResult.decoded(ids)
