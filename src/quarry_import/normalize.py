"""Normalization functions for CSV cell values.

All functions accept str | None and return the appropriate type or None.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import datetime
from decimal import Decimal, InvalidOperation

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Accepted by parse_datetime, tried in order.
_DATETIME_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%Y%m%d",
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%b %d, %Y",
    "%B %d, %Y",
    "%d %b %Y",
    "%d %B %Y",
)

_TRUTHY = frozenset({"1", "true", "yes", "on", "y"})


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = str(value).strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: slug_name  (post_name / term slugs)
# ---------------------------------------------------------------------------

def slug_name(value: str | None) -> str | None:
    """Lowercase alnum with '-' separators.

    Used for post_name and term slug columns.
    """
    v = trim(value)
    if v is None:
        return None
    v = unicodedata.normalize("NFKD", v)
    v = "".join(c for c in v if not unicodedata.combining(c))
    v = v.lower()
    v = re.sub(r"[^a-z0-9_]+", "-", v)
    v = v.strip("-")
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 4: parse_datetime
# ---------------------------------------------------------------------------

def parse_datetime(value: str | None) -> datetime | None:
    """Parse a date or datetime in any of the accepted formats, or None."""
    v = normalize_space(value)
    if v is None:
        return None
    for fmt in _DATETIME_FORMATS:
        try:
            return datetime.strptime(v, fmt)
        except ValueError:
            continue
    return None


def format_datetime(value: datetime) -> str:
    """Return 'YYYY-MM-DD' for midnight values, 'YYYY-MM-DD HH:MM:SS' otherwise."""
    if (value.hour, value.minute, value.second) == (0, 0, 0):
        return value.strftime(DATE_FORMAT)
    return value.strftime(DATETIME_FORMAT)


# ---------------------------------------------------------------------------
# Rule 5: parse_numeric / parse_int
# ---------------------------------------------------------------------------

def parse_numeric(value: str | None) -> Decimal | None:
    """Parse a decimal number from a string, returning None on failure."""
    v = trim(value)
    if v is None:
        return None
    try:
        d = Decimal(v)
    except InvalidOperation:
        return None
    return d if d.is_finite() else None


def parse_int(value: str | None) -> int | None:
    """Parse an integer, accepting '5' and '5.0'; None otherwise."""
    d = parse_numeric(value)
    if d is None or d != d.to_integral_value():
        return None
    return int(d)


def is_identity(value: str | None) -> bool:
    """True for a bare positive integer like '42'."""
    v = trim(value)
    return v is not None and v.isdigit() and int(v) > 0


# ---------------------------------------------------------------------------
# Rule 6: parse_bool
# ---------------------------------------------------------------------------

def parse_bool(value: str | None) -> bool:
    """Permissive truthy parsing: '1', 'true', 'yes', 'on', 'y' are True."""
    v = trim(value)
    if v is None:
        return False
    return v.lower() in _TRUTHY


# ---------------------------------------------------------------------------
# Rule 7: split_list
# ---------------------------------------------------------------------------

def split_list(value: str | None, sep: str) -> list[str]:
    """Split on sep, trim each token, drop empties."""
    v = trim(value)
    if v is None:
        return []
    return [t.strip() for t in v.split(sep) if t.strip()]


def is_url(value: str | None) -> bool:
    v = trim(value)
    return v is not None and re.match(r"^https?://[^\s/]+", v, re.IGNORECASE) is not None


def title_snippet(title: str | None, limit: int = 50) -> str:
    """First `limit` characters of a title for log lines; 'untitled' when blank."""
    v = normalize_space(title)
    if v is None:
        return "untitled"
    return v[:limit]
