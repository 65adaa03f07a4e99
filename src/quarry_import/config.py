"""quarry_import.config

Import options and their YAML loader.

Usage:
    from pathlib import Path
    from quarry_import.config import load_import_config

    options = load_import_config(Path("config/import.yml"))
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_CHECKED_FIELDS = (
    "post_title",
    "post_content",
    "post_excerpt",
    "post_status",
    "post_name",
    "post_parent",
    "menu_order",
)

_BOOL_KEYS = frozenset({"update_existing", "create_taxonomies", "skip_on_error"})
_POSITIVE_INT_KEYS = frozenset({"batch_size", "error_preview_limit", "media_timeout"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class ConfigValidationError(ValueError):
    """Raised when an import config file fails validation."""


# ---------------------------------------------------------------------------
# ImportOptions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImportOptions:
    """Resolved options for one import run."""

    update_existing: bool = True
    create_taxonomies: bool = True
    skip_on_error: bool = True
    batch_size: int = 100
    default_post_type: str | None = None
    default_post_status: str = "draft"
    default_post_author: int | None = None
    field_mapping: dict[str, str] = field(default_factory=dict)
    checked_fields: tuple[str, ...] = DEFAULT_CHECKED_FIELDS
    namespace: str = "quarry"
    error_preview_limit: int = 10
    log_dir: str = "./artifacts/logs"
    media_timeout: int = 30

    def with_overrides(self, **overrides: Any) -> "ImportOptions":
        """Return a copy with every non-None override applied."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if "checked_fields" in changes:
            changes["checked_fields"] = tuple(changes["checked_fields"])
        return replace(self, **changes)

    def describe(self) -> str:
        return (
            f"update_existing={'yes' if self.update_existing else 'no'}, "
            f"create_taxonomies={'yes' if self.create_taxonomies else 'no'}, "
            f"skip_on_error={'yes' if self.skip_on_error else 'no'}, "
            f"default_post_type={self.default_post_type or 'from CSV'}"
        )


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def load_import_config(yaml_path: Path) -> ImportOptions:
    """Load, validate, and return ImportOptions from a YAML file.

    Raises:
        ConfigValidationError: If any key is unknown or has the wrong type.
        FileNotFoundError: If the YAML file does not exist.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw) or {}
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{yaml_path}: top level must be a mapping")
    validate_import_config(data)
    return ImportOptions().with_overrides(**data)


def validate_import_config(data: dict[str, Any]) -> None:
    """Raise ConfigValidationError listing every invalid key in data."""
    known = {f.name for f in fields(ImportOptions)}
    errors: list[str] = []

    unknown = set(data) - known
    if unknown:
        errors.append(f"unknown keys: {sorted(unknown)}")

    for key in sorted(_BOOL_KEYS & set(data)):
        if not isinstance(data[key], bool):
            errors.append(f"{key} must be true or false")

    for key in sorted(_POSITIVE_INT_KEYS & set(data)):
        val = data[key]
        if isinstance(val, bool) or not isinstance(val, int) or val <= 0:
            errors.append(f"{key} must be a positive integer")

    author = data.get("default_post_author")
    if author is not None and (isinstance(author, bool) or not isinstance(author, int)):
        errors.append("default_post_author must be a user id")

    mapping = data.get("field_mapping")
    if mapping is not None and not (
        isinstance(mapping, dict)
        and all(isinstance(k, str) and isinstance(v, str) for k, v in mapping.items())
    ):
        errors.append("field_mapping must map CSV headers to field names")

    checked = data.get("checked_fields")
    if checked is not None and not (
        isinstance(checked, list) and all(isinstance(c, str) for c in checked)
    ):
        errors.append("checked_fields must be a list of field names")

    for key in ("default_post_type", "default_post_status", "namespace", "log_dir"):
        if key in data and data[key] is not None and not isinstance(data[key], str):
            errors.append(f"{key} must be a string")

    if errors:
        raise ConfigValidationError("; ".join(errors))
