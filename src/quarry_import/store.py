"""quarry_import.store

Record store contract consumed by the import engine.

The engine never talks to a database directly; everything it reads or
writes goes through a RecordStore.  store_pg.PostgresRecordStore is the
production implementation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ContextManager, Protocol


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class StoreError(Exception):
    """Raised when the store rejects a read or write.  Message is user-facing."""


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

# Core fields writable through create()/update().
CORE_WRITE_FIELDS = (
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
)


@dataclass
class ContentRecord:
    """Snapshot of one content record's core fields."""

    id: int
    post_type: str
    post_title: str = ""
    post_content: str = ""
    post_excerpt: str = ""
    post_status: str = "draft"
    post_name: str = ""
    post_parent: int = 0
    menu_order: int = 0
    post_author: int | None = None
    post_date: datetime | None = None
    post_modified: datetime | None = None

    def core_value(self, name: str) -> Any:
        return getattr(self, name, None)


@dataclass
class MediaRecord:
    id: int
    url: str
    source_url: str | None = None
    content_type: str | None = None
    parent_id: int | None = None
    extra: dict[str, Any] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Store protocol
# ---------------------------------------------------------------------------

class RecordStore(Protocol):
    # Records
    def resolve(self, identity: int) -> ContentRecord | None: ...

    def create(self, fields: dict[str, Any]) -> int: ...

    def update(self, identity: int, fields: dict[str, Any]) -> int: ...

    def type_exists(self, post_type: str) -> bool: ...

    def list_identities(self, post_type: str) -> list[int]: ...

    def list_taxonomies(self, post_type: str) -> list[str]:
        """Taxonomies bound to post_type, in a stable order."""
        ...

    def list_field_names(self, post_type: str) -> list[str]: ...

    def list_meta_keys(self, post_type: str) -> list[str]:
        """Meta keys present on any record of post_type."""
        ...

    # Taxonomies
    def taxonomy_exists(self, taxonomy: str) -> bool: ...

    def get_taxonomy_terms(self, identity: int, taxonomy: str) -> list[str]: ...

    def set_taxonomy_terms(
        self,
        identity: int,
        taxonomy: str,
        names: list[str],
        create_missing: bool,
    ) -> None: ...

    # Custom fields
    def get_field_type(self, name: str) -> str | None: ...

    def get_custom_field(self, identity: int, name: str) -> Any: ...

    def set_custom_field(self, identity: int, name: str, value: Any) -> None: ...

    # Freeform meta
    def get_meta(self, identity: int, key: str) -> str | None: ...

    def set_meta(self, identity: int, key: str, value: str) -> None: ...

    # Media
    def get_media(self, identity: int) -> int | None: ...

    def set_media(self, identity: int, media_id: int | None) -> None: ...

    def find_media(self, media_id: int) -> MediaRecord | None: ...

    def find_media_by_url(self, url: str) -> MediaRecord | None: ...

    def media_url(self, media_id: int) -> str | None: ...

    def create_media(
        self,
        source_url: str,
        filename: str,
        content_type: str | None,
        content: bytes,
        parent_id: int | None,
    ) -> int: ...

    # Users
    def find_user(self, login_or_email: str) -> int | None: ...

    def user_login(self, user_id: int) -> str | None: ...

    # Resource management
    def clear_cache(self) -> None: ...

    def row_scope(self, label: str) -> ContextManager[None]:
        """Group one row's writes; an exception inside rolls them back."""
        ...
