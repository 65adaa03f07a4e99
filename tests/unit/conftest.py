"""Unit test fixtures.

FakeRecordStore is an in-memory RecordStore.  It records every write in
`writes` so tests can assert that unchanged rows touch nothing, and its
row_scope() restores a snapshot when the block raises.
"""

from __future__ import annotations

import copy
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

import pytest

from quarry_import.config import ImportOptions
from quarry_import.shared import RunContext
from quarry_import.store import CORE_WRITE_FIELDS, ContentRecord, MediaRecord, StoreError

VALID_STATUSES = {"publish", "draft", "pending", "private", "future", "trash"}


class FakeRecordStore:
    def __init__(self) -> None:
        self.records: dict[int, ContentRecord] = {}
        self.types: set[str] = {"course", "page"}
        self.taxonomies: set[str] = {"category", "post_tag"}
        self.known_terms: dict[str, list[str]] = {"category": [], "post_tag": []}
        self.terms: dict[tuple[int, str], list[str]] = {}
        self.field_types: dict[str, str] = {}
        self.fields: dict[tuple[int, str], Any] = {}
        self.meta: dict[tuple[int, str], str] = {}
        self.featured: dict[int, int] = {}
        self.media: dict[int, MediaRecord] = {}
        self.type_taxonomies: dict[str, list[str]] = {"course": ["category", "post_tag"]}
        self.type_fields: dict[str, list[str]] = {}
        self.users: dict[str, int] = {"editor": 7}
        self.writes: list[tuple] = []
        self.cache_clears = 0
        self._next_id = 100

    # -- seeding helpers ----------------------------------------------------

    def add_record(self, identity: int, post_type: str = "course", **core: Any) -> ContentRecord:
        record = ContentRecord(id=identity, post_type=post_type, **core)
        self.records[identity] = record
        return record

    def add_media(self, media_id: int, url: str) -> MediaRecord:
        media = MediaRecord(id=media_id, url=url, source_url=url)
        self.media[media_id] = media
        return media

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # -- records ------------------------------------------------------------

    def resolve(self, identity: int) -> ContentRecord | None:
        return self.records.get(identity)

    def create(self, fields: dict[str, Any]) -> int:
        self._check_status(fields)
        identity = self._new_id()
        record = ContentRecord(id=identity, post_type=fields["post_type"])
        self._assign(record, fields)
        self.records[identity] = record
        self.writes.append(("create", identity, dict(fields)))
        return identity

    def update(self, identity: int, fields: dict[str, Any]) -> int:
        self._check_status(fields)
        record = self.records.get(identity)
        if record is None:
            raise StoreError(f"Record {identity} no longer exists")
        self._assign(record, fields)
        record.post_modified = datetime(2030, 1, 1)
        self.writes.append(("update", identity, dict(fields)))
        return identity

    @staticmethod
    def _check_status(fields: dict[str, Any]) -> None:
        status = fields.get("post_status")
        if status is not None and status not in VALID_STATUSES:
            raise StoreError(f"Could not save record: invalid status {status}")

    @staticmethod
    def _assign(record: ContentRecord, fields: dict[str, Any]) -> None:
        for key in CORE_WRITE_FIELDS:
            if key not in fields:
                continue
            value = fields[key]
            if key == "post_date" and isinstance(value, str):
                value = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
            setattr(record, key, value)

    def type_exists(self, post_type: str) -> bool:
        return post_type in self.types

    def list_identities(self, post_type: str) -> list[int]:
        return sorted(i for i, r in self.records.items() if r.post_type == post_type)

    def list_taxonomies(self, post_type: str) -> list[str]:
        return list(self.type_taxonomies.get(post_type, []))

    def list_field_names(self, post_type: str) -> list[str]:
        return list(self.type_fields.get(post_type, []))

    def list_meta_keys(self, post_type: str) -> list[str]:
        return sorted({
            key for (identity, key) in self.meta
            if identity in self.records and self.records[identity].post_type == post_type
        })

    # -- taxonomies ---------------------------------------------------------

    def taxonomy_exists(self, taxonomy: str) -> bool:
        return taxonomy in self.taxonomies

    def get_taxonomy_terms(self, identity: int, taxonomy: str) -> list[str]:
        return list(self.terms.get((identity, taxonomy), []))

    def set_taxonomy_terms(
        self,
        identity: int,
        taxonomy: str,
        names: list[str],
        create_missing: bool,
    ) -> None:
        known = self.known_terms.setdefault(taxonomy, [])
        resolved: list[str] = []
        for name in names:
            if name not in known:
                if not create_missing:
                    continue
                known.append(name)
            if name not in resolved:
                resolved.append(name)
        if names and not resolved:
            return
        self.terms[(identity, taxonomy)] = resolved
        self.writes.append(("terms", identity, taxonomy, list(resolved)))

    # -- custom fields / meta -----------------------------------------------

    def get_field_type(self, name: str) -> str | None:
        return self.field_types.get(name)

    def get_custom_field(self, identity: int, name: str) -> Any:
        return self.fields.get((identity, name))

    def set_custom_field(self, identity: int, name: str, value: Any) -> None:
        self.fields[(identity, name)] = value
        self.writes.append(("field", identity, name, value))

    def get_meta(self, identity: int, key: str) -> str | None:
        return self.meta.get((identity, key))

    def set_meta(self, identity: int, key: str, value: str) -> None:
        self.meta[(identity, key)] = value
        self.writes.append(("meta", identity, key, value))

    # -- media --------------------------------------------------------------

    def get_media(self, identity: int) -> int | None:
        return self.featured.get(identity)

    def set_media(self, identity: int, media_id: int | None) -> None:
        self.featured[identity] = media_id
        self.writes.append(("media", identity, media_id))

    def find_media(self, media_id: int) -> MediaRecord | None:
        return self.media.get(media_id)

    def find_media_by_url(self, url: str) -> MediaRecord | None:
        for media in self.media.values():
            if url in (media.url, media.source_url):
                return media
        return None

    def media_url(self, media_id: int) -> str | None:
        media = self.media.get(media_id)
        return media.url if media else None

    def create_media(
        self,
        source_url: str,
        filename: str,
        content_type: str | None,
        content: bytes,
        parent_id: int | None,
    ) -> int:
        media_id = self._new_id()
        self.media[media_id] = MediaRecord(
            id=media_id, url=source_url, source_url=source_url,
            content_type=content_type, parent_id=parent_id,
        )
        self.writes.append(("create_media", media_id, source_url))
        return media_id

    # -- users --------------------------------------------------------------

    def find_user(self, login_or_email: str) -> int | None:
        return self.users.get(login_or_email)

    def user_login(self, user_id: int) -> str | None:
        for login, uid in self.users.items():
            if uid == user_id:
                return login
        return None

    # -- resources ----------------------------------------------------------

    def clear_cache(self) -> None:
        self.cache_clears += 1

    @contextmanager
    def row_scope(self, label: str) -> Iterator[None]:
        state = copy.deepcopy(
            (self.records, self.terms, self.known_terms, self.fields,
             self.meta, self.featured, self.media, self._next_id)
        )
        try:
            yield
        except BaseException:
            (self.records, self.terms, self.known_terms, self.fields,
             self.meta, self.featured, self.media, self._next_id) = state
            raise


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def options() -> ImportOptions:
    return ImportOptions()


@pytest.fixture
def context(tmp_path) -> RunContext:
    return RunContext.create(tmp_path / "logs", run_id="test-run")
