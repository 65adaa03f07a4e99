"""quarry_import.store_pg

PostgreSQL RecordStore (psycopg 3).  Schema: migrations/0001_content_store.sql
and migrations/0002_type_bindings.sql.

Transaction handling:
  - The connection is opened with autocommit=False; the caller commits or
    rolls back the whole run (dry runs roll back).
  - Each CSV row runs inside row_scope(), a SAVEPOINT that is rolled back
    if the row raises, so a failed row leaves no partial writes.

Reads of core records are cached per identity; clear_cache() drops the
cache and is called by the batch controller between chunks.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator

import psycopg
from psycopg.types.json import Jsonb

from quarry_import.normalize import is_identity, slug_name, trim
from quarry_import.store import CORE_WRITE_FIELDS, ContentRecord, MediaRecord, StoreError

log = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "id, post_type, post_title, post_content, post_excerpt, post_status, "
    "post_name, post_parent, menu_order, post_author, post_date, post_modified"
)


def _store_error(action: str, exc: psycopg.Error) -> StoreError:
    diag = getattr(exc, "diag", None)
    detail = (diag.message_primary if diag is not None else None) or str(exc)
    return StoreError(f"{action}: {detail}")


class PostgresRecordStore:
    """RecordStore backed by a single psycopg connection."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn
        self._records: dict[int, ContentRecord] = {}
        self._field_types: dict[str, str | None] = {}
        self._taxonomies: dict[str, bool] = {}
        self._types: dict[str, bool] = {}

    @classmethod
    def connect(cls, dsn: str) -> "PostgresRecordStore":
        return cls(psycopg.connect(dsn, autocommit=False))

    @property
    def conn(self) -> psycopg.Connection:
        return self._conn

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()
        self.clear_cache()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Resource management
    # ------------------------------------------------------------------

    def clear_cache(self) -> None:
        self._records.clear()

    @contextmanager
    def row_scope(self, label: str) -> Iterator[None]:
        sp_name = "sp_" + re.sub(r"\W", "_", label)
        self._conn.execute(f"SAVEPOINT {sp_name}")
        try:
            yield
        except BaseException:
            self._conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
            self._records.clear()
            raise
        self._conn.execute(f"RELEASE SAVEPOINT {sp_name}")

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def resolve(self, identity: int) -> ContentRecord | None:
        if identity in self._records:
            return self._records[identity]
        row = self._conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM content_record WHERE id = %s",
            (identity,),
        ).fetchone()
        if row is None:
            return None
        record = ContentRecord(
            id=row[0],
            post_type=row[1],
            post_title=row[2],
            post_content=row[3],
            post_excerpt=row[4],
            post_status=row[5],
            post_name=row[6],
            post_parent=row[7],
            menu_order=row[8],
            post_author=row[9],
            post_date=row[10],
            post_modified=row[11],
        )
        self._records[identity] = record
        return record

    def create(self, fields: dict[str, Any]) -> int:
        cols = [k for k in CORE_WRITE_FIELDS if k in fields]
        if "post_name" not in fields and fields.get("post_title"):
            cols.append("post_name")
            fields = {**fields, "post_name": slug_name(fields["post_title"]) or ""}
        values = [fields[c] for c in cols]
        placeholders = ["%s"] * len(cols)
        if "post_date" not in cols:
            cols.append("post_date")
            placeholders.append("now()")
        try:
            row = self._conn.execute(
                f"""
                INSERT INTO content_record ({", ".join(cols)})
                VALUES ({", ".join(placeholders)})
                RETURNING id
                """,
                values,
            ).fetchone()
        except psycopg.Error as exc:
            raise _store_error("Could not create record", exc) from exc
        return int(row[0])

    def update(self, identity: int, fields: dict[str, Any]) -> int:
        cols = [k for k in CORE_WRITE_FIELDS if k in fields]
        if not cols:
            return identity
        assignments = ", ".join(f"{c} = %s" for c in cols)
        try:
            row = self._conn.execute(
                f"""
                UPDATE content_record
                SET {assignments}, post_modified = now()
                WHERE id = %s
                RETURNING id
                """,
                [fields[c] for c in cols] + [identity],
            ).fetchone()
        except psycopg.Error as exc:
            raise _store_error(f"Could not update record {identity}", exc) from exc
        finally:
            self._records.pop(identity, None)
        if row is None:
            raise StoreError(f"Record {identity} no longer exists")
        return int(row[0])

    def type_exists(self, post_type: str) -> bool:
        if post_type not in self._types:
            row = self._conn.execute(
                "SELECT 1 FROM content_type WHERE name = %s", (post_type,)
            ).fetchone()
            self._types[post_type] = row is not None
        return self._types[post_type]

    def list_identities(self, post_type: str) -> list[int]:
        rows = self._conn.execute(
            "SELECT id FROM content_record WHERE post_type = %s ORDER BY id ASC",
            (post_type,),
        ).fetchall()
        return [int(r[0]) for r in rows]

    def list_taxonomies(self, post_type: str) -> list[str]:
        rows = self._conn.execute(
            "SELECT taxonomy FROM content_type_taxonomy WHERE content_type = %s ORDER BY taxonomy",
            (post_type,),
        ).fetchall()
        return [r[0] for r in rows]

    def list_field_names(self, post_type: str) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT field_name FROM content_type_field
            WHERE content_type = %s
            ORDER BY position ASC, field_name ASC
            """,
            (post_type,),
        ).fetchall()
        return [r[0] for r in rows]

    def list_meta_keys(self, post_type: str) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT DISTINCT m.meta_key
            FROM record_meta m
            JOIN content_record r ON r.id = m.record_id
            WHERE r.post_type = %s
            ORDER BY m.meta_key
            """,
            (post_type,),
        ).fetchall()
        return [r[0] for r in rows]

    # ------------------------------------------------------------------
    # Taxonomies
    # ------------------------------------------------------------------

    def taxonomy_exists(self, taxonomy: str) -> bool:
        if taxonomy not in self._taxonomies:
            row = self._conn.execute(
                "SELECT 1 FROM taxonomy WHERE name = %s", (taxonomy,)
            ).fetchone()
            self._taxonomies[taxonomy] = row is not None
        return self._taxonomies[taxonomy]

    def get_taxonomy_terms(self, identity: int, taxonomy: str) -> list[str]:
        rows = self._conn.execute(
            """
            SELECT t.name
            FROM record_term rt
            JOIN term t ON t.id = rt.term_id
            WHERE rt.record_id = %s AND t.taxonomy = %s
            ORDER BY rt.position ASC, t.name ASC
            """,
            (identity, taxonomy),
        ).fetchall()
        return [r[0] for r in rows]

    def _find_term(self, taxonomy: str, name: str) -> int | None:
        row = self._conn.execute(
            "SELECT id FROM term WHERE taxonomy = %s AND name = %s ORDER BY id ASC LIMIT 1",
            (taxonomy, name),
        ).fetchone()
        if row is None:
            row = self._conn.execute(
                "SELECT id FROM term WHERE taxonomy = %s AND slug = %s",
                (taxonomy, slug_name(name) or name),
            ).fetchone()
        return int(row[0]) if row else None

    def _insert_term(self, taxonomy: str, name: str) -> int:
        row = self._conn.execute(
            """
            INSERT INTO term (taxonomy, name, slug)
            VALUES (%s, %s, %s)
            RETURNING id
            """,
            (taxonomy, name, slug_name(name) or name),
        ).fetchone()
        return int(row[0])

    def set_taxonomy_terms(
        self,
        identity: int,
        taxonomy: str,
        names: list[str],
        create_missing: bool,
    ) -> None:
        """Replace the record's terms in taxonomy.

        An empty names list clears the taxonomy.  When names are given but
        none resolve (creation disabled), existing terms are left alone.
        """
        term_ids: list[int] = []
        try:
            for name in names:
                term_id = self._find_term(taxonomy, name)
                if term_id is None and create_missing:
                    term_id = self._insert_term(taxonomy, name)
                if term_id is None:
                    log.info("term %r not found in %s; dropped", name, taxonomy)
                    continue
                if term_id not in term_ids:
                    term_ids.append(term_id)

            if names and not term_ids:
                return

            self._conn.execute(
                """
                DELETE FROM record_term rt
                USING term t
                WHERE rt.term_id = t.id AND rt.record_id = %s AND t.taxonomy = %s
                """,
                (identity, taxonomy),
            )
            for position, term_id in enumerate(term_ids):
                self._conn.execute(
                    "INSERT INTO record_term (record_id, term_id, position) VALUES (%s, %s, %s)",
                    (identity, term_id, position),
                )
        except psycopg.Error as exc:
            raise _store_error(f"Could not set {taxonomy} terms", exc) from exc

    # ------------------------------------------------------------------
    # Custom fields / meta
    # ------------------------------------------------------------------

    def get_field_type(self, name: str) -> str | None:
        if name not in self._field_types:
            row = self._conn.execute(
                "SELECT field_type FROM field_definition WHERE name = %s", (name,)
            ).fetchone()
            self._field_types[name] = row[0] if row else None
        return self._field_types[name]

    def get_custom_field(self, identity: int, name: str) -> Any:
        row = self._conn.execute(
            "SELECT value FROM record_field WHERE record_id = %s AND field_name = %s",
            (identity, name),
        ).fetchone()
        return row[0] if row else None

    def set_custom_field(self, identity: int, name: str, value: Any) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO record_field (record_id, field_name, value)
                VALUES (%s, %s, %s)
                ON CONFLICT (record_id, field_name) DO UPDATE SET value = EXCLUDED.value
                """,
                (identity, name, Jsonb(value)),
            )
        except psycopg.Error as exc:
            raise _store_error(f"Could not set field {name}", exc) from exc

    def get_meta(self, identity: int, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT meta_value FROM record_meta WHERE record_id = %s AND meta_key = %s",
            (identity, key),
        ).fetchone()
        return row[0] if row else None

    def set_meta(self, identity: int, key: str, value: str) -> None:
        try:
            self._conn.execute(
                """
                INSERT INTO record_meta (record_id, meta_key, meta_value)
                VALUES (%s, %s, %s)
                ON CONFLICT (record_id, meta_key) DO UPDATE SET meta_value = EXCLUDED.meta_value
                """,
                (identity, key, value),
            )
        except psycopg.Error as exc:
            raise _store_error(f"Could not set meta {key}", exc) from exc

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    def get_media(self, identity: int) -> int | None:
        row = self._conn.execute(
            "SELECT featured_media_id FROM content_record WHERE id = %s", (identity,)
        ).fetchone()
        return int(row[0]) if row and row[0] is not None else None

    def set_media(self, identity: int, media_id: int | None) -> None:
        try:
            self._conn.execute(
                "UPDATE content_record SET featured_media_id = %s WHERE id = %s",
                (media_id, identity),
            )
        except psycopg.Error as exc:
            raise _store_error("Could not set featured image", exc) from exc

    def _media_from_row(self, row: tuple | None) -> MediaRecord | None:
        if row is None:
            return None
        return MediaRecord(
            id=int(row[0]), url=row[1], source_url=row[2],
            content_type=row[3], parent_id=row[4],
        )

    def find_media(self, media_id: int) -> MediaRecord | None:
        return self._media_from_row(self._conn.execute(
            "SELECT id, url, source_url, content_type, parent_id FROM media WHERE id = %s",
            (media_id,),
        ).fetchone())

    def find_media_by_url(self, url: str) -> MediaRecord | None:
        return self._media_from_row(self._conn.execute(
            """
            SELECT id, url, source_url, content_type, parent_id
            FROM media
            WHERE url = %s OR source_url = %s
            ORDER BY id ASC
            LIMIT 1
            """,
            (url, url),
        ).fetchone())

    def media_url(self, media_id: int) -> str | None:
        row = self._conn.execute(
            "SELECT url FROM media WHERE id = %s", (media_id,)
        ).fetchone()
        return row[0] if row else None

    def create_media(
        self,
        source_url: str,
        filename: str,
        content_type: str | None,
        content: bytes,
        parent_id: int | None,
    ) -> int:
        # Callers treat a media failure as "no media"; the nested savepoint
        # keeps the enclosing row usable after a failed insert.
        try:
            with self.row_scope("media"):
                row = self._conn.execute(
                    """
                    INSERT INTO media (url, source_url, filename, content_type, content, parent_id)
                    VALUES (%s, %s, %s, %s, %s, %s)
                    ON CONFLICT (url) DO UPDATE SET url = EXCLUDED.url
                    RETURNING id
                    """,
                    (source_url, source_url, filename, content_type, content, parent_id),
                ).fetchone()
        except psycopg.Error as exc:
            raise _store_error("Could not create media", exc) from exc
        return int(row[0])

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def find_user(self, login_or_email: str) -> int | None:
        v = trim(login_or_email)
        if v is None:
            return None
        row = self._conn.execute(
            """
            SELECT id FROM app_user
            WHERE login = %s OR lower(email) = lower(%s) OR id = %s
            ORDER BY (login = %s) DESC, id ASC
            LIMIT 1
            """,
            (v, v, int(v) if is_identity(v) else -1, v),
        ).fetchone()
        return int(row[0]) if row else None

    def user_login(self, user_id: int) -> str | None:
        row = self._conn.execute(
            "SELECT login FROM app_user WHERE id = %s", (user_id,)
        ).fetchone()
        return row[0] if row else None
