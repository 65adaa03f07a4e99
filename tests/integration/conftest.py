"""Integration test fixtures.

Applies the content store migrations against an ephemeral PostgreSQL
database provided by pytest-postgresql, then seeds the record types,
taxonomies, field definitions and users the import tests rely on.
"""

from __future__ import annotations

from pathlib import Path

import psycopg
import pytest
from pytest_postgresql import factories

# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------

PROJECT_ROOT = Path(__file__).parent.parent.parent
MIGRATIONS = [
    PROJECT_ROOT / "migrations" / "0001_content_store.sql",
    PROJECT_ROOT / "migrations" / "0002_type_bindings.sql",
]

SEED_SQL = """
INSERT INTO content_type (name, label) VALUES
    ('course', 'Course'),
    ('page', 'Page');
INSERT INTO taxonomy (name, hierarchical) VALUES
    ('category', true),
    ('post_tag', false);
INSERT INTO field_definition (name, field_type, label) VALUES
    ('price', 'number', 'Price'),
    ('featured', 'true_false', 'Featured'),
    ('start_date', 'date_picker', 'Start date'),
    ('levels', 'checkbox', 'Levels'),
    ('modules', 'repeater', 'Modules'),
    ('related', 'relationship', 'Related');
INSERT INTO content_type_taxonomy (content_type, taxonomy) VALUES
    ('course', 'category'),
    ('course', 'post_tag');
INSERT INTO content_type_field (content_type, field_name, position) VALUES
    ('course', 'price', 0),
    ('course', 'levels', 1),
    ('course', 'modules', 2);
INSERT INTO app_user (login, email, display_name) VALUES
    ('editor', 'editor@example.com', 'Editor');
"""

# ---------------------------------------------------------------------------
# pytest-postgresql process fixture
# ---------------------------------------------------------------------------

postgresql_proc = factories.postgresql_proc()
postgresql = factories.postgresql("postgresql_proc")


# ---------------------------------------------------------------------------
# Schema fixture
# ---------------------------------------------------------------------------

@pytest.fixture(scope="function")
def db_conn(postgresql):
    """Return (conn, dsn) with schema applied and seed data loaded.

    Each test gets a fresh schema via function scope so tests are isolated.
    """
    dsn = (
        f"host={postgresql.info.host} "
        f"port={postgresql.info.port} "
        f"dbname={postgresql.info.dbname} "
        f"user={postgresql.info.user} "
        f"password={postgresql.info.password or ''}"
    )
    conn = psycopg.connect(dsn, autocommit=True)
    try:
        for migration in MIGRATIONS:
            conn.execute(migration.read_text(encoding="utf-8"))
        conn.execute(SEED_SQL)
        conn.autocommit = False
        yield conn, dsn
    finally:
        conn.close()
