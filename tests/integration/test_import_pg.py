"""End-to-end import tests against PostgreSQL: CSV in, records out, re-import."""

from __future__ import annotations

import csv
from pathlib import Path

import pytest
from click.testing import CliRunner

from quarry_import.batch import run_import
from quarry_import.cli import main
from quarry_import.config import ImportOptions
from quarry_import.csv_io import read_csv, write_csv
from quarry_import.export import export_rows
from quarry_import.shared import RunContext
from quarry_import.store_pg import PostgresRecordStore

HEADERS = [
    "ID", "post_title", "post_type", "post_status",
    "tax_category", "acf_price", "acf_levels", "acf_modules", "meta_sku",
]


def _write_csv(path: Path, rows: list[dict[str, str]], headers=HEADERS) -> Path:
    with path.open("w", newline="", encoding="utf-8") as fh:
        writer = csv.DictWriter(fh, fieldnames=headers)
        writer.writeheader()
        for row in rows:
            writer.writerow({h: row.get(h, "") for h in headers})
    return path


def _row(**kwargs) -> dict[str, str]:
    row = {h: "" for h in HEADERS}
    row.update({"post_type": "course", "post_status": "draft"})
    row.update(kwargs)
    return row


@pytest.fixture
def context(tmp_path) -> RunContext:
    return RunContext.create(tmp_path / "logs", run_id="it-run")


class TestImportRoundTrip:
    def test_create_export_reimport_skips_everything(self, db_conn, context):
        conn, _ = db_conn
        store = PostgresRecordStore(conn)
        rows = [
            _row(
                post_title="Intro", post_status="publish", tax_category="News, Events",
                acf_price="10", acf_levels="beginner|advanced",
                acf_modules='[{"title": "One"}]', meta_sku="C-1",
            ),
            _row(post_title="Second"),
        ]
        first = run_import(HEADERS, rows, store, ImportOptions(), context)
        assert first.created == 2
        assert first.failed == 0
        conn.commit()

        headers, exported = export_rows(store, "course", HEADERS)
        assert exported[0]["tax_category"] == "News, Events"
        assert exported[0]["acf_price"] == "10"
        assert exported[0]["acf_levels"] == "beginner|advanced"

        second = run_import(headers, exported, store, ImportOptions(), context)
        assert second.skipped == 2
        assert second.updated == 0

    def test_default_export_carries_every_column_kind(self, db_conn, context):
        conn, _ = db_conn
        store = PostgresRecordStore(conn)
        headers = HEADERS + ["post_author"]
        rows = [dict(
            _row(
                post_title="Intro", tax_category="News", acf_price="10",
                acf_levels="beginner|advanced", meta_sku="C-1",
            ),
            post_author="editor",
        )]
        assert run_import(headers, rows, store, ImportOptions(), context).created == 1
        conn.commit()

        headers, exported = export_rows(store, "course")
        for header in ("post_author", "tax_category", "tax_post_tag", "acf_price",
                       "acf_levels", "acf_modules", "meta_sku"):
            assert header in headers
        assert exported[0]["post_author"] == "editor"
        assert exported[0]["tax_category"] == "News"
        assert exported[0]["acf_price"] == "10"
        assert exported[0]["meta_sku"] == "C-1"

        second = run_import(headers, exported, store, ImportOptions(), context)
        assert second.skipped == 1
        assert second.updated == 0

    def test_update_and_clear_terms(self, db_conn, context):
        conn, _ = db_conn
        store = PostgresRecordStore(conn)
        first = run_import(
            HEADERS, [_row(post_title="A", tax_category="News")], store, ImportOptions(), context,
        )
        assert first.created == 1
        identity = store.list_identities("course")[0]

        result = run_import(
            HEADERS,
            [_row(ID=str(identity), post_title="A renamed", tax_category="")],
            store, ImportOptions(), context,
        )
        assert result.updated == 1
        assert store.resolve(identity).post_title == "A renamed"
        assert store.get_taxonomy_terms(identity, "category") == []


class TestPartialFailure:
    def test_bad_row_rolled_back_and_run_continues(self, db_conn, context):
        conn, _ = db_conn
        store = PostgresRecordStore(conn)
        rows = [
            _row(post_title="Good one"),
            _row(post_title="Bad status", post_status="bogus", tax_category="Orphan"),
            _row(post_title="Good two"),
        ]
        result = run_import(HEADERS, rows, store, ImportOptions(), context)
        assert result.created == 2
        assert result.failed == 1
        assert result.errors[0].row == 3
        assert "Could not create record" in result.errors[0].message
        conn.commit()

        titles = [r[0] for r in conn.execute(
            "SELECT post_title FROM content_record ORDER BY id"
        ).fetchall()]
        assert titles == ["Good one", "Good two"]
        orphan = conn.execute("SELECT count(*) FROM term WHERE name = 'Orphan'").fetchone()[0]
        assert orphan == 0


class TestCli:
    def test_import_then_export(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = _write_csv(tmp_path / "in.csv", [_row(post_title="Via CLI", tax_category="News")])

        runner = CliRunner()
        result = runner.invoke(main, [
            "--db-dsn", dsn, "--csv-path", str(csv_path), "--run-id", "cli-run",
        ])
        assert result.exit_code == 0, result.output
        assert "Committed." in result.output
        assert (tmp_path / "artifacts" / "reports" / "cli-run.json").exists()

        out_path = tmp_path / "out.csv"
        result = runner.invoke(main, [
            "--mode", "export", "--db-dsn", dsn,
            "--post-type", "course", "--output-path", str(out_path),
        ])
        assert result.exit_code == 0, result.output
        _, rows = read_csv(out_path)
        assert [r["post_title"] for r in rows] == ["Via CLI"]

    def test_dry_run_rolls_back(self, db_conn, tmp_path, monkeypatch):
        conn, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = _write_csv(tmp_path / "in.csv", [_row(post_title="Ghost")])
        result = CliRunner().invoke(main, [
            "--db-dsn", dsn, "--csv-path", str(csv_path), "--dry-run",
        ])
        assert result.exit_code == 0, result.output
        assert "[dry-run] All changes rolled back." in result.output
        assert conn.execute("SELECT count(*) FROM content_record").fetchone()[0] == 0

    def test_header_failure_exits_non_zero(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = tmp_path / "in.csv"
        write_csv(csv_path, ["Title", "Body"], [{"Title": "A", "Body": "x"}])
        result = CliRunner().invoke(main, ["--db-dsn", dsn, "--csv-path", str(csv_path)])
        assert result.exit_code == 1
        assert "post_title" in result.output

    def test_stop_on_error_exits_non_zero(self, db_conn, tmp_path, monkeypatch):
        _, dsn = db_conn
        monkeypatch.chdir(tmp_path)
        csv_path = _write_csv(tmp_path / "in.csv", [
            _row(post_title="Bad", post_type="widget"),
            _row(post_title="Never"),
        ])
        result = CliRunner().invoke(main, [
            "--db-dsn", dsn, "--csv-path", str(csv_path), "--stop-on-error",
        ])
        assert result.exit_code == 1
        assert "Halted early" in result.output
