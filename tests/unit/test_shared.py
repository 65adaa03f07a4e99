"""Unit tests for run-scoped helpers: RunContext, RunLog, RejectWriter, reports."""

from __future__ import annotations

import csv
import json
import re
from datetime import datetime

from quarry_import.shared import (
    ImportResult,
    RejectWriter,
    RowErrorRecord,
    RunContext,
    RunLog,
    write_run_report,
)


class TestRunContext:
    def test_log_path_layout(self, tmp_path):
        ctx = RunContext(run_id="r1", started_at=datetime(2024, 5, 1, 9, 5, 7), log_dir=tmp_path)
        assert ctx.log_path == tmp_path / "import_2024-05-01_090507.log"

    def test_create_namespaces_log_dir(self, tmp_path):
        ctx = RunContext.create(tmp_path, namespace="courses")
        assert ctx.log_dir == tmp_path / "courses" / "logs"
        assert ctx.run_id


class TestRunLog:
    def test_lazy_open_and_timestamped_lines(self, tmp_path):
        path = tmp_path / "nested" / "run.log"
        log = RunLog(path)
        assert not path.exists()
        log.write("hello")
        log.write("world")
        log.close()
        lines = path.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 2
        assert re.match(r"^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] hello$", lines[0])


class TestRejectWriter:
    def test_no_file_without_rejects(self, tmp_path):
        writer = RejectWriter(tmp_path / "r.csv")
        writer.close()
        assert not (tmp_path / "r.csv").exists()

    def test_columns(self, tmp_path):
        path = tmp_path / "r.csv"
        writer = RejectWriter(path)
        writer.write({"post_title": "A"}, "bad type", row_num=3)
        writer.close()
        with path.open(newline="", encoding="utf-8") as fh:
            rows = list(csv.DictReader(fh))
        assert rows == [{"_row_number": "3", "post_title": "A", "_reject_reason": "bad type"}]


class TestImportResult:
    def test_derived_counts(self):
        result = ImportResult(total_rows=10, created=2, updated=3, skipped=1, failed=1)
        assert result.success == 6
        assert result.processed == 7
        assert result.not_processed == 3
        assert result.summary() == "6 success (3 updated, 2 created, 1 unchanged), 1 failed"

    def test_snapshot_is_independent(self):
        result = ImportResult(total_rows=1)
        snap = result.snapshot()
        result.created += 1
        result.errors.append(RowErrorRecord(2, "new", "t", "m"))
        assert snap.created == 0
        assert snap.errors == []


class TestWriteRunReport:
    def test_report_contents(self, tmp_path):
        result = ImportResult(total_rows=1, failed=1, errors=[RowErrorRecord(2, "new", "T", "boom")])
        path = write_run_report(
            "run-1", "2024-05-01T00:00:00", "import", True,
            {"csv_path": "in.csv"}, result, report_dir=tmp_path,
        )
        assert path == tmp_path / "run-1.json"
        data = json.loads(path.read_text())
        assert data["dry_run"] is True
        assert data["csv_path"] == "in.csv"
        assert data["result"]["errors"] == [
            {"row": 2, "identity": "new", "title": "T", "message": "boom"},
        ]
