"""quarry_import.shared

Run-scoped helpers shared by the batch controller and the CLI:
RunContext, RunLog, RejectWriter, ImportResult and report writing.
"""

from __future__ import annotations

import csv
import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO


# ---------------------------------------------------------------------------
# RunContext
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RunContext:
    """Identity and output locations of one import run.

    Passed explicitly into the batch controller; there is no module-level
    "current log file".
    """

    run_id: str
    started_at: datetime
    log_dir: Path

    @classmethod
    def create(
        cls,
        log_dir: str | Path,
        namespace: str = "quarry",
        run_id: str | None = None,
    ) -> "RunContext":
        return cls(
            run_id=run_id or str(uuid.uuid4()),
            started_at=datetime.now(),
            log_dir=Path(log_dir) / namespace / "logs",
        )

    @property
    def log_path(self) -> Path:
        return self.log_dir / f"import_{self.started_at:%Y-%m-%d_%H%M%S}.log"


# ---------------------------------------------------------------------------
# RunLog
# ---------------------------------------------------------------------------

class RunLog:
    """Append-only per-run log; every line is flushed before returning."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh: TextIO | None = None

    @property
    def path(self) -> Path:
        return self._path

    def write(self, message: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "a", encoding="utf-8")
        self._fh.write(f"[{datetime.now():%Y-%m-%d %H:%M:%S}] {message}\n")
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()
            self._fh = None


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None

    def write(self, row: dict[str, str], reason: str, row_num: int | None = None) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = ["_row_number"] + list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_row_number"] = "" if row_num is None else str(row_num)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# ImportResult
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RowErrorRecord:
    row: int
    identity: str
    title: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "identity": self.identity,
            "title": self.title,
            "message": self.message,
        }


@dataclass
class ImportResult:
    total_rows: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[RowErrorRecord] = field(default_factory=list)
    log_file: str | None = None
    halted_early: bool = False

    @property
    def success(self) -> int:
        return self.created + self.updated + self.skipped

    @property
    def processed(self) -> int:
        return self.success + self.failed

    @property
    def not_processed(self) -> int:
        return self.total_rows - self.processed

    def snapshot(self) -> "ImportResult":
        return ImportResult(
            total_rows=self.total_rows,
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            failed=self.failed,
            errors=list(self.errors),
            log_file=self.log_file,
            halted_early=self.halted_early,
        )

    def summary(self) -> str:
        return (
            f"{self.success} success ({self.updated} updated, {self.created} created, "
            f"{self.skipped} unchanged), {self.failed} failed"
        )

    def to_dict(self, error_limit: int | None = None) -> dict[str, Any]:
        errors = self.errors if error_limit is None else self.errors[:error_limit]
        return {
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": self.failed,
            "total_rows": self.total_rows,
            "not_processed": self.not_processed,
            "halted_early": self.halted_early,
            "error_count": len(self.errors),
            "errors": [e.to_dict() for e in errors],
            "log_file": self.log_file,
        }


# ---------------------------------------------------------------------------
# Report writer
# ---------------------------------------------------------------------------

def write_run_report(
    run_id: str,
    started_at: str,
    mode: str,
    dry_run: bool,
    source_paths: dict[str, str],
    result: ImportResult,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.utcnow().isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "result": result.to_dict(),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
