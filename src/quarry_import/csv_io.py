"""quarry_import.csv_io

Reading and writing spreadsheet CSV files.

  - UTF-8 BOM tolerant on read; BOM written on export so spreadsheet apps
    detect the encoding.
  - Header whitespace stripped.
  - Rows whose column count differs from the header are dropped.
"""

from __future__ import annotations

import csv
import logging
from pathlib import Path

log = logging.getLogger(__name__)


class CsvReadError(Exception):
    """Raised when a CSV file cannot be read as an import source."""


def read_csv(csv_path: Path) -> tuple[list[str], list[dict[str, str]]]:
    """Return (headers, rows) with every row a header-keyed string map."""
    if not csv_path.exists():
        raise CsvReadError(f"CSV file not found: {csv_path}")

    with csv_path.open(encoding="utf-8-sig", newline="") as fh:
        reader = csv.reader(fh)
        try:
            raw_headers = next(reader)
        except StopIteration:
            raise CsvReadError("Invalid CSV file - no headers found") from None

        headers = [h.strip() for h in raw_headers]
        if not any(headers):
            raise CsvReadError("Invalid CSV file - no headers found")

        rows: list[dict[str, str]] = []
        dropped = 0
        for values in reader:
            if len(values) != len(headers):
                dropped += 1
                continue
            rows.append(dict(zip(headers, values)))

    if dropped:
        log.warning("%s: dropped %d row(s) with a column count mismatch", csv_path.name, dropped)
    return headers, rows


def write_csv(csv_path: Path, headers: list[str], rows: list[dict[str, str]]) -> Path:
    """Write rows with a UTF-8 BOM; missing cells are written empty."""
    csv_path.parent.mkdir(parents=True, exist_ok=True)
    with csv_path.open("w", encoding="utf-8-sig", newline="") as fh:
        writer = csv.DictWriter(fh, fieldnames=headers, extrasaction="ignore", restval="")
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
    return csv_path
