"""quarry_import.batch

Batch controller: drive every CSV row through the RowImporter.

  - One forward pass in CSV order; each row ends created, updated, skipped
    or failed.
  - Row failures are isolated: recorded in ImportResult.errors, the run log
    and (optionally) a rejects CSV, then the next row is attempted, unless
    skip_on_error is off, in which case the run halts.
  - Rows are processed in chunks of options.batch_size; after each chunk
    the progress callback gets (percent, snapshot) and the store's read
    cache is released.

User-facing row numbers are index + 2 (header row + 0-index).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterator

from quarry_import.changes import ChangeSet
from quarry_import.columns import (
    ID_COLUMN,
    apply_field_mapping,
    classify_headers,
    validate_headers,
)
from quarry_import.config import ImportOptions
from quarry_import.media import MediaFetcher, MediaResolver, NullMediaFetcher
from quarry_import.normalize import title_snippet, trim
from quarry_import.row_importer import (
    FAILED,
    SKIPPED,
    UPDATED,
    RowError,
    RowImporter,
    RowResult,
)
from quarry_import.shared import (
    ImportResult,
    RejectWriter,
    RowErrorRecord,
    RunContext,
    RunLog,
)
from quarry_import.store import RecordStore, StoreError

log = logging.getLogger(__name__)

ProgressCallback = Callable[[float, ImportResult], None]

_ROW_NUMBER_OFFSET = 2


def _chunks(rows: list[dict[str, str]], size: int) -> Iterator[list[dict[str, str]]]:
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def run_import(
    headers: list[str],
    rows: list[dict[str, str]],
    store: RecordStore,
    options: ImportOptions,
    context: RunContext,
    *,
    media_fetcher: MediaFetcher | None = None,
    progress_callback: ProgressCallback | None = None,
    rejects: RejectWriter | None = None,
) -> ImportResult:
    """Import all rows and return the aggregated ImportResult.

    Raises HeaderValidationError before touching any row if the header row
    cannot identify records.  Row-level problems never raise.
    """
    headers, rows = apply_field_mapping(headers, rows, options.field_mapping)
    validate_headers(headers, options.default_post_type)
    columns = classify_headers(headers)
    importer = RowImporter(
        store, columns, options, MediaResolver(store, media_fetcher or NullMediaFetcher()),
    )

    run_log = RunLog(context.log_path)
    result = ImportResult(total_rows=len(rows), log_file=context.log_path.name)

    run_log.write("=== IMPORT STARTED ===")
    run_log.write(f"Run: {context.run_id}")
    run_log.write(f"Options: {options.describe()}")
    run_log.write(f"CSV loaded: {len(rows)} rows, {len(headers)} columns")
    if columns.ignored:
        run_log.write(f"Ignored columns: {', '.join(c.header for c in columns.ignored)}")
    run_log.write("--- Processing rows ---")

    try:
        chunks = list(_chunks(rows, max(1, options.batch_size)))
        index = 0
        for chunk_index, chunk in enumerate(chunks):
            for row in chunk:
                row_num = index + _ROW_NUMBER_OFFSET
                index += 1
                ok = _process_row(importer, row, row_num, result, run_log, rejects)
                if not ok and not options.skip_on_error:
                    result.halted_early = True
                    run_log.write("Stopping import due to error (skip_on_error=false)")
                    break

            if progress_callback is not None:
                progress_callback((chunk_index + 1) / len(chunks) * 100, result.snapshot())
            store.clear_cache()

            if result.halted_early:
                break

        run_log.write("--- Import complete ---")
        run_log.write(f"Results: {result.summary()}")
        if result.halted_early:
            run_log.write(f"Halted early: {result.not_processed} row(s) not processed")
        run_log.write("=== IMPORT FINISHED ===")
    finally:
        run_log.close()

    return result


def _process_row(
    importer: RowImporter,
    row: dict[str, str],
    row_num: int,
    result: ImportResult,
    run_log: RunLog,
    rejects: RejectWriter | None,
) -> bool:
    """Import one row and record its outcome.  Returns False if the row failed."""
    identity = trim(row.get(ID_COLUMN)) or "new"
    title = title_snippet(row.get("post_title"))

    try:
        outcome = importer.import_row(row, row_num)
    except Exception as exc:
        log.exception("row %d raised unexpectedly", row_num)
        outcome = RowResult.failure(f"Exception: {exc}")
        run_log.write(f"Row {row_num} EXCEPTION (ID:{identity}): {outcome.message}")
    else:
        if outcome.failed:
            run_log.write(f'Row {row_num} FAILED (ID:{identity} "{title}"): {outcome.message}')

    if outcome.failed:
        result.failed += 1
        result.errors.append(RowErrorRecord(row_num, identity, title, outcome.message or ""))
        if rejects is not None:
            rejects.write(row, outcome.message or "", row_num)
        return False

    if outcome.action == UPDATED:
        result.updated += 1
        run_log.write(f'Row {row_num} UPDATED post ID {outcome.identity} "{title}"')
    elif outcome.action == SKIPPED:
        result.skipped += 1
        reason = "not applied" if outcome.unapplied else "unchanged"
        run_log.write(f'Row {row_num} SKIPPED ({reason}) post ID {outcome.identity} "{title}"')
    else:
        result.created += 1
        run_log.write(f'Row {row_num} CREATED post ID {outcome.identity} "{title}"')
    if outcome.unapplied:
        run_log.write(
            f"Row {row_num} NOT APPLIED post ID {outcome.identity}: "
            f"{', '.join(outcome.unapplied)} (value could not be resolved)"
        )
    return True


# ---------------------------------------------------------------------------
# Preview
# ---------------------------------------------------------------------------

@dataclass
class RowPreview:
    row: int
    identity: int | None
    title: str
    action: str
    changes: ChangeSet | None = None
    error: str | None = None

    def to_dict(self) -> dict:
        return {
            "row": self.row,
            "identity": self.identity,
            "title": self.title,
            "action": self.action,
            "changes": self.changes.to_list() if self.changes else [],
            "error": self.error,
        }


def preview_import(
    headers: list[str],
    rows: list[dict[str, str]],
    store: RecordStore,
    options: ImportOptions,
    limit: int | None = None,
) -> list[RowPreview]:
    """Report what run_import would do for each row, without writing.

    Media URLs are only looked up, never downloaded.
    """
    headers, rows = apply_field_mapping(headers, rows, options.field_mapping)
    validate_headers(headers, options.default_post_type)
    importer = RowImporter(store, classify_headers(headers), options)

    previews: list[RowPreview] = []
    for index, row in enumerate(rows if limit is None else rows[:limit]):
        row_num = index + _ROW_NUMBER_OFFSET
        title = title_snippet(row.get("post_title"))
        try:
            plan = importer.plan(row)
        except (RowError, StoreError) as exc:
            previews.append(RowPreview(row_num, None, title, FAILED, error=str(exc)))
            continue
        identity = plan.record.id if plan.record is not None else None
        previews.append(RowPreview(row_num, identity, title, plan.action, plan.changes))
    store.clear_cache()
    return previews
