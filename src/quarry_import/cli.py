"""quarry_import.cli

CLI entrypoint for spreadsheet imports into the content store.

Modes (--mode):
  import   reconcile a CSV against the store (default)
  preview  report per-row actions and field changes without writing
  export   write every record of --post-type to a CSV

Usage (import):
    python -m quarry_import.cli \\
        --mode import \\
        --db-dsn "$DB_DSN" \\
        --csv-path "exports/courses.csv" \\
        --config "config/import.yml"

Usage (export):
    python -m quarry_import.cli \\
        --mode export \\
        --db-dsn "$DB_DSN" \\
        --post-type course \\
        --output-path "exports/courses.csv"
"""

from __future__ import annotations

import logging
import sys
import uuid
from datetime import datetime
from pathlib import Path
from typing import NoReturn

import click
import psycopg

from quarry_import.batch import preview_import, run_import
from quarry_import.columns import HeaderValidationError, suggest_field_mapping
from quarry_import.config import ConfigValidationError, ImportOptions, load_import_config
from quarry_import.csv_io import CsvReadError, read_csv, write_csv
from quarry_import.export import export_rows
from quarry_import.media import HttpMediaFetcher
from quarry_import.shared import ImportResult, RejectWriter, RunContext, write_run_report
from quarry_import.store_pg import PostgresRecordStore


def _fatal(run_id: str, message: str) -> NoReturn:
    click.echo(f"[{run_id}] FATAL: {message}", err=True)
    sys.exit(1)


def _load_options(config: str | None, run_id: str, **overrides) -> ImportOptions:
    try:
        options = load_import_config(Path(config)) if config else ImportOptions()
    except (ConfigValidationError, FileNotFoundError) as exc:
        _fatal(run_id, f"config: {exc}")
    return options.with_overrides(**overrides)


def _load_csv(csv_path: str | None, run_id: str) -> tuple[list[str], list[dict[str, str]]]:
    if not csv_path:
        _fatal(run_id, "--csv-path is required for this mode")
    try:
        return read_csv(Path(csv_path))
    except CsvReadError as exc:
        _fatal(run_id, str(exc))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option(
    "--mode",
    default="import",
    type=click.Choice(["import", "preview", "export"]),
    show_default=True,
    help="Run mode",
)
@click.option("--db-dsn", required=True, help="PostgreSQL DSN")
@click.option("--csv-path", default=None, type=click.Path(), help="[import|preview] Input CSV")
@click.option("--config", default=None, type=click.Path(), help="YAML import config")
@click.option("--post-type", default=None, help="[export] Record type; [import] default type")
@click.option("--output-path", default=None, type=click.Path(), help="[export] Output CSV")
# option overrides
@click.option("--update-existing/--no-update-existing", default=None)
@click.option("--create-taxonomies/--no-create-taxonomies", default=None)
@click.option("--skip-on-error/--stop-on-error", default=None)
@click.option("--batch-size", default=None, type=int)
@click.option("--preview-limit", default=None, type=int, help="[preview] Rows to preview")
# shared flags
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="./artifacts/rejects/quarry_rejects.csv",
    show_default=True,
)
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option("--verbose", is_flag=True, default=False)
def main(
    mode: str,
    db_dsn: str,
    csv_path: str | None,
    config: str | None,
    post_type: str | None,
    output_path: str | None,
    update_existing: bool | None,
    create_taxonomies: bool | None,
    skip_on_error: bool | None,
    batch_size: int | None,
    preview_limit: int | None,
    dry_run: bool,
    rejects_path: str,
    run_id: str | None,
    verbose: bool,
) -> None:
    """Spreadsheet import/export for the content store."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.utcnow().isoformat()

    click.echo(f"[{run_id}] Starting {mode} run (dry_run={dry_run})")

    if mode == "export":
        _run_export(db_dsn, post_type, output_path, run_id)
        return

    options = _load_options(
        config,
        run_id,
        update_existing=update_existing,
        create_taxonomies=create_taxonomies,
        skip_on_error=skip_on_error,
        batch_size=batch_size,
        default_post_type=post_type,
    )
    headers, rows = _load_csv(csv_path, run_id)
    click.echo(f"[{run_id}] CSV loaded: {len(rows)} rows, {len(headers)} columns")

    if mode == "preview":
        _run_preview(db_dsn, headers, rows, options, preview_limit, run_id)
        return

    context = RunContext.create(options.log_dir, options.namespace, run_id)
    rejects = RejectWriter(Path(rejects_path))
    store = PostgresRecordStore.connect(db_dsn)

    def on_progress(percent: float, snapshot: ImportResult) -> None:
        click.echo(f"[{run_id}] {percent:5.1f}% {snapshot.summary()}")

    try:
        result = run_import(
            headers,
            rows,
            store,
            options,
            context,
            media_fetcher=HttpMediaFetcher(timeout=options.media_timeout),
            progress_callback=on_progress,
            rejects=rejects,
        )
        if dry_run:
            store.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
        else:
            store.commit()
            click.echo(f"[{run_id}] Committed.")
    except HeaderValidationError as exc:
        store.rollback()
        suggestions = {k: v for k, v in suggest_field_mapping(headers).items() if k != v}
        if suggestions:
            click.echo(f"[{run_id}] Suggested field mapping: {suggestions}", err=True)
        _fatal(run_id, str(exc))
    except psycopg.Error as exc:
        store.rollback()
        _fatal(run_id, f"run failed with DB error: {exc}")
    finally:
        rejects.close()
        store.close()

    click.echo(f"[{run_id}] {result.summary()}")
    for error in result.errors[: options.error_preview_limit]:
        click.echo(f"[{run_id}]   Row {error.row} (ID:{error.identity}): {error.message}", err=True)
    if len(result.errors) > options.error_preview_limit:
        click.echo(
            f"[{run_id}]   ... and {len(result.errors) - options.error_preview_limit} more",
            err=True,
        )
    click.echo(f"[{run_id}] Log file: {context.log_path}")

    report_path = write_run_report(
        run_id, started_at, mode, dry_run,
        {"csv_path": csv_path, "config": config},
        result,
    )
    click.echo(f"[{run_id}] Run report: {report_path}")

    if result.halted_early:
        click.echo(
            f"[{run_id}] Halted early; {result.not_processed} row(s) not processed.",
            err=True,
        )
        sys.exit(1)


def _run_preview(
    db_dsn: str,
    headers: list[str],
    rows: list[dict[str, str]],
    options: ImportOptions,
    limit: int | None,
    run_id: str,
) -> None:
    store = PostgresRecordStore.connect(db_dsn)
    try:
        previews = preview_import(headers, rows, store, options, limit=limit)
    except HeaderValidationError as exc:
        _fatal(run_id, str(exc))
    finally:
        store.rollback()
        store.close()

    for p in previews:
        target = f"ID {p.identity}" if p.identity else "new"
        if p.error:
            click.echo(f"[{run_id}] Row {p.row} {p.action} ({target}): {p.error}")
            continue
        click.echo(f'[{run_id}] Row {p.row} {p.action} ({target}) "{p.title}"')
        for change in p.changes or []:
            click.echo(f"[{run_id}]     {change.label}: {change.old!r} -> {change.new!r}")


def _run_export(
    db_dsn: str,
    post_type: str | None,
    output_path: str | None,
    run_id: str,
) -> None:
    if not post_type or not output_path:
        _fatal(run_id, "--post-type and --output-path are required for export")
    store = PostgresRecordStore.connect(db_dsn)
    try:
        headers, rows = export_rows(store, post_type)
    finally:
        store.rollback()
        store.close()
    path = write_csv(Path(output_path), headers, rows)
    click.echo(f"[{run_id}] Exported {len(rows)} {post_type} record(s) to {path}")


if __name__ == "__main__":
    main()
