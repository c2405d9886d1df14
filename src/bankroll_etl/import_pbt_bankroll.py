"""bankroll_etl.import_pbt_bankroll

CLI entrypoint for importing PBT Bankroll session exports.

Phase 1 (parse) tokenizes the CSV and maps every row independently; a row
that fails to map is reported as "Row N: ..." and never affects other rows.
Phase 2 (DB) inserts each mapped session inside its own savepoint, so one
failed insert is rolled back and reported as "Session N: ..." while the loop
continues.

Usage:
    python -m bankroll_etl.import_pbt_bankroll \\
        --db-dsn "$BANKROLL_DB_DSN" \\
        --csv-path "exports/pbt_sessions.csv" \\
        --user-id "8c6f1d2e-5b8a-4f0e-9d7c-2f1b3a4c5d6e" \\
        --source-timezone "America/New_York" \\
        --rejects-path "artifacts/rejects/pbt_rejects.csv"
"""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Callable, Mapping, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import click
import psycopg

from bankroll_etl.classification_rules import (
    ClassificationRules,
    RuleSetValidationError,
    load_rule_set,
)
from bankroll_etl.pbt_csv import CsvFormatError, SkippedRow, parse_pbt_csv
from bankroll_etl.session_mapper import SessionDTO, map_row_to_session, missing_columns
from bankroll_etl.shared import (
    RejectWriter,
    RunCounters,
    insert_poker_session,
    summarize_sessions,
    write_run_report,
)

MODE = "pbt_bankroll_csv"
DEFAULT_ERROR_PREVIEW = 10

# Row numbers in error messages: 1-based, plus one for the header line.
ROW_NUMBER_OFFSET = 2


# ---------------------------------------------------------------------------
# Import result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RejectedRow:
    row_number: int
    row: dict[str, str]
    reason: str


@dataclass
class ImportResult:
    sessions: list[SessionDTO] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    skipped_rows: list[SkippedRow] = field(default_factory=list)
    rejected_rows: list[RejectedRow] = field(default_factory=list)
    # Source row for each entry of `sessions`, same order.
    source_rows: list[dict[str, str]] = field(default_factory=list)
    missing_columns: list[str] = field(default_factory=list)
    rows_read: int = 0

    @property
    def imported_count(self) -> int:
        return len(self.sessions)


def _map_row(
    index: int,
    row: dict[str, str],
    rules: ClassificationRules | None,
    today: date | None,
    source_tz: tzinfo | None,
) -> SessionDTO | RejectedRow:
    try:
        return map_row_to_session(row, rules=rules, today=today, source_tz=source_tz)
    except Exception as exc:
        return RejectedRow(index + ROW_NUMBER_OFFSET, row, str(exc))


def import_sessions_from_csv(
    csv_text: str,
    *,
    rules: ClassificationRules | None = None,
    today: date | None = None,
    source_tz: tzinfo | None = None,
) -> ImportResult:
    """Tokenize csv_text and map each row to a SessionDTO.

    Never raises for bad input: a tokenizer failure yields zero sessions and
    a single "CSV parsing error: ..." message, a row failure yields one
    "Row N: ..." message for that row only.
    """
    try:
        parsed = parse_pbt_csv(csv_text)
    except CsvFormatError as exc:
        return ImportResult(errors=[f"CSV parsing error: {exc}"])

    mapped = [
        _map_row(idx, row, rules, today, source_tz)
        for idx, row in enumerate(parsed.rows)
    ]
    rejected = [m for m in mapped if isinstance(m, RejectedRow)]
    accepted = [
        (m, row) for m, row in zip(mapped, parsed.rows) if isinstance(m, SessionDTO)
    ]
    return ImportResult(
        sessions=[m for m, _ in accepted],
        source_rows=[row for _, row in accepted],
        errors=[f"Row {r.row_number}: {r.reason}" for r in rejected],
        skipped_rows=list(parsed.skipped_rows),
        rejected_rows=rejected,
        missing_columns=missing_columns(parsed.header),
        rows_read=len(parsed.rows) + len(parsed.skipped_rows),
    )


def format_error_preview(errors: Sequence[str], limit: int = DEFAULT_ERROR_PREVIEW) -> list[str]:
    """Return at most `limit` errors plus an overflow line."""
    preview = list(errors[:limit])
    if len(errors) > limit:
        preview.append(f"... and {len(errors) - limit} more errors")
    return preview


# ---------------------------------------------------------------------------
# DB phase
# ---------------------------------------------------------------------------

@dataclass
class PersistOutcome:
    inserted: list[SessionDTO] = field(default_factory=list)
    session_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def persist_sessions(
    conn: psycopg.Connection,
    user_id: str,
    sessions: Sequence[SessionDTO],
    counters: RunCounters,
    rejects: RejectWriter | None = None,
    on_progress: Callable[[int, int], None] | None = None,
    source_rows: Sequence[Mapping[str, str]] | None = None,
) -> PersistOutcome:
    """Insert sessions in order, one savepoint each.

    A failed insert is rolled back to its savepoint and recorded as
    "Session N: ..." (1-based); later sessions are still attempted.
    When source_rows is given (aligned with sessions), a failed session is
    written to rejects as its source row so the rejects file keeps the
    export's columns; otherwise the session itself is written.
    The caller owns the surrounding transaction (commit or rollback).
    """
    outcome = PersistOutcome()
    total = len(sessions)
    for idx, session in enumerate(sessions):
        sp_name = f"session_{idx}"
        conn.execute(f"SAVEPOINT {sp_name}")
        try:
            session_id = insert_poker_session(conn, user_id, session)
            conn.execute(f"RELEASE SAVEPOINT {sp_name}")
        except Exception as exc:
            conn.execute(f"ROLLBACK TO SAVEPOINT {sp_name}")
            outcome.errors.append(f"Session {idx + 1}: {exc}")
            counters.db_phase_errors += 1
            if rejects is not None:
                row = source_rows[idx] if source_rows is not None else session.to_dict()
                rejects.write(row, f"db_error: {exc}")
        else:
            outcome.inserted.append(session)
            outcome.session_ids.append(session_id)
            counters.sessions_inserted += 1
        if on_progress is not None:
            on_progress(idx + 1, total)
    return outcome


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

@click.command()
@click.option("--db-dsn", required=True, envvar="BANKROLL_DB_DSN", help="PostgreSQL DSN")
@click.option(
    "--csv-path",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="PBT Bankroll CSV export",
)
@click.option("--user-id", required=True, help="Owner of the imported sessions")
@click.option(
    "--rule-file",
    default=None,
    type=click.Path(dir_okay=False),
    help="YAML classification rules (defaults to the built-in rules)",
)
@click.option(
    "--source-timezone",
    default=None,
    help="IANA zone of the export's naive timestamps, e.g. Europe/London",
)
@click.option("--dry-run", is_flag=True, default=False)
@click.option(
    "--rejects-path",
    default="artifacts/rejects/pbt_bankroll_rejects.csv",
    show_default=True,
    type=click.Path(),
)
@click.option("--report-dir", default="artifacts/reports", show_default=True, type=click.Path())
@click.option("--run-id", default=None, help="Override UUID for log correlation")
@click.option(
    "--max-error-preview",
    default=DEFAULT_ERROR_PREVIEW,
    type=int,
    show_default=True,
    help="Number of error messages echoed before summarizing the rest",
)
@click.option(
    "--max-reject-rate",
    default=1.0,
    type=float,
    show_default=True,
    help="Fraction of rows that may fail (mapping or insert) before the run is rolled back",
)
def main(
    db_dsn: str,
    csv_path: str,
    user_id: str,
    rule_file: str | None,
    source_timezone: str | None,
    dry_run: bool,
    rejects_path: str,
    report_dir: str,
    run_id: str | None,
    max_error_preview: int,
    max_reject_rate: float,
) -> None:
    """Import a PBT Bankroll CSV export into poker_sessions."""
    run_id = run_id or str(uuid.uuid4())
    started_at = datetime.now(timezone.utc).isoformat()
    counters = RunCounters()
    rejects = RejectWriter(Path(rejects_path))

    click.echo(f"[{run_id}] Starting {MODE} run (dry_run={dry_run})")

    if not user_id.strip():
        click.echo(f"[{run_id}] FATAL: --user-id must not be blank", err=True)
        sys.exit(1)

    source_tz = None
    if source_timezone:
        try:
            source_tz = ZoneInfo(source_timezone)
        except (ZoneInfoNotFoundError, ValueError):
            click.echo(f"[{run_id}] FATAL: unknown timezone {source_timezone!r}", err=True)
            sys.exit(1)

    rules = None
    if rule_file:
        try:
            rules = load_rule_set(Path(rule_file))
        except (RuleSetValidationError, OSError) as exc:
            click.echo(f"[{run_id}] FATAL: invalid rule file {rule_file}: {exc}", err=True)
            sys.exit(1)

    # Phase 1: parse + map
    try:
        csv_text = Path(csv_path).read_text(encoding="utf-8-sig")
    except (OSError, UnicodeDecodeError) as exc:
        click.echo(f"[{run_id}] FATAL: cannot read {csv_path}: {exc}", err=True)
        sys.exit(1)
    result = import_sessions_from_csv(csv_text, rules=rules, source_tz=source_tz)

    if not result.rows_read and result.errors:
        click.echo(f"[{run_id}] FATAL: {result.errors[0]}", err=True)
        sys.exit(1)

    counters.rows_read = result.rows_read
    counters.rows_skipped_column_mismatch = len(result.skipped_rows)
    counters.rows_rejected = len(result.rejected_rows)
    counters.sessions_mapped = result.imported_count
    if result.missing_columns:
        warning = "missing expected columns: " + ", ".join(result.missing_columns)
        counters.warnings.append(warning)
        click.echo(f"[{run_id}] WARNING: {warning}", err=True)
    for skipped in result.skipped_rows:
        counters.warnings.append(f"skipped {skipped.describe()}")
    for rejected in result.rejected_rows:
        rejects.write(rejected.row, f"row {rejected.row_number}: {rejected.reason}")

    click.echo(
        f"[{run_id}] Parse: {counters.rows_read} rows read, "
        f"{counters.rows_skipped_column_mismatch} skipped (column count mismatch), "
        f"{counters.rows_rejected} rejected, {counters.sessions_mapped} sessions mapped"
    )

    if not result.sessions:
        rejects.close()
        click.echo(f"[{run_id}] FATAL: no valid sessions found", err=True)
        _echo_errors(run_id, result.errors, max_error_preview)
        sys.exit(1)

    # Phase 2: DB
    def _progress(done: int, total: int) -> None:
        if done == total or done % 50 == 0:
            click.echo(f"[{run_id}] Inserted {done}/{total} ({done / total:.0%})")

    errors = list(result.errors)
    inserted: list[SessionDTO] = []
    fatal = False
    conn = psycopg.connect(db_dsn, autocommit=False)
    try:
        outcome = persist_sessions(
            conn, user_id, result.sessions, counters, rejects,
            on_progress=_progress, source_rows=result.source_rows,
        )
        errors.extend(outcome.errors)
        inserted = outcome.inserted
        failed = counters.rows_rejected + counters.db_phase_errors
        reject_rate = failed / counters.rows_read if counters.rows_read else 0.0
        if dry_run:
            conn.rollback()
            click.echo(f"[{run_id}] [dry-run] All changes rolled back.")
            fatal = counters.db_phase_errors > 0
        elif reject_rate > max_reject_rate:
            conn.rollback()
            click.echo(
                f"[{run_id}] FATAL: reject rate ({reject_rate:.2%}) exceeds threshold of "
                f"{max_reject_rate:.2%}; rolling back.",
                err=True,
            )
            fatal = True
        else:
            conn.commit()
    except Exception as exc:
        conn.rollback()
        click.echo(f"[{run_id}] FATAL: run failed with DB error: {exc}", err=True)
        fatal = True
    finally:
        conn.close()
        rejects.close()

    rolled_back = dry_run or fatal
    if rolled_back:
        inserted = []
        counters.sessions_inserted = 0
    report_path = write_run_report(
        run_id,
        started_at,
        MODE,
        dry_run,
        {"csv_path": csv_path, "rejects_path": rejects_path},
        counters,
        extra=_report_extra(result, rules, errors, inserted),
        report_dir=Path(report_dir),
    )

    click.echo(
        f"[{run_id}] Imported {counters.sessions_inserted} of {counters.sessions_mapped} "
        f"sessions ({len(errors)} errors)"
        f"{', rolled back' if rolled_back else ''}. Report: {report_path}"
    )
    _echo_errors(run_id, errors, max_error_preview)

    if fatal:
        sys.exit(1)


def _report_extra(
    result: ImportResult,
    rules: ClassificationRules | None,
    errors: list[str],
    inserted: list[SessionDTO],
) -> dict[str, Any]:
    return {
        "rule_set": {
            "version": rules.version if rules else "builtin",
            "yaml_hash": rules.yaml_hash if rules else None,
        },
        "skipped_rows": [s.describe() for s in result.skipped_rows],
        "errors": errors,
        "summary": summarize_sessions(inserted),
    }


def _echo_errors(run_id: str, errors: Sequence[str], limit: int) -> None:
    if not errors:
        return
    click.echo(f"[{run_id}] Errors ({len(errors)}):", err=True)
    for line in format_error_preview(errors, limit):
        click.echo(f"  - {line}", err=True)


if __name__ == "__main__":
    main()
