"""bankroll_etl.shared

Shared utilities for the bankroll importers.
Includes RejectWriter, RunCounters, header normalization, the
poker_sessions insert helper, and report-writing support.
"""

from __future__ import annotations

import csv
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Iterable, Mapping

import psycopg

if TYPE_CHECKING:
    from bankroll_etl.session_mapper import SessionDTO


# ---------------------------------------------------------------------------
# RejectWriter
# ---------------------------------------------------------------------------

class RejectWriter:
    """Lazy-open CSV writer for rejected rows."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._fh = None
        self._writer = None
        self.count = 0

    def write(self, row: Mapping[str, Any], reason: str) -> None:
        if self._fh is None:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._fh = open(self._path, "w", newline="", encoding="utf-8")
            fieldnames = list(row.keys()) + ["_reject_reason"]
            self._writer = csv.DictWriter(
                self._fh, fieldnames=fieldnames, extrasaction="ignore"
            )
            self._writer.writeheader()
        out = dict(row)
        out["_reject_reason"] = reason
        self._writer.writerow(out)
        self._fh.flush()
        self.count += 1

    def close(self) -> None:
        if self._fh:
            self._fh.close()


# ---------------------------------------------------------------------------
# RunCounters
# ---------------------------------------------------------------------------

@dataclass
class RunCounters:
    rows_read: int = 0
    rows_skipped_column_mismatch: int = 0
    rows_rejected: int = 0
    sessions_mapped: int = 0
    sessions_inserted: int = 0
    db_phase_errors: int = 0
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "rows_read": self.rows_read,
            "rows_skipped_column_mismatch": self.rows_skipped_column_mismatch,
            "rows_rejected": self.rows_rejected,
            "sessions_mapped": self.sessions_mapped,
            "sessions_inserted": self.sessions_inserted,
            "db_phase_errors": self.db_phase_errors,
            "warnings": self.warnings,
        }


# ---------------------------------------------------------------------------
# Header normalization
# ---------------------------------------------------------------------------

def normalize_headers(raw: Mapping[str, str]) -> dict[str, str]:
    """Return a new dict with header keys stripped and lowercased.

    Keys that collide after normalization keep the last value.
    """
    return {k.strip().lower(): v for k, v in raw.items()}


# ---------------------------------------------------------------------------
# Shared DB helpers: poker session
# ---------------------------------------------------------------------------

def insert_poker_session(
    conn: psycopg.Connection,
    user_id: str,
    session: SessionDTO,
    source_system: str = "pbt_bankroll_csv",
) -> str:
    """Insert one session for user_id and return its id. Caller manages transaction."""
    row = conn.execute(
        """
        INSERT INTO poker_sessions
          (user_id, session_date, actual_start_time, actual_end_time,
           duration_hours, game_type, variant, stakes, location,
           location_type, buy_in, cash_out, total_rebuys, rebuy_count,
           notes, is_ongoing, source_system)
        VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
            user_id, session.session_date, session.actual_start_time,
            session.actual_end_time, session.duration_hours,
            session.game_type, session.variant, session.stakes,
            session.location, session.location_type, session.buy_in,
            session.cash_out, session.total_rebuys, session.rebuy_count,
            session.notes, session.is_ongoing, source_system,
        ),
    ).fetchone()
    return str(row[0])


# ---------------------------------------------------------------------------
# Session summary
# ---------------------------------------------------------------------------

def summarize_sessions(sessions: Iterable[SessionDTO]) -> dict[str, Any]:
    """Totals shown after an import: count, profit, hours, last session date."""
    total_sessions = 0
    total_profit = 0.0
    total_hours = 0.0
    last_session_date = None
    for s in sessions:
        total_sessions += 1
        total_profit += s.profit
        total_hours += s.duration_hours or 0.0
        if last_session_date is None or s.session_date > last_session_date:
            last_session_date = s.session_date
    return {
        "total_sessions": total_sessions,
        "total_profit": round(total_profit, 2),
        "total_hours": round(total_hours, 2),
        "last_session_date": last_session_date.isoformat() if last_session_date else None,
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
    counters: RunCounters,
    extra: dict[str, Any] | None = None,
    report_dir: Path = Path("./artifacts/reports"),
) -> Path:
    report = {
        "run_id": run_id,
        "mode": mode,
        "started_at": started_at,
        "finished_at": datetime.now(timezone.utc).isoformat(),
        "dry_run": dry_run,
        **source_paths,
        "counters": counters.to_dict(),
        **(extra or {}),
    }
    report_path = report_dir / f"{run_id}.json"
    report_path.parent.mkdir(parents=True, exist_ok=True)
    report_path.write_text(json.dumps(report, indent=2, default=str))
    return report_path
