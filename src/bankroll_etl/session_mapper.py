"""bankroll_etl.session_mapper

Maps one tokenized PBT Bankroll row onto the poker_sessions schema.

Column lookups are case-insensitive after trimming.  Numeric columns never
raise: blank or non-numeric text falls back to the field default.  The only
row-level failure is a non-blank starttime/endtime that no timestamp format
accepts, raised as RowMappingError so the batch driver can attribute it to
the row and keep going.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Any, Mapping, Sequence

from bankroll_etl.classification_rules import (
    DEFAULT_RULES,
    ClassificationRules,
    classify_game_type,
    classify_variant,
)
from bankroll_etl.normalize import (
    format_amount,
    parse_int_or_default,
    parse_number_or_default,
    parse_ts,
    trim,
)
from bankroll_etl.shared import normalize_headers

DEFAULT_NOTES = "Imported from PBT Bankroll"
ORIGINAL_NOTES_PREFIX = "\n\nOriginal notes: "

EXPECTED_COLUMNS = (
    "starttime", "endtime", "variant", "game", "limit", "buyin", "cashout",
    "rebuys", "rebuycosts", "smallblind", "bigblind", "location", "type",
    "playingminutes", "sessionnote", "notes",
)


def missing_columns(header: Sequence[str]) -> list[str]:
    """Return the EXPECTED_COLUMNS absent from header (case-insensitive)."""
    present = {h.strip().lower() for h in header}
    return [c for c in EXPECTED_COLUMNS if c not in present]


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class RowMappingError(ValueError):
    """Raised when a single row cannot be turned into a SessionDTO."""


# ---------------------------------------------------------------------------
# SessionDTO
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SessionDTO:
    session_date: date
    game_type: str  # cash | tournament | sng
    variant: str
    location_type: str  # live | online
    buy_in: float
    cash_out: float
    notes: str
    stakes: str | None = None
    location: str | None = None
    is_ongoing: bool = False
    actual_start_time: datetime | None = None
    actual_end_time: datetime | None = None
    duration_hours: float | None = None
    total_rebuys: float = 0.0
    rebuy_count: int = 0

    @property
    def profit(self) -> float:
        return self.cash_out - self.buy_in - self.total_rebuys

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_date": self.session_date.isoformat(),
            "game_type": self.game_type,
            "variant": self.variant,
            "stakes": self.stakes,
            "location": self.location,
            "location_type": self.location_type,
            "buy_in": self.buy_in,
            "cash_out": self.cash_out,
            "is_ongoing": self.is_ongoing,
            "actual_start_time": (
                self.actual_start_time.isoformat() if self.actual_start_time else None
            ),
            "actual_end_time": (
                self.actual_end_time.isoformat() if self.actual_end_time else None
            ),
            "duration_hours": self.duration_hours,
            "total_rebuys": self.total_rebuys,
            "rebuy_count": self.rebuy_count,
            "notes": self.notes,
        }


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def _parse_required_ts(
    row: Mapping[str, str],
    column: str,
    source_tz: tzinfo | None,
) -> datetime | None:
    raw = trim(row.get(column))
    if raw is None:
        return None
    ts = parse_ts(raw)
    if ts is None:
        raise RowMappingError(f"invalid {column} {raw!r}")
    if source_tz is not None and ts.tzinfo is None:
        ts = ts.replace(tzinfo=source_tz)
    return ts


def _amount(row: Mapping[str, str], column: str) -> float:
    value = parse_number_or_default(row.get(column), 0.0)
    return value if value >= 0 else 0.0


def _derive_stakes(row: Mapping[str, str]) -> str | None:
    small_blind = parse_number_or_default(row.get("smallblind"), 0.0)
    big_blind = parse_number_or_default(row.get("bigblind"), 0.0)
    if small_blind > 0 or big_blind > 0:
        return f"{format_amount(small_blind)}/{format_amount(big_blind)}"
    return None


def _derive_duration(row: Mapping[str, str]) -> float | None:
    minutes = parse_number_or_default(row.get("playingminutes"), None)
    if minutes is None or minutes < 0:
        return None
    return minutes / 60


def _derive_location_type(row: Mapping[str, str]) -> str:
    return "online" if (row.get("type") or "").strip().lower() == "online" else "live"


def _derive_notes(row: Mapping[str, str]) -> str:
    session_note = trim(row.get("sessionnote"))
    original = trim(row.get("notes"))
    notes = session_note or ""
    if original:
        notes = f"{notes}{ORIGINAL_NOTES_PREFIX}{original}" if notes else original
    return notes or DEFAULT_NOTES


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------

def map_row_to_session(
    row: Mapping[str, str],
    *,
    rules: ClassificationRules | None = None,
    today: date | None = None,
    source_tz: tzinfo | None = None,
) -> SessionDTO:
    """Map one PBT row (column name -> cell text) to a SessionDTO.

    Args:
        row: Tokenized row; keys are matched case-insensitively.
        rules: Classification rules; DEFAULT_RULES when omitted.
        today: session_date for rows without a starttime (defaults to
            date.today()).
        source_tz: Attached to naive starttime/endtime values when given.

    Raises:
        RowMappingError: starttime or endtime is present but unparseable.
    """
    rules = rules or DEFAULT_RULES
    fields = normalize_headers(row)

    start = _parse_required_ts(fields, "starttime", source_tz)
    end = _parse_required_ts(fields, "endtime", source_tz)
    if start is not None:
        session_date = start.date()
    else:
        session_date = today or date.today()

    rebuy_count = parse_int_or_default(fields.get("rebuys"), 0)

    return SessionDTO(
        session_date=session_date,
        game_type=classify_game_type(fields.get("variant"), rules),
        variant=classify_variant(fields.get("game"), fields.get("limit"), rules),
        stakes=_derive_stakes(fields),
        location=trim(fields.get("location")),
        location_type=_derive_location_type(fields),
        buy_in=_amount(fields, "buyin"),
        cash_out=_amount(fields, "cashout"),
        is_ongoing=False,
        actual_start_time=start,
        actual_end_time=end,
        duration_hours=_derive_duration(fields),
        total_rebuys=_amount(fields, "rebuycosts"),
        rebuy_count=rebuy_count if rebuy_count >= 0 else 0,
        notes=_derive_notes(fields),
    )
