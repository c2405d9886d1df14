"""Normalization functions for PBT Bankroll CSV ingestion.

All functions accept str | None and return the appropriate type or None
(or the caller-supplied default for the numeric parsers).
"""

from __future__ import annotations

import math
import re
from datetime import datetime

_TS_FORMATS = (
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
)


# ---------------------------------------------------------------------------
# Rule 1: trim
# ---------------------------------------------------------------------------

def trim(value: str | None) -> str | None:
    """Strip leading/trailing whitespace; treat empty string as None."""
    if value is None:
        return None
    v = value.strip()
    return v if v else None


# ---------------------------------------------------------------------------
# Rule 2: normalize_space
# ---------------------------------------------------------------------------

def normalize_space(value: str | None) -> str | None:
    """Collapse internal runs of whitespace to single spaces, then trim."""
    v = trim(value)
    if v is None:
        return None
    return re.sub(r"\s+", " ", v)


# ---------------------------------------------------------------------------
# Rule 3: parse_ts
# ---------------------------------------------------------------------------

def parse_ts(value: str | None) -> datetime | None:
    """Parse a PBT timestamp ('2025-10-16 20:52:34') or an ISO-8601 string.

    Returns None for blank input and for text no known format accepts.
    """
    v = trim(value)
    if v is None:
        return None
    for fmt in _TS_FORMATS:
        try:
            return datetime.strptime(v, fmt)
        except ValueError:
            continue
    iso = v[:-1] + "+00:00" if v.endswith(("Z", "z")) else v
    try:
        return datetime.fromisoformat(iso)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Rule 4: numeric parsing with defaults
# ---------------------------------------------------------------------------

def parse_number_or_default(value: str | None, default: float | None) -> float | None:
    """Parse a float, returning default for blank, non-numeric, NaN or inf."""
    v = trim(value)
    if v is None:
        return default
    try:
        number = float(v)
    except ValueError:
        return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def parse_int_or_default(value: str | None, default: int | None) -> int | None:
    """Parse an integer; decimal text is truncated toward zero ('2.7' -> 2)."""
    v = trim(value)
    if v is None:
        return default
    try:
        return int(v)
    except ValueError:
        pass
    number = parse_number_or_default(v, None)
    if number is None:
        return default
    return int(number)


def format_amount(value: float) -> str:
    """Render 1.0 as '1' and 0.5 as '0.5'."""
    if float(value).is_integer():
        return str(int(value))
    return repr(float(value))
