"""bankroll_etl.pbt_csv

Permissive tokenizer for PBT Bankroll CSV exports.

The exporter is not RFC-4180 compliant: it may prepend a title banner
("----- Sessions -----") before the header and it never wraps records across
lines.  The tokenizer therefore works line by line:

  - a first line containing '---' is a title; the header is the next line
  - fields are split on commas outside double quotes; '""' inside a quoted
    field is a literal quote
  - every field (header names included) is whitespace-trimmed
  - blank lines are ignored
  - a data line whose field count differs from the header is skipped and
    reported in ParsedCsv.skipped_rows instead of failing the batch
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

TITLE_MARKER = "---"
MIN_LINES = 3


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CsvFormatError(ValueError):
    """Raised when the input cannot be tokenized at all."""


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SkippedRow:
    """A data line dropped because its field count did not match the header."""

    line_number: int  # 1-based line in the trimmed input
    expected: int
    actual: int

    def describe(self) -> str:
        return (
            f"line {self.line_number}: column count mismatch "
            f"(expected {self.expected}, got {self.actual})"
        )


@dataclass
class ParsedCsv:
    header: list[str]
    rows: list[dict[str, str]] = field(default_factory=list)
    skipped_rows: list[SkippedRow] = field(default_factory=list)
    title: str | None = None


# ---------------------------------------------------------------------------
# Line scanner
# ---------------------------------------------------------------------------

def split_csv_line(line: str) -> list[str]:
    """Split one CSV line into trimmed fields.

    Commas inside double quotes are literal, and a doubled quote inside a
    quoted field yields one quote character.
    """
    result: list[str] = []
    current: list[str] = []
    in_quotes = False
    i = 0
    n = len(line)

    while i < n:
        char = line[i]
        if char == '"':
            if in_quotes and i + 1 < n and line[i + 1] == '"':
                current.append('"')
                i += 1
            else:
                in_quotes = not in_quotes
        elif char == "," and not in_quotes:
            result.append("".join(current).strip())
            current = []
        else:
            current.append(char)
        i += 1

    result.append("".join(current).strip())
    return result


# ---------------------------------------------------------------------------
# Document parser
# ---------------------------------------------------------------------------

def parse_pbt_csv(text: str) -> ParsedCsv:
    """Tokenize a PBT Bankroll export into header-keyed row mappings.

    Raises:
        CsvFormatError: fewer than three lines, or the scanner failed.
    """
    lines = text.lstrip("\ufeff").strip().split("\n")
    if len(lines) < MIN_LINES:
        raise CsvFormatError("CSV file is empty or invalid")

    try:
        header_index = 0
        title = None
        if TITLE_MARKER in lines[0]:
            title = lines[0].strip()
            header_index = 1

        header = split_csv_line(lines[header_index])
        parsed = ParsedCsv(header=header, title=title)

        for idx in range(header_index + 1, len(lines)):
            line = lines[idx]
            if not line.strip():
                continue

            values = split_csv_line(line)
            if len(values) != len(header):
                skipped = SkippedRow(
                    line_number=idx + 1, expected=len(header), actual=len(values),
                )
                log.warning("Skipping row %s", skipped.describe())
                parsed.skipped_rows.append(skipped)
                continue

            # Duplicate header names: the last column with that name wins.
            parsed.rows.append(dict(zip(header, values)))
    except Exception as exc:
        raise CsvFormatError(str(exc)) from exc

    return parsed
