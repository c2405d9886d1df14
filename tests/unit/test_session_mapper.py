"""Unit tests for bankroll_etl.session_mapper."""

from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from bankroll_etl.classification_rules import (
    ClassificationRules,
    GameTypeRule,
    VariantRule,
)
from bankroll_etl.session_mapper import (
    DEFAULT_NOTES,
    EXPECTED_COLUMNS,
    RowMappingError,
    SessionDTO,
    map_row_to_session,
    missing_columns,
)

TODAY = date(2024, 5, 1)


def _map(**row):
    return map_row_to_session(row, today=TODAY)


def _full_row() -> dict[str, str]:
    return {
        "starttime": "2025-10-16 20:52:34",
        "endtime": "2025-10-17 01:22:34",
        "variant": "Cash Game",
        "game": "Holdem",
        "limit": "No Limit",
        "buyin": "200",
        "cashout": "355.5",
        "rebuys": "1",
        "rebuycosts": "100",
        "smallblind": "1",
        "bigblind": "2",
        "location": "Bellagio",
        "type": "Live",
        "playingminutes": "270",
        "sessionnote": "Good table",
        "notes": "",
    }


# ---------------------------------------------------------------------------
# Defaults
# ---------------------------------------------------------------------------

class TestDefaults:
    def test_empty_row_gets_all_defaults(self):
        session = _map()
        assert session.game_type == "cash"
        assert session.variant == "nlhe"
        assert session.location_type == "live"
        assert session.buy_in == 0
        assert session.cash_out == 0
        assert session.is_ongoing is False
        assert session.notes == "Imported from PBT Bankroll"
        assert session.session_date == TODAY
        assert session.actual_start_time is None
        assert session.actual_end_time is None
        assert session.stakes is None
        assert session.location is None
        assert session.duration_hours is None
        assert session.total_rebuys == 0
        assert session.rebuy_count == 0

    def test_blank_cells_treated_as_absent(self):
        session = _map(starttime="", buyin="", type="", location="", notes="")
        assert session.session_date == TODAY
        assert session.buy_in == 0
        assert session.location is None
        assert session.notes == DEFAULT_NOTES

    def test_today_defaults_to_current_date(self):
        assert map_row_to_session({}).session_date == date.today()

    def test_unknown_columns_ignored(self):
        session = _map(hands="312", currency="USD")
        assert session.variant == "nlhe"


# ---------------------------------------------------------------------------
# Full row
# ---------------------------------------------------------------------------

class TestFullRow:
    def test_maps_every_field(self):
        session = map_row_to_session(_full_row(), today=TODAY)
        assert session == SessionDTO(
            session_date=date(2025, 10, 16),
            game_type="cash",
            variant="nlhe",
            stakes="1/2",
            location="Bellagio",
            location_type="live",
            buy_in=200.0,
            cash_out=355.5,
            is_ongoing=False,
            actual_start_time=datetime(2025, 10, 16, 20, 52, 34),
            actual_end_time=datetime(2025, 10, 17, 1, 22, 34),
            duration_hours=4.5,
            total_rebuys=100.0,
            rebuy_count=1,
            notes="Good table",
        )

    def test_profit_subtracts_rebuys(self):
        session = map_row_to_session(_full_row(), today=TODAY)
        assert session.profit == pytest.approx(55.5)

    def test_to_dict_is_json_friendly(self):
        d = map_row_to_session(_full_row(), today=TODAY).to_dict()
        assert d["session_date"] == "2025-10-16"
        assert d["actual_start_time"] == "2025-10-16T20:52:34"
        assert d["actual_end_time"] == "2025-10-17T01:22:34"
        assert d["is_ongoing"] is False
        assert "profit" not in d

    def test_column_names_case_insensitive(self):
        row = {" StartTime ": "2025-10-16 20:52:34", "BUYIN": "50", "Type": "Online"}
        session = map_row_to_session(row, today=TODAY)
        assert session.session_date == date(2025, 10, 16)
        assert session.buy_in == 50.0
        assert session.location_type == "online"


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------

class TestTimestamps:
    def test_start_sets_date_and_time(self):
        session = _map(starttime="2025-01-02 03:04:05")
        assert session.session_date == date(2025, 1, 2)
        assert session.actual_start_time == datetime(2025, 1, 2, 3, 4, 5)

    def test_end_without_start(self):
        session = _map(endtime="2025-01-02 06:00:00")
        assert session.session_date == TODAY
        assert session.actual_end_time == datetime(2025, 1, 2, 6, 0, 0)

    def test_invalid_starttime_raises(self):
        with pytest.raises(RowMappingError, match="starttime"):
            _map(starttime="not a date")

    def test_invalid_endtime_raises(self):
        with pytest.raises(RowMappingError, match="endtime"):
            _map(starttime="2025-01-02 03:04:05", endtime="31/31/2025")

    def test_source_tz_attached_to_naive_values(self):
        session = map_row_to_session(
            {"starttime": "2025-01-02 03:04:05"}, today=TODAY, source_tz=timezone.utc,
        )
        assert session.actual_start_time.tzinfo is timezone.utc

    def test_source_tz_does_not_override_explicit_offset(self):
        session = map_row_to_session(
            {"starttime": "2025-01-02T03:04:05+02:00"}, today=TODAY, source_tz=timezone.utc,
        )
        assert session.actual_start_time.utcoffset().total_seconds() == 7200


# ---------------------------------------------------------------------------
# Game type / variant
# ---------------------------------------------------------------------------

class TestGameType:
    @pytest.mark.parametrize("text, expected", [
        ("Tournament ($50 MTT)", "tournament"),
        ("MTT Satellite", "tournament"),
        ("Sit & Go", "sng"),
        ("SNG 9-max", "sng"),
        ("SNG Tournament", "tournament"),
        ("Cash Game", "cash"),
        ("", "cash"),
    ])
    def test_classification(self, text, expected):
        assert _map(variant=text).game_type == expected


class TestVariantCode:
    @pytest.mark.parametrize("game, limit, expected", [
        ("Holdem", "No Limit", "nlhe"),
        ("Hold'em", "Fixed Limit", "lhe"),
        ("Texas Holdem", "", "lhe"),
        ("Omaha", "Pot Limit", "plo"),
        ("Omaha Hi/Lo", "No Limit", "omaha"),
        ("Stud", "Fixed Limit", "nlhe"),
        ("", "", "nlhe"),
    ])
    def test_classification(self, game, limit, expected):
        assert _map(game=game, limit=limit).variant == expected

    def test_custom_rules(self):
        rules = ClassificationRules(
            version="test",
            game_type_rules=[GameTypeRule(("freeroll",), "tournament")],
            default_game_type="cash",
            variant_rules=[VariantRule("stud", "high", "stud", "razz")],
            default_variant="mixed",
        )
        session = map_row_to_session(
            {"variant": "Freeroll", "game": "Stud", "limit": "Fixed"},
            rules=rules, today=TODAY,
        )
        assert session.game_type == "tournament"
        assert session.variant == "razz"


# ---------------------------------------------------------------------------
# Money fields
# ---------------------------------------------------------------------------

class TestMoney:
    def test_amounts_parsed(self):
        session = _map(buyin="100.50", cashout="20")
        assert session.buy_in == 100.5
        assert session.cash_out == 20.0

    def test_unparseable_amounts_default_to_zero(self):
        session = _map(buyin="$100", cashout="lots")
        assert session.buy_in == 0
        assert session.cash_out == 0

    def test_negative_amounts_default_to_zero(self):
        assert _map(buyin="-50").buy_in == 0

    def test_rebuy_columns_independent(self):
        session = _map(rebuys="3")
        assert session.rebuy_count == 3
        assert session.total_rebuys == 0

    def test_rebuy_costs_without_count(self):
        session = _map(rebuycosts="40")
        assert session.total_rebuys == 40.0
        assert session.rebuy_count == 0

    def test_rebuy_count_truncated(self):
        assert _map(rebuys="2.9").rebuy_count == 2

    def test_negative_rebuy_count_defaults_to_zero(self):
        assert _map(rebuys="-1").rebuy_count == 0


# ---------------------------------------------------------------------------
# Stakes / location / duration
# ---------------------------------------------------------------------------

class TestStakes:
    def test_formats_blinds(self):
        assert _map(smallblind="1", bigblind="2").stakes == "1/2"

    def test_fractional_blinds(self):
        assert _map(smallblind="0.5", bigblind="1").stakes == "0.5/1"

    def test_zero_blinds_unset(self):
        assert _map(smallblind="0", bigblind="0").stakes is None

    def test_absent_blinds_unset(self):
        assert _map().stakes is None

    def test_only_big_blind(self):
        assert _map(bigblind="2").stakes == "0/2"

    def test_unparseable_blind_counts_as_zero(self):
        assert _map(smallblind="abc", bigblind="5").stakes == "0/5"


class TestLocation:
    def test_location_copied(self):
        assert _map(location="Aria, Las Vegas").location == "Aria, Las Vegas"

    @pytest.mark.parametrize("value, expected", [
        ("online", "online"),
        ("Online", "online"),
        (" ONLINE ", "online"),
        ("Online Casino", "live"),
        ("Live", "live"),
        ("", "live"),
    ])
    def test_location_type(self, value, expected):
        assert _map(type=value).location_type == expected


class TestDuration:
    def test_minutes_to_hours(self):
        assert _map(playingminutes="90").duration_hours == 1.5

    def test_unparseable_unset(self):
        assert _map(playingminutes="n/a").duration_hours is None

    def test_zero_minutes(self):
        assert _map(playingminutes="0").duration_hours == 0.0


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

class TestNotes:
    def test_session_note_only(self):
        assert _map(sessionnote="Tilted").notes == "Tilted"

    def test_notes_only(self):
        assert _map(notes="Legacy note").notes == "Legacy note"

    def test_both_combined(self):
        assert _map(sessionnote="Tilted", notes="Legacy").notes == (
            "Tilted\n\nOriginal notes: Legacy"
        )

    def test_neither_uses_default(self):
        assert _map().notes == DEFAULT_NOTES


def test_dto_is_immutable():
    session = _map()
    with pytest.raises(Exception):
        session.buy_in = 5  # type: ignore[misc]


class TestMissingColumns:
    def test_full_header(self):
        assert missing_columns(list(EXPECTED_COLUMNS)) == []

    def test_case_and_whitespace_ignored(self):
        header = [f" {c.upper()} " for c in EXPECTED_COLUMNS]
        assert missing_columns(header) == []

    def test_reports_absent_in_declared_order(self):
        header = [c for c in EXPECTED_COLUMNS if c not in ("limit", "buyin")]
        assert missing_columns(header) == ["limit", "buyin"]
