import pathlib
import sys
from datetime import date

import pytest

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from domain.label_models import ExtractedFields
from domain.label_normalizer import (
    clean_code,
    display_to_iso,
    iso_to_display,
    normalize_batch_code,
    normalize_fields,
    parse_display,
    parse_expiry_date,
    parse_to_iso,
    to_display,
    to_iso_timestamp,
)


@pytest.mark.parametrize(
    "raw",
    ["ABC", "1O1", "B123", "lot 2026/0I3", "S0SO5", "O", "ZZ9", "  a-b/c ", "IOSBZ", "1OOOO", "***", ""],
)
def test_batch_normalization_is_idempotent(raw):
    once = normalize_batch_code(raw)
    assert normalize_batch_code(once) == once


def test_digit_confusion_requires_adjacent_digit():
    assert normalize_batch_code("ABC") == "ABC"
    assert normalize_batch_code("1O1") == "101"
    assert normalize_batch_code("B123") == "8123"
    assert normalize_batch_code("SOBZ") == "SOBZ"


def test_batch_normalization_strips_and_uppercases():
    assert normalize_batch_code(" lot-2026/a1 ") == "LOT-2026/A1"
    assert normalize_batch_code("L0T#2026.01") == "L0T202601"
    assert normalize_batch_code("%%") is None
    assert normalize_batch_code(None) is None


def test_substitution_propagates_to_stability():
    # "1OO" : le second O ne touche un chiffre qu'après correction du premier
    assert normalize_batch_code("1OO") == "100"


def test_clean_code_keeps_letters():
    assert clean_code(" prod-0B1 ") == "PROD-0B1"
    assert clean_code("") is None


@pytest.mark.parametrize(
    "raw, expected_display",
    [
        ("15/03/2026", "15/03/2026"),
        ("15-03-2026", "15/03/2026"),
        ("15/03/26", "15/03/2026"),
        ("5-3-26", "05/03/2026"),
        ("2026-03-15", "15/03/2026"),
        ("03/25/2026", "25/03/2026"),
        ("15 Mar 2026", "15/03/2026"),
        ("15 March 2026", "15/03/2026"),
        ("1 sept. 2026", "01/09/2026"),
        ("15MAR26", "15/03/2026"),
        ("2026/03/15", "15/03/2026"),
        ("15.03.2026", "15/03/2026"),
        ("2026-03-15T00:00:00Z", "15/03/2026"),
    ],
)
def test_supported_date_formats_round_trip_to_display(raw, expected_display):
    iso_value = parse_to_iso(raw)
    assert iso_value is not None
    assert iso_to_display(iso_value) == expected_display
    assert display_to_iso(expected_display) == iso_value


@pytest.mark.parametrize("raw", ["garbage", "31/02/2026", "03-25-2026", "13/13/13", "", None, "15 Foo 2026"])
def test_unparseable_dates_are_dropped(raw):
    assert parse_expiry_date(raw) is None


def test_month_day_fallback_needs_full_year():
    assert parse_expiry_date("03/25/26") is None
    assert parse_expiry_date("03/25/2026") == date(2026, 3, 25)


def test_canonical_timestamp_is_utc_midnight():
    assert to_iso_timestamp(date(2026, 3, 15)) == "2026-03-15T00:00:00+00:00"


def test_parse_display_rejects_other_formats():
    assert parse_display("01/02/2027") == date(2027, 2, 1)
    with pytest.raises(ValueError):
        parse_display("2027-02-01")
    assert to_display(date(2027, 2, 1)) == "01/02/2027"


def test_normalize_fields_drops_invalid_expiry():
    normalized = normalize_fields(ExtractedFields(batch_code="lo1-9", expiry_date="99/99/9999"))

    assert normalized.batch_code == "L01-9"
    assert normalized.expiry_date_iso is None
    assert normalized.expiry_date_display is None
    assert normalized.has_identifiers
