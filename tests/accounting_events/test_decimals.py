"""
Tests for fixed-point helpers and timestamp formatting.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from accounting_events.decimals import (
    decimal_places,
    format_decimal,
    format_epoch,
    format_iso_timestamp,
    format_timestamp,
    parse_and_truncate,
    scale_integer,
    to_decimal,
    truncate_decimals,
)


class TestToDecimal:
    """Tests for numeric conversion."""

    def test_float_goes_through_repr(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_string_is_stripped(self):
        assert to_decimal(" 12.5 ") == Decimal("12.5")

    def test_bool_is_not_numeric(self):
        assert to_decimal(True) is None

    def test_garbage(self):
        assert to_decimal("12,5") is None
        assert to_decimal(None) is None


class TestPrecision:
    """Tests for place counting and truncation."""

    @pytest.mark.parametrize("value,places", [
        (Decimal("1"), 0),
        (Decimal("1.50000000000"), 1),
        (Decimal("0.000000001"), 9),
        (1e-9, 9),
        (Decimal("100E+2"), 0),
        (Decimal("0"), 0),
    ])
    def test_decimal_places(self, value, places):
        assert decimal_places(value) == places

    def test_truncates_toward_zero(self):
        assert truncate_decimals(Decimal("1.123456789")) == Decimal("1.12345678")
        assert truncate_decimals(Decimal("-1.123456789")) == Decimal("-1.12345678")

    def test_truncation_never_rounds_up(self):
        assert truncate_decimals(Decimal("0.999999999")) == Decimal("0.99999999")

    def test_tiny_negative_becomes_zero(self):
        result = truncate_decimals(Decimal("-0.000000001"))

        assert result == 0
        assert not result.is_signed()

    def test_non_finite_raises(self):
        with pytest.raises(ValueError):
            truncate_decimals(Decimal("NaN"))
        with pytest.raises(ValueError):
            truncate_decimals("not a number")

    def test_parse_and_truncate_names_field(self):
        with pytest.raises(ValueError, match="closedPnl"):
            parse_and_truncate("oops", "closedPnl")

    def test_scale_integer(self):
        assert scale_integer("12345", 6) == Decimal("0.012345")
        assert scale_integer(1_500_000_000_000_000_000, 18) == Decimal("1.5")

    def test_scale_integer_truncates(self):
        assert scale_integer("1", 18) == Decimal(0)

    def test_large_integer_kept_exact(self):
        assert truncate_decimals(Decimal("1e80")) == Decimal("1e80")

    def test_large_value_with_fraction(self):
        value = Decimal("7" * 90 + ".123456789")

        assert truncate_decimals(value) == Decimal("7" * 90 + ".12345678")
        assert decimal_places(value) == 9


class TestFormatDecimal:
    """Tests for fixed-point rendering."""

    @pytest.mark.parametrize("value,expected", [
        (Decimal("100.50000000"), "100.5"),
        (Decimal("42"), "42"),
        (Decimal("1E+3"), "1000"),
        (Decimal("-0"), "0"),
        (Decimal("-0.000000001"), "0"),
        (Decimal("0.123456789"), "0.12345678"),
        (Decimal("-12.3"), "-12.3"),
        (0.1, "0.1"),
        (Decimal("1e80"), "1" + "0" * 80),
    ])
    def test_format(self, value, expected):
        assert format_decimal(value) == expected


class TestTimestamps:
    """Tests for timestamp normalization to UTC."""

    def test_format_naive_datetime_as_utc(self):
        assert format_timestamp(datetime(2024, 1, 15, 10, 30)) == "01/15/2024 10:30:00"

    def test_format_converts_to_utc(self):
        moment = datetime(2024, 1, 15, 12, 30, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(moment) == "01/15/2024 10:30:00"

    @pytest.mark.parametrize("value,unit", [
        (1705314600, "s"),
        ("1705314600", "s"),
        (1705314600000, "ms"),
        (1705314600999, "ms"),
        ("1705314600123456789", "ns"),
    ])
    def test_format_epoch(self, value, unit):
        assert format_epoch(value, unit) == "01/15/2024 10:30:00"

    def test_iso_with_offset(self):
        assert format_iso_timestamp("2024-01-15T12:30:00+02:00") == "01/15/2024 10:30:00"

    def test_iso_zulu(self):
        assert format_iso_timestamp("2024-01-15T10:30:00Z") == "01/15/2024 10:30:00"

    def test_iso_invalid(self):
        with pytest.raises(ValueError):
            format_iso_timestamp("yesterday")
