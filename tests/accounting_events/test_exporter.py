"""
Exporter Tests.

============================================================
PURPOSE
============================================================
- CSV header and row layout (fixed column order, CRLF, quoting)
- JSON key order and fixed-point number strings
- The hard gate: no export while validation errors exist

============================================================
"""

import json
from decimal import Decimal

import pytest

from accounting_events.exceptions import ExportRefusedError, InvalidInputError
from accounting_events.exporter import (
    CSV_HEADER,
    JSON_KEYS,
    ensure_exportable,
    export_csv,
    export_json,
    parse_csv,
    validate_csv_header,
)
from accounting_events.models import ValidationError
from accounting_events.validation import validate


HEADER_LINE = "Date,Asset,Amount,Fee,P&L,Payment Token,Notes,Transaction Hash,Tag\r\n"


# ============================================================
# CSV
# ============================================================

class TestExportCsv:
    """Tests for CSV rendering."""

    def test_empty_collection_is_header_only(self):
        assert export_csv([]) == HEADER_LINE

    def test_row_layout(self, make_event):
        event = make_event(
            amount=Decimal("0.50000000"),
            fee=Decimal("1.25"),
            realized_pnl=Decimal("-100.5"),
        )

        content = export_csv([event])

        assert content == (
            HEADER_LINE
            + "01/15/2024 10:30:00,BTC,0.5,1.25,-100.5,USDC,Close Long @ 42000,0xabc-1,close_position\r\n"
        )

    def test_preserves_input_order(self, make_event):
        events = [make_event(external_id=f"id-{i}") for i in (3, 1, 2)]

        lines = export_csv(events).split("\r\n")

        assert [line.split(",")[7] for line in lines[1:4]] == ["id-3", "id-1", "id-2"]

    def test_quotes_comma(self, make_event):
        content = export_csv([make_event(notes="Long, 10x")])

        assert ',"Long, 10x",' in content

    def test_doubles_embedded_quotes(self, make_event):
        content = export_csv([make_event(notes='say "hi"')])

        assert ',"say ""hi""",' in content

    def test_quotes_line_breaks(self, make_event):
        content = export_csv([make_event(notes="line1\nline2")])

        assert ',"line1\nline2",' in content

    def test_open_position_has_empty_token(self, make_event):
        event = make_event(
            category="open_position",
            realized_pnl=Decimal(0),
            settlement_token="",
        )

        row = export_csv([event]).split("\r\n")[1]

        assert row.split(",")[4:6] == ["0", ""]

    def test_excess_precision_is_truncated(self, make_event):
        # Validation passes on 8 places; rendering must not round them
        event = make_event(amount=Decimal("0.99999999"))

        row = export_csv([event]).split("\r\n")[1]

        assert row.split(",")[2] == "0.99999999"

    def test_large_amount_exports(self, make_event):
        event = make_event(amount=Decimal("1e80"))

        assert validate([event]) == []
        row = export_csv([event]).split("\r\n")[1]

        assert row.split(",")[2] == "1" + "0" * 80

    def test_formula_like_notes_are_quoted(self, make_event):
        content = export_csv([make_event(notes='=CMD("x")')])

        assert '"=CMD(""x"")"' in content

    def test_csv_reads_back(self, make_event):
        events = [make_event(external_id="a"), make_event(external_id="b", notes="x, y")]

        parsed = parse_csv(export_csv(events))

        assert [e.external_id for e in parsed] == ["a", "b"]
        assert parsed[1].notes == "x, y"
        assert parsed[0].amount == Decimal("0.5")


# ============================================================
# JSON
# ============================================================

class TestExportJson:
    """Tests for JSON rendering."""

    def test_empty_collection(self):
        assert export_json([]) == "[]"

    def test_key_order_and_string_numbers(self, make_event):
        records = json.loads(export_json([make_event(fee=Decimal("0"))]))

        assert list(records[0].keys()) == list(JSON_KEYS)
        assert records[0]["amount"] == "0.5"
        assert records[0]["fee"] == "0"
        assert records[0]["pnl"] == "100.5"
        assert records[0]["externalId"] == "0xabc-1"
        assert records[0]["category"] == "close_position"

    def test_unicode_kept(self, make_event):
        content = export_json([make_event(notes="Tétraèdre")])

        assert "Tétraèdre" in content


# ============================================================
# GATE
# ============================================================

class TestExportGate:
    """Tests for refusal when validation reports errors."""

    def test_refuses_supplied_errors(self, make_event):
        errors = [ValidationError(0, "fee", "Fee must be non-negative", "-1")]

        with pytest.raises(ExportRefusedError) as exc_info:
            export_csv([make_event()], errors)

        assert exc_info.value.validation_errors == errors
        assert "Row 0: [fee]" in exc_info.value.message

    def test_refuses_json_too(self, make_event):
        errors = [ValidationError(0, "asset", "Asset is required", "")]

        with pytest.raises(ExportRefusedError):
            export_json([make_event()], errors)

    def test_revalidates_when_no_errors_supplied(self, make_event):
        events = [make_event(), make_event()]

        with pytest.raises(ExportRefusedError) as exc_info:
            export_csv(events, [])

        assert exc_info.value.validation_errors[0].message.startswith("Duplicate external id")

    def test_refusal_lists_at_most_ten(self, make_event):
        errors = [ValidationError(i, "asset", "Asset is required", "") for i in range(12)]

        with pytest.raises(ExportRefusedError) as exc_info:
            ensure_exportable([], errors)

        assert "Export blocked: 12 validation error(s)" in exc_info.value.message
        assert "and 2 more errors" in exc_info.value.message

    def test_error_type(self, make_event):
        with pytest.raises(ExportRefusedError) as exc_info:
            ensure_exportable([make_event(asset="")])

        assert exc_info.value.error_type == "schema_violation"

    def test_valid_events_pass(self, make_event):
        ensure_exportable([make_event()], [])


# ============================================================
# HEADER / PARSING
# ============================================================

class TestParsing:
    """Tests for header checks and reading CSV back."""

    def test_header_check(self):
        assert validate_csv_header(",".join(CSV_HEADER))
        assert validate_csv_header(HEADER_LINE)
        assert not validate_csv_header("Date,Asset,Amount")

    def test_bad_header_rejected(self):
        with pytest.raises(InvalidInputError):
            parse_csv("date,asset\r\n")

    def test_column_count_checked(self):
        with pytest.raises(InvalidInputError, match="Line 2"):
            parse_csv(HEADER_LINE + "a,b,c\r\n")

    def test_unparseable_numbers_kept_as_text(self):
        row = "01/15/2024 10:30:00,BTC,abc,0,0,USDC,,id,close_position\r\n"

        event = parse_csv(HEADER_LINE + row)[0]

        assert event.amount == "abc"
        assert event.fee == Decimal("0")
