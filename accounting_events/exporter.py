"""
Exporter - Serialize validated events to CSV or JSON.

============================================================
HARD GATE
============================================================
Export is refused (ExportRefusedError) whenever:
- the caller supplies a non-empty validation error list, or
- the caller supplies none / an empty list and a fresh
  validation of the events reports errors

There is no partial export and no "export anyway".

============================================================
FORMAT
============================================================
Column order is fixed:
date, asset, amount, fee, pnl, paymentToken, notes, externalId, category

CSV uses the import labels below as its header, RFC 4180 quoting
and CRLF line ends. JSON uses the camelCase keys and carries
numbers as the same fixed-point strings as the CSV.

============================================================
"""

import csv
import io
import json
import logging
from typing import Any, Optional, Sequence

from accounting_events.decimals import format_decimal, to_decimal
from accounting_events.exceptions import ExportRefusedError, InvalidInputError
from accounting_events.models import Event, ValidationError
from accounting_events.validation import validate


logger = logging.getLogger(__name__)


# Order and spelling MUST NOT change
CSV_HEADER = (
    "Date",
    "Asset",
    "Amount",
    "Fee",
    "P&L",
    "Payment Token",
    "Notes",
    "Transaction Hash",
    "Tag",
)

JSON_KEYS = (
    "date",
    "asset",
    "amount",
    "fee",
    "pnl",
    "paymentToken",
    "notes",
    "externalId",
    "category",
)

CSV_CONTENT_TYPE = "text/csv; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"

# Errors listed in the refusal message; the rest are counted
_MAX_LISTED_ERRORS = 10


def _category(event: Event) -> str:
    category = event.category
    return category.value if hasattr(category, "value") else str(category)


def _row(event: Event) -> list[str]:
    return [
        event.timestamp,
        event.asset,
        format_decimal(event.amount),
        format_decimal(event.fee),
        format_decimal(event.realized_pnl),
        event.settlement_token or "",
        event.notes or "",
        event.external_id,
        _category(event),
    ]


def ensure_exportable(
    events: Sequence[Event],
    validation_errors: Optional[Sequence[ValidationError]] = None,
) -> None:
    """
    Apply the export gate.

    Raises:
        ExportRefusedError: carrying the errors that block the export
    """
    errors = list(validation_errors or [])
    if not errors:
        errors = validate(events)
    if not errors:
        return

    listed = "\n".join(f"  {e}" for e in errors[:_MAX_LISTED_ERRORS])
    extra = len(errors) - _MAX_LISTED_ERRORS
    if extra > 0:
        listed += f"\n  ... and {extra} more errors"

    logger.warning(f"Export refused: {len(errors)} validation error(s)")
    raise ExportRefusedError(
        message=f"Export blocked: {len(errors)} validation error(s):\n{listed}",
        validation_errors=errors,
        context={"error_count": len(errors), "event_count": len(events)},
    )


def export_csv(
    events: Sequence[Event],
    validation_errors: Optional[Sequence[ValidationError]] = None,
) -> str:
    """Render events as CSV, header row first."""
    ensure_exportable(events, validation_errors)

    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_MINIMAL, lineterminator="\r\n")
    writer.writerow(CSV_HEADER)
    for event in events:
        writer.writerow(_row(event))

    logger.info(f"Exported {len(events)} events as CSV")
    return output.getvalue()


def export_json(
    events: Sequence[Event],
    validation_errors: Optional[Sequence[ValidationError]] = None,
) -> str:
    """Render events as a JSON array of objects."""
    ensure_exportable(events, validation_errors)

    records = [dict(zip(JSON_KEYS, _row(event))) for event in events]

    logger.info(f"Exported {len(events)} events as JSON")
    return json.dumps(records, indent=2, ensure_ascii=False)


def validate_csv_header(header: str) -> bool:
    """Check a header line matches the export header exactly."""
    return header.strip() == ",".join(CSV_HEADER)


def parse_csv(text: str) -> list[Event]:
    """
    Read an exported CSV back into events.

    Numbers that do not parse are kept as text so validation can report
    them.

    Raises:
        InvalidInputError: If the header or a row's column count is wrong
    """
    reader = csv.reader(io.StringIO(text))
    rows = list(reader)
    if not rows or tuple(rows[0]) != CSV_HEADER:
        raise InvalidInputError(
            message="CSV header does not match the export header",
            field_name="header",
            value=",".join(rows[0]) if rows else "",
        )

    events = []
    for line_number, row in enumerate(rows[1:], start=2):
        if not row:
            continue
        if len(row) != len(CSV_HEADER):
            raise InvalidInputError(
                message=f"Line {line_number}: expected {len(CSV_HEADER)} columns, got {len(row)}",
                field_name="row",
                value=",".join(row),
            )
        date, asset, amount, fee, pnl, token, notes, external_id, category = row
        events.append(Event(
            timestamp=date,
            asset=asset,
            amount=_number(amount),
            fee=_number(fee),
            realized_pnl=_number(pnl),
            settlement_token=token,
            notes=notes,
            external_id=external_id,
            category=category,
        ))
    return events


def _number(text: str) -> Any:
    value = to_decimal(text)
    return value if value is not None else text
