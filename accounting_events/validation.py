"""
Validation Engine - Per-record and cross-record correctness checks.

Pure functions. Validation never mutates, reorders or drops events; it
only reports. Whether a report blocks export is decided by the exporter.
"""

import calendar
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from accounting_events.decimals import (
    MAX_DECIMAL_PLACES,
    decimal_places,
    to_decimal,
    to_plain_string,
)
from accounting_events.models import (
    SETTLING_CATEGORIES,
    VALID_CATEGORIES,
    Event,
    EventCategory,
    ValidationError,
)


DATE_PATTERN = re.compile(r"^(\d{2})/(\d{2})/(\d{4}) (\d{2}):(\d{2}):(\d{2})$")

MIN_YEAR = 2000
MAX_YEAR = 2100

_CATEGORY_LIST = ", ".join(c.value for c in EventCategory)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    return to_plain_string(value) if not isinstance(value, str) else value


def validate_timestamp(value: Any) -> Optional[str]:
    """Return an error message for a bad MM/DD/YYYY HH:MM:SS string, else None."""
    match = DATE_PATTERN.match(value) if isinstance(value, str) else None
    if match is None:
        return f'Invalid date format. Expected MM/DD/YYYY HH:MM:SS, got "{value}"'

    month, day, year, hour, minute, second = (int(g) for g in match.groups())

    if month < 1 or month > 12:
        return f"Invalid month: {month}"
    if year < MIN_YEAR or year > MAX_YEAR:
        return f"Invalid year: {year}"
    max_day = calendar.monthrange(year, month)[1]
    if day < 1 or day > max_day:
        return f"Invalid day: {day} (max {max_day} for {month}/{year})"
    if hour > 23:
        return f"Invalid hour: {hour}"
    if minute > 59:
        return f"Invalid minute: {minute}"
    if second > 59:
        return f"Invalid second: {second}"
    return None


def _check_quantity(
    errors: list[ValidationError],
    row: int,
    field: str,
    label: str,
    value: Any,
    signed: bool,
) -> Optional[Decimal]:
    """Finite / sign / precision checks shared by amount, fee and pnl."""
    number = to_decimal(value)
    if number is None or not number.is_finite():
        errors.append(ValidationError(row, field, f"{label} must be a finite number", _text(value)))
        return None
    if not signed and number < 0:
        errors.append(ValidationError(row, field, f"{label} must be non-negative", _text(value)))
    if decimal_places(number) > MAX_DECIMAL_PLACES:
        errors.append(ValidationError(
            row, field, f"{label} exceeds {MAX_DECIMAL_PLACES} decimal places", _text(value),
        ))
    return number


def validate_event(
    event: Event,
    row_index: int,
    capabilities: Optional[Iterable] = None,
) -> list[ValidationError]:
    """
    Validate a single event.

    Args:
        event: Event to check
        row_index: Position of the event in its collection
        capabilities: Optional category set of the producing source

    Returns:
        List of errors (empty if valid)
    """
    errors: list[ValidationError] = []
    row = row_index

    date_error = validate_timestamp(event.timestamp)
    if date_error:
        errors.append(ValidationError(row, "date", date_error, _text(event.timestamp)))

    if not isinstance(event.asset, str) or not event.asset.strip():
        errors.append(ValidationError(row, "asset", "Asset is required", _text(event.asset)))

    _check_quantity(errors, row, "amount", "Amount", event.amount, signed=False)
    fee = _check_quantity(errors, row, "fee", "Fee", event.fee, signed=False)
    pnl = _check_quantity(errors, row, "pnl", "P&L", event.realized_pnl, signed=True)

    category = _text(event.category)
    if category not in VALID_CATEGORIES:
        errors.append(ValidationError(
            row, "category", f"Invalid category. Must be one of: {_CATEGORY_LIST}", category,
        ))
    elif capabilities is not None:
        allowed = {_text(c) for c in capabilities}
        if category not in allowed:
            errors.append(ValidationError(
                row, "category", f"Category {category} is outside the source capability set", category,
            ))

    if not isinstance(event.external_id, str) or not event.external_id.strip():
        errors.append(ValidationError(
            row, "externalId", "External id is required", _text(event.external_id),
        ))

    if category in SETTLING_CATEGORIES and not event.settlement_token:
        errors.append(ValidationError(
            row, "paymentToken", f"Payment token is required for {category}",
            _text(event.settlement_token),
        ))

    if category == EventCategory.OPEN_POSITION.value and pnl is not None and pnl != 0:
        errors.append(ValidationError(
            row, "pnl", "P&L must be 0 for open_position events", _text(event.realized_pnl),
        ))

    if category == EventCategory.STAKING_REWARD.value:
        if pnl is not None and pnl <= 0:
            errors.append(ValidationError(
                row, "pnl", "P&L must be > 0 for staking_reward events", _text(event.realized_pnl),
            ))
        if fee is not None and fee != 0:
            errors.append(ValidationError(
                row, "fee", "Fee must be 0 for staking_reward events", _text(event.fee),
            ))

    if category == EventCategory.SLASHING.value:
        if pnl is not None and pnl >= 0:
            errors.append(ValidationError(
                row, "pnl", "P&L must be < 0 for slashing events", _text(event.realized_pnl),
            ))
        if fee is not None and fee != 0:
            errors.append(ValidationError(
                row, "fee", "Fee must be 0 for slashing events", _text(event.fee),
            ))

    return errors


def validate(
    events: Sequence[Event],
    capabilities: Optional[Iterable] = None,
) -> list[ValidationError]:
    """
    Validate a collection of events.

    Runs every per-event rule, then the cross-event rule: external ids
    must be unique. The first occurrence wins and each later duplicate is
    reported at its own row, referencing the first.
    """
    allowed = frozenset(capabilities) if capabilities is not None else None
    errors: list[ValidationError] = []
    first_seen: dict[str, int] = {}

    for index, event in enumerate(events):
        errors.extend(validate_event(event, index, allowed))

        key = event.external_id
        if key in first_seen:
            errors.append(ValidationError(
                index,
                "externalId",
                f"Duplicate external id (first seen at row {first_seen[key]})",
                _text(key),
            ))
        else:
            first_seen[key] = index

    return errors
