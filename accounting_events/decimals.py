"""
Fixed-point helpers at the 8-fractional-digit boundary.

All financial quantities are carried as Decimal. Floats are converted
through repr() so binary artifacts never leak into precision checks.
Truncation is always toward zero, never rounding.
"""

from datetime import datetime, timezone
from decimal import ROUND_DOWN, Context, Decimal, InvalidOperation
from typing import Any, Optional, Union


MAX_DECIMAL_PLACES = 8
QUANTUM = Decimal(1).scaleb(-MAX_DECIMAL_PLACES)

TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M:%S"

_MIN_PRECISION = 80


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a numeric value to Decimal without losing what was written.

    Returns None when the value is not numeric at all. NaN and infinities
    are returned as the corresponding Decimal so callers can report them.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(repr(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip())
        except InvalidOperation:
            return None
    return None


def _exact_context(d: Decimal, places: int = MAX_DECIMAL_PLACES) -> Context:
    """Context with enough precision to hold d to `places` digits exactly."""
    digits = len(d.as_tuple().digits)
    return Context(prec=max(_MIN_PRECISION, digits, d.adjusted() + places + 2))


def decimal_places(value: Any) -> int:
    """
    Exact count of significant fractional digits.

    Works on plain and scientific notation alike: 1e-9 and 0.000000001
    both have 9 places, 1.50000000000 has 1.
    """
    d = to_decimal(value)
    if d is None or not d.is_finite() or d.is_zero():
        return 0
    exponent = d.normalize(_exact_context(d)).as_tuple().exponent
    return -exponent if exponent < 0 else 0


def truncate_decimals(value: Any, places: int = MAX_DECIMAL_PLACES) -> Decimal:
    """
    Truncate toward zero to at most `places` fractional digits.

    Raises ValueError on non-numeric or non-finite input so corrupt data
    never propagates.
    """
    d = to_decimal(value)
    if d is None or not d.is_finite():
        raise ValueError(f"truncate_decimals: input must be a finite number, got {value!r}")
    if d.as_tuple().exponent >= -places:
        truncated = d
    else:
        quantum = Decimal(1).scaleb(-places)
        truncated = d.quantize(quantum, rounding=ROUND_DOWN, context=_exact_context(d, places))
    if truncated.is_zero():
        return Decimal(0)
    return truncated.normalize(_exact_context(truncated, places))


def parse_and_truncate(value: Any, field_name: str) -> Decimal:
    """Parse a numeric upstream value and truncate to 8 places."""
    try:
        return truncate_decimals(value)
    except ValueError:
        raise ValueError(f"{field_name}: could not parse {value!r} as a finite number")


def scale_integer(raw: Union[str, int], decimals: int) -> Decimal:
    """Convert an integer base-unit amount (e.g. uatom) to a human amount."""
    d = to_decimal(raw)
    if d is None or not d.is_finite():
        raise ValueError(f"scale_integer: {raw!r} is not a number")
    return truncate_decimals(d.scaleb(-decimals, _exact_context(d, decimals)))


def format_decimal(value: Any) -> str:
    """
    Fixed-point rendering, truncated to 8 places.

    Trailing zeros and a bare trailing point are stripped; negative zero
    renders as "0".
    """
    d = truncate_decimals(value)
    if d.is_zero():
        return "0"
    text = format(d, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def to_plain_string(value: Any) -> str:
    """Best-effort plain rendering that never raises."""
    d = to_decimal(value)
    if d is None or not d.is_finite():
        return str(value)
    return format(d, "f")


def format_timestamp(moment: datetime) -> str:
    """Format a datetime as MM/DD/YYYY HH:MM:SS in UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def format_epoch(value: Union[int, float, str], unit: str = "s") -> str:
    """Format an epoch timestamp given in s, ms or ns."""
    divisor = {"s": 1, "ms": 1_000, "ns": 1_000_000_000}[unit]
    seconds = int(value) // divisor
    return format_timestamp(datetime.fromtimestamp(seconds, tz=timezone.utc))


def format_iso_timestamp(value: str) -> str:
    """Format an ISO 8601 string as MM/DD/YYYY HH:MM:SS in UTC."""
    try:
        moment = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid ISO date string: {value!r}")
    return format_timestamp(moment)
