from __future__ import annotations

from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from weighbridge.errors import ValidationError
from weighbridge.time_utils import parse_iso_datetime, to_utc_naive


# Weights are stored as NUMERIC(10, 2) kilograms.
# Anything above this would overflow the column.
MAX_WEIGHT = Decimal("99999999.99")
WEIGHT_QUANTUM = Decimal("0.01")


def parse_weight(value: Any, field: str = "weight") -> Decimal:
    """
    Coerce a client-supplied weight to a non-negative Decimal with 2 places.

    Accepts ints, floats and numeric strings. Rejects booleans, NaN/Infinity,
    negative values and values that would overflow the column.
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")

    try:
        if isinstance(value, float):
            # go through repr so 10500.1 does not become 10500.0999...
            weight = Decimal(repr(value))
        else:
            weight = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number")

    if not weight.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if weight < 0:
        raise ValidationError(f"{field} cannot be negative")

    weight = weight.quantize(WEIGHT_QUANTUM, rounding=ROUND_HALF_UP)
    if weight > MAX_WEIGHT:
        raise ValidationError(f"{field} exceeds maximum of {MAX_WEIGHT}")
    return weight


def parse_optional_weight(value: Any, field: str = "weight") -> Decimal | None:
    if value is None or value == "":
        return None
    return parse_weight(value, field)


def parse_positive_int(value: Any, field: str) -> int:
    """
    Strict integer parsing: ints or plain digit strings, must be >= 1.

    Floats, booleans and scientific notation are rejected.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().isdigit():
        result = int(value.strip())
    else:
        raise ValidationError(f"{field} must be an integer")

    if result < 1:
        raise ValidationError(f"{field} must be >= 1")
    return result


def parse_optional_int(value: Any, field: str) -> int | None:
    if value is None or value == "":
        return None
    return parse_positive_int(value, field)


def parse_timestamp(value: Any, field: str) -> datetime:
    if isinstance(value, datetime):
        return to_utc_naive(value)
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 timestamp")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 timestamp")
    if parsed is None:
        raise ValidationError(f"{field} is required")
    return parsed
