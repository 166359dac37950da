"""Utility functions for clickmarket."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from .errors import ValidationError


def utc_now() -> datetime:
    """Return the current aware UTC time."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Generate a new document ID."""
    return str(uuid.uuid4())


def format_ts(value: datetime | None) -> str | None:
    """Format a datetime as ISO 8601 with a 'Z' suffix."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_ts(value: str | datetime | None) -> datetime | None:
    """
    Parse an ISO 8601 timestamp into an aware UTC datetime.

    Naive values are taken to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Convert a user-supplied number to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Raises:
        ValidationError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValidationError(field, "expected a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            raise ValidationError(field, f"not a number: {value!r}")
    else:
        raise ValidationError(field, "expected a number")
    if not result.is_finite():
        raise ValidationError(field, "must be finite")
    return result


def format_amount(value: Decimal) -> str:
    """
    Format an amount with '.' as thousands separator and no decimals.

    Example: Decimal("7820") -> "7.820"
    """
    return f"{value:,.0f}".replace(",", ".")


def require_text(value: str | None, field: str, max_length: int | None = None) -> str:
    """
    Strip and validate a required text field.

    Raises:
        ValidationError: If the value is empty or too long.
    """
    text = (value or "").strip()
    if not text:
        raise ValidationError(field, "is required")
    if max_length is not None and len(text) > max_length:
        raise ValidationError(field, f"must be at most {max_length} characters")
    return text
