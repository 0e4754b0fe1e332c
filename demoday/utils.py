"""Shared utility functions used across Demoday modules."""
from __future__ import annotations

import json
from datetime import UTC, date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from demoday.errors import InvalidAmount

_MISSING = object()
_CENT = Decimal("0.01")


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def utcnow() -> datetime:
    """Naive UTC timestamp, the form SQLite hands back."""
    return datetime.now(UTC).replace(tzinfo=None)


def month_start(value: date | datetime) -> date:
    return date(value.year, value.month, 1)


def add_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


# ---------------------------------------------------------------------------
# Money: stored as integer cents, exchanged as Decimal currency units
# ---------------------------------------------------------------------------


def to_cents(amount: Decimal | int | str | float) -> int:
    """Convert a positive currency amount with at most two decimals to cents.

    Floats go through ``str()`` so that ``0.1`` means ten cents rather than
    its binary approximation. Raises InvalidAmount otherwise.
    """
    if isinstance(amount, bool):
        raise InvalidAmount("Amount must be a number")
    try:
        value = Decimal(str(amount)) if not isinstance(amount, Decimal) else amount
    except (InvalidOperation, ValueError) as exc:
        raise InvalidAmount(f"Amount {amount!r} is not a number") from exc
    if not value.is_finite():
        raise InvalidAmount("Amount must be a finite number")
    if value <= 0:
        raise InvalidAmount("Amount must be greater than zero")
    try:
        quantized = value.quantize(_CENT)
    except InvalidOperation as exc:
        raise InvalidAmount(f"Amount {amount!r} is too large") from exc
    if quantized != value:
        raise InvalidAmount("Amount can have at most 2 decimal places")
    return int(quantized * 100)


def from_cents(cents: int | None) -> Decimal | None:
    if cents is None:
        return None
    return (Decimal(cents) / 100).quantize(_CENT)
