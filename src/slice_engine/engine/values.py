"""Row shape and the scalar normalisation shared by every execution path."""

from __future__ import annotations

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from slice_engine.models.query import Row

__all__ = ["Row", "is_number", "normalize", "round_half_away", "sort_key"]


def normalize(value: Any) -> Any:
    """Numeric strings become numbers and integral floats become ints.

    Backends disagree on how they return aggregates (``SUM`` over an integer
    column may come back as ``Decimal``, ``"100"`` or ``100.0``); results are
    compared across paths, so every value goes through here first.
    """
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Decimal):
        value = float(value)
    elif isinstance(value, str):
        try:
            value = float(value) if any(c in value for c in ".eE") else int(value)
        except ValueError:
            return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def sort_key(values: Sequence[Any]) -> tuple[tuple[int, Any], ...]:
    """Total order over mixed scalars: None first, then numbers, then everything else as text."""
    key: list[tuple[int, Any]] = []
    for value in values:
        if value is None:
            key.append((0, 0))
        elif is_number(value):
            key.append((1, value))
        else:
            key.append((2, str(value)))
    return tuple(key)


def round_half_away(value: Any, digits: int = 0) -> float:
    """Round like SQL ``ROUND``: a half goes away from zero (Python's ``round`` goes to even)."""
    exponent = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP))
