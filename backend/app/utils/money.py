from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

MINOR_UNIT = Decimal(1)


def to_decimal(value: int | float | str | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats such as 0.1 from dragging binary noise into the amount
    return Decimal(str(value))


def round_minor_units(value: Decimal) -> int:
    """Round to the nearest minor currency unit, halves away from zero."""
    return int(value.quantize(MINOR_UNIT, rounding=ROUND_HALF_UP))
