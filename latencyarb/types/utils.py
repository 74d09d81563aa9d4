"""
Utility functions for timestamps and price parsing.

These are pure functions with no dependencies on other types.
"""

from decimal import Decimal, InvalidOperation
from time import time

from ..errors import PriceParseError


def wall_ms() -> int:
    """Get current wall clock timestamp in milliseconds."""
    return int(time() * 1000)


def parse_decimal(raw: object, field: str = "value") -> Decimal:
    """
    Parse a venue price/size field into a Decimal.

    Venues send prices as text to avoid float precision loss. Anything that is
    missing, unparseable, non-finite or negative is rejected explicitly.

    Args:
        raw: Text (or number) from the wire
        field: Field name used in the error message

    Returns:
        Finite, non-negative Decimal

    Raises:
        PriceParseError: If the value cannot be used
    """
    if raw is None or isinstance(raw, bool):
        raise PriceParseError(field, raw, "missing")

    if isinstance(raw, float):
        raw = repr(raw)

    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        raise PriceParseError(field, raw)

    if not value.is_finite():
        raise PriceParseError(field, raw, "non-finite")
    if value < 0:
        raise PriceParseError(field, raw, "negative")

    return value
