"""18-decimal fixed-point helpers over plain Python ints.

Every function floors on division. Products are bounded to 256 bits before
dividing so results stay reproducible against a uint256 ledger.
"""
from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

WAD: int = 10**18
MAX_UINT256: int = 2**256 - 1
SECONDS_PER_YEAR: int = 365 * 24 * 60 * 60


def mul_div(a: int, b: int, d: int) -> int:
    """Return ``floor(a * b / d)`` with the product checked against uint256."""
    if d == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    if a < 0 or b < 0 or d < 0:
        raise ValueError(f"Fixed-point operands must be non-negative: {a}, {b}, {d}")
    product = a * b
    if product > MAX_UINT256:
        raise OverflowError(f"Fixed-point product exceeds uint256: {a} * {b}")
    return product // d


def wad_mul(a: int, b: int) -> int:
    return mul_div(a, b, WAD)


def wad_div(a: int, b: int) -> int:
    return mul_div(a, WAD, b)


def to_wad(value: int | str | Decimal) -> int:
    """Parse a decimal quantity (``"0.85"``, ``3000``) into WAD exactly.

    Floats are rejected: binary floats cannot represent most ratios exactly.
    """
    return to_units(value, 18)


def to_units(value: int | str | Decimal, decimals: int) -> int:
    """Scale a decimal quantity to an integer with ``decimals`` digits."""
    if isinstance(value, float):
        raise TypeError("Use a string or Decimal for fixed-point values, not float")
    scaled = Decimal(str(value)).scaleb(decimals)
    return int(scaled.to_integral_value(rounding=ROUND_FLOOR))


def from_wad(value: int) -> Decimal:
    """Exact decimal view of a WAD integer (display only)."""
    return Decimal(value).scaleb(-18)
