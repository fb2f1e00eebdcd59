"""
Money rounding and display.

All amounts are whole currency units (int). The display currency has no
fractional subunit, so Rp 1.250.000 is stored as 1250000. Anything that
produces a fraction goes through round_money exactly once.
"""

from decimal import Decimal, ROUND_HALF_UP

_WHOLE = Decimal("1")


def round_money(value: Decimal | int) -> int:
    """Round to a whole currency unit, half away from zero."""
    if isinstance(value, int):
        return value
    return int(Decimal(value).quantize(_WHOLE, rounding=ROUND_HALF_UP))


def format_currency(amount: int, symbol: str = "Rp") -> str:
    """
    Format whole units with dot thousands separators.

    format_currency(1250000) -> "Rp 1.250.000"
    """
    sign = "-" if amount < 0 else ""
    grouped = f"{abs(amount):,}".replace(",", ".")
    return f"{sign}{symbol} {grouped}"
