from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal


def format_decimal(value: Decimal) -> str:
    """Render a decimal in plain notation, trimming trailing zeros."""
    normalized = value.normalize()
    # normalize() turns 100 into 1E+2
    if normalized == normalized.to_integral():
        return f"{normalized:.0f}"
    return format(normalized, "f")


def format_currency(value: Decimal, places: int = 2) -> str:
    quantized = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    return f"{quantized:.{places}f}"
