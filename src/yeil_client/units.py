from __future__ import annotations

from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext

from .exceptions import InvalidAmount

# Enough digits for any uint256 at any decimal count.
_PRECISION = 160


def parse_units(amount: str, decimals: int) -> int:
    """Convert a human-readable decimal string to smallest-unit integer.

    Args:
        amount: Decimal string such as ``"5"`` or ``"0.25"``.
        decimals: Token decimal places.

    Returns:
        The raw integer amount.

    Raises:
        InvalidAmount: If ``amount`` is not a plain non-negative decimal or has
            more fractional digits than ``decimals`` allows.
    """
    text = amount.strip() if isinstance(amount, str) else ""
    if not text:
        raise InvalidAmount(str(amount), "amount must be a non-empty decimal string")

    try:
        value = Decimal(text)
    except InvalidOperation as exc:
        raise InvalidAmount(amount, "not a decimal number") from exc

    if not value.is_finite():
        raise InvalidAmount(amount, "amount must be finite")
    if value < 0:
        raise InvalidAmount(amount, "amount must not be negative")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        scaled = value.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            raise InvalidAmount(amount, f"more than {decimals} fractional digits")
        return int(scaled)


def format_units(raw: int, decimals: int, precision: int | None = None) -> str:
    """Render a raw amount as a decimal string.

    Trailing zeros are trimmed but at least one fractional digit is kept, so
    ``10 * 10**18`` at 18 decimals renders as ``"10.0"``. When ``precision``
    is given the value is truncated (never rounded up) to that many places.
    """
    if raw < 0:
        raise ValueError("raw amount must be non-negative")

    with localcontext() as ctx:
        ctx.prec = _PRECISION
        value = Decimal(raw).scaleb(-decimals)
        if precision is not None:
            value = value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_DOWN)
        text = f"{value:f}"

    if "." in text:
        text = text.rstrip("0")
    else:
        text += "."
    if text.endswith("."):
        text += "0"
    return text
