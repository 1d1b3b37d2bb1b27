"""Money helpers. All arithmetic happens in integer cents."""

from __future__ import annotations

from decimal import ROUND_DOWN, Decimal

from errors import ContractError

_CENT = Decimal("0.01")


def to_cents(amount: Decimal | int | str) -> int:
    """Convert a currency amount to integer cents.

    Sub-cent amounts are a contract error rather than being rounded.
    """
    value = Decimal(str(amount))
    cents = value * 100
    if cents != cents.to_integral_value():
        raise ContractError(f"amount {amount!r} has more than two decimal places")
    return int(cents)


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def floor_cents(value: Decimal) -> int:
    """Round a fractional cent amount down (in favour of the house)."""
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def format_amount(cents: int) -> str:
    """Render cents as ``k$ 13.50``."""
    return f"k$ {from_cents(cents):,.2f}"
