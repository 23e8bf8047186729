"""Currency conversion utilities for Bizhub.

Internal storage and arithmetic unit: kobo (smallest NGN unit, 100 kobo = ₦1).
Catalogue prices and display amounts: Naira (major unit).

Conversions happen only at the edges: catalogue prices and gateway-reported major
amounts are turned into kobo on the way in, and kobo into Naira on the way out.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation

KOBO_PER_NAIRA: int = 100


def _to_decimal(value) -> Decimal | None:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    if not amount.is_finite():
        return None
    return amount


def naira_to_kobo(naira) -> int:
    """Convert a catalogue price in Naira to kobo, flooring fractions of a kobo.

    Non-numeric and negative input yields 0.
    """
    amount = _to_decimal(naira)
    if amount is None or amount <= 0:
        return 0
    return int((amount * KOBO_PER_NAIRA).to_integral_value(rounding=ROUND_FLOOR))


def major_to_kobo(amount) -> int | None:
    """Convert a gateway-reported major amount to kobo (round half-up).

    Returns None when the amount is not a finite number.
    """
    value = _to_decimal(amount)
    if value is None:
        return None
    return int((value * KOBO_PER_NAIRA).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def kobo_to_naira(kobo: int) -> Decimal:
    """Convert kobo to Naira for display and storage of major amounts."""
    return (Decimal(int(kobo)) / KOBO_PER_NAIRA).quantize(Decimal("0.01"))
