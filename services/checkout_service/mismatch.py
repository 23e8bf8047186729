"""Amount mismatch guard.

A payment settles only when the gateway-reported amount equals the recomputed quote
total exactly. Both sides are integer kobo, so there is no tolerance. A mismatch leaves
a forensic record behind and stops settlement before any order exists.
"""

import math
import uuid
from typing import Any, Optional

from libs.common.logging import get_logger
from libs.db.unit_of_work import run_in_transaction
from services.checkout_service.errors import AmountMismatch, ValidationFailed
from services.checkout_service.models import PaymentMismatch
from services.checkout_service.pricing import Quote
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)


def validate_paid_amount(paid_kobo: Any) -> int:
    """Paid amount must be a finite, positive whole number of kobo."""
    if isinstance(paid_kobo, bool) or not isinstance(paid_kobo, (int, float)):
        raise ValidationFailed("Invalid paid amount")
    if isinstance(paid_kobo, float):
        if not math.isfinite(paid_kobo) or not paid_kobo.is_integer():
            raise ValidationFailed("Invalid paid amount")
        paid_kobo = int(paid_kobo)
    if paid_kobo <= 0:
        raise ValidationFailed("Invalid paid amount")
    return paid_kobo


async def record_mismatch(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    reference: str,
    quote: Quote,
    paid_kobo: int,
    provider: Optional[str] = None,
) -> None:
    """Write the mismatch record for a reference. Later writes for the same reference are no-ops."""
    applied = quote.applied_coupon

    async def _write(session: AsyncSession) -> None:
        existing = await session.get(PaymentMismatch, reference)
        if existing is not None:
            return
        session.add(
            PaymentMismatch(
                reference=reference,
                storefront_id=uuid.UUID(quote.storefront_id),
                storefront_slug=quote.storefront_slug,
                expected_kobo=quote.pricing.total_kobo,
                paid_kobo=paid_kobo,
                pricing=quote.pricing_snapshot(),
                coupon_code=applied.code if applied else None,
                provider=provider,
            )
        )

    await run_in_transaction(session_factory, _write, label="record payment mismatch")


async def guard_amount(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    reference: str,
    quote: Quote,
    paid_kobo: Any,
    provider: Optional[str] = None,
) -> int:
    """Return the validated paid amount, or record the mismatch and raise AmountMismatch."""
    paid = validate_paid_amount(paid_kobo)
    expected = quote.pricing.total_kobo
    if paid == expected:
        return paid

    logger.warning(
        "Amount mismatch for reference %s: expected %d kobo, paid %d kobo",
        reference,
        expected,
        paid,
        extra={"extra_fields": {
            "reference": reference,
            "storefront_slug": quote.storefront_slug,
            "expected_kobo": expected,
            "paid_kobo": paid,
        }},
    )
    await record_mismatch(
        session_factory,
        reference=reference,
        quote=quote,
        paid_kobo=paid,
        provider=provider,
    )
    raise AmountMismatch(expected_kobo=expected, paid_kobo=paid)
