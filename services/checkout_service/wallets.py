"""Storefront wallet ledger: additive balance increments only."""

import uuid

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.checkout_service.models import Wallet
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def increment_wallet(
    db: AsyncSession,
    storefront_id: uuid.UUID,
    *,
    pending_kobo: int = 0,
    available_kobo: int = 0,
    total_earned_kobo: int = 0,
) -> None:
    """Apply balance deltas in SQL so concurrent increments commute.

    Balances are never read back and overwritten. A storefront without a wallet gets
    one holding exactly the deltas; if two first credits race, the losing insert raises
    IntegrityError and its unit of work retries.
    """
    result = await db.execute(
        update(Wallet)
        .where(Wallet.storefront_id == storefront_id)
        .values(
            pending_balance_kobo=Wallet.pending_balance_kobo + pending_kobo,
            available_balance_kobo=Wallet.available_balance_kobo + available_kobo,
            total_earned_kobo=Wallet.total_earned_kobo + total_earned_kobo,
            updated_at=utc_now(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(
            Wallet(
                storefront_id=storefront_id,
                pending_balance_kobo=pending_kobo,
                available_balance_kobo=available_kobo,
                total_earned_kobo=total_earned_kobo,
            )
        )
        await db.flush()
        logger.info("Created wallet for storefront %s", storefront_id)
