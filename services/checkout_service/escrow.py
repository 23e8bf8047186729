"""Escrow release: move held order funds from pending to available.

Run per order (``release_escrow_if_eligible``) or in batches by the cron sweep
(``sweep_due_escrow``). The payment transaction record is left untouched.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from libs.db.unit_of_work import run_in_transaction
from services.checkout_service.errors import BusinessRuleViolation, CheckoutError
from services.checkout_service.models import EscrowStatus, Order, OrderStatus
from services.checkout_service.orders import get_order, parse_order_id
from services.checkout_service.wallets import increment_wallet
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

NOT_HELD = "Not held"
STILL_HOLDING = "Still holding"
RELEASED = "Released to vendor wallet"


@dataclass(frozen=True)
class EscrowRelease:
    ok: bool
    message: str
    escrow_status: Optional[str] = None
    hold_until: Optional[datetime] = None

    @property
    def released(self) -> bool:
        return self.message == RELEASED


@dataclass(frozen=True)
class SweepResult:
    scanned_held: int
    due: int
    released: int
    skipped: int


async def release_escrow_if_eligible(
    session_factory: async_sessionmaker[AsyncSession],
    order_id: Any,
    *,
    now: Optional[datetime] = None,
) -> EscrowRelease:
    """Release one order's held funds to the storefront wallet once its hold has passed."""
    oid = parse_order_id(order_id)

    async def _apply(session: AsyncSession) -> EscrowRelease:
        order = await get_order(session, oid, for_update=True)
        if order.escrow_status != EscrowStatus.HELD:
            return EscrowRelease(
                ok=True,
                message=NOT_HELD,
                escrow_status=order.escrow_status.value if order.escrow_status else None,
            )

        current = ensure_utc(now) if now else utc_now()
        if order.hold_until is not None and current < order.hold_until:
            return EscrowRelease(
                ok=True,
                message=STILL_HOLDING,
                escrow_status=order.escrow_status.value,
                hold_until=order.hold_until,
            )

        amount = order.amount_kobo
        if not amount or amount <= 0:
            raise BusinessRuleViolation("Invalid order data")

        await increment_wallet(
            session,
            order.storefront_id,
            pending_kobo=-amount,
            available_kobo=amount,
            total_earned_kobo=amount,
        )
        order.escrow_status = EscrowStatus.RELEASED
        order.order_status = OrderStatus.RELEASED_TO_VENDOR_WALLET
        order.released_at = current
        return EscrowRelease(
            ok=True, message=RELEASED, escrow_status=EscrowStatus.RELEASED.value
        )

    result = await run_in_transaction(session_factory, _apply, label="escrow release")
    if result.released:
        logger.info("Released escrow for order %s", oid)
    return result


async def sweep_due_escrow(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    scan_limit: int = 300,
    batch_size: int = 60,
    now: Optional[datetime] = None,
) -> SweepResult:
    """Release due held orders one by one. Each release is its own transaction."""
    current = ensure_utc(now) if now else utc_now()

    async with session_factory() as session:
        query = (
            select(Order.id, Order.hold_until)
            .where(Order.escrow_status == EscrowStatus.HELD)
            .order_by(Order.hold_until)
            .limit(scan_limit)
        )
        held = (await session.execute(query)).all()

    due = [
        row.id
        for row in held
        if row.hold_until is not None and row.hold_until <= current
    ][:batch_size]

    released = 0
    skipped = 0
    for order_id in due:
        try:
            outcome = await release_escrow_if_eligible(session_factory, order_id, now=current)
        except CheckoutError as e:
            logger.warning("Skipping escrow release for order %s: %s", order_id, e.message)
            skipped += 1
            continue
        if outcome.released:
            released += 1
        else:
            skipped += 1

    logger.info(
        "Escrow sweep: %d held scanned, %d due, %d released, %d skipped",
        len(held),
        len(due),
        released,
        skipped,
    )
    return SweepResult(
        scanned_held=len(held), due=len(due), released=released, skipped=skipped
    )
