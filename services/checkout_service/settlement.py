"""Escrow settlement: turn a verified payment into an order exactly once.

Flow for one payment reference:
    1. Verify the payment with the active gateway.
    2. Re-derive the price with the quote builder from the cart echoed in the
       payment metadata (never from a client total).
    3. Run the mismatch guard.
    4. In one transaction: create the order, the payment transaction record keyed by the
       reference, credit the storefront's pending wallet balance and count the coupon use.

The payment transaction row is the idempotency marker. A reference that already has one
returns the stored result with ``already_processed=True``; concurrent attempts for the
same reference collide on its primary key and the loser replays the winner's result.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional

from libs.common.currency import kobo_to_naira
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from libs.db.unit_of_work import DEFAULT_MAX_ATTEMPTS, run_in_transaction
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from services.checkout_service.errors import (
    BusinessRuleViolation,
    PaymentNotSuccessful,
    ValidationFailed,
)
from services.checkout_service.gateways import (
    FlutterwaveReceipt,
    GatewayResolver,
    PaystackReceipt,
    ensure_reference_matches,
)
from services.checkout_service.mismatch import guard_amount
from services.checkout_service.models import (
    Coupon,
    EscrowStatus,
    Order,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentTransaction,
    PaymentType,
)
from services.checkout_service.pricing import Quote, build_quote, clean_coupon_code
from services.checkout_service.wallets import increment_wallet
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

DEFAULT_HOLD_MINUTES = 5


@dataclass(frozen=True)
class SettlementResult:
    ok: bool
    order_id: str
    storefront_slug: str
    escrow_status: str
    hold_until: Optional[datetime]
    already_processed: bool


# ============================================================================
# PAYMENT METADATA
# ============================================================================


class ShippingSelection(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    option_id: Optional[str] = Field(None, alias="optionId")
    type: str = "delivery"
    name: str = ""
    fee_kobo: int = Field(0, alias="feeKobo")

    @field_validator("type", mode="before")
    @classmethod
    def normalize_type(cls, v: Any) -> str:
        return "pickup" if str(v or "") == "pickup" else "delivery"

    @field_validator("fee_kobo", mode="before")
    @classmethod
    def floor_fee(cls, v: Any) -> int:
        try:
            return max(0, int(float(v or 0)))
        except (TypeError, ValueError):
            return 0

    @field_validator("option_id", mode="before")
    @classmethod
    def stringify_option(cls, v: Any) -> Optional[str]:
        return str(v) if v else None

    def snapshot(self) -> dict:
        name = self.name[:60] or ("Pickup" if self.type == "pickup" else "Delivery")
        return {
            "optionId": self.option_id,
            "type": self.type,
            "name": name,
            "feeKobo": self.fee_kobo,
        }


class CheckoutMetadata(BaseModel):
    """The cart the buyer's client attached to the payment."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    storefront_slug: str = Field(
        "",
        validation_alias=AliasChoices(
            "storeSlug", "businessSlug", "slug", "storefrontSlug", "storefront_slug"
        ),
    )
    items: list = Field(default_factory=list)
    coupon_code: Optional[str] = Field(
        None, validation_alias=AliasChoices("couponCode", "coupon_code")
    )
    shipping: Optional[ShippingSelection] = None
    customer: dict = Field(default_factory=dict)

    @field_validator("storefront_slug", mode="before")
    @classmethod
    def clean_slug(cls, v: Any) -> str:
        return str(v or "").strip().lower()

    @field_validator("items", mode="before")
    @classmethod
    def list_items(cls, v: Any) -> list:
        return v if isinstance(v, list) else []

    @field_validator("shipping", mode="before")
    @classmethod
    def shipping_object(cls, v: Any) -> Optional[dict]:
        return v if isinstance(v, dict) else None

    @field_validator("customer", mode="before")
    @classmethod
    def customer_object(cls, v: Any) -> dict:
        return v if isinstance(v, dict) else {}

    @classmethod
    def from_receipt_metadata(cls, metadata: dict) -> "CheckoutMetadata":
        data = dict(metadata or {})
        # Clients send either couponCode or a coupon object with a code.
        coupon = data.get("coupon")
        if "couponCode" not in data and isinstance(coupon, dict):
            data["couponCode"] = coupon.get("code")
        return cls.model_validate(data)

    @property
    def shipping_fee_kobo(self) -> int:
        return self.shipping.fee_kobo if self.shipping else 0

    @property
    def customer_email(self) -> Optional[str]:
        email = str(self.customer.get("email") or "").strip().lower()
        return email or None


# ============================================================================
# ATOMIC COMMIT
# ============================================================================


def _replay(tx: PaymentTransaction) -> SettlementResult:
    return SettlementResult(
        ok=True,
        order_id=str(tx.order_id),
        storefront_slug=tx.storefront_slug,
        escrow_status=tx.escrow_status.value,
        hold_until=tx.hold_until,
        already_processed=True,
    )


async def find_settlement(
    session_factory: async_sessionmaker[AsyncSession], reference: str
) -> Optional[SettlementResult]:
    """Return the stored result for an already-settled reference, if any."""
    async with session_factory() as session:
        tx = await session.get(PaymentTransaction, reference, populate_existing=True)
        return _replay(tx) if tx is not None else None


def _payment_snapshot(
    receipt: PaystackReceipt | FlutterwaveReceipt, reference: str
) -> dict:
    snapshot = {
        "provider": receipt.provider,
        "reference": reference,
        "status": receipt.status,
        "channel": receipt.channel,
        "paidAt": receipt.paid_at.isoformat() if receipt.paid_at else None,
    }
    if isinstance(receipt, FlutterwaveReceipt):
        snapshot["transactionId"] = receipt.transaction_id
        snapshot["feesKobo"] = receipt.app_fee_kobo
    else:
        snapshot["feesKobo"] = receipt.fees_kobo
    return snapshot


async def commit_settlement(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    reference: str,
    quote: Quote,
    paid_kobo: int,
    receipt: PaystackReceipt | FlutterwaveReceipt,
    metadata: CheckoutMetadata,
    currency: str = "NGN",
    hold_minutes: int = DEFAULT_HOLD_MINUTES,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """Create order, transaction record, wallet credit and coupon count together, or nothing."""
    storefront_id = uuid.UUID(quote.storefront_id)
    applied = quote.applied_coupon
    provider = PaymentProvider(receipt.provider)

    async def _apply(session: AsyncSession) -> SettlementResult:
        existing = await session.get(
            PaymentTransaction, reference, populate_existing=True
        )
        if existing is not None:
            logger.info("Reference %s already settled as order %s", reference, existing.order_id)
            return _replay(existing)

        settled_at = ensure_utc(now) if now else utc_now()
        hold_until = settled_at + timedelta(minutes=hold_minutes)
        order_id = uuid.uuid4()
        amount = kobo_to_naira(paid_kobo)

        session.add(
            Order(
                id=order_id,
                storefront_id=storefront_id,
                storefront_slug=quote.storefront_slug,
                items=quote.items_snapshot(),
                customer=metadata.customer or None,
                customer_email=(
                    metadata.customer_email or (receipt.customer_email or "").lower() or None
                ),
                coupon=(
                    {
                        "code": applied.code,
                        "couponId": applied.coupon_id,
                        "discountKobo": applied.discount_kobo,
                        "subtotalKobo": quote.pricing.sale_subtotal_kobo,
                    }
                    if applied
                    else None
                ),
                shipping=metadata.shipping.snapshot() if metadata.shipping else None,
                pricing=quote.pricing_snapshot(),
                payment=_payment_snapshot(receipt, reference),
                payment_type=PaymentType.ESCROW,
                payment_status=PaymentStatus.PAID,
                escrow_status=EscrowStatus.HELD,
                order_status=OrderStatus.PAID_HELD,
                currency=currency,
                amount=amount,
                amount_kobo=paid_kobo,
                hold_until=hold_until,
                created_at=settled_at,
                updated_at=settled_at,
            )
        )
        await session.flush()

        session.add(
            PaymentTransaction(
                reference=reference,
                order_id=order_id,
                storefront_id=storefront_id,
                storefront_slug=quote.storefront_slug,
                amount_kobo=paid_kobo,
                amount=amount,
                currency=currency,
                provider=provider,
                escrow_status=EscrowStatus.HELD,
                hold_until=hold_until,
                created_at=settled_at,
            )
        )
        await session.flush()

        await increment_wallet(session, storefront_id, pending_kobo=paid_kobo)

        if applied is not None and applied.coupon_id:
            await session.execute(
                update(Coupon)
                .where(Coupon.id == uuid.UUID(applied.coupon_id))
                .values(used_count=Coupon.used_count + 1, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )

        return SettlementResult(
            ok=True,
            order_id=str(order_id),
            storefront_slug=quote.storefront_slug,
            escrow_status=EscrowStatus.HELD.value,
            hold_until=hold_until,
            already_processed=False,
        )

    result = await run_in_transaction(
        session_factory, _apply, max_attempts=max_attempts, label="settlement"
    )
    if not result.already_processed:
        logger.info(
            "Settled reference %s as order %s (%d kobo to storefront %s)",
            reference,
            result.order_id,
            paid_kobo,
            quote.storefront_slug,
            extra={"extra_fields": {
                "reference": reference,
                "order_id": result.order_id,
                "amount_kobo": paid_kobo,
            }},
        )
    return result


# ============================================================================
# ENTRY POINT
# ============================================================================


async def settle_payment(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    reference: Any,
    provider: PaymentProvider,
    resolve_gateway: GatewayResolver,
    transaction_id: Optional[str] = None,
    currency: str = "NGN",
    hold_minutes: int = DEFAULT_HOLD_MINUTES,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime] = None,
) -> SettlementResult:
    """Verify, re-price, guard and settle one payment reference."""
    reference = str(reference or "").strip()
    if not reference:
        raise ValidationFailed("reference is required")

    existing = await find_settlement(session_factory, reference)
    if existing is not None:
        logger.info("Reference %s already settled, replaying result", reference)
        return existing

    gateway = resolve_gateway(PaymentProvider(provider))
    receipt = await gateway.verify(reference=reference, transaction_id=transaction_id)
    ensure_reference_matches(receipt, reference)
    if not receipt.succeeded:
        raise PaymentNotSuccessful(f"Payment not successful: {receipt.status or 'unknown'}")
    if receipt.currency != currency:
        raise BusinessRuleViolation("Invalid currency.")

    metadata = CheckoutMetadata.from_receipt_metadata(receipt.metadata)
    if not metadata.storefront_slug:
        raise ValidationFailed("Missing storeSlug in payment metadata")

    async with session_factory() as session:
        quote = await build_quote(
            session,
            storefront_slug=metadata.storefront_slug,
            items=metadata.items,
            coupon_code=clean_coupon_code(metadata.coupon_code) or None,
            shipping_fee_kobo=metadata.shipping_fee_kobo,
            now=now,
        )

    paid_kobo = await guard_amount(
        session_factory,
        reference=reference,
        quote=quote,
        paid_kobo=receipt.amount_kobo,
        provider=receipt.provider,
    )

    return await commit_settlement(
        session_factory,
        reference=reference,
        quote=quote,
        paid_kobo=paid_kobo,
        receipt=receipt,
        metadata=metadata,
        currency=currency,
        hold_minutes=hold_minutes,
        max_attempts=max_attempts,
        now=now,
    )
