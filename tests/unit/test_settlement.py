"""Unit tests for escrow settlement.

The gateway is a stub; everything else (quote, guard, unit of work) runs for real
against the in-memory database.
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from services.checkout_service.errors import (
    AmountMismatch,
    BusinessRuleViolation,
    PaymentNotSuccessful,
    ValidationFailed,
)
from services.checkout_service.models import (
    Coupon,
    EscrowStatus,
    Order,
    OrderStatus,
    PaymentMismatch,
    PaymentProvider,
    PaymentStatus,
    PaymentTransaction,
    SaleType,
    Wallet,
)
from services.checkout_service.settlement import CheckoutMetadata, settle_payment
from sqlalchemy import func, select
from tests.factories import (
    CouponFactory,
    PaystackReceiptFactory,
    ProductFactory,
    StorefrontFactory,
    checkout_metadata,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


async def _count(session_factory, model) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(model))


async def _store_with_sale_and_coupon(seed):
    """A store selling one 1000 kobo item at 10% off, plus a 10% coupon: total 810."""
    store = StorefrontFactory.create(slug="ada-bakes")
    product = ProductFactory.create(
        storefront_id=store.id,
        price=Decimal("10.00"),
        sale_active=True,
        sale_type=SaleType.PERCENT,
        sale_percent=10,
    )
    coupon = CouponFactory.create(storefront_id=store.id, code="SAVE10", percent=10)
    await seed(store, product, coupon)
    return store, product, coupon


async def _settle(session_factory, stub_gateway, reference, **kwargs):
    return await settle_payment(
        session_factory,
        reference=reference,
        provider=PaymentProvider.PAYSTACK,
        resolve_gateway=stub_gateway.resolve,
        now=NOW,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Metadata parsing
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_metadata_accepts_legacy_slug_and_coupon_object():
    metadata = CheckoutMetadata.from_receipt_metadata(
        {
            "businessSlug": " Ada-Bakes ",
            "items": [{"productId": "p1", "qty": 2}],
            "coupon": {"code": "save10"},
            "shipping": {"type": "pickup", "feeKobo": "250.9"},
            "customer": {"email": "Buyer@Example.com"},
        }
    )

    assert metadata.storefront_slug == "ada-bakes"
    assert metadata.coupon_code == "save10"
    assert metadata.shipping_fee_kobo == 250
    assert metadata.shipping.snapshot()["name"] == "Pickup"
    assert metadata.customer_email == "buyer@example.com"


@pytest.mark.unit
def test_metadata_tolerates_garbage():
    metadata = CheckoutMetadata.from_receipt_metadata(
        {"items": "nope", "shipping": "x", "customer": None}
    )

    assert metadata.storefront_slug == ""
    assert metadata.items == []
    assert metadata.shipping is None
    assert metadata.customer_email is None


# ---------------------------------------------------------------------------
# settle_payment
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_settlement_creates_order_transaction_wallet_and_coupon_use(
    session_factory, seed, stub_gateway
):
    store, product, coupon = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            amount_kobo=810,
            metadata=checkout_metadata(
                store.slug,
                [{"productId": str(product.id), "qty": 1}],
                couponCode="SAVE10",
            ),
        )
    )

    result = await _settle(session_factory, stub_gateway, receipt.reference)

    assert result.ok is True
    assert result.already_processed is False
    assert result.escrow_status == "held"
    assert result.storefront_slug == "ada-bakes"
    assert result.hold_until == NOW + timedelta(minutes=5)

    async with session_factory() as session:
        order = await session.get(Order, uuid.UUID(result.order_id))
        tx = await session.get(PaymentTransaction, receipt.reference)
        wallet = await session.get(Wallet, store.id)
        stored_coupon = await session.get(Coupon, coupon.id)

    assert order.amount_kobo == 810
    assert order.payment_status == PaymentStatus.PAID
    assert order.escrow_status == EscrowStatus.HELD
    assert order.order_status == OrderStatus.PAID_HELD
    assert order.customer_email == "buyer@example.com"
    assert order.coupon["code"] == "SAVE10"
    assert order.coupon["discountKobo"] == 90
    assert order.pricing["total_kobo"] == 810
    assert order.items[0]["final_unit_price_kobo"] == 900
    assert order.payment["provider"] == "paystack"
    assert tx.order_id == order.id
    assert tx.amount_kobo == 810
    assert wallet.pending_balance_kobo == 810
    assert wallet.available_balance_kobo == 0
    assert stored_coupon.used_count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_second_settlement_replays_without_side_effects(
    session_factory, seed, stub_gateway
):
    store, product, coupon = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            amount_kobo=900,
            metadata=checkout_metadata(store.slug, [{"productId": str(product.id)}]),
        )
    )

    first = await _settle(session_factory, stub_gateway, receipt.reference)
    second = await _settle(session_factory, stub_gateway, receipt.reference)

    assert second.already_processed is True
    assert second.order_id == first.order_id
    assert second.hold_until == first.hold_until
    # The replay is answered from the transaction record, before any gateway call.
    assert stub_gateway.calls == [receipt.reference]
    assert await _count(session_factory, Order) == 1
    assert await _count(session_factory, PaymentTransaction) == 1

    async with session_factory() as session:
        wallet = await session.get(Wallet, store.id)
    assert wallet.pending_balance_kobo == 900


@pytest.mark.asyncio
@pytest.mark.unit
async def test_wallet_accumulates_across_orders(session_factory, seed, stub_gateway):
    store, product, _ = await _store_with_sale_and_coupon(seed)
    items = [{"productId": str(product.id), "qty": 2}]
    refs = [
        stub_gateway.add(
            PaystackReceiptFactory.create(
                amount_kobo=1800, metadata=checkout_metadata(store.slug, items)
            )
        ).reference
        for _ in range(2)
    ]

    for ref in refs:
        await _settle(session_factory, stub_gateway, ref)

    async with session_factory() as session:
        wallet = await session.get(Wallet, store.id)
    assert wallet.pending_balance_kobo == 3600


@pytest.mark.asyncio
@pytest.mark.unit
async def test_mismatch_blocks_settlement(session_factory, seed, stub_gateway):
    store, product, coupon = await _store_with_sale_and_coupon(seed)
    # Client claims the coupon price but the coupon is not in the metadata: 900 expected.
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            amount_kobo=810,
            metadata=checkout_metadata(store.slug, [{"productId": str(product.id)}]),
        )
    )

    with pytest.raises(AmountMismatch) as exc_info:
        await _settle(session_factory, stub_gateway, receipt.reference)

    assert exc_info.value.expected_kobo == 900
    assert exc_info.value.paid_kobo == 810
    assert await _count(session_factory, Order) == 0
    assert await _count(session_factory, PaymentTransaction) == 0
    assert await _count(session_factory, Wallet) == 0
    assert await _count(session_factory, PaymentMismatch) == 1

    async with session_factory() as session:
        stored_coupon = await session.get(Coupon, coupon.id)
    assert stored_coupon.used_count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_gateway_status_is_rejected(session_factory, seed, stub_gateway):
    store, product, _ = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            status="abandoned",
            amount_kobo=900,
            metadata=checkout_metadata(store.slug, [{"productId": str(product.id)}]),
        )
    )

    with pytest.raises(PaymentNotSuccessful):
        await _settle(session_factory, stub_gateway, receipt.reference)

    assert await _count(session_factory, Order) == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_foreign_currency_is_rejected(session_factory, seed, stub_gateway):
    store, product, _ = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            currency="usd",
            amount_kobo=900,
            metadata=checkout_metadata(store.slug, [{"productId": str(product.id)}]),
        )
    )

    with pytest.raises(BusinessRuleViolation) as exc_info:
        await _settle(session_factory, stub_gateway, receipt.reference)

    assert exc_info.value.message == "Invalid currency."


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_reference_and_slug(session_factory, stub_gateway):
    with pytest.raises(ValidationFailed):
        await _settle(session_factory, stub_gateway, "   ")

    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(metadata={"items": [{"productId": "p1"}]})
    )
    with pytest.raises(ValidationFailed):
        await _settle(session_factory, stub_gateway, receipt.reference)


# ---------------------------------------------------------------------------
# Atomicity and concurrent settlement
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failure_mid_settlement_leaves_nothing_behind(
    session_factory, seed, stub_gateway, monkeypatch
):
    store, product, coupon = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            amount_kobo=810,
            metadata=checkout_metadata(
                store.slug, [{"productId": str(product.id)}], couponCode="SAVE10"
            ),
        )
    )

    async def wallet_down(*args, **kwargs):
        raise RuntimeError("wallet store unavailable")

    monkeypatch.setattr(
        "services.checkout_service.settlement.increment_wallet", wallet_down
    )

    with pytest.raises(RuntimeError):
        await _settle(session_factory, stub_gateway, receipt.reference)

    # The order and transaction rows were flushed before the wallet step; both roll back.
    assert await _count(session_factory, Order) == 0
    assert await _count(session_factory, PaymentTransaction) == 0
    async with session_factory() as session:
        wallet = await session.get(Wallet, store.id)
        stored_coupon = await session.get(Coupon, coupon.id)
    assert wallet is None or wallet.pending_balance_kobo == 0
    assert stored_coupon.used_count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_racing_settlement_replays_the_winner(
    session_factory, seed, stub_gateway, monkeypatch
):
    """A caller that missed the early replay check still lands on the first order."""
    store, product, _ = await _store_with_sale_and_coupon(seed)
    receipt = stub_gateway.add(
        PaystackReceiptFactory.create(
            amount_kobo=810,
            metadata=checkout_metadata(
                store.slug, [{"productId": str(product.id)}], couponCode="SAVE10"
            ),
        )
    )
    winner = await _settle(session_factory, stub_gateway, receipt.reference)

    async def not_found_yet(*args, **kwargs):
        return None

    monkeypatch.setattr(
        "services.checkout_service.settlement.find_settlement", not_found_yet
    )
    loser = await _settle(session_factory, stub_gateway, receipt.reference)

    assert loser.already_processed is True
    assert loser.order_id == winner.order_id
    assert stub_gateway.calls == [receipt.reference, receipt.reference]
    assert await _count(session_factory, Order) == 1
    assert await _count(session_factory, PaymentTransaction) == 1
    async with session_factory() as session:
        wallet = await session.get(Wallet, store.id)
    assert wallet.pending_balance_kobo == 810
