"""Unit tests for the quote builder.

Pure price math is tested directly; build_quote runs against the in-memory database.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from services.checkout_service.errors import InvalidItem, NotFound, ValidationFailed
from services.checkout_service.models import (
    DiscountType,
    ListingType,
    SaleType,
    ServiceMode,
)
from services.checkout_service.pricing import (
    clean_cart,
    compute_coupon_discount,
    compute_unit_prices,
    build_quote,
)
from tests.factories import CouponFactory, ProductFactory, StorefrontFactory

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Price math
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_percent_sale_floors_unit_price():
    product = ProductFactory.create(
        price=Decimal("9.99"),
        sale_active=True,
        sale_type=SaleType.PERCENT,
        sale_percent=15,
    )

    base, final, applied = compute_unit_prices(product, NOW)

    assert base == 999
    assert final == 999 - (999 * 15 // 100)
    assert applied is True


@pytest.mark.unit
def test_sale_percent_is_clamped_to_ninety():
    product = ProductFactory.create(
        price=Decimal("100.00"),
        sale_active=True,
        sale_type=SaleType.PERCENT,
        sale_percent=100,
    )

    _, final, _ = compute_unit_prices(product, NOW)

    assert final == 1000


@pytest.mark.unit
def test_fixed_sale_never_goes_below_zero():
    product = ProductFactory.create(
        price=Decimal("5.00"),
        sale_active=True,
        sale_type=SaleType.FIXED,
        sale_amount_off=Decimal("8.00"),
    )

    base, final, applied = compute_unit_prices(product, NOW)

    assert (base, final, applied) == (500, 0, True)


@pytest.mark.unit
def test_sale_outside_window_is_ignored():
    product = ProductFactory.create(
        price=Decimal("10.00"),
        sale_active=True,
        sale_type=SaleType.PERCENT,
        sale_percent=10,
        sale_ends_at=NOW - timedelta(seconds=1),
    )

    assert compute_unit_prices(product, NOW) == (1000, 1000, False)


@pytest.mark.unit
def test_fixed_coupon_is_capped_by_max_discount():
    discount = compute_coupon_discount(
        discount_type=DiscountType.FIXED,
        subtotal_kobo=100000,
        amount_off_kobo=5000,
        max_discount_kobo=2000,
    )

    assert discount == 2000


@pytest.mark.unit
def test_coupon_never_exceeds_subtotal():
    discount = compute_coupon_discount(
        discount_type=DiscountType.FIXED, subtotal_kobo=300, amount_off_kobo=5000
    )

    assert discount == 300


@pytest.mark.unit
@pytest.mark.parametrize(
    "items,message",
    [
        ([], "items required"),
        ([{"qty": 1}], "Each item needs a productId"),
        ([{"productId": "p1", "qty": 0}], "Quantity for p1 must be between 1 and 999"),
        ([{"productId": "p1", "qty": "2"}], "Invalid quantity for p1"),
    ],
)
def test_clean_cart_rejects_malformed_lines(items, message):
    with pytest.raises(ValidationFailed) as exc_info:
        clean_cart(items)

    assert exc_info.value.message == message


@pytest.mark.unit
def test_clean_cart_accepts_snake_case_and_defaults_qty():
    lines = clean_cart([{"product_id": "p1", "selected_options": {"size": "M"}}])

    assert lines[0].product_id == "p1"
    assert lines[0].qty == 1
    assert lines[0].selected_options == {"size": "M"}


# ---------------------------------------------------------------------------
# build_quote
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_discounts_the_post_sale_subtotal(session_factory, seed):
    """A 10% sale then a 10% coupon on a 1000 kobo item totals 810, not 800."""
    store = StorefrontFactory.create()
    product = ProductFactory.create(
        storefront_id=store.id,
        price=Decimal("10.00"),
        sale_active=True,
        sale_type=SaleType.PERCENT,
        sale_percent=10,
        sale_id="sale-1",
    )
    coupon = CouponFactory.create(storefront_id=store.id, code="SAVE10", percent=10)
    await seed(store, product, coupon)

    async with session_factory() as db:
        quote = await build_quote(
            db,
            storefront_slug=store.slug,
            items=[{"productId": str(product.id), "qty": 1}],
            coupon_code=" save10 ",
            now=NOW,
        )

    assert quote.pricing.original_subtotal_kobo == 1000
    assert quote.pricing.sale_subtotal_kobo == 900
    assert quote.pricing.sale_discount_kobo == 100
    assert quote.pricing.coupon_discount_kobo == 90
    assert quote.pricing.total_kobo == 810
    assert quote.coupon_result.ok is True
    assert quote.coupon_result.code == "SAVE10"
    item = quote.normalized_items[0]
    assert item.sale_applied is True
    assert item.final_unit_price_kobo == 900
    assert item.sale_id == "sale-1"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_quote_adds_shipping_after_discounts(session_factory, seed):
    store = StorefrontFactory.create()
    product = ProductFactory.create(storefront_id=store.id, price=Decimal("20.00"))
    await seed(store, product)

    async with session_factory() as db:
        quote = await build_quote(
            db,
            storefront_slug=store.slug,
            items=[{"productId": str(product.id), "qty": 3}],
            shipping_fee_kobo=1500,
            now=NOW,
        )

    assert quote.pricing.sale_subtotal_kobo == 6000
    assert quote.pricing.shipping_fee_kobo == 1500
    assert quote.pricing.total_kobo == 7500
    assert quote.coupon_result is None


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "overrides,reason",
    [
        ({"active": False}, "INACTIVE"),
        ({"starts_at": NOW + timedelta(days=1)}, "NOT_STARTED"),
        ({"ends_at": NOW - timedelta(days=1)}, "EXPIRED"),
        ({"min_order_kobo": 5000}, "MIN_ORDER"),
        ({"usage_limit_total": 3, "used_count": 3}, "LIMIT_REACHED"),
    ],
)
async def test_rejected_coupon_leaves_the_quote_undiscounted(
    session_factory, seed, overrides, reason
):
    store = StorefrontFactory.create()
    product = ProductFactory.create(storefront_id=store.id, price=Decimal("10.00"))
    coupon = CouponFactory.create(storefront_id=store.id, code="SAVE10", **overrides)
    await seed(store, product, coupon)

    async with session_factory() as db:
        quote = await build_quote(
            db,
            storefront_slug=store.slug,
            items=[{"productId": str(product.id)}],
            coupon_code="SAVE10",
            now=NOW,
        )

    assert quote.coupon_result.ok is False
    assert quote.coupon_result.reason == reason
    assert quote.pricing.coupon_discount_kobo == 0
    assert quote.pricing.total_kobo == 1000


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_and_malformed_coupon_codes(session_factory, seed):
    store = StorefrontFactory.create()
    product = ProductFactory.create(storefront_id=store.id)
    await seed(store, product)
    items = [{"productId": str(product.id)}]

    async with session_factory() as db:
        missing = await build_quote(
            db, storefront_slug=store.slug, items=items, coupon_code="NOPE99", now=NOW
        )
        malformed = await build_quote(
            db, storefront_slug=store.slug, items=items, coupon_code="no!", now=NOW
        )

    assert missing.coupon_result.reason == "NOT_FOUND"
    assert malformed.coupon_result.reason == "INVALID_CODE"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_storefront_is_not_found(session_factory):
    async with session_factory() as db:
        with pytest.raises(NotFound):
            await build_quote(
                db, storefront_slug="ghost", items=[{"productId": "x"}], now=NOW
            )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_out_of_stock_product_is_rejected(session_factory, seed):
    store = StorefrontFactory.create()
    product = ProductFactory.create(storefront_id=store.id, name="Beaded Bag", stock=0)
    await seed(store, product)

    async with session_factory() as db:
        with pytest.raises(InvalidItem) as exc_info:
            await build_quote(
                db, storefront_slug=store.slug, items=[{"productId": str(product.id)}]
            )

    assert exc_info.value.message == "Out of stock: Beaded Bag"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_book_only_service_cannot_be_bought(session_factory, seed):
    store = StorefrontFactory.create()
    service = ProductFactory.create(
        storefront_id=store.id,
        name="Bridal Makeup",
        listing_type=ListingType.SERVICE,
        service_mode=ServiceMode.BOOK_ONLY,
        stock=None,
    )
    await seed(store, service)

    async with session_factory() as db:
        with pytest.raises(InvalidItem) as exc_info:
            await build_quote(
                db, storefront_slug=store.slug, items=[{"productId": str(service.id)}]
            )

    assert "book-only" in exc_info.value.message


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_from_another_store_is_rejected(session_factory, seed):
    store = StorefrontFactory.create()
    other = StorefrontFactory.create()
    product = ProductFactory.create(storefront_id=other.id)
    await seed(store, other, product)

    async with session_factory() as db:
        with pytest.raises(InvalidItem) as exc_info:
            await build_quote(
                db, storefront_slug=store.slug, items=[{"productId": str(product.id)}]
            )

    assert exc_info.value.message == "One or more items do not belong to this store."
