"""Quote builder: the authoritative price of a cart.

The quote is recomputed from current catalogue state on every call and is never taken
from the client. Sale pricing is resolved per product first; a coupon only ever
discounts the post-sale subtotal.

All arithmetic is in kobo with floor rounding. Catalogue prices (Naira) are converted
once, on the way in.
"""

import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from libs.common.currency import naira_to_kobo
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.checkout_service.errors import InvalidItem, NotFound, ValidationFailed
from services.checkout_service.models import (
    Coupon,
    DiscountType,
    ListingType,
    Product,
    SaleType,
    Storefront,
)
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

MAX_CART_ITEMS = 50
MAX_ITEM_QTY = 999
MAX_SALE_PERCENT = 90
MAX_COUPON_PERCENT = 90

COUPON_CODE_RE = re.compile(r"^[A-Z0-9]{3,20}$")


# ============================================================================
# RESULT TYPES
# ============================================================================


@dataclass(frozen=True)
class CartLine:
    product_id: str
    qty: int
    selected_options: Optional[dict] = None


@dataclass(frozen=True)
class NormalizedItem:
    """A priced cart line, kept on the order for audit."""

    product_id: str
    name: str
    qty: int
    selected_options: Optional[dict]
    base_unit_price_kobo: int
    final_unit_price_kobo: int
    line_total_kobo: int
    sale_applied: bool
    sale_id: Optional[str] = None
    sale_type: Optional[str] = None
    sale_percent: Optional[int] = None
    sale_amount_off_kobo: Optional[int] = None


@dataclass(frozen=True)
class Pricing:
    original_subtotal_kobo: int
    sale_subtotal_kobo: int
    sale_discount_kobo: int
    coupon_discount_kobo: int
    shipping_fee_kobo: int
    total_kobo: int


@dataclass(frozen=True)
class CouponResult:
    """Outcome of applying a coupon code. A failed coupon never fails the quote."""

    ok: bool
    code: str
    reason: Optional[str] = None  # machine-readable failure code
    message: Optional[str] = None
    discount_kobo: int = 0
    discount_type: Optional[str] = None
    percent: Optional[int] = None
    amount_off_kobo: Optional[int] = None
    min_order_kobo: Optional[int] = None
    max_discount_kobo: Optional[int] = None
    coupon_id: Optional[str] = None


@dataclass(frozen=True)
class Quote:
    storefront_id: str
    storefront_slug: str
    normalized_items: list[NormalizedItem]
    pricing: Pricing
    coupon_result: Optional[CouponResult] = None
    computed_at: datetime = field(default_factory=utc_now)

    @property
    def applied_coupon(self) -> Optional[CouponResult]:
        if self.coupon_result is not None and self.coupon_result.ok:
            return self.coupon_result
        return None

    def items_snapshot(self) -> list[dict]:
        return [asdict(item) for item in self.normalized_items]

    def pricing_snapshot(self) -> dict:
        return asdict(self.pricing)


# ============================================================================
# INPUT CLEANING
# ============================================================================


def clean_storefront_slug(raw: Any) -> str:
    slug = str(raw or "").strip().lower()
    if not slug:
        raise ValidationFailed("storeSlug required")
    return slug


def clean_coupon_code(raw: Any) -> str:
    """Uppercase and trim a coupon code. Returns "" when nothing was supplied."""
    return str(raw or "").strip().upper()


def _line_value(raw: Any, *keys: str) -> Any:
    if isinstance(raw, Mapping):
        for key in keys:
            if key in raw:
                return raw[key]
        return None
    for key in keys:
        if hasattr(raw, key):
            return getattr(raw, key)
    return None


def clean_cart(raw_items: Any) -> list[CartLine]:
    """Validate a raw cart (dicts with camelCase or snake_case keys) into CartLines."""
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        raise ValidationFailed("items required")
    if len(raw_items) > MAX_CART_ITEMS:
        raise ValidationFailed(f"A cart may hold at most {MAX_CART_ITEMS} items")

    lines = []
    for raw in raw_items:
        if isinstance(raw, CartLine):
            lines.append(raw)
            continue

        product_id = str(_line_value(raw, "productId", "product_id") or "").strip()
        if not product_id:
            raise ValidationFailed("Each item needs a productId")

        qty = _line_value(raw, "qty")
        if qty is None:
            qty = 1
        if isinstance(qty, bool) or not isinstance(qty, int):
            raise ValidationFailed(f"Invalid quantity for {product_id}")
        if qty < 1 or qty > MAX_ITEM_QTY:
            raise ValidationFailed(
                f"Quantity for {product_id} must be between 1 and {MAX_ITEM_QTY}"
            )

        options = _line_value(raw, "selectedOptions", "selected_options")
        lines.append(
            CartLine(
                product_id=product_id,
                qty=qty,
                selected_options=dict(options) if isinstance(options, Mapping) else None,
            )
        )
    return lines


def clean_shipping_fee(raw: Any) -> int:
    if raw is None:
        return 0
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValidationFailed("shippingFeeKobo must be a non-negative integer")
    return raw


# ============================================================================
# PRICE MATH
# ============================================================================


def sale_is_active(product: Product, now: datetime) -> bool:
    if not product.sale_active:
        return False
    starts_at = ensure_utc(product.sale_starts_at)
    ends_at = ensure_utc(product.sale_ends_at)
    if starts_at and now < starts_at:
        return False
    if ends_at and now > ends_at:
        return False
    return product.sale_type in (SaleType.PERCENT, SaleType.FIXED)


def compute_unit_prices(product: Product, now: datetime) -> tuple[int, int, bool]:
    """Return (base_unit_kobo, final_unit_kobo, sale_applied) for one product."""
    base = naira_to_kobo(product.price)
    if not sale_is_active(product, now):
        return base, base, False

    if product.sale_type == SaleType.FIXED:
        off = naira_to_kobo(product.sale_amount_off)
    else:
        pct = max(0, min(MAX_SALE_PERCENT, int(product.sale_percent or 0)))
        off = base * pct // 100
    return base, max(0, base - off), True


def compute_coupon_discount(
    *,
    discount_type: DiscountType,
    subtotal_kobo: int,
    percent: Optional[int] = None,
    amount_off_kobo: Optional[int] = None,
    max_discount_kobo: Optional[int] = None,
) -> int:
    """Coupon discount on the post-sale subtotal, never above the cap or the subtotal."""
    subtotal = max(0, subtotal_kobo)
    if discount_type == DiscountType.PERCENT:
        pct = max(0, min(MAX_COUPON_PERCENT, int(percent or 0)))
        discount = subtotal * pct // 100
    else:
        discount = int(amount_off_kobo or 0)

    if max_discount_kobo is not None:
        discount = min(discount, max_discount_kobo)

    return max(0, min(discount, subtotal))


def evaluate_coupon(
    coupon: Optional[Coupon], code: str, sale_subtotal_kobo: int, now: datetime
) -> CouponResult:
    """Check a coupon in precedence order and return the first failure, else the discount."""
    if coupon is None:
        return CouponResult(ok=False, code=code, reason="NOT_FOUND", message="Invalid code")
    if not coupon.active:
        return CouponResult(
            ok=False, code=code, reason="INACTIVE", message="Code is inactive"
        )

    starts_at = ensure_utc(coupon.starts_at)
    ends_at = ensure_utc(coupon.ends_at)
    if starts_at and now < starts_at:
        return CouponResult(
            ok=False, code=code, reason="NOT_STARTED", message="Code not active yet"
        )
    if ends_at and now > ends_at:
        return CouponResult(ok=False, code=code, reason="EXPIRED", message="Code expired")

    min_order = max(0, coupon.min_order_kobo or 0)
    if min_order and sale_subtotal_kobo < min_order:
        return CouponResult(
            ok=False,
            code=code,
            reason="MIN_ORDER",
            message="Order total is too low for this code",
            min_order_kobo=min_order,
        )

    if (
        coupon.usage_limit_total is not None
        and coupon.used_count >= coupon.usage_limit_total
    ):
        return CouponResult(
            ok=False, code=code, reason="LIMIT_REACHED", message="Code usage limit reached"
        )

    discount = compute_coupon_discount(
        discount_type=coupon.discount_type,
        subtotal_kobo=sale_subtotal_kobo,
        percent=coupon.percent,
        amount_off_kobo=coupon.amount_off_kobo,
        max_discount_kobo=coupon.max_discount_kobo,
    )
    return CouponResult(
        ok=True,
        code=code,
        discount_kobo=discount,
        discount_type=coupon.discount_type.value,
        percent=coupon.percent,
        amount_off_kobo=coupon.amount_off_kobo,
        min_order_kobo=min_order,
        max_discount_kobo=coupon.max_discount_kobo,
        coupon_id=str(coupon.id),
    )


# ============================================================================
# CATALOGUE READS
# ============================================================================


async def get_storefront_by_slug(db: AsyncSession, slug: str) -> Storefront:
    query = (
        select(Storefront)
        .where(Storefront.slug == slug)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    storefront = result.scalar_one_or_none()
    if storefront is None:
        raise NotFound("Store not found")
    return storefront


def _parse_uuid(raw: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


async def get_products(db: AsyncSession, product_ids: Iterable[str]) -> dict[str, Product]:
    """Batch-fetch products, keyed by the id string the caller used."""
    wanted = {}
    for raw in product_ids:
        parsed = _parse_uuid(raw)
        if parsed is not None:
            wanted[parsed] = raw
    if not wanted:
        return {}

    query = (
        select(Product)
        .where(Product.id.in_(list(wanted)))
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    return {wanted[p.id]: p for p in result.scalars().all()}


async def get_coupon(
    db: AsyncSession, storefront_id: uuid.UUID, code: str
) -> Optional[Coupon]:
    query = (
        select(Coupon)
        .where(Coupon.storefront_id == storefront_id, Coupon.code == code)
        .execution_options(populate_existing=True)
    )
    result = await db.execute(query)
    return result.scalar_one_or_none()


# ============================================================================
# QUOTE
# ============================================================================


def _check_purchasable(product: Product, storefront: Storefront, product_id: str):
    label = product.name or product_id
    if product.storefront_id != storefront.id:
        raise InvalidItem("One or more items do not belong to this store.")
    if product.is_book_only:
        raise InvalidItem(
            f"This service is book-only and cannot be paid via checkout: {label}"
        )
    if (
        product.listing_type == ListingType.PHYSICAL
        and product.stock is not None
        and product.stock <= 0
    ):
        raise InvalidItem(f"Out of stock: {label}")


async def build_quote(
    db: AsyncSession,
    *,
    storefront_slug: Any,
    items: Any,
    coupon_code: Any = None,
    shipping_fee_kobo: Any = None,
    now: Optional[datetime] = None,
) -> Quote:
    """Recompute the authoritative price breakdown for a cart.

    Reads only. Raises NotFound for an unknown storefront, InvalidItem for a line that
    cannot be bought, and ValidationFailed for malformed input.
    """
    now = ensure_utc(now) if now else utc_now()
    slug = clean_storefront_slug(storefront_slug)
    lines = clean_cart(items)
    shipping_fee = clean_shipping_fee(shipping_fee_kobo)

    storefront = await get_storefront_by_slug(db, slug)
    products = await get_products(db, [line.product_id for line in lines])

    original_subtotal = 0
    sale_subtotal = 0
    normalized = []

    for line in lines:
        product = products.get(line.product_id)
        if product is None:
            raise InvalidItem(f"Product not found: {line.product_id}")
        _check_purchasable(product, storefront, line.product_id)

        base_unit, final_unit, sale_applied = compute_unit_prices(product, now)
        original_subtotal += base_unit * line.qty
        sale_subtotal += final_unit * line.qty

        normalized.append(
            NormalizedItem(
                product_id=line.product_id,
                name=product.name or "Item",
                qty=line.qty,
                selected_options=line.selected_options,
                base_unit_price_kobo=base_unit,
                final_unit_price_kobo=final_unit,
                line_total_kobo=final_unit * line.qty,
                sale_applied=sale_applied,
                sale_id=product.sale_id,
                sale_type=product.sale_type.value if product.sale_type else None,
                sale_percent=product.sale_percent,
                sale_amount_off_kobo=(
                    naira_to_kobo(product.sale_amount_off)
                    if product.sale_amount_off is not None
                    else None
                ),
            )
        )

    coupon_result = None
    coupon_discount = 0
    code = clean_coupon_code(coupon_code)
    if code:
        if not COUPON_CODE_RE.match(code):
            coupon_result = CouponResult(
                ok=False, code=code, reason="INVALID_CODE", message="Invalid code"
            )
        else:
            coupon = await get_coupon(db, storefront.id, code)
            coupon_result = evaluate_coupon(coupon, code, sale_subtotal, now)
            coupon_discount = coupon_result.discount_kobo

    total = max(0, sale_subtotal - coupon_discount) + shipping_fee

    return Quote(
        storefront_id=str(storefront.id),
        storefront_slug=storefront.slug,
        normalized_items=normalized,
        pricing=Pricing(
            original_subtotal_kobo=original_subtotal,
            sale_subtotal_kobo=sale_subtotal,
            sale_discount_kobo=max(0, original_subtotal - sale_subtotal),
            coupon_discount_kobo=coupon_discount,
            shipping_fee_kobo=shipping_fee,
            total_kobo=total,
        ),
        coupon_result=coupon_result,
        computed_at=now,
    )
