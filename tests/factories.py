"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance (or gateway
receipt). Override any field via kwargs.

Usage:
    storefront = StorefrontFactory.create(slug="ada-bakes")
    product = ProductFactory.create(storefront_id=storefront.id, price=Decimal("10.00"))
    await seed(storefront, product)
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_slug() -> str:
    return f"store-{uuid.uuid4().hex[:8]}"


def _unique_reference() -> str:
    return f"ref-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Catalogue
# ---------------------------------------------------------------------------


class StorefrontFactory:
    @staticmethod
    def create(**overrides):
        from services.checkout_service.models import Storefront

        defaults = {
            "id": _uuid(),
            "slug": _unique_slug(),
            "name": "Test Store",
        }
        defaults.update(overrides)
        return Storefront(**defaults)


class ProductFactory:
    @staticmethod
    def create(storefront_id=None, **overrides):
        from services.checkout_service.models import ListingType, Product

        defaults = {
            "id": _uuid(),
            "storefront_id": storefront_id or _uuid(),
            "name": "Ankara Tote",
            "price": Decimal("10.00"),
            "stock": 10,
            "listing_type": ListingType.PHYSICAL,
            "sale_active": False,
        }
        defaults.update(overrides)
        return Product(**defaults)


class CouponFactory:
    @staticmethod
    def create(storefront_id=None, **overrides):
        from services.checkout_service.models import Coupon, DiscountType

        defaults = {
            "id": _uuid(),
            "storefront_id": storefront_id or _uuid(),
            "code": "SAVE10",
            "active": True,
            "discount_type": DiscountType.PERCENT,
            "percent": 10,
            "min_order_kobo": 0,
            "used_count": 0,
        }
        defaults.update(overrides)
        return Coupon(**defaults)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderFactory:
    @staticmethod
    def create(storefront_id=None, **overrides):
        from services.checkout_service.models import (
            EscrowStatus,
            Order,
            OrderStatus,
            PaymentStatus,
            PaymentType,
        )

        amount_kobo = overrides.pop("amount_kobo", 100000)
        defaults = {
            "id": _uuid(),
            "storefront_id": storefront_id or _uuid(),
            "storefront_slug": "test-store",
            "items": [],
            "customer": {"email": "buyer@example.com", "name": "Ada"},
            "customer_email": "buyer@example.com",
            "pricing": {"total_kobo": amount_kobo},
            "payment_type": PaymentType.ESCROW,
            "payment_status": PaymentStatus.PAID,
            "escrow_status": EscrowStatus.HELD,
            "order_status": OrderStatus.PAID_HELD,
            "currency": "NGN",
            "amount": Decimal(amount_kobo) / 100,
            "amount_kobo": amount_kobo,
            "hold_until": _now() + timedelta(minutes=5),
        }
        defaults.update(overrides)
        return Order(**defaults)


def payment_plan(total_kobo: int, amounts, *, start=None) -> dict:
    """A stored plan document with pending installments due a week apart."""
    start = start or _now()
    return {
        "enabled": True,
        "currency": "NGN",
        "installments": [
            {
                "idx": idx,
                "label": f"Installment {idx + 1}",
                "amount_kobo": amount,
                "due_at": (start + timedelta(days=7 * (idx + 1))).isoformat(),
                "status": "pending",
            }
            for idx, amount in enumerate(amounts)
        ],
        "total_kobo": total_kobo,
        "paid_kobo": 0,
        "completed": False,
    }


# ---------------------------------------------------------------------------
# Gateway receipts
# ---------------------------------------------------------------------------


class PaystackReceiptFactory:
    @staticmethod
    def create(**overrides):
        from services.checkout_service.gateways import PaystackReceipt

        defaults = {
            "reference": _unique_reference(),
            "status": "success",
            "amount_kobo": 100000,
            "currency": "NGN",
            "paid_at": _now(),
            "customer_email": "buyer@example.com",
            "metadata": {},
            "channel": "card",
        }
        defaults.update(overrides)
        return PaystackReceipt(**defaults)


def checkout_metadata(storefront_slug: str, items, **extra) -> dict:
    """Cart metadata as a buyer's client attaches it to a payment."""
    data = {
        "storeSlug": storefront_slug,
        "items": items,
        "customer": {"email": "buyer@example.com", "name": "Ada"},
    }
    data.update(extra)
    return data
