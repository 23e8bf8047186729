"""Checkout Service models package."""

from services.checkout_service.models.catalog import Coupon, Product, Storefront
from services.checkout_service.models.commerce import (
    Order,
    PaymentMismatch,
    PaymentTransaction,
    Wallet,
)
from services.checkout_service.models.enums import (
    SETTLED_INSTALLMENT_STATUSES,
    DiscountType,
    EscrowStatus,
    InstallmentStatus,
    ListingType,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
    SaleType,
    ServiceMode,
)

__all__ = [
    "Coupon",
    "DiscountType",
    "EscrowStatus",
    "InstallmentStatus",
    "ListingType",
    "Order",
    "OrderStatus",
    "PaymentMismatch",
    "PaymentProvider",
    "PaymentStatus",
    "PaymentTransaction",
    "PaymentType",
    "Product",
    "SETTLED_INSTALLMENT_STATUSES",
    "SaleType",
    "ServiceMode",
    "Storefront",
    "Wallet",
]
