"""Enum definitions for checkout service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class ListingType(str, enum.Enum):
    PHYSICAL = "physical"
    SERVICE = "service"


class ServiceMode(str, enum.Enum):
    BOOK_ONLY = "book_only"  # enquiry/booking only, never payable at checkout
    PAYABLE = "payable"


class SaleType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class DiscountType(str, enum.Enum):
    PERCENT = "percent"
    FIXED = "fixed"


class PaymentProvider(str, enum.Enum):
    FLUTTERWAVE = "flutterwave"  # primary
    PAYSTACK = "paystack"  # legacy


class PaymentType(str, enum.Enum):
    ESCROW = "escrow"
    DIRECT_TRANSFER = "direct_transfer"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"


class EscrowStatus(str, enum.Enum):
    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"


class OrderStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    PAID_HELD = "paid_held"
    PAID = "paid"
    RELEASED_TO_VENDOR_WALLET = "released_to_vendor_wallet"


class InstallmentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"  # verified with a gateway
    ACCEPTED = "accepted"  # manual transfer proof accepted by the storefront
    REJECTED = "rejected"


SETTLED_INSTALLMENT_STATUSES = frozenset(
    {InstallmentStatus.PAID, InstallmentStatus.ACCEPTED}
)
