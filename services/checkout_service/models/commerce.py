"""Settlement models: orders, payment transactions, vendor wallets, mismatch audit."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import JSONType, UTCDateTime
from services.checkout_service.models.enums import (
    EscrowStatus,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
    enum_values,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

# ============================================================================
# ORDERS
# ============================================================================


class Order(Base):
    """A settled (or being-settled) order.

    Line items, pricing, coupon and payment details are snapshots taken at settlement
    time and never re-derived from the catalogue afterwards.
    """

    __tablename__ = "orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    storefront_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("storefronts.id"), index=True, nullable=False
    )
    storefront_slug: Mapped[str] = mapped_column(String(80), nullable=False)

    # Snapshots
    items: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    customer: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    customer_email: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )  # lowercased
    coupon: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    shipping: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    pricing: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    payment: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Status
    payment_type: Mapped[PaymentType] = mapped_column(
        SAEnum(
            PaymentType,
            name="payment_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentType.ESCROW,
        nullable=False,
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    escrow_status: Mapped[Optional[EscrowStatus]] = mapped_column(
        SAEnum(
            EscrowStatus,
            name="escrow_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    order_status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            name="order_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=OrderStatus.PENDING_PAYMENT,
        nullable=False,
    )

    # Amounts
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)  # Naira
    amount_kobo: Mapped[int] = mapped_column(Integer, nullable=False)

    # Escrow hold
    hold_until: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    released_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    payment_plan: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    # Bumped on every UPDATE; a stale write raises StaleDataError.
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_orders_escrow_hold", "escrow_status", "hold_until"),
    )

    def __repr__(self):
        return f"<Order {self.id} {self.order_status}>"


# ============================================================================
# PAYMENT TRANSACTIONS
# ============================================================================


class PaymentTransaction(Base):
    """Settlement record keyed by the gateway payment reference.

    Its existence is the idempotency marker: a reference with a row here has already
    been settled.
    """

    __tablename__ = "payment_transactions"

    reference: Mapped[str] = mapped_column(String(128), primary_key=True)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id"), index=True, nullable=False
    )
    storefront_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    storefront_slug: Mapped[str] = mapped_column(String(80), nullable=False)

    amount_kobo: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    provider: Mapped[PaymentProvider] = mapped_column(
        SAEnum(
            PaymentProvider,
            name="payment_provider_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    escrow_status: Mapped[EscrowStatus] = mapped_column(
        SAEnum(
            EscrowStatus,
            name="escrow_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=EscrowStatus.HELD,
        nullable=False,
    )
    hold_until: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    def __repr__(self):
        return f"<PaymentTransaction {self.reference}>"


# ============================================================================
# WALLETS
# ============================================================================


class Wallet(Base):
    """Per-storefront earnings. Balances only ever change by increments."""

    __tablename__ = "wallets"

    storefront_id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    pending_balance_kobo: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )  # held in escrow
    available_balance_kobo: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    total_earned_kobo: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Wallet {self.storefront_id} pending={self.pending_balance_kobo}>"


# ============================================================================
# MISMATCH AUDIT
# ============================================================================


class PaymentMismatch(Base):
    """Audit row for a payment whose amount disagreed with the recomputed total."""

    __tablename__ = "payment_mismatches"

    reference: Mapped[str] = mapped_column(String(128), primary_key=True)
    storefront_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    storefront_slug: Mapped[str] = mapped_column(String(80), nullable=False)
    expected_kobo: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_kobo: Mapped[int] = mapped_column(Integer, nullable=False)
    pricing: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)
    coupon_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    provider: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)

    def __repr__(self):
        return f"<PaymentMismatch {self.reference} {self.expected_kobo}!={self.paid_kobo}>"
