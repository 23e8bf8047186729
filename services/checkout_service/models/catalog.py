"""Catalogue models read by the quote builder: storefronts, products, coupons."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from libs.db.types import UTCDateTime
from services.checkout_service.models.enums import (
    DiscountType,
    ListingType,
    SaleType,
    ServiceMode,
    enum_values,
)
from sqlalchemy import Boolean
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column


class Storefront(Base):
    """A vendor's shop. Owned and edited outside this service; read-only here."""

    __tablename__ = "storefronts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    slug: Mapped[str] = mapped_column(String(80), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )

    def __repr__(self):
        return f"<Storefront {self.slug}>"


class Product(Base):
    """Catalogue listing. Prices are in Naira (major unit)."""

    __tablename__ = "products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    storefront_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("storefronts.id"), index=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    # None = not tracked (unlimited)
    stock: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    listing_type: Mapped[ListingType] = mapped_column(
        SAEnum(
            ListingType,
            name="listing_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=ListingType.PHYSICAL,
        nullable=False,
    )
    service_mode: Mapped[Optional[ServiceMode]] = mapped_column(
        SAEnum(
            ServiceMode,
            name="service_mode_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )

    # Sale descriptor
    sale_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    sale_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sale_type: Mapped[Optional[SaleType]] = mapped_column(
        SAEnum(
            SaleType,
            name="sale_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    sale_percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    sale_amount_off: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2), nullable=True
    )  # Naira
    sale_starts_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    sale_ends_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )

    @property
    def is_book_only(self) -> bool:
        return (
            self.listing_type == ListingType.SERVICE
            and self.service_mode != ServiceMode.PAYABLE
        )

    def __repr__(self):
        return f"<Product {self.id} price={self.price}>"


class Coupon(Base):
    """Storefront-scoped discount code. Amounts are in kobo."""

    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    storefront_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("storefronts.id"), index=True, nullable=False
    )
    code: Mapped[str] = mapped_column(String(20), nullable=False)  # uppercase

    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    discount_type: Mapped[DiscountType] = mapped_column(
        SAEnum(
            DiscountType,
            name="coupon_discount_type_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=DiscountType.PERCENT,
        nullable=False,
    )
    percent: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    amount_off_kobo: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    min_order_kobo: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_discount_kobo: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Usage limits
    usage_limit_total: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True
    )  # None = unlimited
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Validity window
    starts_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    ends_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=utc_now)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("storefront_id", "code", name="unique_storefront_coupon_code"),
    )

    def __repr__(self):
        return f"<Coupon {self.code}>"
