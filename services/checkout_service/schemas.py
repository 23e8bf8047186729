"""Pydantic schemas for checkout service. JSON is camelCase; snake_case is accepted on input."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


# ============================================================================
# QUOTE SCHEMAS
# ============================================================================


class CartItemIn(CamelModel):
    product_id: str
    qty: int = 1
    selected_options: Optional[dict[str, str]] = None


class QuoteRequest(CamelModel):
    store_slug: str
    items: list[CartItemIn] = Field(default_factory=list)
    coupon_code: Optional[str] = None
    shipping_fee_kobo: Optional[int] = None


class NormalizedItemOut(CamelModel):
    product_id: str
    name: str
    qty: int
    selected_options: Optional[dict] = None
    base_unit_price_kobo: int
    final_unit_price_kobo: int
    line_total_kobo: int
    sale_applied: bool
    sale_id: Optional[str] = None
    sale_type: Optional[str] = None
    sale_percent: Optional[int] = None
    sale_amount_off_kobo: Optional[int] = None


class PricingOut(CamelModel):
    original_subtotal_kobo: int
    sale_subtotal_kobo: int
    sale_discount_kobo: int
    coupon_discount_kobo: int
    shipping_fee_kobo: int
    total_kobo: int


class CouponResultOut(CamelModel):
    ok: bool
    code: str
    reason: Optional[str] = None
    message: Optional[str] = None
    discount_kobo: int = 0
    discount_type: Optional[str] = None
    percent: Optional[int] = None
    amount_off_kobo: Optional[int] = None
    min_order_kobo: Optional[int] = None
    max_discount_kobo: Optional[int] = None


class QuoteResponse(CamelModel):
    ok: bool = True
    storefront_slug: str
    normalized_items: list[NormalizedItemOut]
    pricing: PricingOut
    coupon_result: Optional[CouponResultOut] = None


# ============================================================================
# SETTLEMENT SCHEMAS
# ============================================================================


class SettleRequest(CamelModel):
    reference: Optional[str] = None
    transaction_id: Optional[str] = None  # Flutterwave only


class SettlementResponse(CamelModel):
    ok: bool
    order_id: str
    storefront_slug: str
    escrow_status: str
    hold_until: Optional[datetime] = None
    already_processed: bool


# ============================================================================
# INSTALLMENT SCHEMAS
# ============================================================================


class InstallmentVerifyRequest(CamelModel):
    reference: Optional[str] = None
    transaction_id: Optional[str] = None  # Flutterwave only


class InstallmentVerifyResponse(CamelModel):
    ok: bool = True
    already_paid: bool = False
    completed: bool = False
    paid_kobo: int = 0


class InstallmentProofRequest(CamelModel):
    proof_url: str


class PlanInstallmentIn(CamelModel):
    amount_kobo: int
    due_at: Optional[datetime] = None
    label: Optional[str] = None


class PaymentPlanRequest(CamelModel):
    installments: list[PlanInstallmentIn] = Field(default_factory=list)


class InstallmentReviewRequest(CamelModel):
    action: str  # accept | reject
    reject_reason: Optional[str] = None


class ReceiptOut(CamelModel):
    provider: str
    reference: Optional[str] = None
    transaction_id: Optional[str] = None
    status: str = ""
    amount_kobo: Optional[int] = None
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    channel: Optional[str] = None


class InstallmentOut(CamelModel):
    idx: int
    label: str
    amount_kobo: int
    due_at: Optional[datetime] = None
    status: str
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    receipt: Optional[ReceiptOut] = None
    proof_url: Optional[str] = None


class PaymentPlanOut(CamelModel):
    enabled: bool
    currency: str
    installments: list[InstallmentOut]
    total_kobo: int
    paid_kobo: int
    completed: bool
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class PaymentPlanResponse(CamelModel):
    ok: bool = True
    plan: Optional[PaymentPlanOut] = None


class InstallmentProofResponse(CamelModel):
    ok: bool = True
    installment: InstallmentOut


# ============================================================================
# ESCROW SCHEMAS
# ============================================================================


class EscrowReleaseResponse(CamelModel):
    ok: bool
    message: str
    escrow_status: Optional[str] = None
    hold_until: Optional[datetime] = None


class EscrowSweepResponse(CamelModel):
    ok: bool = True
    scanned_held: int
    due: int
    released: int
    skipped: int
