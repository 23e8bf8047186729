"""Installment payment plans on orders.

A plan splits an order total into installments. Each installment moves
``pending -> paid`` (verified with a gateway) or ``pending -> accepted | rejected``
(manual bank-transfer review). Plan totals are always derived from the installment
list: ``paid_kobo`` is the sum over settled installments and ``completed`` holds only
when every installment is settled and ``paid_kobo == total_kobo``.

Every write re-reads the order inside its transaction and recomputes from the full
installment list. The order's version column turns a concurrent write into a retry,
so two installments verified at the same time cannot lose an update.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional, Sequence

from libs.auth.models import AuthUser
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from libs.db.unit_of_work import DEFAULT_MAX_ATTEMPTS, run_in_transaction
from pydantic import BaseModel, Field
from services.checkout_service.errors import (
    BusinessRuleViolation,
    NotFound,
    PaymentNotSuccessful,
    ValidationFailed,
)
from services.checkout_service.gateways import (
    GatewayReceipt,
    GatewayResolver,
    ensure_reference_matches,
)
from services.checkout_service.models import (
    SETTLED_INSTALLMENT_STATUSES,
    InstallmentStatus,
    Order,
    OrderStatus,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
)
from services.checkout_service.orders import (
    ensure_buyer_access,
    ensure_storefront_access,
    get_order,
    parse_order_id,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

MIN_PLAN_INSTALLMENTS = 2
MAX_LABEL_LENGTH = 40
MAX_REJECT_REASON_LENGTH = 300


# ============================================================================
# PLAN DOCUMENT
# ============================================================================


class Installment(BaseModel):
    idx: int
    label: str
    amount_kobo: int
    due_at: Optional[datetime] = None
    status: InstallmentStatus = InstallmentStatus.PENDING
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reject_reason: Optional[str] = None
    receipt: Optional[GatewayReceipt] = None
    proof_url: Optional[str] = None


class PaymentPlan(BaseModel):
    enabled: bool = True
    currency: str = "NGN"
    installments: list[Installment] = Field(default_factory=list)
    total_kobo: int
    paid_kobo: int = 0
    completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def has_activity(self) -> bool:
        return any(i.status != InstallmentStatus.PENDING for i in self.installments)


@dataclass(frozen=True)
class InstallmentDraft:
    """One installment as requested by the storefront when attaching a plan."""

    amount_kobo: Any
    due_at: Optional[datetime] = None
    label: Optional[str] = None


@dataclass(frozen=True)
class InstallmentVerification:
    ok: bool
    already_paid: bool
    completed: bool
    paid_kobo: int


# ============================================================================
# DERIVED STATE
# ============================================================================


def is_settled(status: InstallmentStatus) -> bool:
    return status in SETTLED_INSTALLMENT_STATUSES


def compute_paid_kobo(installments: Iterable[Installment]) -> int:
    return sum(i.amount_kobo for i in installments if is_settled(i.status))


def all_settled(installments: Sequence[Installment]) -> bool:
    return len(installments) > 0 and all(is_settled(i.status) for i in installments)


def recompute_plan(plan: PaymentPlan, now: datetime) -> PaymentPlan:
    """Re-derive paid total and completion from the installment list."""
    paid = compute_paid_kobo(plan.installments)
    completed = all_settled(plan.installments) and paid == plan.total_kobo
    completed_at = None
    if completed:
        completed_at = plan.completed_at if plan.completed else now
    return plan.model_copy(
        update={
            "paid_kobo": paid,
            "completed": completed,
            "completed_at": completed_at,
            "updated_at": now,
        }
    )


def replace_installment(plan: PaymentPlan, installment: Installment) -> PaymentPlan:
    installments = list(plan.installments)
    installments[installment.idx] = installment
    return plan.model_copy(update={"installments": installments})


def load_plan(order: Order) -> PaymentPlan:
    """Parse the order's plan, failing when there is no enabled plan."""
    raw = order.payment_plan
    plan = PaymentPlan.model_validate(raw) if raw else None
    if plan is None or not plan.enabled or not plan.installments:
        raise BusinessRuleViolation("No installment plan on this order.")
    return plan


def _validate_index(raw: Any) -> int:
    """Installment indexes are non-negative whole numbers ("2" is accepted, 1.5 is not)."""
    if isinstance(raw, bool) or isinstance(raw, float):
        raise ValidationFailed("Invalid installment index")
    try:
        idx = int(str(raw).strip())
    except (TypeError, ValueError):
        raise ValidationFailed("Invalid installment index")
    if idx < 0:
        raise ValidationFailed("Invalid installment index")
    return idx


def get_installment(plan: PaymentPlan, installment_index: int) -> Installment:
    if installment_index < 0 or installment_index >= len(plan.installments):
        raise NotFound("Installment not found.")
    return plan.installments[installment_index]


def store_plan(order: Order, plan: Optional[PaymentPlan]) -> None:
    """Write the plan back to the order and promote the order once the plan completes."""
    order.payment_plan = plan.model_dump(mode="json") if plan is not None else None
    if plan is not None and plan.completed:
        order.payment_status = PaymentStatus.PAID
        order.order_status = OrderStatus.PAID


# ============================================================================
# GATEWAY VERIFICATION
# ============================================================================


def _check_receipt(
    receipt, *, order: Order, installment: Installment, reference: str, currency: str
) -> None:
    if not receipt.succeeded:
        raise PaymentNotSuccessful("Payment is not successful.")
    ensure_reference_matches(receipt, reference)
    if receipt.currency != currency:
        raise BusinessRuleViolation("Invalid currency.")

    paid = receipt.amount_kobo
    if paid is None or paid <= 0:
        raise BusinessRuleViolation("Invalid amount from payment gateway.")
    if paid != installment.amount_kobo:
        raise BusinessRuleViolation("Amount does not match this installment.")

    # Best-effort cross-checks: only enforced when both sides carry a value.
    order_email = (order.customer_email or "").strip().lower()
    receipt_email = (receipt.customer_email or "").strip().lower()
    if order_email and receipt_email and order_email != receipt_email:
        raise BusinessRuleViolation("Customer email does not match this order.")

    meta = receipt.metadata
    meta_order_id = str(meta.get("orderId") or meta.get("order_id") or "")
    if meta_order_id and meta_order_id != str(order.id):
        raise BusinessRuleViolation("Payment reference does not belong to this order.")

    meta_idx = meta.get("installmentIdx")
    if meta_idx is not None:
        try:
            meta_idx = int(meta_idx)
        except (TypeError, ValueError):
            meta_idx = None
    if meta_idx is not None and meta_idx != installment.idx:
        raise BusinessRuleViolation(
            "Payment reference does not belong to this installment."
        )


def receipt_used_elsewhere(plan: PaymentPlan, receipt, idx: int) -> bool:
    """True when another installment was already settled with this payment."""
    tx_id = getattr(receipt, "transaction_id", None)
    for other in plan.installments:
        if other.idx == idx or other.receipt is None:
            continue
        if receipt.reference and other.receipt.reference == receipt.reference:
            return True
        if tx_id and getattr(other.receipt, "transaction_id", None) == tx_id:
            return True
    return False


async def verify_installment(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user: AuthUser,
    order_id: Any,
    installment_index: Any,
    reference: Any,
    provider: PaymentProvider,
    resolve_gateway: GatewayResolver,
    transaction_id: Optional[str] = None,
    currency: str = "NGN",
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    now: Optional[datetime] = None,
) -> InstallmentVerification:
    """Verify one installment payment with the active gateway and settle it."""
    reference = str(reference or "").strip()
    if not reference:
        raise ValidationFailed("Missing reference")
    idx = _validate_index(installment_index)
    oid = parse_order_id(order_id)

    async with session_factory() as session:
        order = await get_order(session, oid)
        ensure_buyer_access(user, order)
        if order.payment_type != PaymentType.ESCROW:
            raise BusinessRuleViolation("This is not a card/escrow order.")
        plan = load_plan(order)
        installment = get_installment(plan, idx)

    if is_settled(installment.status):
        return InstallmentVerification(
            ok=True,
            already_paid=True,
            completed=plan.completed,
            paid_kobo=plan.paid_kobo,
        )

    gateway = resolve_gateway(PaymentProvider(provider))
    receipt = await gateway.verify(reference=reference, transaction_id=transaction_id)
    _check_receipt(
        receipt,
        order=order,
        installment=installment,
        reference=reference,
        currency=currency,
    )

    async def _apply(session: AsyncSession) -> InstallmentVerification:
        current = await get_order(session, oid, for_update=True)
        current_plan = load_plan(current)
        target = get_installment(current_plan, idx)
        if is_settled(target.status):
            return InstallmentVerification(
                ok=True,
                already_paid=True,
                completed=current_plan.completed,
                paid_kobo=current_plan.paid_kobo,
            )
        if receipt_used_elsewhere(current_plan, receipt, idx):
            raise BusinessRuleViolation(
                "Payment reference already used for another installment."
            )
        if target.amount_kobo != receipt.amount_kobo:
            raise BusinessRuleViolation("Amount does not match this installment.")

        verified_at = ensure_utc(now) if now else utc_now()
        settled = target.model_copy(
            update={
                "status": InstallmentStatus.PAID,
                "submitted_at": verified_at,
                "reviewed_at": verified_at,
                "reject_reason": None,
                "receipt": receipt,
            }
        )
        new_plan = recompute_plan(replace_installment(current_plan, settled), verified_at)
        store_plan(current, new_plan)
        return InstallmentVerification(
            ok=True,
            already_paid=False,
            completed=new_plan.completed,
            paid_kobo=new_plan.paid_kobo,
        )

    result = await run_in_transaction(
        session_factory, _apply, max_attempts=max_attempts, label="installment verify"
    )
    if not result.already_paid:
        logger.info(
            "Installment %d of order %s paid via %s (%d kobo settled)",
            idx,
            oid,
            receipt.provider,
            result.paid_kobo,
        )
        if result.completed:
            logger.info("Payment plan on order %s completed", oid)
    return result


# ============================================================================
# PLAN SETUP
# ============================================================================


def clean_installments(drafts: Sequence[InstallmentDraft]) -> list[Installment]:
    installments = []
    for idx, draft in enumerate(drafts):
        amount = draft.amount_kobo
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationFailed("Installment amounts must be positive whole kobo.")
        label = str(draft.label or "").strip()[:MAX_LABEL_LENGTH]
        installments.append(
            Installment(
                idx=idx,
                label=label or f"Installment {idx + 1}",
                amount_kobo=amount,
                due_at=ensure_utc(draft.due_at),
            )
        )
    return installments


def validate_due_dates(
    installments: Sequence[Installment], now: datetime, max_plan_days: int
) -> None:
    if any(i.due_at is None for i in installments):
        raise ValidationFailed("All installments must have a due date.")
    for prev, cur in zip(installments, installments[1:]):
        if cur.due_at < prev.due_at:
            raise ValidationFailed("Due dates must be in increasing order.")
    latest = now + timedelta(days=max(1, max_plan_days))
    if installments[-1].due_at > latest:
        raise ValidationFailed(
            f"Installment plan is too long (max {max_plan_days} days)."
        )


async def attach_payment_plan(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user: AuthUser,
    order_id: Any,
    drafts: Sequence[InstallmentDraft],
    max_installments: int,
    max_plan_days: int,
    now: Optional[datetime] = None,
) -> PaymentPlan:
    """Attach (or replace an untouched) installment plan on a storefront's order."""
    oid = parse_order_id(order_id)
    installments = clean_installments(drafts)
    if len(installments) < MIN_PLAN_INSTALLMENTS:
        raise ValidationFailed(
            f"Add at least {MIN_PLAN_INSTALLMENTS} installments. "
            f"(Your plan allows up to {max_installments}.)"
        )
    if len(installments) > max_installments:
        raise ValidationFailed(f"Too many installments (max {max_installments}).")

    async def _apply(session: AsyncSession) -> PaymentPlan:
        order = await get_order(session, oid, for_update=True)
        ensure_storefront_access(user, order)

        if order.payment_plan:
            existing = PaymentPlan.model_validate(order.payment_plan)
            if existing.enabled and existing.has_activity:
                raise BusinessRuleViolation(
                    "This plan already has payments. Clear the plan before changing it."
                )

        total = order.amount_kobo
        if not total or total <= 0:
            raise BusinessRuleViolation("Invalid order total.")
        if sum(i.amount_kobo for i in installments) != total:
            raise BusinessRuleViolation(
                "Installment amounts must add up exactly to the order total."
            )

        created_at = ensure_utc(now) if now else utc_now()
        validate_due_dates(installments, created_at, max_plan_days)

        plan = PaymentPlan(
            currency=order.currency,
            installments=installments,
            total_kobo=total,
            created_at=created_at,
            updated_at=created_at,
        )
        store_plan(order, plan)
        return plan

    plan = await run_in_transaction(session_factory, _apply, label="attach payment plan")
    logger.info(
        "Attached %d-installment plan to order %s", len(plan.installments), oid
    )
    return plan


async def clear_payment_plan(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user: AuthUser,
    order_id: Any,
) -> None:
    oid = parse_order_id(order_id)

    async def _apply(session: AsyncSession) -> None:
        order = await get_order(session, oid, for_update=True)
        ensure_storefront_access(user, order)
        store_plan(order, None)

    await run_in_transaction(session_factory, _apply, label="clear payment plan")
    logger.info("Cleared payment plan on order %s", oid)


# ============================================================================
# MANUAL TRANSFERS
# ============================================================================


async def submit_installment_proof(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user: AuthUser,
    order_id: Any,
    installment_index: Any,
    proof_url: str,
    now: Optional[datetime] = None,
) -> Installment:
    """Record the buyer's bank-transfer proof for an installment, awaiting review."""
    oid = parse_order_id(order_id)
    idx = _validate_index(installment_index)
    proof_url = str(proof_url or "").strip()
    if not proof_url:
        raise ValidationFailed("Missing proof")

    async def _apply(session: AsyncSession) -> Installment:
        order = await get_order(session, oid, for_update=True)
        ensure_buyer_access(user, order)
        if order.payment_type != PaymentType.DIRECT_TRANSFER:
            raise BusinessRuleViolation("This is not a bank transfer order.")
        plan = load_plan(order)
        installment = get_installment(plan, idx)
        if is_settled(installment.status):
            raise BusinessRuleViolation("This installment is already completed.")

        submitted_at = ensure_utc(now) if now else utc_now()
        updated = installment.model_copy(
            update={
                "status": InstallmentStatus.PENDING,
                "submitted_at": submitted_at,
                "reviewed_at": None,
                "reject_reason": None,
                "proof_url": proof_url,
            }
        )
        store_plan(order, recompute_plan(replace_installment(plan, updated), submitted_at))
        return updated

    return await run_in_transaction(
        session_factory, _apply, label="submit installment proof"
    )


async def review_installment(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    user: AuthUser,
    order_id: Any,
    installment_index: Any,
    action: str,
    reject_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PaymentPlan:
    """Accept or reject a submitted transfer proof and re-derive the plan."""
    oid = parse_order_id(order_id)
    idx = _validate_index(installment_index)
    action = str(action or "").strip().lower()
    if action not in ("accept", "reject"):
        raise ValidationFailed("Invalid action")

    async def _apply(session: AsyncSession) -> PaymentPlan:
        order = await get_order(session, oid, for_update=True)
        ensure_storefront_access(user, order)
        if order.payment_type != PaymentType.DIRECT_TRANSFER:
            raise BusinessRuleViolation("This is not a bank transfer order.")
        plan = load_plan(order)
        installment = get_installment(plan, idx)
        if is_settled(installment.status):
            raise BusinessRuleViolation("This installment is already completed.")
        if not installment.proof_url:
            raise BusinessRuleViolation("No proof uploaded for this installment yet.")

        reviewed_at = ensure_utc(now) if now else utc_now()
        if action == "accept":
            update = {"status": InstallmentStatus.ACCEPTED, "reject_reason": None}
        else:
            reason = str(reject_reason or "").strip()[:MAX_REJECT_REASON_LENGTH]
            update = {"status": InstallmentStatus.REJECTED, "reject_reason": reason or "Rejected"}
        update["reviewed_at"] = reviewed_at

        new_plan = recompute_plan(
            replace_installment(plan, installment.model_copy(update=update)), reviewed_at
        )
        store_plan(order, new_plan)
        return new_plan

    plan = await run_in_transaction(session_factory, _apply, label="review installment")
    logger.info("Installment %d of order %s: %s", idx, oid, action)
    return plan
