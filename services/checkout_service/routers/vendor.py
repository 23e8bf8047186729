"""Storefront routes for managing installment plans on their orders."""

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_vendor
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.session import get_session_factory
from services.checkout_service.installments import (
    InstallmentDraft,
    attach_payment_plan,
    clear_payment_plan,
    review_installment,
)
from services.checkout_service.schemas import (
    InstallmentReviewRequest,
    PaymentPlanRequest,
    PaymentPlanResponse,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/vendor/orders", tags=["vendor"])


@router.put("/{order_id}/payment-plan", response_model=PaymentPlanResponse)
async def put_payment_plan(
    order_id: str,
    payload: PaymentPlanRequest,
    current_user: AuthUser = Depends(require_vendor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    settings = get_settings()
    plan = await attach_payment_plan(
        session_factory,
        user=current_user,
        order_id=order_id,
        drafts=[
            InstallmentDraft(
                amount_kobo=item.amount_kobo, due_at=item.due_at, label=item.label
            )
            for item in payload.installments
        ],
        max_installments=settings.MAX_PLAN_INSTALLMENTS,
        max_plan_days=settings.MAX_PLAN_DAYS,
    )
    return PaymentPlanResponse(plan=plan.model_dump(mode="json"))


@router.delete("/{order_id}/payment-plan", response_model=PaymentPlanResponse)
async def delete_payment_plan(
    order_id: str,
    current_user: AuthUser = Depends(require_vendor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    await clear_payment_plan(session_factory, user=current_user, order_id=order_id)
    return PaymentPlanResponse()


@router.post(
    "/{order_id}/installments/{idx}/review", response_model=PaymentPlanResponse
)
async def review_installment_proof(
    order_id: str,
    idx: int,
    payload: InstallmentReviewRequest,
    current_user: AuthUser = Depends(require_vendor),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Accept or reject a buyer's transfer proof."""
    plan = await review_installment(
        session_factory,
        user=current_user,
        order_id=order_id,
        installment_index=idx,
        action=payload.action,
        reject_reason=payload.reject_reason,
    )
    return PaymentPlanResponse(plan=plan.model_dump(mode="json"))
