"""Buyer-facing installment routes: gateway verification and transfer proofs."""

from fastapi import APIRouter, Depends, Request
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.common.rate_limit import payment_limit
from libs.db.session import get_session_factory
from services.checkout_service.dependencies import (
    get_gateway_resolver,
    get_payments_provider,
)
from services.checkout_service.gateways import GatewayResolver
from services.checkout_service.installments import (
    submit_installment_proof,
    verify_installment,
)
from services.checkout_service.models import PaymentProvider
from services.checkout_service.schemas import (
    InstallmentProofRequest,
    InstallmentProofResponse,
    InstallmentVerifyRequest,
    InstallmentVerifyResponse,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/orders", tags=["installments"])


@router.post(
    "/{order_id}/installments/{idx}/verify",
    response_model=InstallmentVerifyResponse,
)
@payment_limit
async def verify_installment_payment(
    request: Request,
    order_id: str,
    idx: int,
    payload: InstallmentVerifyRequest,
    current_user: AuthUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    provider: PaymentProvider = Depends(get_payments_provider),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """Verify one installment with the active gateway and settle it on the order."""
    settings = get_settings()
    result = await verify_installment(
        session_factory,
        user=current_user,
        order_id=order_id,
        installment_index=idx,
        reference=payload.reference,
        transaction_id=payload.transaction_id,
        provider=provider,
        resolve_gateway=resolve_gateway,
        currency=settings.SETTLEMENT_CURRENCY,
        max_attempts=settings.SETTLEMENT_MAX_ATTEMPTS,
    )
    return InstallmentVerifyResponse(
        ok=result.ok,
        already_paid=result.already_paid,
        completed=result.completed,
        paid_kobo=result.paid_kobo,
    )


@router.post(
    "/{order_id}/installments/{idx}/proof",
    response_model=InstallmentProofResponse,
)
async def submit_proof(
    order_id: str,
    idx: int,
    payload: InstallmentProofRequest,
    current_user: AuthUser = Depends(get_current_user),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Attach a bank-transfer proof to an installment for storefront review."""
    installment = await submit_installment_proof(
        session_factory,
        user=current_user,
        order_id=order_id,
        installment_index=idx,
        proof_url=payload.proof_url,
    )
    return InstallmentProofResponse(installment=installment.model_dump(mode="json"))
