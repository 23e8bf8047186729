"""Checkout router: quote preview and payment settlement."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, Request
from libs.common.config import get_settings
from libs.common.rate_limit import api_limit, payment_limit
from libs.db.session import get_async_db, get_session_factory
from services.checkout_service.dependencies import (
    get_gateway_resolver,
    get_payments_provider,
)
from services.checkout_service.gateways import GatewayResolver
from services.checkout_service.models import PaymentProvider
from services.checkout_service.pricing import build_quote
from services.checkout_service.schemas import (
    QuoteRequest,
    QuoteResponse,
    SettlementResponse,
    SettleRequest,
)
from services.checkout_service.settlement import settle_payment
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/checkout", tags=["checkout"])


@router.post("/quote", response_model=QuoteResponse)
@api_limit
async def quote_cart(
    request: Request,
    payload: QuoteRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Price a cart with current sale and coupon rules. Read-only."""
    quote = await build_quote(
        db,
        storefront_slug=payload.store_slug,
        items=[item.model_dump() for item in payload.items],
        coupon_code=payload.coupon_code,
        shipping_fee_kobo=payload.shipping_fee_kobo,
    )
    return QuoteResponse(
        storefront_slug=quote.storefront_slug,
        normalized_items=[asdict(item) for item in quote.normalized_items],
        pricing=asdict(quote.pricing),
        coupon_result=asdict(quote.coupon_result) if quote.coupon_result else None,
    )


@router.post("/settle", response_model=SettlementResponse)
@payment_limit
async def settle(
    request: Request,
    payload: SettleRequest,
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    provider: PaymentProvider = Depends(get_payments_provider),
    resolve_gateway: GatewayResolver = Depends(get_gateway_resolver),
):
    """
    Settle a gateway payment into an escrow-held order.

    Safe to call repeatedly for the same reference: replays return the original order
    with ``alreadyProcessed: true``.
    """
    settings = get_settings()
    result = await settle_payment(
        session_factory,
        reference=payload.reference,
        transaction_id=payload.transaction_id,
        provider=provider,
        resolve_gateway=resolve_gateway,
        currency=settings.SETTLEMENT_CURRENCY,
        hold_minutes=settings.ESCROW_HOLD_MINUTES,
        max_attempts=settings.SETTLEMENT_MAX_ATTEMPTS,
    )
    return SettlementResponse(**asdict(result))
