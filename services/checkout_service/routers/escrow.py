"""Escrow release routes, called by trusted services (cron)."""

from dataclasses import asdict

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_service_role
from libs.auth.models import AuthUser
from libs.common.config import get_settings
from libs.db.session import get_session_factory
from services.checkout_service.escrow import release_escrow_if_eligible, sweep_due_escrow
from services.checkout_service.schemas import (
    EscrowReleaseResponse,
    EscrowSweepResponse,
)
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

router = APIRouter(prefix="/escrow", tags=["escrow"])


@router.post("/sweep", response_model=EscrowSweepResponse)
async def sweep(
    _: AuthUser = Depends(require_service_role),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    """Release every held order whose hold has passed. Meant for a 1-2 minute cron."""
    settings = get_settings()
    result = await sweep_due_escrow(
        session_factory,
        scan_limit=settings.ESCROW_SWEEP_SCAN_LIMIT,
        batch_size=settings.ESCROW_SWEEP_BATCH_SIZE,
    )
    return EscrowSweepResponse(**asdict(result))


@router.post("/{order_id}/release", response_model=EscrowReleaseResponse)
async def release(
    order_id: str,
    _: AuthUser = Depends(require_service_role),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
):
    result = await release_escrow_if_eligible(session_factory, order_id)
    return EscrowReleaseResponse(**asdict(result))
