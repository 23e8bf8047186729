"""Order lookup and access checks shared by the post-settlement workflows."""

import uuid
from typing import Any

from libs.auth.models import STAFF_OVERRIDE_ROLES, VENDOR_ROLES, AuthUser
from services.checkout_service.errors import NotAllowed, NotFound
from services.checkout_service.models import Order
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession


def parse_order_id(order_id: Any) -> uuid.UUID:
    if isinstance(order_id, uuid.UUID):
        return order_id
    try:
        return uuid.UUID(str(order_id).strip())
    except ValueError:
        raise NotFound("Order not found")


async def get_order(
    db: AsyncSession, order_id: uuid.UUID, *, for_update: bool = False
) -> Order:
    """Fetch an order fresh from the database, optionally row-locked."""
    query = (
        select(Order)
        .where(Order.id == order_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFound("Order not found")
    return order


def _lower(value: Any) -> str:
    return str(value or "").strip().lower()


def ensure_storefront_access(user: AuthUser, order: Order) -> None:
    if not user.storefront_id or str(order.storefront_id) != str(user.storefront_id):
        raise NotAllowed("Not allowed")


def ensure_buyer_access(user: AuthUser, order: Order) -> None:
    """Buyers act on orders placed with their own email; the storefront on its own orders."""
    if user.role in STAFF_OVERRIDE_ROLES:
        return
    if user.role in VENDOR_ROLES:
        ensure_storefront_access(user, order)
        return
    if not user.is_customer:
        raise NotAllowed("Not allowed")

    mine = _lower(user.email)
    theirs = _lower(order.customer_email or (order.customer or {}).get("email"))
    if not mine or not theirs or mine != theirs:
        raise NotAllowed("Not allowed")
