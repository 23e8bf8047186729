"""Checkout service routers package."""

from services.checkout_service.routers.checkout import router as checkout_router
from services.checkout_service.routers.escrow import router as escrow_router
from services.checkout_service.routers.installments import (
    router as installments_router,
)
from services.checkout_service.routers.vendor import router as vendor_router

__all__ = [
    "checkout_router",
    "escrow_router",
    "installments_router",
    "vendor_router",
]
