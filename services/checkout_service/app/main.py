"""FastAPI application for the Checkout Service."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from services.checkout_service.errors import CheckoutError
from services.checkout_service.routers import (
    checkout_router,
    escrow_router,
    installments_router,
    vendor_router,
)
from slowapi.errors import RateLimitExceeded

logger = get_logger(__name__)


async def checkout_error_handler(request: Request, exc: CheckoutError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the Checkout Service FastAPI app."""
    app = FastAPI(
        title="Bizhub Checkout Service",
        version="0.1.0",
        description="Checkout pricing, escrow settlement and installment payments.",
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    # Add observability (structured logging + request tracing)
    add_observability_middleware(app)

    add_exception_handlers(app)
    app.add_exception_handler(CheckoutError, checkout_error_handler)

    @app.get("/health", tags=["system"])
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "checkout"}

    app.include_router(checkout_router)
    app.include_router(installments_router)
    app.include_router(vendor_router)
    app.include_router(escrow_router)

    return app


app = create_app()
