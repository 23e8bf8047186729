"""Rate limiting for the checkout API.

Uses slowapi. Limits and storage come from settings; point RATE_LIMIT_STORAGE_URI at
Redis when several workers must share counters.

Two tiers:
- payment_limit: settlement and installment verification. Each call may hit a payment
  gateway, so it is the tighter one, but gateway webhook retries must still fit.
- api_limit: everything else (quote previews).
"""

from functools import lru_cache
from typing import Callable

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from libs.common.config import get_settings


def _get_client_ip(request: Request) -> str:
    """
    Client IP, preferring the first X-Forwarded-For hop when behind a proxy.
    """
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


@lru_cache
def get_limiter() -> Limiter:
    settings = get_settings()

    return Limiter(
        key_func=_get_client_ip,
        default_limits=[settings.API_RATE_LIMIT],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        enabled=settings.RATE_LIMIT_ENABLED,
    )


limiter = get_limiter()


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """
    Return a JSON 429 in the same envelope as checkout errors.
    """
    retry_after = exc.detail.split("per")[0].strip() if exc.detail else "1 minute"

    return JSONResponse(
        status_code=429,
        content={
            "ok": False,
            "error": f"Rate limit exceeded. Try again in {retry_after}.",
            "code": "RATE_LIMIT_EXCEEDED",
        },
        headers={"Retry-After": str(getattr(exc, "retry_after", 60))},
    )


def payment_limit(func: Callable) -> Callable:
    return limiter.limit(lambda: get_settings().PAYMENT_RATE_LIMIT)(func)


def api_limit(func: Callable) -> Callable:
    return limiter.limit(lambda: get_settings().API_RATE_LIMIT)(func)
