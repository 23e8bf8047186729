"""Request tracing middleware for the checkout API.

Every request gets a request ID (taken from X-Request-ID when the caller sends one) that
is bound to the logging context and echoed back on the response. Completed requests are
logged against their route template, so ``/orders/<uuid>/installments/1/verify`` from
many buyers aggregates under one route, with the order id kept as its own field.

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import time
from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
QUIET_PATHS = frozenset({"/health"})


def _route_template(request: Request) -> Optional[str]:
    route = request.scope.get("route")
    return getattr(route, "path", None)


def _log_level(status_code: int) -> str:
    if status_code >= 500:
        return "error"
    if status_code >= 400:
        return "warning"
    return "info"


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Bind a request ID for the lifetime of the request and log how it ended."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_context(
            request_id=request.headers.get(REQUEST_ID_HEADER),
            path=request.url.path,
            method=request.method,
        )
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.exception(
                "Request failed with unhandled exception",
                extra={"extra_fields": {
                    "route": _route_template(request),
                    "error": str(e),
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                }},
            )
            clear_request_context()
            raise

        if request.url.path not in QUIET_PATHS:
            fields = {
                "route": _route_template(request),
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
            }
            order_id = request.path_params.get("order_id")
            if order_id:
                fields["order_id"] = order_id
            getattr(logger, _log_level(response.status_code))(
                "Request completed", extra={"extra_fields": fields}
            )

        response.headers[REQUEST_ID_HEADER] = request_id
        clear_request_context()
        return response


def add_observability_middleware(app: FastAPI) -> None:
    """
    Configure logging and add the request context middleware to an app.
    """
    configure_logging()
    app.add_middleware(RequestContextMiddleware)
    logger.info("Observability middleware initialized")
