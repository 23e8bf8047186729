"""Checkout domain errors.

Every error carries the HTTP status it maps to. The app renders them all as
``{"ok": false, "error": <message>, "code"?: <code>, ...extra}``.
"""

from typing import Any, Optional


class CheckoutError(Exception):
    """Base exception for checkout, settlement and installment failures."""

    status_code: int = 400

    def __init__(self, message: str, code: Optional[str] = None, **extra: Any):
        self.message = message
        self.code = code
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> dict:
        body: dict[str, Any] = {"ok": False, "error": self.message}
        if self.code:
            body["code"] = self.code
        body.update(self.extra)
        return body


class ValidationFailed(CheckoutError):
    """Malformed input: missing reference, bad cart, bad index."""


class NotFound(CheckoutError):
    status_code = 404


class InvalidItem(CheckoutError):
    """A cart line that cannot be bought (unknown, foreign, book-only, out of stock)."""


class BusinessRuleViolation(CheckoutError):
    pass


class NotAllowed(CheckoutError):
    status_code = 403


class PaymentNotSuccessful(CheckoutError):
    """The gateway did not report the payment as successful."""


class AmountMismatch(CheckoutError):
    """The gateway-reported amount disagrees with the recomputed quote total."""

    def __init__(self, expected_kobo: int, paid_kobo: int):
        super().__init__(
            "Amount mismatch",
            code="AMOUNT_MISMATCH",
            expectedKobo=expected_kobo,
            paidKobo=paid_kobo,
        )
        self.expected_kobo = expected_kobo
        self.paid_kobo = paid_kobo


class GatewayError(CheckoutError):
    """The payment gateway could not be reached or answered with an error."""

    status_code = 502

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        super().__init__(message)
        self.gateway_status_code = status_code
        self.response_data = response_data or {}
