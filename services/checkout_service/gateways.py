"""
Payment gateway verification clients.

Only "verify after the fact" is used; nothing here ever charges a buyer.

- Flutterwave (primary): GET /v3/transactions/{id}/verify, amounts in Naira.
- Paystack (legacy): GET /transaction/verify/{reference}, amounts in kobo.

Responses are parsed straight into typed receipts so callers never poke at raw JSON.
"""

import json
from datetime import datetime
from typing import Annotated, Any, Callable, Literal, Optional, Protocol, Union

import httpx
from libs.common.config import get_settings
from libs.common.currency import major_to_kobo
from libs.common.datetime_utils import parse_gateway_timestamp
from libs.common.logging import get_logger
from pydantic import BaseModel, ConfigDict, Field, field_validator
from services.checkout_service.errors import (
    BusinessRuleViolation,
    GatewayError,
    PaymentNotSuccessful,
    ValidationFailed,
)
from services.checkout_service.models import PaymentProvider

logger = get_logger(__name__)

PAYSTACK_SUCCESS = "success"
FLUTTERWAVE_SUCCESS = "successful"


# ============================================================================
# RECEIPTS
# ============================================================================


class _Receipt(BaseModel):
    model_config = ConfigDict(frozen=True)

    reference: Optional[str] = None
    status: str = ""
    amount_kobo: Optional[int] = None
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None
    customer_email: Optional[str] = None
    metadata: dict = Field(default_factory=dict)
    channel: Optional[str] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def decode_metadata(cls, v: Any) -> dict:
        # Both gateways echo metadata back either as an object or as a JSON string.
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except ValueError:
                return {}
        return v if isinstance(v, dict) else {}

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v).strip().upper() or None


class PaystackReceipt(_Receipt):
    provider: Literal["paystack"] = "paystack"
    fees_kobo: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == PAYSTACK_SUCCESS


class FlutterwaveReceipt(_Receipt):
    provider: Literal["flutterwave"] = "flutterwave"
    transaction_id: str
    app_fee_kobo: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.status == FLUTTERWAVE_SUCCESS


GatewayReceipt = Annotated[
    Union[PaystackReceipt, FlutterwaveReceipt], Field(discriminator="provider")
]


def ensure_reference_matches(receipt: _Receipt, reference: Optional[str]) -> None:
    """Reject a receipt whose reference differs from the one the caller supplied.

    Flutterwave is verified by transaction id, so its ``tx_ref`` is the only link to
    the caller's reference and must be present and equal. Paystack is looked up by
    reference and may omit it in the body.
    """
    if not reference:
        return
    if isinstance(receipt, FlutterwaveReceipt) or receipt.reference:
        if receipt.reference != reference:
            raise BusinessRuleViolation("Transaction reference mismatch.")


# ============================================================================
# CLIENTS
# ============================================================================


class PaymentGateway(Protocol):
    provider: PaymentProvider

    async def verify(
        self, *, reference: str, transaction_id: Optional[str] = None
    ) -> Union[PaystackReceipt, FlutterwaveReceipt]: ...


GatewayResolver = Callable[[PaymentProvider], PaymentGateway]


class _GatewayClient:
    """Shared request plumbing for the gateway clients."""

    provider: PaymentProvider
    name = "gateway"

    def __init__(
        self,
        secret_key: str,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not secret_key:
            raise ValueError(f"{self.name} secret key is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {secret_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, method: str, endpoint: str) -> dict:
        """Make an async request and return the decoded JSON body."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method=method, url=url, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error("%s request failed: %s", self.name, e)
            raise GatewayError(f"Could not reach {self.name}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 500:
            logger.error(
                "%s API error: %s - %s", self.name, response.status_code, data
            )
            raise GatewayError(
                message=data.get("message") or f"{self.name} error",
                status_code=response.status_code,
                response_data=data,
            )

        if not response.is_success:
            # 4xx: unknown reference / transaction, bad key, and so on.
            logger.warning(
                "%s verify rejected: %s - %s", self.name, response.status_code, data
            )
            raise PaymentNotSuccessful(f"{self.name} verify failed")

        if not isinstance(data, dict):
            raise GatewayError(f"Unexpected {self.name} response")
        return data


class PaystackClient(_GatewayClient):
    """Legacy gateway. Amounts are already in kobo."""

    provider = PaymentProvider.PAYSTACK
    name = "Paystack"

    async def verify(
        self, *, reference: str, transaction_id: Optional[str] = None
    ) -> PaystackReceipt:
        if not reference:
            raise ValidationFailed("Missing reference")

        body = await self._request("GET", f"/transaction/verify/{reference}")
        if not body.get("status"):
            raise PaymentNotSuccessful(body.get("message") or "Paystack verify failed")

        data = body.get("data") or {}
        customer = data.get("customer") or {}
        amount = data.get("amount")
        fees = data.get("fees")

        return PaystackReceipt(
            reference=data.get("reference") or reference,
            status=str(data.get("status") or ""),
            amount_kobo=amount if isinstance(amount, int) else None,
            currency=data.get("currency"),
            paid_at=parse_gateway_timestamp(data.get("paid_at") or data.get("paidAt")),
            customer_email=customer.get("email"),
            metadata=data.get("metadata"),
            channel=data.get("channel"),
            fees_kobo=fees if isinstance(fees, int) else None,
        )


class FlutterwaveClient(_GatewayClient):
    """Primary gateway. Verified by transaction id; amounts come back in Naira."""

    provider = PaymentProvider.FLUTTERWAVE
    name = "Flutterwave"

    async def verify(
        self, *, reference: str, transaction_id: Optional[str] = None
    ) -> FlutterwaveReceipt:
        if not transaction_id:
            raise ValidationFailed("Missing transactionId")

        body = await self._request("GET", f"/v3/transactions/{transaction_id}/verify")
        if body.get("status") != "success":
            raise PaymentNotSuccessful(
                body.get("message") or "Flutterwave verify failed"
            )

        data = body.get("data") or {}
        customer = data.get("customer") or {}
        app_fee = data.get("app_fee")

        receipt = FlutterwaveReceipt(
            transaction_id=str(data.get("id") or transaction_id),
            reference=data.get("tx_ref"),
            status=str(data.get("status") or ""),
            amount_kobo=major_to_kobo(data.get("amount")),
            currency=data.get("currency"),
            paid_at=parse_gateway_timestamp(data.get("created_at")),
            customer_email=customer.get("email"),
            metadata=data.get("meta"),
            channel=data.get("payment_type"),
            app_fee_kobo=major_to_kobo(app_fee) if app_fee is not None else None,
        )
        ensure_reference_matches(receipt, reference)
        return receipt


def resolve_gateway(provider: PaymentProvider) -> PaymentGateway:
    """Build the client for a provider from settings."""
    settings = get_settings()
    if provider == PaymentProvider.PAYSTACK:
        return PaystackClient(
            secret_key=settings.PAYSTACK_SECRET_KEY,
            base_url=settings.PAYSTACK_API_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        )
    return FlutterwaveClient(
        secret_key=settings.FLUTTERWAVE_SECRET_KEY,
        base_url=settings.FLUTTERWAVE_API_BASE_URL,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
