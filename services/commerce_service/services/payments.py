"""
Payment gateway clients.

The commerce core hands a gateway a final total and currency and gets back a
PaymentVerdict (succeeded / pending / failed plus the gateway's transaction
id). Gateway internals stay behind these calls:

- StripeGateway: PaymentIntents API (form-encoded, amounts in cents)
- SquareGateway: Payments API (JSON, idempotency key, amounts in cents)
- CashGateway: no network; collected manually at pickup
"""

import enum
import hashlib
import hmac
import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.common.money import dollars_to_cents
from services.commerce_service.errors import PaymentFailedError, ValidationError
from services.commerce_service.models import PaymentMethod

logger = get_logger(__name__)

settings = get_settings()

SIGNATURE_TOLERANCE_SECONDS = 300


class PaymentStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class PaymentVerdict:
    """Result of asking a gateway to take a payment."""

    status: PaymentStatus
    external_id: Optional[str]
    client_secret: Optional[str] = None
    message: Optional[str] = None
    raw: dict = field(default_factory=dict)


class PaymentGateway:
    method: PaymentMethod

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        reference: str,
        source_id: Optional[str] = None,
    ) -> PaymentVerdict:
        raise NotImplementedError

    async def retrieve_payment(self, external_id: str) -> PaymentVerdict:
        raise NotImplementedError

    async def refund_payment(self, external_id: str, amount: Decimal) -> PaymentVerdict:
        raise NotImplementedError


class _HttpGateway(PaymentGateway):
    base_url: str

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    def _headers(self) -> dict:
        raise NotImplementedError

    async def _request(
        self,
        method: str,
        endpoint: str,
        data: Optional[dict] = None,
        json_data: Optional[dict] = None,
        headers: Optional[dict] = None,
    ) -> dict:
        request_headers = {**self._headers(), **(headers or {})}
        url = f"{self.base_url}{endpoint}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=request_headers, data=data, json=json_data
                )
            else:
                async with httpx.AsyncClient(timeout=30.0) as client:
                    response = await client.request(
                        method, url, headers=request_headers, data=data, json=json_data
                    )
        except httpx.HTTPError as exc:
            logger.error("%s request failed: %s", self.method.value, exc)
            raise PaymentFailedError(
                "Payment provider is unavailable, please try again"
            ) from exc

        payload = response.json() if response.content else {}
        if not response.is_success:
            message = self._error_message(payload)
            logger.error(
                "%s API error: %s - %s", self.method.value, response.status_code, payload
            )
            raise PaymentFailedError(
                message,
                details={"provider": self.method.value, "status": response.status_code},
            )
        return payload

    def _error_message(self, payload: dict) -> str:
        return "Payment was declined"


class StripeGateway(_HttpGateway):
    method = PaymentMethod.STRIPE

    STATUS_MAP = {
        "succeeded": PaymentStatus.SUCCEEDED,
        "processing": PaymentStatus.PENDING,
        "requires_payment_method": PaymentStatus.PENDING,
        "requires_confirmation": PaymentStatus.PENDING,
        "requires_action": PaymentStatus.PENDING,
        "requires_capture": PaymentStatus.PENDING,
        "canceled": PaymentStatus.FAILED,
    }

    def __init__(
        self,
        secret_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        if not self.secret_key:
            raise ValueError("STRIPE_SECRET_KEY is required")
        self.base_url = base_url or settings.STRIPE_API_BASE

    def _headers(self) -> dict:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def _error_message(self, payload: dict) -> str:
        return payload.get("error", {}).get("message") or "Card payment was declined"

    def _verdict(self, intent: dict) -> PaymentVerdict:
        return PaymentVerdict(
            status=self.STATUS_MAP.get(intent.get("status"), PaymentStatus.PENDING),
            external_id=intent.get("id"),
            client_secret=intent.get("client_secret"),
            raw=intent,
        )

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        reference: str,
        source_id: Optional[str] = None,
    ) -> PaymentVerdict:
        intent = await self._request(
            "POST",
            "/v1/payment_intents",
            data={
                "amount": dollars_to_cents(amount),
                "currency": currency.lower(),
                "metadata[order_number]": reference,
                "automatic_payment_methods[enabled]": "true",
            },
            headers={"Idempotency-Key": f"order-{reference}"},
        )
        return self._verdict(intent)

    async def retrieve_payment(self, external_id: str) -> PaymentVerdict:
        intent = await self._request("GET", f"/v1/payment_intents/{external_id}")
        return self._verdict(intent)

    async def refund_payment(self, external_id: str, amount: Decimal) -> PaymentVerdict:
        refund = await self._request(
            "POST",
            "/v1/refunds",
            data={"payment_intent": external_id, "amount": dollars_to_cents(amount)},
            headers={"Idempotency-Key": f"refund-{external_id}"},
        )
        status = (
            PaymentStatus.FAILED
            if refund.get("status") in ("failed", "canceled")
            else PaymentStatus.SUCCEEDED
        )
        return PaymentVerdict(status=status, external_id=refund.get("id"), raw=refund)


class SquareGateway(_HttpGateway):
    method = PaymentMethod.SQUARE

    STATUS_MAP = {
        "COMPLETED": PaymentStatus.SUCCEEDED,
        "APPROVED": PaymentStatus.PENDING,
        "PENDING": PaymentStatus.PENDING,
        "FAILED": PaymentStatus.FAILED,
        "CANCELED": PaymentStatus.FAILED,
    }

    def __init__(
        self,
        access_token: Optional[str] = None,
        location_id: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(client)
        self.access_token = access_token or settings.SQUARE_ACCESS_TOKEN
        if not self.access_token:
            raise ValueError("SQUARE_ACCESS_TOKEN is required")
        self.location_id = location_id or settings.SQUARE_LOCATION_ID
        self.base_url = base_url or settings.SQUARE_API_BASE

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }

    def _error_message(self, payload: dict) -> str:
        errors = payload.get("errors") or [{}]
        return errors[0].get("detail") or "Card payment was declined"

    def _verdict(self, payment: dict) -> PaymentVerdict:
        return PaymentVerdict(
            status=self.STATUS_MAP.get(payment.get("status"), PaymentStatus.PENDING),
            external_id=payment.get("id"),
            raw=payment,
        )

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        reference: str,
        source_id: Optional[str] = None,
    ) -> PaymentVerdict:
        if not source_id:
            raise ValidationError("A card source is required", fields=["source_id"])
        data = await self._request(
            "POST",
            "/v2/payments",
            json_data={
                "source_id": source_id,
                "idempotency_key": str(uuid.uuid5(uuid.NAMESPACE_OID, reference)),
                "amount_money": {
                    "amount": dollars_to_cents(amount),
                    "currency": currency.upper(),
                },
                "location_id": self.location_id,
                "reference_id": reference,
            },
        )
        return self._verdict(data.get("payment", {}))

    async def retrieve_payment(self, external_id: str) -> PaymentVerdict:
        data = await self._request("GET", f"/v2/payments/{external_id}")
        return self._verdict(data.get("payment", {}))

    async def refund_payment(self, external_id: str, amount: Decimal) -> PaymentVerdict:
        data = await self._request(
            "POST",
            "/v2/refunds",
            json_data={
                "idempotency_key": str(uuid.uuid5(uuid.NAMESPACE_OID, f"refund-{external_id}")),
                "payment_id": external_id,
                "amount_money": {
                    "amount": dollars_to_cents(amount),
                    "currency": settings.CURRENCY.upper(),
                },
            },
        )
        refund = data.get("refund", {})
        status = (
            PaymentStatus.FAILED
            if refund.get("status") in ("FAILED", "REJECTED")
            else PaymentStatus.SUCCEEDED
        )
        return PaymentVerdict(status=status, external_id=refund.get("id"), raw=refund)


class CashGateway(PaymentGateway):
    """Cash is collected by the vendor; nothing to call."""

    method = PaymentMethod.CASH

    async def create_payment(
        self,
        *,
        amount: Decimal,
        currency: str,
        reference: str,
        source_id: Optional[str] = None,
    ) -> PaymentVerdict:
        return PaymentVerdict(status=PaymentStatus.PENDING, external_id=f"cash-{reference}")

    async def retrieve_payment(self, external_id: str) -> PaymentVerdict:
        return PaymentVerdict(status=PaymentStatus.PENDING, external_id=external_id)

    async def refund_payment(self, external_id: str, amount: Decimal) -> PaymentVerdict:
        return PaymentVerdict(status=PaymentStatus.SUCCEEDED, external_id=external_id)


def get_gateway(method: PaymentMethod) -> PaymentGateway:
    try:
        if method == PaymentMethod.STRIPE:
            return StripeGateway()
        if method == PaymentMethod.SQUARE:
            return SquareGateway()
    except ValueError as exc:
        logger.error("Gateway %s is not configured: %s", method.value, exc)
        raise PaymentFailedError(f"{method.value} payments are not available") from exc
    return CashGateway()


def verify_stripe_signature(
    payload: bytes,
    signature_header: Optional[str],
    secret: str,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> None:
    """Check a ``Stripe-Signature`` header (``t=...,v1=...``) against the raw body."""
    if not signature_header:
        raise ValidationError("Missing Stripe-Signature header")

    timestamp = None
    signatures = []
    for part in signature_header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            timestamp = value
        elif key == "v1":
            signatures.append(value)
    if timestamp is None or not timestamp.isdigit() or not signatures:
        raise ValidationError("Malformed Stripe-Signature header")

    signed = f"{timestamp}.".encode() + payload
    expected = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise ValidationError("Invalid webhook signature")

    current = time.time() if now is None else now
    if abs(current - int(timestamp)) > tolerance:
        raise ValidationError("Webhook timestamp outside tolerance")

