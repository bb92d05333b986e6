from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from .config import get_settings

logger = logging.getLogger(__name__)

class PaymentProviderError(Exception):
    """Refund could not be obtained from the provider."""

@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: int
    status: str

class PaymentsProvider(Protocol):
    async def refund(self, payment_intent_id: str) -> RefundResult: ...

class StripePayments:
    """
    Minimal Stripe refunds client over the REST API.
    The idempotency key is derived from the payment intent, so repeating a
    refund for the same payment returns the original refund instead of a second one.
    """

    def __init__(self, secret_key: str | None, api_base: str = "https://api.stripe.com/v1", timeout: float = 10.0):
        self.secret_key = secret_key
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout

    async def refund(self, payment_intent_id: str) -> RefundResult:
        if not self.secret_key:
            raise PaymentProviderError("Stripe is not configured")
        headers = {"Idempotency-Key": f"refund-{payment_intent_id}"}
        try:
            async with httpx.AsyncClient() as client:
                r = await client.post(
                    f"{self.api_base}/refunds",
                    auth=(self.secret_key, ""),
                    headers=headers,
                    data={"payment_intent": payment_intent_id},
                    timeout=self.timeout,
                )
        except httpx.HTTPError as e:
            logger.error(f"Stripe refund request failed for {payment_intent_id}: {e}")
            raise PaymentProviderError(f"Payment provider unreachable: {e}") from e

        if r.status_code not in (200, 201):
            try:
                message = r.json().get("error", {}).get("message") or r.text
            except ValueError:
                message = r.text
            logger.error(f"Stripe refund rejected for {payment_intent_id} [{r.status_code}]: {message}")
            raise PaymentProviderError(message)

        body = r.json()
        logger.info(f"Stripe refund {body.get('id')} for {payment_intent_id}: {body.get('status')}")
        return RefundResult(refund_id=body["id"], amount=int(body.get("amount", 0)), status=body.get("status", "pending"))

_payments: StripePayments | None = None
def get_payments() -> StripePayments:
    global _payments
    if _payments is None:
        s = get_settings()
        _payments = StripePayments(s.stripe_secret_key, s.stripe_api_base)
    return _payments
