import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import stripe

from orderdesk.errors import PaymentGatewayError, ValidationError

logger = logging.getLogger(__name__)

FAILED_REFUND_STATUSES = frozenset({"failed", "canceled"})


def to_minor_units(amount) -> int:
    """Convert a major-unit amount (rupees, euros) to the gateway's minor unit."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def as_payload(obj) -> Dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


@dataclass
class GatewayRefund:
    gateway_id: str
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)


class StripeGateway:
    name = "Stripe"

    def __init__(self, api_key: str, webhook_secret: str = ""):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_payment(self, amount: int, currency: str, idempotency_key: str):
        try:
            return stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=amount,
                currency=currency,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key
            )
        except stripe.StripeError as exc:
            logger.error("Stripe payment intent creation failed: %s", exc)
            raise PaymentGatewayError(str(exc)) from exc

    def refund(
        self,
        payment_id: str,
        amount: int,
        notes: Optional[Dict[str, str]] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayRefund:
        try:
            response = stripe.Refund.create(
                api_key=self.api_key,
                payment_intent=payment_id,
                amount=amount,
                metadata=notes or {},
                idempotency_key=idempotency_key
            )
        except stripe.StripeError as exc:
            logger.error("Stripe refund failed for %s: %s", payment_id, exc)
            raise PaymentGatewayError(str(exc)) from exc

        if response.status in FAILED_REFUND_STATUSES:
            logger.error("Stripe refund %s for %s came back %s", response.id, payment_id, response.status)
            raise PaymentGatewayError(f"refund {response.id} {response.status}")

        return GatewayRefund(
            gateway_id=response.id,
            status=response.status,
            payload=as_payload(response),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]):
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise ValidationError("Invalid payload")
        except stripe.SignatureVerificationError:
            raise ValidationError("Invalid signature")
