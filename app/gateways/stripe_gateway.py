"""
Card gateway backed by Stripe.

Cards are tokenized in the browser with the publishable key; this adapter only
ever sees ``pm_...`` payment methods or ``tok_...`` tokens and charges them
through a confirmed PaymentIntent.
"""

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

import stripe

from app.gateways.base import (
    ChargeResult,
    GatewayAdapter,
    VerifyResult,
    from_minor_units,
    to_minor_units,
)
from app.services.errors import (
    GatewayAuthError,
    GatewayRejected,
    GatewayUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

INTENT_STATUS = {
    "succeeded": "succeeded",
    "processing": "pending",
    "requires_action": "pending",
    "requires_confirmation": "pending",
    "requires_capture": "pending",
    "requires_payment_method": "failed",
    "canceled": "failed",
}

RAW_CARD_FIELDS = ("number", "cardNumber", "card_number", "cvc")


@contextmanager
def stripe_errors():
    try:
        yield
    except stripe.CardError as e:
        reason = e.user_message or GatewayRejected.default_message
        logger.warning(f"Stripe declined card: code={e.code} reason={reason}")
        raise GatewayRejected(reason) from e
    except (stripe.AuthenticationError, stripe.PermissionError) as e:
        logger.error(f"Stripe rejected our credentials: {e}")
        raise GatewayAuthError(str(e)) from e
    except (stripe.APIConnectionError, stripe.RateLimitError) as e:
        raise GatewayUnavailable(str(e)) from e
    except stripe.InvalidRequestError as e:
        raise GatewayRejected(e.user_message or GatewayRejected.default_message) from e
    except stripe.StripeError as e:
        raise GatewayUnavailable(str(e)) from e


class StripeGateway(GatewayAdapter):
    name = "stripe"
    synchronous = True

    def __init__(
        self,
        api_key: str = "",
        client: Optional[Any] = None,
        timeout: int = 10,
    ):
        if client is None and api_key:
            client = stripe.StripeClient(
                api_key,
                http_client=stripe.RequestsClient(timeout=timeout),
                max_network_retries=1,
            )
        self.client = client

    def _stripe(self):
        if self.client is None:
            logger.error("Stripe secret key not configured")
            raise GatewayAuthError("Stripe secret key not configured")
        return self.client

    def tokenize_payment_method(self, card_details: Dict[str, Any]) -> str:
        card_details = card_details or {}

        if any(field in card_details for field in RAW_CARD_FIELDS):
            raise ValidationError("Card details must be tokenized on the client")

        payment_method_id = (
            card_details.get("paymentMethodId")
            or card_details.get("payment_method_id")
        )
        if payment_method_id:
            return payment_method_id

        token = card_details.get("token")
        if not token:
            raise ValidationError("Missing card payment method")

        with stripe_errors():
            method = self._stripe().payment_methods.create(
                params={"type": "card", "card": {"token": token}}
            )
        return method.id

    def charge(
        self,
        session_id: str,
        amount: float,
        currency: str,
        method_details: Dict[str, Any],
        *,
        attempt: int = 1,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ChargeResult:
        token = method_details.get("token")
        if not token:
            raise ValidationError("Missing card payment method")

        params = {
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "payment_method": token,
            "confirm": True,
            "automatic_payment_methods": {"enabled": True, "allow_redirects": "never"},
            "metadata": {"checkout_session_id": session_id, **(metadata or {})},
        }

        with stripe_errors():
            intent = self._stripe().payment_intents.create(
                params=params,
                options={"idempotency_key": f"checkout-{session_id}-{attempt}"},
            )

        status = INTENT_STATUS.get(intent.status, "pending")
        message = None
        if status == "failed" and getattr(intent, "last_payment_error", None):
            message = intent.last_payment_error.message

        return ChargeResult(
            gateway_reference=intent.id,
            status=status,
            message=message,
        )

    def verify(self, gateway_reference: str) -> VerifyResult:
        with stripe_errors():
            if gateway_reference.startswith("cs_"):
                return self._verify_checkout_session(gateway_reference)
            return self._verify_intent(gateway_reference)

    def _verify_checkout_session(self, reference: str) -> VerifyResult:
        checkout = self._stripe().checkout.sessions.retrieve(reference)

        if checkout.payment_status in ("paid", "no_payment_required"):
            status = "succeeded"
        elif checkout.status == "expired":
            status = "expired"
        else:
            status = "pending"

        metadata = dict(checkout.metadata or {})
        intent = getattr(checkout, "payment_intent", None)
        if intent:
            metadata.setdefault("payment_intent", getattr(intent, "id", intent))

        return VerifyResult(
            status=status,
            amount=from_minor_units(checkout.amount_total),
            currency=(checkout.currency or "").upper(),
            metadata=metadata,
        )

    def _verify_intent(self, reference: str) -> VerifyResult:
        intent = self._stripe().payment_intents.retrieve(reference)
        return VerifyResult(
            status=INTENT_STATUS.get(intent.status, "pending"),
            amount=from_minor_units(intent.amount),
            currency=(intent.currency or "").upper(),
            metadata=dict(intent.metadata or {}),
        )
