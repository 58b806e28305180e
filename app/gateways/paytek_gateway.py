"""
Mobile money (M-Pesa, e-Mola) and bank transfer gateway.

Charges are asynchronous: the customer confirms on the phone, or the bank
settles the transfer one or two business days later. ``charge`` therefore
returns ``pending`` and confirmation arrives through ``verify``.
"""

import logging
from typing import Any, Dict, Optional

import requests

from app.gateways.base import ChargeResult, GatewayAdapter, VerifyResult
from app.services.errors import (
    GatewayAuthError,
    GatewayRejected,
    GatewayUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

CHARGE_STATUS = {
    "pending": "pending",
    "awaiting_confirmation": "pending",
    "processing": "pending",
    "paid": "succeeded",
    "completed": "succeeded",
    "succeeded": "succeeded",
    "failed": "failed",
    "rejected": "failed",
    "cancelled": "failed",
    "expired": "expired",
}


class PaytekGateway(GatewayAdapter):
    name = "paytek"
    synchronous = False

    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: int = 10,
        http: Optional[requests.Session] = None,
        bank_instructions: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.http = http or requests.Session()
        self.bank_instructions = bank_instructions or {}

    def tokenize_payment_method(self, card_details: Dict[str, Any]) -> str:
        raise ValidationError("Mobile money and bank transfers are not tokenized")

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
        kind = method_details.get("kind")
        payload = {
            "reference": f"{session_id}-{attempt}",
            "amount": amount,
            "currency": currency,
            "method": kind,
            "metadata": {"checkout_session_id": session_id, **(metadata or {})},
        }

        if kind == "mobile_money":
            payload["provider"] = method_details.get("provider")
            payload["msisdn"] = method_details.get("phone_number")
        elif kind == "bank_transfer":
            payload["bank"] = method_details.get("bank")
        else:
            raise ValidationError(f"Unsupported method for paytek: {kind}")

        data = self._request("POST", "/charges", json=payload)

        instructions = None
        if kind == "bank_transfer":
            instructions = {
                **self.bank_instructions,
                "reference": session_id[:8].upper(),
                "amount": amount,
                "currency": currency,
            }

        return ChargeResult(
            gateway_reference=str(data["id"]),
            status=CHARGE_STATUS.get(data.get("status"), "pending"),
            message=data.get("message"),
            instructions=instructions,
        )

    def verify(self, gateway_reference: str) -> VerifyResult:
        data = self._request("GET", f"/charges/{gateway_reference}")

        status = CHARGE_STATUS.get(data.get("status"))
        if status is None:
            logger.error(
                f"Unexpected paytek status {data.get('status')!r} for {gateway_reference}"
            )
            status = "pending"

        return VerifyResult(
            status=status,
            amount=float(data.get("amount") or 0),
            currency=(data.get("currency") or "").upper(),
            metadata=data.get("metadata") or {},
        )

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = self.http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise GatewayUnavailable(f"paytek unreachable: {e}") from e

        if response.status_code in (401, 403):
            logger.error(f"paytek rejected credentials ({response.status_code})")
            raise GatewayAuthError(f"paytek auth failed: {response.status_code}")

        if response.status_code >= 500:
            raise GatewayUnavailable(f"paytek error {response.status_code}")

        if response.status_code >= 400:
            try:
                reason = response.json().get("message")
            except ValueError:
                reason = None
            logger.warning(f"paytek rejected {method} {path}: {reason or response.status_code}")
            raise GatewayRejected(reason)

        return response.json()
