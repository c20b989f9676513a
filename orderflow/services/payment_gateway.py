"""HTTP client for the payment gateway.

Only the contract is modelled: create an intent for an order amount, then ask
whether that intent was paid. Signatures and webhooks belong to the gateway.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import requests


class PaymentGatewayError(Exception):
    pass


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    redirect_url: Optional[str] = None


class HttpPaymentGateway:
    def __init__(self, base_url: str, timeout: float = 10.0, http=None) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.timeout = timeout
        self._http = http or requests
        self.logger = logging.getLogger(__name__)

    def create_intent(self, order_id: str, amount) -> PaymentIntent:
        payload = {"order_id": order_id, "amount": str(Decimal(str(amount)))}
        try:
            response = self._http.post(f"{self.base_url}/intents", json=payload, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError(f"unexpected response body: {data!r}")
            return PaymentIntent(id=str(data["id"]), redirect_url=data.get("redirect_url"))
        except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
            self.logger.warning("Payment intent for order %s failed: %s", order_id, exc)
            raise PaymentGatewayError(f"Could not create payment intent: {exc}") from exc

    def confirm(self, intent_id: str) -> bool:
        try:
            response = self._http.get(f"{self.base_url}/intents/{intent_id}", timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as exc:
            self.logger.warning("Payment confirmation for intent %s failed: %s", intent_id, exc)
            raise PaymentGatewayError(f"Could not confirm payment: {exc}") from exc
        if not isinstance(data, dict):
            self.logger.warning("Payment confirmation for intent %s returned %r", intent_id, data)
            raise PaymentGatewayError(f"Could not confirm payment: unexpected response body {data!r}")
        return str(data.get("status", "")).lower() in {"succeeded", "paid", "success"}
