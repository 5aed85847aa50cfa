"""
Payment gateway client (Razorpay-style hosted checkout).

The service only ever talks to the gateway to mint an order. Card/UPI
credentials are entered on the gateway's own page; the callback that
comes back is checked locally with `verify_signature`, no network call.
"""

import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional

import httpx

from settlement_service.errors import GatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    """Order as minted by the gateway."""
    order_id: str
    amount: int
    currency: str
    receipt: str


class GatewayClient(ABC):
    """Interface the order issuer depends on. Implementations must raise GatewayUnavailable on failure."""

    key_id: str = ""

    @abstractmethod
    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None) -> GatewayOrder:
        ...


class RazorpayGateway(GatewayClient):
    def __init__(self, key_id: str, key_secret: str, base_url: str, timeout: float = 10.0, transport: Optional[httpx.BaseTransport] = None):
        self.key_id = key_id
        self._key_secret = key_secret
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    def create_order(self, amount: int, currency: str, receipt: str, notes: Optional[Dict[str, str]] = None) -> GatewayOrder:
        if not self.key_id or not self._key_secret:
            raise GatewayUnavailable("gateway credentials are not configured")

        payload = {"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}}
        try:
            with httpx.Client(timeout=self._timeout, auth=(self.key_id, self._key_secret), transport=self._transport) as client:
                response = client.post(f"{self._base_url}/orders", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.TimeoutException as e:
            logger.warning("Gateway order creation timed out for receipt=%s", receipt)
            raise GatewayUnavailable(f"timeout: {e}") from e
        except httpx.HTTPStatusError as e:
            logger.error(
                "Gateway rejected order for receipt=%s: %s %s",
                receipt, e.response.status_code, e.response.text[:200],
            )
            raise GatewayUnavailable(f"http {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Gateway order creation failed for receipt=%s: %s", receipt, e)
            raise GatewayUnavailable(str(e)) from e

        return _parse_order(data, amount, currency, receipt)


def _parse_order(data, amount: int, currency: str, receipt: str) -> GatewayOrder:
    if not isinstance(data, dict):
        logger.error("Gateway returned a non-object order body for receipt=%s: %r", receipt, data)
        raise GatewayUnavailable("gateway response is not an object")
    order_id = data.get("id")
    if not order_id or not isinstance(order_id, str):
        raise GatewayUnavailable("gateway response has no order id")
    try:
        order_amount = int(data.get("amount", amount))
    except (TypeError, ValueError) as e:
        logger.error("Gateway order %s has a malformed amount %r", order_id, data.get("amount"))
        raise GatewayUnavailable(f"malformed amount: {e}") from e
    return GatewayOrder(
        order_id=order_id,
        amount=order_amount,
        currency=str(data.get("currency", currency)),
        receipt=str(data.get("receipt", receipt)),
    )


def compute_signature(key_secret: str, order_id: str, payment_id: str) -> str:
    message = f"{order_id}|{payment_id}"
    return hmac.new(key_secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(key_secret: str, order_id: str, payment_id: str, signature: str) -> bool:
    """Constant-time check of the checkout callback signature."""
    if not key_secret or not order_id or not payment_id or not signature:
        return False
    expected = compute_signature(key_secret, order_id, payment_id)
    return hmac.compare_digest(expected, signature)
