# ================================================================
# services/payment_gateway.py: Razorpay Orders + Signature checks
# ================================================================
import hashlib
import hmac
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

from core.config import Settings
from core.exceptions import GatewayUnavailable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int  # minor units (paise)
    currency: str
    receipt: Optional[str] = None


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaymentGateway(ABC):
    """Contract every gateway adapter exposes to the subscription core."""

    public_key: str = ""

    @abstractmethod
    def create_order(
        self,
        amount_minor: int,
        receipt_id: str,
        currency: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        ...

    @abstractmethod
    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        ...

    @abstractmethod
    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        ...


class RazorpayGateway(PaymentGateway):
    """
    Talks to the Razorpay REST API directly.

    Payment signatures are HMAC-SHA256 of "order_id|payment_id" with the key
    secret; webhook signatures are HMAC-SHA256 of the raw body with the
    webhook secret.
    """

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        webhook_secret: Optional[str] = None,
        api_base: str = "https://api.razorpay.com/v1",
        timeout: float = 15.0,
        http: Optional[requests.Session] = None,
    ):
        self.public_key = key_id or ""
        self._key_secret = key_secret or ""
        self._webhook_secret = webhook_secret or ""
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.http = http or requests.Session()

    @property
    def enabled(self) -> bool:
        return bool(self.public_key and self._key_secret)

    def create_order(
        self,
        amount_minor: int,
        receipt_id: str,
        currency: str,
        notes: Optional[Dict[str, Any]] = None,
    ) -> GatewayOrder:
        if not self.enabled:
            raise GatewayUnavailable("Payment gateway not configured")

        payload = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt_id,
            "notes": notes or {},
        }
        try:
            response = self.http.post(
                f"{self.api_base}/orders",
                auth=(self.public_key, self._key_secret),
                json=payload,
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.error(f"❌ Razorpay order creation failed for receipt {receipt_id}: {exc}")
            raise GatewayUnavailable(f"Failed to contact payment gateway: {exc}")

        if response.status_code >= 400:
            logger.error(
                f"❌ Razorpay rejected order for receipt {receipt_id}: "
                f"{response.status_code} {response.text[:200]}"
            )
            raise GatewayUnavailable("Unable to create payment order right now")

        try:
            data = response.json()
        except ValueError:
            raise GatewayUnavailable("Invalid response received from payment gateway")

        if not isinstance(data, dict) or not data.get("id"):
            raise GatewayUnavailable("Unexpected response format from payment gateway")

        logger.info(f"💳 Razorpay order {data['id']} created for receipt {receipt_id}")
        return GatewayOrder(
            id=data["id"],
            amount=int(data.get("amount", amount_minor)),
            currency=data.get("currency", currency),
            receipt=data.get("receipt", receipt_id),
        )

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not (self._key_secret and signature):
            return False
        message = f"{order_id}|{payment_id}"
        expected = hmac.new(
            self._key_secret.encode(),
            message.encode(),
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)

    def verify_webhook_signature(self, body: bytes, signature: str) -> bool:
        if not (self._webhook_secret and signature):
            return False
        expected = hmac.new(
            self._webhook_secret.encode(),
            body,
            hashlib.sha256,
        ).hexdigest()
        return hmac.compare_digest(expected, signature)


def get_payment_gateway(settings: Settings) -> PaymentGateway:
    if not settings.RAZORPAY_ENABLED:
        logger.warning("💳 Razorpay not configured. Missing RAZORPAY_KEY_ID or RAZORPAY_KEY_SECRET.")
    return RazorpayGateway(
        key_id=settings.RAZORPAY_KEY_ID,
        key_secret=settings.RAZORPAY_KEY_SECRET,
        webhook_secret=settings.RAZORPAY_WEBHOOK_SECRET,
        api_base=settings.RAZORPAY_API_BASE,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
