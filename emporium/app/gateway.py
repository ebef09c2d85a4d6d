#!/usr/bin/env python3
"""
Payment gateway module.

Thin client for the Razorpay REST API plus the HMAC helpers used to verify
checkout callbacks and webhook deliveries.
"""

import hashlib
import hmac
import requests
from typing import Any, Dict, List, Optional

from .config import Config
from ..utils.logger import get_logger

logger = get_logger()


class GatewayError(Exception):
    """Raised when the gateway cannot be reached or rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[Any] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class RazorpayClient:
    """Client for the Razorpay orders, payments and refunds API."""

    def __init__(self, key_id: Optional[str] = None, key_secret: Optional[str] = None,
                 api_base: Optional[str] = None, timeout: Optional[int] = None):
        """Initialize the client from explicit credentials or Config."""
        self.key_id = key_id or Config.RAZORPAY_KEY_ID
        self.key_secret = key_secret or Config.RAZORPAY_KEY_SECRET
        self.api_base = (api_base or Config.RAZORPAY_API_BASE).rstrip("/")
        self.timeout = timeout or Config.RAZORPAY_TIMEOUT

    @property
    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if not self.is_configured:
            raise GatewayError("Razorpay credentials are not configured")

        url = f"{self.api_base}{path}"
        try:
            response = requests.request(
                method,
                url,
                json=payload,
                auth=(self.key_id, self.key_secret),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error("[GATEWAY] %s %s failed: %s", method, path, e)
            raise GatewayError(f"Gateway request failed: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            description = body.get("error", {}).get("description") if isinstance(body, dict) else None
            logger.error("[GATEWAY] %s %s returned %s: %s", method, path, response.status_code, description or body)
            raise GatewayError(description or f"Gateway returned HTTP {response.status_code}",
                               status_code=response.status_code, body=body)
        return response.json()

    def create_order(self, amount: int, currency: str = "INR", receipt: Optional[str] = None,
                     notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        Create a gateway order for the checkout widget.

        Args:
            amount: Amount in minor units
            currency: ISO currency code
            receipt: Merchant receipt reference
            notes: Free-form key/value notes

        Returns:
            Gateway order document
        """
        payload = {"amount": amount, "currency": currency, "payment_capture": 1}
        if receipt:
            payload["receipt"] = receipt[:40]
        if notes:
            payload["notes"] = notes
        return self._request("POST", "/orders", payload)

    def fetch_order(self, order_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/orders/{order_id}")

    def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        return self._request("GET", f"/orders/{order_id}/payments").get("items", [])

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/payments/{payment_id}")

    def capture_payment(self, payment_id: str, amount: int, currency: str = "INR") -> Dict[str, Any]:
        return self._request("POST", f"/payments/{payment_id}/capture", {"amount": amount, "currency": currency})

    def create_refund(self, payment_id: str, amount: Optional[int] = None,
                      notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Refund a captured payment; ``amount=None`` refunds the remainder."""
        payload: Dict[str, Any] = {}
        if amount is not None:
            payload["amount"] = amount
        if notes:
            payload["notes"] = notes
        return self._request("POST", f"/payments/{payment_id}/refund", payload)


def _hmac_hex(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def _digest_matches(expected: str, signature: str) -> bool:
    # digests are hex; a signature with non-ascii characters can never match
    try:
        provided = signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), provided)


def verify_payment_signature(order_id: str, payment_id: str, signature: str,
                             secret: Optional[str] = None) -> bool:
    """Check the signature the checkout widget returns after payment."""
    secret = secret or Config.RAZORPAY_KEY_SECRET
    if not secret or not signature:
        return False
    expected = _hmac_hex(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    return _digest_matches(expected, signature)


def validate_webhook_signature(body: bytes, signature: str, secret: Optional[str] = None) -> bool:
    """Check the X-Razorpay-Signature header against the raw request body."""
    secret = secret or Config.RAZORPAY_WEBHOOK_SECRET
    if not secret:
        logger.error("[WEBHOOK] webhook secret is not configured")
        return False
    if not signature:
        return False
    if isinstance(body, str):
        body = body.encode("utf-8")
    return _digest_matches(_hmac_hex(secret, body), signature)


_client: Optional[RazorpayClient] = None


def get_gateway() -> RazorpayClient:
    global _client
    if _client is None:
        _client = RazorpayClient()
    return _client
