"""
PayOS payment gateway client.

Thin wrapper over the PayOS merchant REST API:
- create_payment_link(body) -> {"checkoutUrl", "paymentLinkId", ...}
- get_payment_link(order_code) -> payment link info incl. "status"
- verify_webhook(payload) -> the signed "data" dict, or None if the signature does not match

Requests and webhook payloads are signed with HMAC-SHA256 using the checksum key.
"""
import hashlib
import hmac
import json
import logging
from typing import Optional

import requests

from config import PAYOS_API_KEY, PAYOS_BASE_URL, PAYOS_CHECKSUM_KEY, PAYOS_CLIENT_ID, PAYOS_TIMEOUT

logger = logging.getLogger(__name__)

SUCCESS_CODE = "00"


class PaymentGatewayError(Exception):
    pass


def _sign(message: str, key: str) -> str:
    return hmac.new(key.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def _stringify(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    return str(value)


def sign_payment_request(body: dict, key: str) -> str:
    message = "amount={amount}&cancelUrl={cancelUrl}&description={description}&orderCode={orderCode}&returnUrl={returnUrl}".format(**body)
    return _sign(message, key)


def sign_webhook_data(data: dict, key: str) -> str:
    message = "&".join(f"{k}={_stringify(data[k])}" for k in sorted(data))
    return _sign(message, key)


class PayOSClient:
    def __init__(self, client_id: str, api_key: str, checksum_key: str, base_url: str, timeout: float = 15):
        self.client_id = client_id
        self.api_key = api_key
        self.checksum_key = checksum_key
        self.base_url = base_url
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.api_key and self.checksum_key)

    def _headers(self):
        return {
            "x-client-id": self.client_id,
            "x-api-key": self.api_key,
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> dict:
        if not self.configured:
            raise PaymentGatewayError("PayOS configuration is incomplete")
        url = f"{self.base_url}{path}"
        try:
            response = requests.request(method, url, headers=self._headers(), timeout=self.timeout, **kwargs)
            response.raise_for_status()
            payload = response.json()
        except requests.RequestException as exc:
            logger.error("PayOS %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(f"Payment gateway unavailable: {exc}") from exc
        except ValueError as exc:
            logger.error("PayOS %s %s returned invalid JSON", method, path)
            raise PaymentGatewayError("Payment gateway returned an invalid response") from exc

        if payload.get("code") != SUCCESS_CODE:
            logger.error("PayOS %s %s rejected: %s", method, path, payload.get("desc"))
            raise PaymentGatewayError(payload.get("desc") or "Payment gateway rejected the request")
        return payload.get("data") or {}

    def create_payment_link(self, body: dict) -> dict:
        signed = dict(body)
        signed["signature"] = sign_payment_request(body, self.checksum_key)
        return self._request("POST", "/v2/payment-requests", json=signed)

    def get_payment_link(self, order_code: int) -> dict:
        return self._request("GET", f"/v2/payment-requests/{order_code}")

    def verify_webhook(self, payload: dict) -> Optional[dict]:
        data = payload.get("data") if isinstance(payload, dict) else None
        signature = payload.get("signature") if isinstance(payload, dict) else None
        if not isinstance(data, dict) or not isinstance(signature, str) or not self.checksum_key:
            return None
        expected = sign_webhook_data(data, self.checksum_key)
        if not hmac.compare_digest(expected, signature):
            return None
        return data


payos = PayOSClient(PAYOS_CLIENT_ID, PAYOS_API_KEY, PAYOS_CHECKSUM_KEY, PAYOS_BASE_URL, PAYOS_TIMEOUT)
