"""Razorpay REST client: create and fetch gateway orders."""
import logging

import httpx

from atelier.core.config import settings

log = logging.getLogger("atelier.gateway")


class GatewayError(Exception):
    """Transport failure or non-2xx answer from the payment gateway."""


class RazorpayGateway:
    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com/v1",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self._client = httpx.Client(
            base_url=base_url,
            auth=(key_id, key_secret),
            timeout=timeout,
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            r = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            log.error("Gateway %s %s failed: %s", method, path, e)
            raise GatewayError(str(e)) from e
        if r.status_code >= 400:
            log.error("Gateway %s %s returned %s: %s", method, path, r.status_code, r.text[:500])
            raise GatewayError(f"Gateway returned {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise GatewayError("Gateway returned invalid JSON") from e

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict | None = None) -> dict:
        """amount is in minor units (paise for INR)."""
        return self._request(
            "POST",
            "/orders",
            json={"amount": amount, "currency": currency, "receipt": receipt, "notes": notes or {}},
        )

    def fetch_order(self, gateway_order_id: str) -> dict:
        return self._request("GET", f"/orders/{gateway_order_id}")

    def close(self) -> None:
        self._client.close()


_gateway: RazorpayGateway | None = None


def get_gateway() -> RazorpayGateway:
    """FastAPI dependency; tests override it with a fake."""
    global _gateway
    if _gateway is None:
        _gateway = RazorpayGateway(
            settings.gateway_key_id,
            settings.gateway_key_secret,
            base_url=settings.gateway_api_url,
            timeout=settings.gateway_timeout_seconds,
        )
    return _gateway
