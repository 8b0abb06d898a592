"""Helpers shared by the test modules."""
from atelier.core.config import settings
from atelier.core.security import create_access_token, hmac_sha256_hex
from atelier.models import User

PASSWORD = "Secret123"


def bearer(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.email, user.role)}"}


def checkout_signature(gateway_order_id: str, gateway_payment_id: str) -> str:
    """What the gateway hands the browser after a successful checkout."""
    return hmac_sha256_hex(settings.gateway_key_secret, f"{gateway_order_id}|{gateway_payment_id}")


def webhook_signature(raw_body: bytes) -> str:
    return hmac_sha256_hex(settings.gateway_webhook_secret, raw_body)
