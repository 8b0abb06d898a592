"""Pytest fixtures: test client, fresh in-memory DB per test, fake gateway and captcha."""
import os

import pytest
from fastapi.testclient import TestClient

# In-memory SQLite and test secrets (must be set before the app is imported)
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("JWT_REFRESH_SECRET", "test-jwt-refresh-secret")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("GATEWAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("GATEWAY_KEY_SECRET", "test-key-secret")
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("SUPER_ADMIN_EMAILS", "owner@example.com")
# Burst limiter out of the way; per-action limits are tested explicitly
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")

from sqlmodel import Session, SQLModel

from atelier.core.database import engine, init_db
from atelier.core.security import hash_password
from atelier.main import app
from atelier.models import User
from atelier.services.captcha import get_captcha_verifier
from atelier.services.gateway import GatewayError, get_gateway
from atelier.services.pricing import pricing_engine
from helpers import PASSWORD


class FakeGateway:
    """Stands in for RazorpayGateway; records every call."""

    def __init__(self):
        self.orders: dict[str, dict] = {}
        self.created: list[dict] = []
        self.fail_create = False
        self.fail_fetch = False

    def create_order(self, amount, currency, receipt, notes=None):
        if self.fail_create:
            raise GatewayError("gateway down")
        gateway_id = f"order_test{len(self.created) + 1}"
        order = {
            "id": gateway_id,
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes or {},
            "status": "created",
        }
        self.orders[gateway_id] = order
        self.created.append(order)
        return order

    def fetch_order(self, gateway_order_id):
        if self.fail_fetch or gateway_order_id not in self.orders:
            raise GatewayError("not found")
        return self.orders[gateway_order_id]


class FakeCaptcha:
    def __init__(self):
        self.ok = True
        self.tokens: list[str] = []

    def verify(self, token, remote_ip=None):
        self.tokens.append(token)
        return self.ok


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def captcha():
    return FakeCaptcha()


@pytest.fixture(scope="function")
def client(gateway, captcha):
    """TestClient on an empty database, with the gateway and captcha replaced by fakes."""
    SQLModel.metadata.drop_all(engine)
    init_db()
    pricing_engine.invalidate()
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_captcha_verifier] = lambda: captcha
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    pricing_engine.invalidate()


@pytest.fixture
def db(client):
    with Session(engine) as session:
        yield session


@pytest.fixture
def make_user(db):
    def _make(email="user@example.com", role="user", permissions=None, name="Test User", banned=False):
        user = User(
            email=email,
            password_hash=hash_password(PASSWORD),
            name=name,
            role=role,
            admin_permissions=permissions,
            banned=banned,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def order_payload():
    return {
        "name": "Asha Verma",
        "email": "asha@example.com",
        "phone": "+91 98765 43210",
        "service": "anime",
        "size": "a4",
        "addons": "none",
        "message": "Please draw my cat in anime style.",
        "captchaToken": "captcha-ok",
    }
