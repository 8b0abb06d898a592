"""Payment verification, webhook handling and the end-to-end checkout."""
import json

import pytest
from fastapi.testclient import TestClient
from sqlmodel import select

from atelier.core.config import settings
from atelier.main import app
from atelier.models import ActivityLog, Order, Ticket, TicketMessage
from atelier.services import payments
from atelier.services.payments import mark_order_paid, verify_payment_signature
from helpers import bearer, checkout_signature, webhook_signature


def _place(client: TestClient, payload: dict, headers: dict | None = None) -> dict:
    r = client.post("/api/orders", json=payload, headers=headers or {})
    assert r.status_code == 201, r.text
    return r.json()["order"]


def _verify(client: TestClient, order: dict, payment_id="pay_test1", signature=None):
    return client.post(
        "/api/payment/verify",
        json={
            "razorpay_order_id": order["gateway_order_id"],
            "razorpay_payment_id": payment_id,
            "razorpay_signature": signature or checkout_signature(order["gateway_order_id"], payment_id),
            "order_id": order["id"],
        },
    )


def _post_webhook(client: TestClient, event: dict, signature: str | None = None):
    raw = json.dumps(event).encode()
    return client.post(
        "/api/payment/webhook",
        content=raw,
        headers={
            "Content-Type": "application/json",
            "X-Razorpay-Signature": signature if signature is not None else webhook_signature(raw),
        },
    )


def _captured(order: dict, payment_id="pay_hook1") -> dict:
    return {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": order["gateway_order_id"], "amount": 50000}}},
    }


def _tickets_for(db, order_id: int) -> list[Ticket]:
    db.expire_all()
    return list(db.exec(select(Ticket).where(Ticket.order_id == order_id)).all())


def test_signature_helper():
    sig = checkout_signature("order_X", "pay_Y")
    assert verify_payment_signature(settings.gateway_key_secret, "order_X", "pay_Y", sig)
    assert not verify_payment_signature(settings.gateway_key_secret, "order_X", "pay_Z", sig)
    assert not verify_payment_signature("", "order_X", "pay_Y", sig)


def test_end_to_end_checkout(client: TestClient, make_user, order_payload, gateway, db):
    user = make_user(email="buyer@example.com")
    order = _place(client, order_payload, bearer(user))
    assert order["amount"] == 50000
    assert gateway.created[-1]["amount"] == 50000

    r = _verify(client, order)
    assert r.status_code == 200
    j = r.json()
    assert j["success"] is True
    assert j["ticket_number"].startswith("TKT")

    db.expire_all()
    stored = db.get(Order, order["id"])
    assert stored.payment_verified is True
    assert stored.status == "advance_paid"
    assert stored.gateway_payment_id == "pay_test1"
    assert stored.paid_at is not None

    tickets = _tickets_for(db, order["id"])
    assert len(tickets) == 1
    ticket = tickets[0]
    assert ticket.ticket_number == j["ticket_number"]
    assert ticket.user_id == user.id
    assert ticket.category == "order"
    assert ticket.subject == f"Order {order['order_number']} - Anime Art"
    messages = db.exec(select(TicketMessage).where(TicketMessage.ticket_id == ticket.id)).all()
    assert len(messages) == 1
    assert messages[0].is_system
    assert order["order_number"] in messages[0].message

    actions = db.exec(select(ActivityLog.action)).all()
    assert "PAYMENT_VERIFIED" in actions

    # The customer sees the ticket in their own list
    listed = client.get("/api/tickets", headers=bearer(user)).json()["tickets"]
    assert [t["ticket_number"] for t in listed] == [j["ticket_number"]]


def test_tampered_signature_rejected(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    good = checkout_signature(order["gateway_order_id"], "pay_test1")
    tampered = ("0" if good[0] != "0" else "1") + good[1:]
    r = _verify(client, order, signature=tampered)
    assert r.status_code == 400
    assert r.json() == {"success": False, "error": "Payment verification failed - invalid signature"}
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is False
    assert _tickets_for(db, order["id"]) == []
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_SIGNATURE_INVALID")).first()


def test_signature_for_other_payment_rejected(client: TestClient, order_payload):
    order = _place(client, order_payload)
    r = _verify(client, order, payment_id="pay_real", signature=checkout_signature(order["gateway_order_id"], "pay_other"))
    assert r.status_code == 400


def test_verify_is_idempotent(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    first = _verify(client, order)
    second = _verify(client, order)
    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["message"] == "Payment already verified"
    assert len(_tickets_for(db, order["id"])) == 1


def test_verify_missing_params(client: TestClient, db):
    r = client.post("/api/payment/verify", json={"razorpay_order_id": "order_x"})
    assert r.status_code == 400
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_VERIFY_MISSING_PARAMS")).first()


def test_verify_order_mismatch(client: TestClient, order_payload, gateway, db):
    first = _place(client, order_payload)
    second = _place(client, order_payload)
    # Valid signature for the first gateway order, but pointed at the second internal order
    r = client.post(
        "/api/payment/verify",
        json={
            "gateway_order_id": first["gateway_order_id"],
            "gateway_payment_id": "pay_1",
            "gateway_signature": checkout_signature(first["gateway_order_id"], "pay_1"),
            "order_id": second["id"],
        },
    )
    assert r.status_code == 404
    db.expire_all()
    assert db.get(Order, second["id"]).payment_verified is False
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_ORDER_MISMATCH")).first()


def test_webhook_marks_order_paid(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    r = _post_webhook(client, _captured(order))
    assert r.status_code == 200
    assert r.json()["received"] is True
    db.expire_all()
    stored = db.get(Order, order["id"])
    assert stored.payment_verified is True
    assert stored.gateway_payment_id == "pay_hook1"
    assert len(_tickets_for(db, order["id"])) == 1
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_CAPTURED_WEBHOOK")).first()


def test_webhook_then_verify_creates_one_ticket(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    assert _post_webhook(client, _captured(order)).status_code == 200
    r = _verify(client, order)
    assert r.status_code == 200
    assert r.json()["message"] == "Payment already verified"
    assert len(_tickets_for(db, order["id"])) == 1


def test_verify_then_webhook_creates_one_ticket(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    assert _verify(client, order).status_code == 200
    assert _post_webhook(client, _captured(order)).status_code == 200
    assert _post_webhook(client, {"event": "order.paid", "payload": {"order": {"entity": {"id": order["gateway_order_id"]}}}}).status_code == 200
    assert len(_tickets_for(db, order["id"])) == 1
    db.expire_all()
    # First writer wins; later confirmations do not overwrite the payment id
    assert db.get(Order, order["id"]).gateway_payment_id == "pay_test1"


def test_mark_order_paid_only_once(client: TestClient, order_payload, db):
    order_id = _place(client, order_payload)["id"]
    order = db.get(Order, order_id)
    first = mark_order_paid(db, order, "pay_a", source="verify")
    second = mark_order_paid(db, order, "pay_b", source="webhook")
    assert first.newly_paid and first.ticket is not None
    assert not second.newly_paid and second.ticket is None


def _fail_ticket_once(monkeypatch):
    real = payments.create_order_ticket
    calls = []

    def flaky(db, order):
        calls.append(order.id)
        if len(calls) == 1:
            raise RuntimeError("ticket store unavailable")
        return real(db, order)

    monkeypatch.setattr(payments, "create_order_ticket", flaky)
    return calls


def test_failed_ticket_write_leaves_order_unpaid(client: TestClient, order_payload, monkeypatch, db):
    order = _place(client, order_payload)
    calls = _fail_ticket_once(monkeypatch)
    unchecked = TestClient(app, raise_server_exceptions=False)

    r = _verify(unchecked, order)
    assert r.status_code == 500
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is False
    assert _tickets_for(db, order["id"]) == []

    r = _verify(client, order)
    assert r.status_code == 200
    assert r.json()["message"] == "Payment verified successfully"
    assert len(calls) == 2
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is True
    assert len(_tickets_for(db, order["id"])) == 1


def test_webhook_retry_after_failed_ticket_write(client: TestClient, order_payload, monkeypatch, db):
    order = _place(client, order_payload)
    _fail_ticket_once(monkeypatch)
    r = _post_webhook(client, _captured(order))
    assert r.json() == {"received": True, "error": "Processing error"}
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is False

    r = _post_webhook(client, _captured(order))
    assert r.json() == {"received": True, "event": "payment.captured"}
    db.expire_all()
    assert db.get(Order, order["id"]).status == "advance_paid"
    assert len(_tickets_for(db, order["id"])) == 1


def test_order_paid_event(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    event = {"event": "order.paid", "payload": {"order": {"entity": {"id": order["gateway_order_id"]}}}}
    assert _post_webhook(client, event).status_code == 200
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is True
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "ORDER_PAID_WEBHOOK")).first()


def test_payment_failed_event_is_logged(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    event = {
        "event": "payment.failed",
        "payload": {
            "payment": {
                "entity": {
                    "id": "pay_fail",
                    "order_id": order["gateway_order_id"],
                    "error_code": "BAD_REQUEST_ERROR",
                    "error_description": "Card declined",
                }
            }
        },
    }
    assert _post_webhook(client, event).status_code == 200
    entry = db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_FAILED_WEBHOOK")).one()
    assert entry.details["error_code"] == "BAD_REQUEST_ERROR"
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is False


def test_webhook_bad_signature(client: TestClient, order_payload, db):
    order = _place(client, order_payload)
    r = _post_webhook(client, _captured(order), signature="deadbeef")
    assert r.status_code == 400
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is False
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "WEBHOOK_SIGNATURE_INVALID")).first()


def test_webhook_missing_signature(client: TestClient, order_payload):
    order = _place(client, order_payload)
    raw = json.dumps(_captured(order)).encode()
    r = client.post("/api/payment/webhook", content=raw, headers={"Content-Type": "application/json"})
    assert r.status_code == 400


def test_webhook_processing_error_is_still_acknowledged(client: TestClient):
    raw = b"not json at all"
    r = client.post(
        "/api/payment/webhook",
        content=raw,
        headers={"X-Razorpay-Signature": webhook_signature(raw)},
    )
    assert r.status_code == 200
    assert r.json() == {"received": True, "error": "Processing error"}


def test_webhook_unknown_event_acknowledged(client: TestClient):
    r = _post_webhook(client, {"event": "refund.created", "payload": {}})
    assert r.status_code == 200
    assert r.json()["event"] == "refund.created"


def test_webhook_without_secret_skips_check(client: TestClient, order_payload, monkeypatch, db):
    order = _place(client, order_payload)
    monkeypatch.setattr(settings, "gateway_webhook_secret", "")
    r = _post_webhook(client, _captured(order), signature="")
    assert r.status_code == 200
    db.expire_all()
    assert db.get(Order, order["id"]).payment_verified is True


def test_create_payment_order_reuses_open_gateway_order(client: TestClient, order_payload, gateway):
    order = _place(client, order_payload)
    r = client.post("/api/payment/create-order", json={"order_id": order["id"]})
    assert r.status_code == 200
    assert r.json()["gateway_order"]["id"] == order["gateway_order_id"]
    assert len(gateway.created) == 1


def test_create_payment_order_replaces_unreachable_gateway_order(client: TestClient, order_payload, gateway, db):
    order = _place(client, order_payload)
    gateway.fail_fetch = True
    r = client.post("/api/payment/create-order", json={"order_id": order["id"]})
    assert r.status_code == 200
    new_id = r.json()["gateway_order"]["id"]
    assert new_id != order["gateway_order_id"]
    assert r.json()["gateway_order"]["amount"] == 50000
    db.expire_all()
    assert db.get(Order, order["id"]).gateway_order_id == new_id
    assert db.exec(select(ActivityLog).where(ActivityLog.action == "PAYMENT_ORDER_CREATED")).first()


def test_create_payment_order_for_paid_order(client: TestClient, order_payload):
    order = _place(client, order_payload)
    _verify(client, order)
    r = client.post("/api/payment/create-order", json={"order_id": order["id"]})
    assert r.status_code == 400
    assert r.json()["error"] == "Order already paid"


def test_create_payment_order_unknown(client: TestClient):
    r = client.post("/api/payment/create-order", json={"order_id": 9999})
    assert r.status_code == 404


@pytest.mark.parametrize("total", [1000, 3600])
def test_gateway_amount_is_advance_in_minor_units(client: TestClient, order_payload, gateway, total):
    if total == 3600:
        order_payload.update({"service": "charcoal", "size": "a3", "addons": "framing"})
    order = _place(client, order_payload)
    assert order["amount"] == order["pricing"]["advance"] * 100
    assert gateway.created[-1]["amount"] == (total + 1) // 2 * 100
