"""Order creation, listing and admin status transitions."""
from fastapi.testclient import TestClient
from sqlmodel import select

from atelier.models import ActivityLog, Order
from helpers import bearer

MANAGE_ORDERS = {"manage_orders": True}


def test_guest_order_is_priced_server_side(client: TestClient, gateway, order_payload, db):
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 201
    j = r.json()
    assert j["success"] is True
    assert j["gateway_key"] == "rzp_test_key"
    order = j["order"]
    assert order["order_number"].startswith("ORD")
    assert order["amount"] == 50000
    assert order["currency"] == "INR"
    assert order["pricing"]["total"] == 1000
    assert order["pricing"]["advance"] == 500
    assert order["pricing"]["remaining"] == 500

    sent = gateway.created[-1]
    assert sent["amount"] == 50000
    assert sent["receipt"] == order["order_number"]
    assert sent["notes"] == {"order_id": str(order["id"]), "service": "anime"}

    stored = db.get(Order, order["id"])
    assert stored.status == "pending"
    assert stored.payment_verified is False
    assert stored.user_id is None
    assert stored.guest_email == "asha@example.com"
    assert stored.gateway_order_id == order["gateway_order_id"]


def test_client_supplied_prices_are_ignored(client: TestClient, order_payload):
    order_payload.update({"total": 1, "advance": 1, "amount": 1})
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 201
    assert r.json()["order"]["pricing"]["total"] == 1000


def test_member_order_keeps_owner_not_guest_fields(client: TestClient, make_user, order_payload, db):
    user = make_user(email="member@example.com")
    r = client.post("/api/orders", json=order_payload, headers=bearer(user))
    assert r.status_code == 201
    stored = db.get(Order, r.json()["order"]["id"])
    assert stored.user_id == user.id
    assert stored.guest_email is None
    assert stored.guest_name is None


def test_unknown_service_rejected(client: TestClient, order_payload, gateway):
    order_payload["service"] = "watercolor"
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid service: watercolor"
    assert gateway.created == []


def test_unknown_size_rejected(client: TestClient, order_payload):
    order_payload["size"] = "poster"
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid size: poster"


def test_captcha_required(client: TestClient, order_payload):
    order_payload.pop("captchaToken")
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Captcha verification required"


def test_captcha_failure(client: TestClient, order_payload, captcha):
    captcha.ok = False
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 400
    assert r.json()["error"] == "Captcha verification failed"


def test_order_validation(client: TestClient, order_payload):
    order_payload.update({"name": "R2-D2 <script>", "message": "short", "phone": "abc"})
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 400
    fields = {d["field"] for d in r.json()["details"]}
    assert {"name", "message", "phone"} <= fields


def test_gateway_failure_removes_order(client: TestClient, order_payload, gateway, db):
    gateway.fail_create = True
    r = client.post("/api/orders", json=order_payload)
    assert r.status_code == 500
    assert r.json()["error"] == "Failed to create payment order"
    assert db.exec(select(Order)).all() == []


def test_order_created_is_logged(client: TestClient, order_payload, db):
    r = client.post("/api/orders", json=order_payload)
    entry = db.exec(select(ActivityLog).where(ActivityLog.action == "ORDER_CREATED")).one()
    assert entry.resource_id == str(r.json()["order"]["id"])
    assert entry.details["advance"] == 500


def test_list_orders_only_own(client: TestClient, make_user, order_payload):
    alice = make_user(email="alice@example.com")
    bob = make_user(email="bob@example.com")
    client.post("/api/orders", json=order_payload, headers=bearer(alice))
    client.post("/api/orders", json=order_payload, headers=bearer(bob))
    r = client.get("/api/orders", headers=bearer(alice))
    assert r.status_code == 200
    orders = r.json()["orders"]
    assert len(orders) == 1
    assert orders[0]["user_id"] == alice.id
    assert r.json()["pagination"]["total"] == 1


def test_get_someone_elses_order_is_404(client: TestClient, make_user, order_payload):
    alice = make_user(email="alice@example.com")
    bob = make_user(email="bob@example.com")
    order_id = client.post("/api/orders", json=order_payload, headers=bearer(alice)).json()["order"]["id"]
    assert client.get(f"/api/orders/{order_id}", headers=bearer(alice)).status_code == 200
    assert client.get(f"/api/orders/{order_id}", headers=bearer(bob)).status_code == 404


def test_pending_order_cannot_skip_payment(client: TestClient, make_user, order_payload):
    admin = make_user(email="ops@example.com", role="admin", permissions=MANAGE_ORDERS)
    order_id = client.post("/api/orders", json=order_payload).json()["order"]["id"]
    for target in ("advance_paid", "in_progress", "delivered"):
        r = client.patch(f"/api/orders/{order_id}", json={"status": target}, headers=bearer(admin))
        assert r.status_code == 400, target
        assert r.json()["allowed"] == ["cancelled"]


def test_invalid_status_lists_valid_ones(client: TestClient, make_user, order_payload):
    admin = make_user(email="ops@example.com", role="admin", permissions=MANAGE_ORDERS)
    order_id = client.post("/api/orders", json=order_payload).json()["order"]["id"]
    r = client.patch(f"/api/orders/{order_id}", json={"status": "shipped"}, headers=bearer(admin))
    assert r.status_code == 400
    assert "delivered" in r.json()["validStatuses"]


def test_full_admin_lifecycle(client: TestClient, make_user, order_payload, db):
    admin = make_user(email="ops@example.com", role="admin", permissions=MANAGE_ORDERS)
    order_id = client.post("/api/orders", json=order_payload).json()["order"]["id"]
    order = db.get(Order, order_id)
    order.status = "advance_paid"
    order.payment_verified = True
    db.add(order)
    db.commit()

    for target in ("in_progress", "revision_requested", "in_progress", "completed", "final_paid", "delivered"):
        r = client.patch(f"/api/orders/{order_id}", json={"status": target}, headers=bearer(admin))
        assert r.status_code == 200, target
        assert r.json()["order"]["status"] == target

    j = client.get(f"/api/orders/{order_id}", headers=bearer(admin)).json()["order"]
    assert j["completed_at"] and j["delivered_at"]
    # delivered is terminal
    r = client.patch(f"/api/orders/{order_id}", json={"status": "refunded"}, headers=bearer(admin))
    assert r.status_code == 400
    logs = db.exec(select(ActivityLog).where(ActivityLog.action == "ORDER_STATUS_UPDATED")).all()
    assert len(logs) == 6


def test_cancel_pending_order(client: TestClient, make_user, order_payload):
    admin = make_user(email="ops@example.com", role="admin", permissions=MANAGE_ORDERS)
    order_id = client.post("/api/orders", json=order_payload).json()["order"]["id"]
    r = client.patch(f"/api/orders/{order_id}", json={"status": "cancelled"}, headers=bearer(admin))
    assert r.status_code == 200
    r = client.patch(f"/api/orders/{order_id}", json={"status": "in_progress"}, headers=bearer(admin))
    assert r.status_code == 400


def test_customer_cannot_change_status(client: TestClient, make_user, order_payload):
    user = make_user(email="member@example.com")
    order_id = client.post("/api/orders", json=order_payload, headers=bearer(user)).json()["order"]["id"]
    r = client.patch(f"/api/orders/{order_id}", json={"status": "cancelled"}, headers=bearer(user))
    assert r.status_code == 403
