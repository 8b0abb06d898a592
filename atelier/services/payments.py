"""
Payment confirmation. Both the client verify call and the gateway webhook end
in mark_order_paid, the only place an order becomes paid.
"""
import json
import logging
from dataclasses import dataclass
from datetime import datetime

from fastapi import Request
from sqlalchemy import update
from sqlmodel import Session, select

from atelier.core.security import constant_time_equals, hmac_sha256_hex
from atelier.models import Order, Ticket
from atelier.services.activity import log_activity
from atelier.services.tickets import create_order_ticket

log = logging.getLogger("atelier.payments")


class PaymentError(Exception):
    status_code = 400


class InvalidSignatureError(PaymentError):
    def __init__(self):
        super().__init__("Payment verification failed - invalid signature")


class OrderMismatchError(PaymentError):
    status_code = 404

    def __init__(self):
        super().__init__("Order not found or mismatch")


def payment_signature(key_secret: str, gateway_order_id: str, gateway_payment_id: str) -> str:
    return hmac_sha256_hex(key_secret, f"{gateway_order_id}|{gateway_payment_id}")


def verify_payment_signature(
    key_secret: str,
    gateway_order_id: str,
    gateway_payment_id: str,
    signature: str,
) -> bool:
    if not key_secret:
        return False
    expected = payment_signature(key_secret, gateway_order_id, gateway_payment_id)
    return constant_time_equals(signature, expected)


def verify_webhook_signature(webhook_secret: str, raw_body: bytes, signature: str | None) -> bool:
    return constant_time_equals(signature, hmac_sha256_hex(webhook_secret, raw_body))


@dataclass
class PaidResult:
    order: Order
    ticket: Ticket | None
    newly_paid: bool


def mark_order_paid(
    db: Session,
    order: Order,
    gateway_payment_id: str,
    gateway_signature: str | None = None,
    source: str = "verify",
) -> PaidResult:
    """
    Flips payment_verified false -> true with a conditional UPDATE, so when the
    client verify and the webhook race, exactly one of them wins and creates
    the order ticket. The loser sees newly_paid=False.

    The UPDATE and the ticket share one transaction: if the ticket cannot be
    written the order stays unpaid and a retry starts over.
    """
    now = datetime.utcnow()
    values = {
        "payment_verified": True,
        "status": "advance_paid",
        "gateway_payment_id": gateway_payment_id,
        "paid_at": now,
        "updated_at": now,
    }
    if gateway_signature is not None:
        values["gateway_signature"] = gateway_signature
    try:
        result = db.connection().execute(
            update(Order)
            .where(Order.id == order.id, Order.payment_verified == False)  # noqa: E712
            .values(**values)
        )
        if result.rowcount != 1:
            db.rollback()
            db.refresh(order)
            log.info("Order %s already paid (%s ignored)", order.order_number, source)
            return PaidResult(order=order, ticket=None, newly_paid=False)
        db.refresh(order)
        ticket = create_order_ticket(db, order)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    db.refresh(ticket)
    log.info(
        "Order %s marked paid via %s payment_id=%s ticket=%s",
        order.order_number,
        source,
        gateway_payment_id,
        ticket.ticket_number,
    )
    return PaidResult(order=order, ticket=ticket, newly_paid=True)


def find_order_by_gateway_id(db: Session, gateway_order_id: str) -> Order | None:
    return db.exec(select(Order).where(Order.gateway_order_id == gateway_order_id)).first()


def _entity(payload: dict, kind: str) -> dict:
    return ((payload.get("payload") or {}).get(kind) or {}).get("entity") or {}


def _on_payment_captured(db: Session, event: dict, request: Request | None) -> None:
    payment = _entity(event, "payment")
    order = find_order_by_gateway_id(db, payment.get("order_id") or "")
    if order is None:
        log.warning("payment.captured for unknown gateway order %s", payment.get("order_id"))
        return
    result = mark_order_paid(db, order, payment.get("id") or "", source="webhook")
    if result.newly_paid:
        log_activity(
            db,
            order.user_id,
            "PAYMENT_CAPTURED_WEBHOOK",
            "order",
            order.id,
            {
                "order_number": order.order_number,
                "payment_id": payment.get("id"),
                "amount": payment.get("amount"),
                "ticket_number": result.ticket.ticket_number if result.ticket else None,
            },
            request,
        )


def _on_payment_failed(db: Session, event: dict, request: Request | None) -> None:
    payment = _entity(event, "payment")
    order = find_order_by_gateway_id(db, payment.get("order_id") or "")
    log_activity(
        db,
        order.user_id if order else None,
        "PAYMENT_FAILED_WEBHOOK",
        "order",
        order.id if order else None,
        {
            "gateway_order_id": payment.get("order_id"),
            "payment_id": payment.get("id"),
            "error_code": payment.get("error_code"),
            "error_description": payment.get("error_description"),
        },
        request,
    )


def _on_order_paid(db: Session, event: dict, request: Request | None) -> None:
    gateway_order = _entity(event, "order")
    payment = _entity(event, "payment")
    order = find_order_by_gateway_id(db, gateway_order.get("id") or "")
    if order is None:
        log.warning("order.paid for unknown gateway order %s", gateway_order.get("id"))
        return
    result = mark_order_paid(db, order, payment.get("id") or order.gateway_payment_id or "", source="webhook")
    if result.newly_paid:
        log_activity(
            db,
            order.user_id,
            "ORDER_PAID_WEBHOOK",
            "order",
            order.id,
            {
                "order_number": order.order_number,
                "ticket_number": result.ticket.ticket_number if result.ticket else None,
            },
            request,
        )


WEBHOOK_HANDLERS = {
    "payment.captured": _on_payment_captured,
    "payment.failed": _on_payment_failed,
    "order.paid": _on_order_paid,
}


def handle_webhook_event(db: Session, raw_body: bytes, request: Request | None = None) -> str | None:
    """Dispatches one (already authenticated) webhook body. Returns the event name."""
    event = json.loads(raw_body or b"{}")
    name = event.get("event")
    handler = WEBHOOK_HANDLERS.get(name)
    if handler is None:
        log.info("Unhandled webhook event: %s", name)
        return name
    handler(db, event, request)
    return name
