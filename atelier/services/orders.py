"""Order creation, gateway order (re)creation and admin status transitions."""
import logging
from datetime import datetime

from sqlmodel import Session

from atelier.core.config import settings
from atelier.models import Order, User
from atelier.services.gateway import GatewayError, RazorpayGateway
from atelier.services.pricing import PricingEngine
from atelier.services.tickets import new_reference

log = logging.getLogger("atelier.orders")

ORDER_STATUSES = (
    "pending",
    "advance_paid",
    "in_progress",
    "revision_requested",
    "completed",
    "final_paid",
    "delivered",
    "cancelled",
    "refunded",
)

# pending -> advance_paid only happens through payment confirmation
ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "pending": ("cancelled",),
    "advance_paid": ("in_progress", "cancelled", "refunded"),
    "in_progress": ("revision_requested", "completed", "cancelled", "refunded"),
    "revision_requested": ("in_progress", "cancelled", "refunded"),
    "completed": ("final_paid", "revision_requested", "refunded"),
    "final_paid": ("delivered", "refunded"),
    "delivered": (),
    "cancelled": (),
    "refunded": (),
}


class OrderError(Exception):
    status_code = 400


class InvalidOrderStatus(OrderError):
    def __init__(self, status: str):
        super().__init__(f"Invalid status: {status}")
        self.status = status


class InvalidTransition(OrderError):
    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot change order status from {current} to {target}")
        self.current = current
        self.target = target
        self.allowed = list(ALLOWED_TRANSITIONS.get(current, ()))


class OrderAlreadyPaid(OrderError):
    def __init__(self):
        super().__init__("Order already paid")


def _minor_units(amount: int) -> int:
    return amount * 100


def create_order(
    db: Session,
    pricing: PricingEngine,
    gateway: RazorpayGateway,
    *,
    service: str,
    size: str,
    addons: str | None,
    message: str,
    user: User | None = None,
    guest_name: str | None = None,
    guest_email: str | None = None,
    guest_phone: str | None = None,
) -> tuple[Order, dict]:
    """
    Prices the order server-side, stores it, then opens the gateway order for
    the advance. If the gateway call fails the stored order is deleted and
    GatewayError propagates.
    """
    price = pricing.calculate_order_price(db, service, size, addons)
    order = Order(
        order_number=new_reference("ORD"),
        user_id=user.id if user else None,
        guest_name=None if user else guest_name,
        guest_email=None if user else guest_email,
        guest_phone=None if user else guest_phone,
        service=price.service,
        service_name=price.service_name,
        size=price.size,
        size_name=price.size_name,
        addons=price.addons,
        addons_name=price.addons_name,
        message=message,
        base_price=price.base_price,
        size_price=price.size_price,
        addons_price=price.addons_price,
        total=price.total,
        advance=price.advance,
        remaining=price.remaining,
    )
    db.add(order)
    db.commit()
    db.refresh(order)

    try:
        gateway_order = gateway.create_order(
            amount=_minor_units(order.advance),
            currency=settings.gateway_currency,
            receipt=order.order_number,
            notes={"order_id": str(order.id), "service": order.service},
        )
    except GatewayError:
        log.error("Gateway order failed, removing order %s", order.order_number)
        db.delete(order)
        db.commit()
        raise

    order.gateway_order_id = gateway_order.get("id")
    order.updated_at = datetime.utcnow()
    db.add(order)
    db.commit()
    db.refresh(order)
    return order, gateway_order


def ensure_gateway_order(db: Session, gateway: RazorpayGateway, order: Order) -> tuple[dict, bool]:
    """
    Returns (gateway_order, created). Reuses the stored gateway order unless it
    is already paid or cannot be fetched; otherwise opens a new one for the
    stored advance.
    """
    if order.payment_verified:
        raise OrderAlreadyPaid()
    if order.gateway_order_id:
        try:
            existing = gateway.fetch_order(order.gateway_order_id)
        except GatewayError:
            log.warning("Could not fetch gateway order %s; creating a new one", order.gateway_order_id)
        else:
            if existing.get("status") != "paid":
                return existing, False

    gateway_order = gateway.create_order(
        amount=_minor_units(order.advance),
        currency=settings.gateway_currency,
        receipt=order.order_number,
        notes={"order_id": str(order.id), "service": order.service},
    )
    order.gateway_order_id = gateway_order.get("id")
    order.updated_at = datetime.utcnow()
    db.add(order)
    db.commit()
    db.refresh(order)
    return gateway_order, True


def change_status(db: Session, order: Order, status: str) -> str:
    """Applies an admin transition; returns the previous status."""
    if status not in ORDER_STATUSES:
        raise InvalidOrderStatus(status)
    if status not in ALLOWED_TRANSITIONS.get(order.status, ()):
        raise InvalidTransition(order.status, status)
    previous = order.status
    now = datetime.utcnow()
    order.status = status
    order.updated_at = now
    if status == "completed":
        order.completed_at = now
    elif status == "delivered":
        order.delivered_at = now
    db.add(order)
    db.commit()
    db.refresh(order)
    return previous
