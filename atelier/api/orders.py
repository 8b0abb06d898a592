import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlmodel import Session, select

from atelier.api.deps import enforce_permission, get_current_user, get_optional_user, is_admin, require_permission
from atelier.core.config import settings
from atelier.core.database import get_db
from atelier.core.rate_limit import get_client_ip, rate_limit
from atelier.models import Order, User
from atelier.schemas import OrderCreate, OrderStatusUpdate
from atelier.services.activity import log_activity
from atelier.services.captcha import CaptchaNotConfigured, CaptchaVerifier, get_captcha_verifier
from atelier.services.gateway import GatewayError, RazorpayGateway, get_gateway
from atelier.services.orders import (
    ORDER_STATUSES,
    InvalidOrderStatus,
    InvalidTransition,
    change_status,
    create_order,
)
from atelier.services.pricing import PricingError, pricing_engine

router = APIRouter(prefix="/api/orders", tags=["orders"])
log = logging.getLogger("atelier.orders")


def order_summary(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "guest_name": order.guest_name,
        "guest_email": order.guest_email,
        "guest_phone": order.guest_phone,
        "service": order.service,
        "service_name": order.service_name,
        "size": order.size,
        "size_name": order.size_name,
        "addons": order.addons,
        "addons_name": order.addons_name,
        "message": order.message,
        "base_price": order.base_price,
        "size_price": order.size_price,
        "addons_price": order.addons_price,
        "total": order.total,
        "advance": order.advance,
        "remaining": order.remaining,
        "status": order.status,
        "gateway_order_id": order.gateway_order_id,
        "payment_verified": order.payment_verified,
        "created_at": order.created_at.isoformat() if order.created_at else None,
        "paid_at": order.paid_at.isoformat() if order.paid_at else None,
        "completed_at": order.completed_at.isoformat() if order.completed_at else None,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
    }


@router.post("", status_code=201, dependencies=[Depends(rate_limit("create_order", 5, 3600))])
def place_order(
    body: OrderCreate,
    request: Request,
    user: User | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
    captcha: CaptchaVerifier = Depends(get_captcha_verifier),
):
    if not body.captcha_token:
        raise HTTPException(status_code=400, detail="Captcha verification required")
    try:
        captcha_ok = captcha.verify(body.captcha_token, get_client_ip(request))
    except CaptchaNotConfigured:
        log.error("Captcha secret missing outside development")
        raise HTTPException(status_code=500, detail="Captcha not configured")
    if not captcha_ok:
        raise HTTPException(status_code=400, detail="Captcha verification failed")

    try:
        order, gateway_order = create_order(
            db,
            pricing_engine,
            gateway,
            service=body.service,
            size=body.size,
            addons=body.addons,
            message=body.message,
            user=user,
            guest_name=body.name,
            guest_email=body.email,
            guest_phone=body.phone,
        )
    except PricingError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except GatewayError:
        raise HTTPException(status_code=500, detail="Failed to create payment order")

    log_activity(
        db,
        user.id if user else None,
        "ORDER_CREATED",
        "order",
        order.id,
        {"order_number": order.order_number, "total": order.total, "advance": order.advance, "guest": user is None},
        request,
    )
    return {
        "success": True,
        "order": {
            "id": order.id,
            "order_number": order.order_number,
            "gateway_order_id": order.gateway_order_id,
            "amount": gateway_order.get("amount", order.advance * 100),
            "currency": gateway_order.get("currency", settings.gateway_currency),
            "pricing": {
                "service": order.service_name,
                "size": order.size_name,
                "addons": order.addons_name,
                "base_price": order.base_price,
                "size_price": order.size_price,
                "addons_price": order.addons_price,
                "total": order.total,
                "advance": order.advance,
                "remaining": order.remaining,
            },
        },
        "gateway_key": settings.gateway_key_id,
    }


@router.get("")
def list_orders(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Customers see their own orders; admins see everything with manage_orders."""
    stmt = select(Order)
    count_stmt = select(func.count()).select_from(Order)
    if is_admin(user):
        enforce_permission(db, user, "manage_orders", request)
    else:
        stmt = stmt.where(Order.user_id == user.id)
        count_stmt = count_stmt.where(Order.user_id == user.id)
    if status:
        stmt = stmt.where(Order.status == status)
        count_stmt = count_stmt.where(Order.status == status)
    total = db.exec(count_stmt).one()
    orders = db.exec(
        stmt.order_by(Order.created_at.desc(), Order.id.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return {
        "success": True,
        "orders": [order_summary(o) for o in orders],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


@router.get("/{order_id}")
def get_order(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = db.get(Order, order_id)
    # Someone else's order looks the same as a missing one
    if not order or (order.user_id != user.id and not is_admin(user)):
        raise HTTPException(status_code=404, detail="Order not found")
    return {"success": True, "order": order_summary(order)}


@router.patch("/{order_id}")
def update_order_status(
    order_id: int,
    body: OrderStatusUpdate,
    request: Request,
    admin: User = Depends(require_permission("manage_orders")),
    db: Session = Depends(get_db),
):
    order = db.get(Order, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        previous = change_status(db, order, body.status)
    except InvalidOrderStatus as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "validStatuses": list(ORDER_STATUSES)})
    except InvalidTransition as e:
        raise HTTPException(status_code=400, detail={"error": str(e), "allowed": e.allowed})
    log_activity(
        db,
        admin.id,
        "ORDER_STATUS_UPDATED",
        "order",
        order.id,
        {"order_number": order.order_number, "from": previous, "to": order.status},
        request,
    )
    return {"success": True, "order": order_summary(order)}
