import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from atelier.core.config import settings
from atelier.core.database import get_db
from atelier.core.rate_limit import limiter, rate_limit
from atelier.models import Order
from atelier.schemas import CreatePaymentOrderRequest, VerifyPaymentRequest
from atelier.services.activity import log_activity
from atelier.services.gateway import GatewayError, RazorpayGateway, get_gateway
from atelier.services.orders import OrderAlreadyPaid, ensure_gateway_order
from atelier.services.payments import (
    handle_webhook_event,
    mark_order_paid,
    verify_payment_signature,
    verify_webhook_signature,
)

router = APIRouter(prefix="/api/payment", tags=["payment"])
log = logging.getLogger("atelier.payments")

WEBHOOK_SIGNATURE_HEADER = "x-razorpay-signature"


@router.post("/create-order", dependencies=[Depends(rate_limit("create_payment", 10, 60))])
def create_payment_order(
    body: CreatePaymentOrderRequest,
    request: Request,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    order = db.get(Order, body.order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    try:
        gateway_order, created = ensure_gateway_order(db, gateway, order)
    except OrderAlreadyPaid:
        raise HTTPException(status_code=400, detail="Order already paid")
    except GatewayError:
        raise HTTPException(status_code=500, detail="Failed to create payment order")
    if created:
        log_activity(
            db,
            order.user_id,
            "PAYMENT_ORDER_CREATED",
            "order",
            order.id,
            {"gateway_order_id": order.gateway_order_id, "amount": order.advance * 100},
            request,
        )
    return {
        "success": True,
        "gateway_order": {
            "id": gateway_order.get("id"),
            "amount": gateway_order.get("amount", order.advance * 100),
            "currency": gateway_order.get("currency", settings.gateway_currency),
        },
        "gateway_key": settings.gateway_key_id,
        "order": {"id": order.id, "order_number": order.order_number, "advance": order.advance},
    }


@router.post("/verify", dependencies=[Depends(rate_limit("payment_verify", 10, 60))])
def verify_payment(body: VerifyPaymentRequest, request: Request, db: Session = Depends(get_db)):
    """Client-side confirmation after checkout; trusted only through the HMAC signature."""
    if not (body.gateway_order_id and body.gateway_payment_id and body.gateway_signature and body.order_id):
        log_activity(
            db,
            None,
            "PAYMENT_VERIFY_MISSING_PARAMS",
            "order",
            body.order_id,
            {
                "has_order_id": bool(body.gateway_order_id),
                "has_payment_id": bool(body.gateway_payment_id),
                "has_signature": bool(body.gateway_signature),
            },
            request,
        )
        raise HTTPException(status_code=400, detail="Missing payment verification parameters")

    if not verify_payment_signature(
        settings.gateway_key_secret,
        body.gateway_order_id,
        body.gateway_payment_id,
        body.gateway_signature,
    ):
        log_activity(
            db,
            None,
            "PAYMENT_SIGNATURE_INVALID",
            "order",
            body.order_id,
            {"gateway_order_id": body.gateway_order_id, "gateway_payment_id": body.gateway_payment_id},
            request,
        )
        return JSONResponse(
            status_code=400,
            content={"success": False, "error": "Payment verification failed - invalid signature"},
        )

    order = db.get(Order, body.order_id)
    if not order or order.gateway_order_id != body.gateway_order_id:
        log_activity(
            db,
            None,
            "PAYMENT_ORDER_MISMATCH",
            "order",
            body.order_id,
            {"gateway_order_id": body.gateway_order_id},
            request,
        )
        raise HTTPException(status_code=404, detail="Order not found or mismatch")

    if order.payment_verified:
        return {"success": True, "message": "Payment already verified", "order_number": order.order_number}

    result = mark_order_paid(db, order, body.gateway_payment_id, body.gateway_signature, source="verify")
    if not result.newly_paid:
        # Lost the race against the webhook
        return {"success": True, "message": "Payment already verified", "order_number": order.order_number}

    ticket_number = result.ticket.ticket_number if result.ticket else None
    log_activity(
        db,
        order.user_id,
        "PAYMENT_VERIFIED",
        "order",
        order.id,
        {
            "order_number": order.order_number,
            "gateway_payment_id": body.gateway_payment_id,
            "amount": order.advance,
            "ticket_number": ticket_number,
        },
        request,
    )
    return {
        "success": True,
        "message": "Payment verified successfully",
        "order_number": order.order_number,
        "ticket_number": ticket_number,
    }


@router.post("/webhook")
@limiter.exempt
async def payment_webhook(request: Request, db: Session = Depends(get_db)):
    """Gateway-to-server notification. Authenticated by HMAC over the raw body; always acknowledged."""
    raw_body = await request.body()
    secret = settings.gateway_webhook_secret
    if secret:
        signature = request.headers.get(WEBHOOK_SIGNATURE_HEADER)
        if not verify_webhook_signature(secret, raw_body, signature):
            log_activity(
                db,
                None,
                "WEBHOOK_SIGNATURE_INVALID",
                "webhook",
                None,
                {"has_signature": bool(signature), "body_length": len(raw_body)},
                request,
            )
            raise HTTPException(status_code=400, detail="Invalid signature")
    else:
        log.warning("GATEWAY_WEBHOOK_SECRET not set; webhook signature not checked")

    try:
        event = handle_webhook_event(db, raw_body, request)
    except Exception:
        # The gateway retries anything but 2xx; failures are ours to investigate
        log.exception("Webhook processing failed")
        db.rollback()
        return {"received": True, "error": "Processing error"}
    return {"received": True, "event": event}
