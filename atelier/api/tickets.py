from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func
from sqlmodel import Session, select

from atelier.api.deps import enforce_permission, get_current_user, is_admin, require_permission
from atelier.core.database import get_db
from atelier.core.rate_limit import enforce_rate_limit
from atelier.models import Order, Ticket, TicketMessage, User
from atelier.schemas import MessageCreate, TicketCreate, TicketUpdate
from atelier.services import tickets as ticket_service
from atelier.services.activity import log_activity

router = APIRouter(prefix="/api/tickets", tags=["tickets"])


def _iso(dt):
    return dt.isoformat() if dt else None


def ticket_summary(ticket: Ticket) -> dict:
    return {
        "id": ticket.id,
        "ticket_number": ticket.ticket_number,
        "order_id": ticket.order_id,
        "user_id": ticket.user_id,
        "subject": ticket.subject,
        "category": ticket.category,
        "priority": ticket.priority,
        "status": ticket.status,
        "assigned_to": ticket.assigned_to,
        "created_at": _iso(ticket.created_at),
        "updated_at": _iso(ticket.updated_at),
        "resolved_at": _iso(ticket.resolved_at),
    }


def message_summary(msg: TicketMessage) -> dict:
    return {
        "id": msg.id,
        "ticket_id": msg.ticket_id,
        "author_id": msg.author_id,
        "author_name": msg.author_name,
        "is_admin": msg.is_admin,
        "is_system": msg.is_system,
        "message": msg.message,
        "attachments": msg.attachments or [],
        "created_at": _iso(msg.created_at),
    }


def _load_ticket(db: Session, ticket_id: int, user: User, request: Request) -> Ticket:
    """Owner, or an admin holding manage_tickets for anyone else's ticket."""
    ticket = db.get(Ticket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    if ticket.user_id == user.id:
        return ticket
    if not is_admin(user):
        raise HTTPException(status_code=404, detail="Ticket not found")
    enforce_permission(db, user, "manage_tickets", request)
    return ticket


@router.get("")
def list_tickets(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: str | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    stmt = select(Ticket)
    count_stmt = select(func.count()).select_from(Ticket)
    if is_admin(user):
        enforce_permission(db, user, "manage_tickets", request)
    else:
        stmt = stmt.where(Ticket.user_id == user.id)
        count_stmt = count_stmt.where(Ticket.user_id == user.id)
    if status:
        stmt = stmt.where(Ticket.status == status)
        count_stmt = count_stmt.where(Ticket.status == status)
    total = db.exec(count_stmt).one()
    tickets = db.exec(
        stmt.order_by(Ticket.updated_at.desc(), Ticket.id.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    return {
        "success": True,
        "tickets": [ticket_summary(t) for t in tickets],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


@router.post("", status_code=201)
def open_ticket(
    body: TicketCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    enforce_rate_limit(db, request, f"create_ticket_{user.id}", 10, 3600)
    if body.order_id is not None:
        order = db.get(Order, body.order_id)
        if not order or (order.user_id != user.id and not is_admin(user)):
            raise HTTPException(status_code=404, detail="Order not found")
    ticket = ticket_service.create_ticket(
        db,
        user,
        subject=body.subject,
        message=body.message,
        category=body.category,
        order_id=body.order_id,
    )
    log_activity(
        db,
        user.id,
        "TICKET_CREATED",
        "ticket",
        ticket.id,
        {"ticket_number": ticket.ticket_number, "category": ticket.category, "order_id": ticket.order_id},
        request,
    )
    return {"success": True, "ticket": ticket_summary(ticket)}


@router.get("/{ticket_id}")
def get_ticket(ticket_id: int, request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ticket = _load_ticket(db, ticket_id, user, request)
    messages = ticket_service.list_messages(db, ticket.id)
    return {
        "success": True,
        "ticket": ticket_summary(ticket),
        "messages": [message_summary(m) for m in messages],
    }


@router.patch("/{ticket_id}")
def update_ticket(
    ticket_id: int,
    body: TicketUpdate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if body.status is None and body.priority is None:
        raise HTTPException(status_code=400, detail="Nothing to update")
    ticket = _load_ticket(db, ticket_id, user, request)
    acting_as_admin = is_admin(user)
    previous = ticket.status

    # Nothing is written until both fields are known to be acceptable
    if body.status is not None:
        try:
            ticket_service.check_status_change(ticket, body.status, acting_as_admin)
        except ticket_service.TicketError as e:
            raise HTTPException(status_code=e.status_code, detail=str(e))
    if body.priority is not None:
        if not acting_as_admin:
            raise HTTPException(status_code=403, detail="Only admin can change priority")
        enforce_permission(db, user, "manage_tickets", request)
        ticket.priority = body.priority

    if body.status is not None:
        ticket = ticket_service.update_status(db, ticket, body.status, acting_as_admin)
    else:
        ticket.updated_at = datetime.utcnow()
        db.add(ticket)
        db.commit()
        db.refresh(ticket)

    log_activity(
        db,
        user.id,
        "TICKET_STATUS_UPDATED",
        "ticket",
        ticket.id,
        {"ticket_number": ticket.ticket_number, "from": previous, "to": ticket.status, "priority": ticket.priority},
        request,
    )
    return {"success": True, "ticket": ticket_summary(ticket)}


@router.delete("/{ticket_id}")
def delete_ticket(
    ticket_id: int,
    request: Request,
    admin: User = Depends(require_permission("manage_tickets")),
    db: Session = Depends(get_db),
):
    ticket = db.get(Ticket, ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    for msg in ticket_service.list_messages(db, ticket.id):
        db.delete(msg)
    number = ticket.ticket_number
    db.delete(ticket)
    db.commit()
    log_activity(db, admin.id, "TICKET_DELETED", "ticket", ticket_id, {"ticket_number": number}, request)
    return {"success": True, "message": "Ticket deleted"}


@router.get("/{ticket_id}/messages")
def get_messages(ticket_id: int, request: Request, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    ticket = _load_ticket(db, ticket_id, user, request)
    return {
        "success": True,
        "messages": [message_summary(m) for m in ticket_service.list_messages(db, ticket.id)],
    }


@router.post("/{ticket_id}/messages", status_code=201)
def post_message(
    ticket_id: int,
    body: MessageCreate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not is_admin(user):
        enforce_rate_limit(db, request, f"add_message_{user.id}", 200, 3600)
    ticket = _load_ticket(db, ticket_id, user, request)
    try:
        msg = ticket_service.add_message(
            db,
            ticket,
            user,
            body.message,
            [a.model_dump() for a in body.attachments],
        )
    except ticket_service.TicketError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    log_activity(
        db,
        user.id,
        "TICKET_MESSAGE_ADDED",
        "ticket",
        ticket.id,
        {"ticket_number": ticket.ticket_number, "attachments": len(body.attachments)},
        request,
    )
    return {"success": True, "message": message_summary(msg), "ticket_status": ticket.status}
