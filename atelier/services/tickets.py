"""Support tickets and their message threads."""
import logging
import secrets
import time
from datetime import datetime

from sqlmodel import Session, select

from atelier.models import Order, Ticket, TicketMessage, User

log = logging.getLogger("atelier.tickets")

TICKET_STATUSES = ("open", "pending", "in_progress", "resolved", "closed")
TICKET_CATEGORIES = ("order", "payment", "revision", "general", "refund", "other")
TICKET_PRIORITIES = ("low", "normal", "high", "urgent")
# Owners may only close their own tickets
USER_SETTABLE_STATUSES = ("closed",)

SUPPORT_AUTHOR = "Support"
SYSTEM_AUTHOR = "System"
WELCOME_MESSAGE = (
    "Thanks for reaching out! Our team has received your ticket and will reply here shortly."
)


class TicketError(Exception):
    status_code = 400


class TicketClosedError(TicketError):
    def __init__(self):
        super().__init__("Cannot add message to closed ticket")


class TicketStatusForbidden(TicketError):
    status_code = 403

    def __init__(self):
        super().__init__("Only admin can change to this status")


class InvalidTicketStatus(TicketError):
    def __init__(self, status: str):
        super().__init__(f"Invalid status: {status}")


def _base36(n: int) -> str:
    digits = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = digits[r] + out
    return out or "0"


def new_reference(prefix: str) -> str:
    """PREFIX + base36 millisecond timestamp + random suffix, e.g. TKTLXY4Z9K2F."""
    return f"{prefix}{_base36(int(time.time() * 1000))}{secrets.token_hex(2).upper()}"


def _add_message(
    db: Session,
    ticket: Ticket,
    message: str,
    author_id: int | None,
    author_name: str,
    is_admin: bool = False,
    is_system: bool = False,
    attachments: list | None = None,
) -> TicketMessage:
    msg = TicketMessage(
        ticket_id=ticket.id,
        author_id=author_id,
        author_name=author_name,
        is_admin=is_admin,
        is_system=is_system,
        message=message,
        attachments=attachments or [],
    )
    db.add(msg)
    return msg


def create_ticket(
    db: Session,
    user: User,
    subject: str,
    message: str,
    category: str = "general",
    order_id: int | None = None,
) -> Ticket:
    ticket = Ticket(
        ticket_number=new_reference("TKT"),
        order_id=order_id,
        user_id=user.id,
        subject=subject,
        category=category,
    )
    db.add(ticket)
    db.flush()
    _add_message(db, ticket, WELCOME_MESSAGE, None, SUPPORT_AUTHOR, is_admin=True)
    _add_message(db, ticket, message, user.id, user.name or user.email, is_admin=user.role == "admin")
    db.commit()
    db.refresh(ticket)
    return ticket


def create_order_ticket(db: Session, order: Order) -> Ticket:
    """
    Ticket opened automatically once an order's advance is confirmed. Only
    flushes: the caller commits it together with the payment update.
    """
    ticket = Ticket(
        ticket_number=new_reference("TKT"),
        order_id=order.id,
        user_id=order.user_id,
        subject=f"Order {order.order_number} - {order.service_name}",
        category="order",
        status="open",
    )
    db.add(ticket)
    db.flush()
    body = (
        f"Payment received for order {order.order_number}.\n"
        f"Service: {order.service_name}\n"
        f"Size: {order.size_name}\n"
        f"Add-ons: {order.addons_name}\n"
        f"Total: {order.total}\n"
        f"Advance paid: {order.advance}\n"
        f"Remaining: {order.remaining}\n"
        "Our artist will start on your commission and post updates in this ticket."
    )
    _add_message(db, ticket, body, None, SYSTEM_AUTHOR, is_system=True)
    db.flush()
    return ticket


def add_message(
    db: Session,
    ticket: Ticket,
    author: User,
    message: str,
    attachments: list | None = None,
) -> TicketMessage:
    """
    Appends a reply. Staff replies move open -> pending (waiting on the
    customer); customer replies move pending -> open.
    """
    if ticket.status == "closed":
        raise TicketClosedError()
    author_is_admin = author.role == "admin"
    msg = _add_message(
        db,
        ticket,
        message,
        author.id,
        author.name or author.email,
        is_admin=author_is_admin,
        attachments=attachments,
    )
    if author_is_admin and ticket.status == "open":
        ticket.status = "pending"
    elif not author_is_admin and ticket.status == "pending":
        ticket.status = "open"
    ticket.updated_at = datetime.utcnow()
    db.add(ticket)
    db.commit()
    db.refresh(msg)
    return msg


def check_status_change(ticket: Ticket, status: str, acting_as_admin: bool) -> None:
    if status not in TICKET_STATUSES:
        raise InvalidTicketStatus(status)
    if not acting_as_admin and status not in USER_SETTABLE_STATUSES:
        raise TicketStatusForbidden()
    if ticket.status == "closed" and status != "closed":
        raise TicketError("Ticket is closed")


def update_status(db: Session, ticket: Ticket, status: str, acting_as_admin: bool) -> Ticket:
    """Validates and applies a status change. Pending attribute edits on `ticket` are committed with it."""
    check_status_change(ticket, status, acting_as_admin)
    ticket.status = status
    if status in ("resolved", "closed") and ticket.resolved_at is None:
        ticket.resolved_at = datetime.utcnow()
    ticket.updated_at = datetime.utcnow()
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket


def list_messages(db: Session, ticket_id: int) -> list[TicketMessage]:
    return list(
        db.exec(
            select(TicketMessage)
            .where(TicketMessage.ticket_id == ticket_id)
            .order_by(TicketMessage.created_at, TicketMessage.id)
        ).all()
    )
