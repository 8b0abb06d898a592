"""Admin API: dashboard stats, activity logs, users, admin management, pricing."""
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy import func, or_
from sqlmodel import Session, select

from atelier.api.auth import user_response
from atelier.api.deps import is_super_admin, require_admin, require_permission, require_super_admin
from atelier.api.orders import order_summary
from atelier.api.tickets import ticket_summary
from atelier.core.database import get_db
from atelier.core.rate_limit import rate_limit
from atelier.models import (
    PERMISSIONS,
    ActivityLog,
    AddonPrice,
    Order,
    RefreshToken,
    ServicePrice,
    SizePrice,
    Ticket,
    User,
)
from atelier.schemas import BanRequest, ManageAdminRequest, PriceKind, PriceUpdate
from atelier.services.activity import log_activity
from atelier.services.pricing import pricing_engine
from atelier.services.sessions import revoke_all_sessions

router = APIRouter(prefix="/api/admin", tags=["admin"])

PRICE_MODELS = {"services": ServicePrice, "sizes": SizePrice, "addons": AddonPrice}


def _count(db: Session, model, *where) -> int:
    stmt = select(func.count()).select_from(model)
    for clause in where:
        stmt = stmt.where(clause)
    return db.exec(stmt).one()


@router.get("/stats", dependencies=[Depends(rate_limit("admin_stats", 30, 60))])
def stats(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    revenue = db.exec(
        select(func.coalesce(func.sum(Order.advance), 0)).where(Order.payment_verified == True)  # noqa: E712
    ).one()
    recent_orders = db.exec(select(Order).order_by(Order.created_at.desc(), Order.id.desc()).limit(5)).all()
    open_tickets = db.exec(
        select(Ticket)
        .where(Ticket.status.in_(("open", "pending", "in_progress")))
        .order_by(Ticket.updated_at.desc())
        .limit(5)
    ).all()
    return {
        "success": True,
        "stats": {
            "orders": {
                "total": _count(db, Order),
                "pending": _count(db, Order, Order.status == "pending"),
                "paid": _count(db, Order, Order.payment_verified == True),  # noqa: E712
                "in_progress": _count(db, Order, Order.status == "in_progress"),
                "completed": _count(db, Order, Order.status.in_(("completed", "final_paid", "delivered"))),
            },
            "tickets": {
                "total": _count(db, Ticket),
                "open": _count(db, Ticket, Ticket.status == "open"),
                "pending": _count(db, Ticket, Ticket.status == "pending"),
            },
            "users": {
                "total": _count(db, User),
                "admins": _count(db, User, User.role == "admin"),
                "banned": _count(db, User, User.banned == True),  # noqa: E712
            },
            "revenue": {"advance_collected": revenue},
        },
        "recent_orders": [order_summary(o) for o in recent_orders],
        "open_tickets": [ticket_summary(t) for t in open_tickets],
    }


@router.get("/logs", dependencies=[Depends(rate_limit("admin_logs", 30, 60))])
def activity_logs(
    user_id: int | None = None,
    action: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    admin: User = Depends(require_permission("view_logs")),
    db: Session = Depends(get_db),
):
    stmt = select(ActivityLog)
    where = []
    if user_id is not None:
        where.append(ActivityLog.user_id == user_id)
    if action:
        where.append(ActivityLog.action == action)
    for clause in where:
        stmt = stmt.where(clause)
    logs = db.exec(
        stmt.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).offset((page - 1) * limit).limit(limit)
    ).all()
    actions = db.exec(select(ActivityLog.action).distinct().order_by(ActivityLog.action)).all()
    return {
        "success": True,
        "logs": [
            {
                "id": entry.id,
                "user_id": entry.user_id,
                "action": entry.action,
                "resource_type": entry.resource_type,
                "resource_id": entry.resource_id,
                "details": entry.details,
                "ip_address": entry.ip_address,
                "user_agent": entry.user_agent,
                "created_at": entry.created_at.isoformat(),
            }
            for entry in logs
        ],
        "actions": list(actions),
        "pagination": {"page": page, "limit": limit, "total": _count(db, ActivityLog, *where)},
    }


def _user_row(user: User) -> dict:
    row = user_response(user).model_dump()
    row.update(
        {
            "banned": user.banned,
            "banned_reason": user.banned_reason,
            "last_login": user.last_login.isoformat() if user.last_login else None,
            "last_ip": user.last_ip,
        }
    )
    return row


@router.get("/users", dependencies=[Depends(rate_limit("admin_users", 30, 60))])
def list_users(
    role: str | None = None,
    banned: bool | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: User = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
):
    where = []
    if role:
        where.append(User.role == role)
    if banned is not None:
        where.append(User.banned == banned)
    if search:
        pattern = f"%{search.strip().lower()}%"
        where.append(or_(func.lower(User.email).like(pattern), func.lower(User.name).like(pattern)))
    stmt = select(User)
    for clause in where:
        stmt = stmt.where(clause)
    users = db.exec(stmt.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit)).all()
    total = _count(db, User, *where)
    return {
        "success": True,
        "users": [_user_row(u) for u in users],
        "pagination": {"page": page, "limit": limit, "total": total, "pages": (total + limit - 1) // limit},
    }


@router.post("/users/{user_id}/ban")
def ban_user(
    user_id: int,
    body: BanRequest,
    request: Request,
    admin: User = Depends(require_permission("manage_users")),
    db: Session = Depends(get_db),
):
    target = db.get(User, user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if target.role == "admin":
        raise HTTPException(status_code=403, detail="Cannot ban an admin")
    target.banned = body.banned
    target.banned_reason = body.reason if body.banned else None
    target.banned_at = datetime.utcnow() if body.banned else None
    target.updated_at = datetime.utcnow()
    db.add(target)
    db.commit()
    db.refresh(target)
    if body.banned:
        revoke_all_sessions(db, target.id)
    log_activity(
        db,
        admin.id,
        "USER_BANNED" if body.banned else "USER_UNBANNED",
        "user",
        target.id,
        {"email": target.email, "reason": body.reason},
        request,
    )
    return {"success": True, "user": _user_row(target)}


@router.get("/admins")
def list_admins(admin: User = Depends(require_super_admin), db: Session = Depends(get_db)):
    admins = db.exec(select(User).where(User.role == "admin").order_by(User.created_at)).all()
    return {
        "success": True,
        "admins": [_user_row(a) for a in admins],
        "available_permissions": list(PERMISSIONS),
    }


@router.post("/admins")
def manage_admin(
    body: ManageAdminRequest,
    request: Request,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Promotes a user to admin or replaces an admin's permission set."""
    target = db.get(User, body.user_id)
    if not target:
        raise HTTPException(status_code=404, detail="User not found")
    if is_super_admin(target):
        raise HTTPException(status_code=403, detail="Cannot modify a super admin")
    if target.banned:
        raise HTTPException(status_code=400, detail="Cannot promote a banned user")
    permissions = body.permissions.model_dump()
    was_admin = target.role == "admin"
    target.role = "admin"
    target.admin_permissions = permissions
    target.updated_at = datetime.utcnow()
    db.add(target)
    db.commit()
    db.refresh(target)
    log_activity(
        db,
        admin.id,
        "ADMIN_PERMISSIONS_UPDATED",
        "user",
        target.id,
        {"email": target.email, "permissions": permissions, "promoted": not was_admin},
        request,
    )
    return {"success": True, "user": _user_row(target)}


@router.delete("/admins/{user_id}")
def remove_admin(
    user_id: int,
    request: Request,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    target = db.get(User, user_id)
    if not target or target.role != "admin":
        raise HTTPException(status_code=404, detail="Admin not found")
    if is_super_admin(target):
        raise HTTPException(status_code=403, detail="Cannot modify a super admin")
    target.role = "user"
    target.admin_permissions = None
    target.updated_at = datetime.utcnow()
    db.add(target)
    db.commit()
    revoke_all_sessions(db, target.id)
    log_activity(db, admin.id, "ADMIN_REMOVED", "user", target.id, {"email": target.email}, request)
    return {"success": True, "message": "Admin privileges removed"}


@router.get("/sessions")
def active_sessions(
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    now = datetime.utcnow()
    rows = db.exec(
        select(RefreshToken, User)
        .join(User, User.id == RefreshToken.user_id)
        .where(RefreshToken.revoked_at == None, RefreshToken.expires_at > now)  # noqa: E711
        .order_by(RefreshToken.created_at.desc())
        .limit(limit)
    ).all()
    return {
        "success": True,
        "sessions": [
            {
                "id": token.id,
                "user_id": user.id,
                "email": user.email,
                "role": user.role,
                "ip_address": token.ip_address,
                "user_agent": token.user_agent,
                "created_at": token.created_at.isoformat(),
                "expires_at": token.expires_at.isoformat(),
            }
            for token, user in rows
        ],
    }


@router.get("/customers")
def customers(
    limit: int = Query(100, ge=1, le=500),
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    """Orders grouped by customer: account id for members, e-mail for guests."""
    grouped: dict[str, dict] = {}
    for order in db.exec(select(Order).order_by(Order.created_at.desc())).all():
        key = f"user:{order.user_id}" if order.user_id else f"guest:{(order.guest_email or '').lower()}"
        entry = grouped.setdefault(
            key,
            {
                "user_id": order.user_id,
                "email": order.guest_email,
                "name": order.guest_name,
                "orders": 0,
                "paid_orders": 0,
                "total_value": 0,
                "last_order_at": order.created_at.isoformat() if order.created_at else None,
            },
        )
        entry["orders"] += 1
        entry["total_value"] += order.total
        if order.payment_verified:
            entry["paid_orders"] += 1
    members = [e for e in grouped.values() if e["user_id"]]
    if members:
        users = db.exec(select(User).where(User.id.in_([e["user_id"] for e in members]))).all()
        by_id = {u.id: u for u in users}
        for entry in members:
            u = by_id.get(entry["user_id"])
            if u:
                entry["email"] = u.email
                entry["name"] = u.name
    result = sorted(grouped.values(), key=lambda e: e["total_value"], reverse=True)[:limit]
    return {"success": True, "customers": result}


@router.put("/pricing/{kind}/{key}")
def upsert_price(
    kind: PriceKind,
    key: str,
    body: PriceUpdate,
    request: Request,
    admin: User = Depends(require_super_admin),
    db: Session = Depends(get_db),
):
    model = PRICE_MODELS[kind]
    key = key.strip().lower()
    row = db.exec(select(model).where(model.key == key)).first()
    if row is None:
        row = model(key=key, name=body.name, price=body.price, is_active=body.is_active)
    else:
        row.name = body.name
        row.price = body.price
        row.is_active = body.is_active
        row.updated_at = datetime.utcnow()
    db.add(row)
    db.commit()
    pricing_engine.invalidate()
    log_activity(
        db,
        admin.id,
        "PRICING_UPDATED",
        "pricing",
        f"{kind}:{key}",
        {"name": body.name, "price": body.price, "is_active": body.is_active},
        request,
    )
    return {"success": True, "pricing": pricing_engine.get_pricing(db).as_dict()}
