"""Activity (audit) log writes. Best-effort: a failed write is logged, never raised."""
import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from atelier.core.rate_limit import get_client_ip
from atelier.models import ActivityLog

log = logging.getLogger("atelier.activity")

MAX_USER_AGENT = 500


def log_activity(
    db: Session,
    user_id: int | None,
    action: str,
    resource_type: str | None = None,
    resource_id: int | str | None = None,
    details: dict | None = None,
    request: Request | None = None,
) -> None:
    ip = get_client_ip(request) if request is not None else None
    user_agent = (request.headers.get("user-agent") or "")[:MAX_USER_AGENT] if request is not None else None
    try:
        db.add(
            ActivityLog(
                user_id=user_id,
                action=action,
                resource_type=resource_type,
                resource_id=str(resource_id) if resource_id is not None else None,
                details=details or {},
                ip_address=ip,
                user_agent=user_agent or None,
            )
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        log.warning("Activity log write failed: action=%s error=%s", action, e)
