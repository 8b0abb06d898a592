"""
Rate limiting in two layers:
- SlowAPI: coarse per-IP burst limit for the whole app, in process memory.
- RateLimitCounter rows: per-action fixed windows with a block penalty, shared by every worker.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Depends, Request
from slowapi import Limiter
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from atelier.models import RateLimitCounter

from .config import settings
from .database import get_db
from .errors import RateLimitExceededError

log = logging.getLogger("atelier.rate_limit")

BLOCK_SECONDS = 5 * 60


def get_client_ip(request: Request) -> str:
    """Real client IP behind a proxy: first X-Forwarded-For hop, then X-Real-IP, then the socket."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        first = xff.split(",")[0].strip()
        if first:
            return first
    real_ip = (request.headers.get("x-real-ip") or "").strip()
    if real_ip:
        return real_ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


limiter = Limiter(
    key_func=get_client_ip,
    default_limits=[f"{settings.rate_limit_per_minute}/minute"],
)


@dataclass
class RateLimitDecision:
    allowed: bool
    retry_after: int = 0  # seconds


def check_rate_limit(
    db: Session,
    identifier: str,
    action: str,
    max_attempts: int,
    window_seconds: int,
    now: datetime | None = None,
) -> RateLimitDecision:
    """
    Counts one attempt for (identifier, action).

    A request that pushes the counter past max_attempts blocks the pair for
    BLOCK_SECONDS. The window restarts once window_seconds have elapsed since
    it opened. Storage failures let the request through.
    """
    now = now or datetime.utcnow()
    window = timedelta(seconds=window_seconds)
    try:
        row = db.exec(
            select(RateLimitCounter).where(
                RateLimitCounter.identifier == identifier,
                RateLimitCounter.action == action,
            )
        ).first()

        if row is None:
            db.add(RateLimitCounter(identifier=identifier, action=action, attempts=1, window_start=now))
            try:
                db.commit()
            except IntegrityError:
                # Another worker inserted the same pair first
                db.rollback()
            return RateLimitDecision(allowed=True)

        if row.blocked_until and row.blocked_until > now:
            return RateLimitDecision(
                allowed=False,
                retry_after=max(1, int((row.blocked_until - now).total_seconds() + 0.999)),
            )

        if now - row.window_start >= window:
            row.attempts = 1
            row.window_start = now
            row.blocked_until = None
            db.add(row)
            db.commit()
            return RateLimitDecision(allowed=True)

        if row.attempts >= max_attempts:
            row.blocked_until = now + timedelta(seconds=BLOCK_SECONDS)
            db.add(row)
            db.commit()
            return RateLimitDecision(allowed=False, retry_after=BLOCK_SECONDS)

        row.attempts += 1
        db.add(row)
        db.commit()
        return RateLimitDecision(allowed=True)
    except SQLAlchemyError:
        log.exception("Rate limit storage failed: identifier=%s action=%s (allowing)", identifier, action)
        db.rollback()
        return RateLimitDecision(allowed=True)


def enforce_rate_limit(
    db: Session,
    request: Request,
    action: str,
    max_attempts: int,
    window_seconds: int,
) -> None:
    identifier = get_client_ip(request)
    decision = check_rate_limit(db, identifier, action, max_attempts, window_seconds)
    if not decision.allowed:
        log.warning("Rate limited: identifier=%s action=%s retry_after=%s", identifier, action, decision.retry_after)
        raise RateLimitExceededError(action, decision.retry_after)


def rate_limit(action: str, max_attempts: int, window_seconds: int):
    """Route dependency: `dependencies=[Depends(rate_limit("login", 5, 15 * 60))]`."""

    def dependency(request: Request, db: Session = Depends(get_db)) -> None:
        enforce_rate_limit(db, request, action, max_attempts, window_seconds)

    return dependency
