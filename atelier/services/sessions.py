"""Refresh-token sessions: issue, rotate, revoke."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from fastapi import Response
from sqlmodel import Session, select

from atelier.core.config import settings
from atelier.core.security import (
    ACCESS_COOKIE,
    ACCESS_TOKEN_EXPIRE_MINUTES,
    REFRESH_COOKIE,
    REFRESH_COOKIE_PATH,
    REFRESH_SESSION_DAYS,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_token,
)
from atelier.models import RefreshToken, User

log = logging.getLogger("atelier.sessions")


class SessionError(Exception):
    """Refresh token missing, malformed, expired, revoked or unknown."""


class BannedUserError(SessionError):
    pass


@dataclass
class IssuedSession:
    access_token: str
    refresh_token: str
    user: User


def issue_session(
    db: Session,
    user: User,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> IssuedSession:
    access = create_access_token(user.id, user.email, user.role)
    refresh = create_refresh_token(user.id)
    db.add(
        RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh),
            expires_at=datetime.utcnow() + timedelta(days=REFRESH_SESSION_DAYS),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:500] or None,
        )
    )
    db.commit()
    return IssuedSession(access_token=access, refresh_token=refresh, user=user)


def rotate_session(
    db: Session,
    raw_refresh_token: str,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> IssuedSession:
    """Revokes the presented token and issues a fresh pair."""
    payload = decode_refresh_token(raw_refresh_token)
    if payload is None:
        raise SessionError("Invalid refresh token")
    now = datetime.utcnow()
    row = db.exec(
        select(RefreshToken).where(
            RefreshToken.token_hash == hash_token(raw_refresh_token),
            RefreshToken.revoked_at == None,  # noqa: E711
        )
    ).first()
    if row is None or row.expires_at <= now or str(row.user_id) != str(payload["sub"]):
        raise SessionError("Refresh token revoked or expired")

    row.revoked_at = now
    db.add(row)
    user = db.get(User, row.user_id)
    if user is None:
        db.commit()
        raise SessionError("User not found")
    if user.banned:
        db.commit()
        revoke_all_sessions(db, user.id)
        raise BannedUserError(user.banned_reason or "Account suspended")
    db.commit()
    return issue_session(db, user, ip_address, user_agent)


def revoke_session(db: Session, raw_refresh_token: str) -> bool:
    row = db.exec(
        select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw_refresh_token))
    ).first()
    if row is None or row.revoked_at is not None:
        return False
    row.revoked_at = datetime.utcnow()
    db.add(row)
    db.commit()
    return True


def revoke_all_sessions(db: Session, user_id: int) -> int:
    """Revokes every active refresh token of the user; returns how many were revoked."""
    rows = db.exec(
        select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.revoked_at == None,  # noqa: E711
        )
    ).all()
    now = datetime.utcnow()
    for row in rows:
        row.revoked_at = now
        db.add(row)
    db.commit()
    if rows:
        log.info("Revoked %d refresh token(s) for user_id=%s", len(rows), user_id)
    return len(rows)


def set_auth_cookies(response: Response, issued: IssuedSession) -> None:
    secure = settings.is_production
    response.set_cookie(
        ACCESS_COOKIE,
        issued.access_token,
        max_age=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        path="/",
        httponly=True,
        secure=secure,
        samesite="lax",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        issued.refresh_token,
        max_age=REFRESH_SESSION_DAYS * 24 * 3600,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=secure,
        samesite="lax",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/")
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH)
