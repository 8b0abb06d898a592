from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from atelier.core.config import get_super_admin_emails
from atelier.core.database import get_db
from atelier.core.errors import AccessTerminatedError
from atelier.core.security import ACCESS_COOKIE, decode_access_token
from atelier.models import PERMISSIONS, User
from atelier.services.activity import log_activity
from atelier.services.sessions import revoke_all_sessions

security = HTTPBearer(auto_error=False)


def _token_from_request(request: Request, credentials: HTTPAuthorizationCredentials | None) -> str | None:
    """Cookie first (browsers), then the bearer header (scripts, mobile)."""
    cookie = request.cookies.get(ACCESS_COOKIE)
    if cookie:
        return cookie
    if credentials and credentials.credentials:
        return credentials.credentials
    return None


def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = _token_from_request(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    payload = decode_access_token(token)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    # Always re-read: role, permissions and ban status may have changed since the token was issued
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if user.banned:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account suspended")
    return user


def get_optional_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> User | None:
    """Guest checkout: a missing or bad token is simply no user."""
    try:
        return get_current_user(request, credentials, db)
    except HTTPException:
        return None


def is_admin(user: User | None) -> bool:
    return bool(user and user.role == "admin")


def is_super_admin(user: User | None) -> bool:
    return is_admin(user) and (user.email or "").lower() in get_super_admin_emails()


def has_permission(user: User | None, permission: str) -> bool:
    if not is_admin(user):
        return False
    if is_super_admin(user):
        return True
    return bool((user.admin_permissions or {}).get(permission))


def effective_permissions(user: User) -> dict[str, bool]:
    return {p: has_permission(user, p) for p in PERMISSIONS}


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def require_super_admin(user: User = Depends(get_current_user)) -> User:
    if not is_super_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return user


def enforce_permission(
    db: Session,
    user: User,
    permission: str,
    request: Request | None = None,
    reason: str | None = None,
) -> None:
    """
    Lets the call through when the admin holds `permission`. Otherwise the
    admin is demoted on the spot: role back to user, permissions cleared and
    every refresh session revoked, then AccessTerminatedError is raised.
    Callers must check is_admin first; plain users get a regular 403 elsewhere.
    """
    if has_permission(user, permission):
        return
    user.role = "user"
    user.admin_permissions = None
    db.add(user)
    db.commit()
    revoked = revoke_all_sessions(db, user.id)
    log_activity(
        db,
        user.id,
        "ADMIN_ACCESS_TERMINATED",
        "user",
        user.id,
        {
            "reason": reason or f"Unauthorized attempt to use {permission}",
            "attempted_permission": permission,
            "path": request.url.path if request is not None else None,
            "revoked_sessions": revoked,
        },
        request,
    )
    raise AccessTerminatedError(permission)


def require_permission(permission: str):
    """Admin route dependency: 403 for non-admins, termination for admins without `permission`."""

    def dependency(
        request: Request,
        user: User = Depends(require_admin),
        db: Session = Depends(get_db),
    ) -> User:
        enforce_permission(db, user, permission, request)
        return user

    return dependency
