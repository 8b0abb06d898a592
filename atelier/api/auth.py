from datetime import datetime

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

from atelier.api.deps import effective_permissions, get_current_user, is_admin, is_super_admin
from atelier.core.database import get_db
from atelier.core.rate_limit import get_client_ip, rate_limit
from atelier.core.security import REFRESH_COOKIE, hash_password, verify_password
from atelier.models import User
from atelier.schemas import ProfileUpdate, RefreshRequest, UserCreate, UserLogin, UserResponse
from atelier.services.activity import log_activity
from atelier.services.sessions import (
    BannedUserError,
    SessionError,
    clear_auth_cookies,
    issue_session,
    revoke_session,
    rotate_session,
    set_auth_cookies,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def user_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id or 0,
        email=user.email,
        name=user.name,
        phone=user.phone,
        role=user.role,
        created_at=user.created_at.isoformat() if user.created_at else None,
        admin_permissions=effective_permissions(user) if is_admin(user) else None,
        is_super_admin=is_super_admin(user),
    )


def _user_agent(request: Request) -> str:
    return (request.headers.get("user-agent") or "")[:500]


@router.post("/register", status_code=201, dependencies=[Depends(rate_limit("register", 5, 3600))])
def register(body: UserCreate, request: Request, response: Response, db: Session = Depends(get_db)):
    if db.exec(select(User).where(User.email == body.email)).first():
        raise HTTPException(status_code=409, detail="Email already registered")
    user = User(
        email=body.email,
        password_hash=hash_password(body.password),
        name=body.name,
        phone=body.phone or None,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    issued = issue_session(db, user, get_client_ip(request), _user_agent(request))
    set_auth_cookies(response, issued)
    log_activity(db, user.id, "USER_REGISTERED", "user", user.id, {"email": user.email}, request)
    return {
        "success": True,
        "user": user_response(user).model_dump(),
        "accessToken": issued.access_token,
    }


@router.post("/login", dependencies=[Depends(rate_limit("login", 5, 15 * 60))])
def login(body: UserLogin, request: Request, response: Response, db: Session = Depends(get_db)):
    user = db.exec(select(User).where(User.email == body.email)).first()
    if not user:
        log_activity(db, None, "LOGIN_FAILED", None, None, {"email": body.email, "reason": "unknown_email"}, request)
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.banned:
        log_activity(db, user.id, "LOGIN_BLOCKED_BANNED", "user", user.id, {"email": user.email}, request)
        raise HTTPException(
            status_code=403,
            detail={"error": "Account suspended", "reason": user.banned_reason or "Contact support"},
        )
    if not verify_password(body.password, user.password_hash):
        log_activity(db, user.id, "LOGIN_FAILED", "user", user.id, {"email": user.email, "reason": "bad_password"}, request)
        raise HTTPException(status_code=401, detail="Invalid email or password")

    ip = get_client_ip(request)
    user.last_login = datetime.utcnow()
    user.last_ip = ip
    db.add(user)
    db.commit()
    db.refresh(user)
    issued = issue_session(db, user, ip, _user_agent(request))
    set_auth_cookies(response, issued)
    log_activity(db, user.id, "LOGIN_SUCCESS", "user", user.id, {"email": user.email}, request)
    return {
        "success": True,
        "user": user_response(user).model_dump(),
        "accessToken": issued.access_token,
    }


@router.post("/refresh", dependencies=[Depends(rate_limit("token_refresh", 30, 60))])
def refresh(
    request: Request,
    body: RefreshRequest | None = Body(default=None),
    db: Session = Depends(get_db),
):
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if not raw:
        raise HTTPException(status_code=401, detail="No refresh token")
    try:
        issued = rotate_session(db, raw, get_client_ip(request), _user_agent(request))
    except BannedUserError as e:
        response = JSONResponse(status_code=403, content={"error": "Account suspended", "reason": str(e)})
        clear_auth_cookies(response)
        return response
    except SessionError:
        response = JSONResponse(status_code=401, content={"error": "Invalid or expired refresh token"})
        clear_auth_cookies(response)
        return response
    log_activity(db, issued.user.id, "TOKEN_REFRESHED", "user", issued.user.id, None, request)
    response = JSONResponse(
        content={
            "success": True,
            "accessToken": issued.access_token,
            # Non-cookie clients need the rotated token; browsers keep using the cookie
            "refreshToken": issued.refresh_token,
        }
    )
    set_auth_cookies(response, issued)
    return response


@router.post("/logout")
def logout(
    request: Request,
    body: RefreshRequest | None = Body(default=None),
    db: Session = Depends(get_db),
):
    raw = request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)
    if raw:
        revoke_session(db, raw)
    response = JSONResponse(content={"success": True, "message": "Logged out"})
    clear_auth_cookies(response)
    return response


@router.get("/me", dependencies=[Depends(rate_limit("auth_me", 60, 60))])
def me(user: User = Depends(get_current_user)):
    return {"success": True, "user": user_response(user).model_dump()}


@router.patch("/me", dependencies=[Depends(rate_limit("update_profile", 10, 60))])
def update_profile(
    body: ProfileUpdate,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise HTTPException(status_code=400, detail="No valid fields to update")
    if "name" in changes and changes["name"]:
        user.name = changes["name"]
    if "phone" in changes:
        user.phone = changes["phone"] or None
    user.updated_at = datetime.utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)
    log_activity(db, user.id, "PROFILE_UPDATED", "user", user.id, {"fields": sorted(changes)}, request)
    return {"success": True, "user": user_response(user).model_dump()}
