import hashlib
import hmac
import uuid
from datetime import datetime, timedelta

import bcrypt
from jose import JWTError, jwt

from .config import settings

ALGORITHM = "HS256"
ISSUER = "atelier"
AUDIENCE = "atelier-api"
ACCESS_TOKEN_EXPIRE_MINUTES = 60
REFRESH_TOKEN_EXPIRE_DAYS = 30
# Server-side session (stored row + cookie) is shorter than the token itself
REFRESH_SESSION_DAYS = 14
MAX_BCRYPT_BYTES = 72  # bcrypt limit

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/auth"


def hash_password(password: str) -> str:
    p = password.encode("utf-8")[:MAX_BCRYPT_BYTES]
    return bcrypt.hashpw(p, bcrypt.gensalt(rounds=settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    p = plain.encode("utf-8")[:MAX_BCRYPT_BYTES]
    try:
        return bcrypt.checkpw(p, hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: int, email: str, role: str) -> str:
    now = datetime.utcnow()
    to_encode = {
        "sub": str(user_id),
        "email": email,
        "role": role,
        "type": "access",
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES),
    }
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=ALGORITHM)


def create_refresh_token(user_id: int) -> str:
    now = datetime.utcnow()
    to_encode = {
        "sub": str(user_id),
        "type": "refresh",
        "jti": str(uuid.uuid4()),
        "iss": ISSUER,
        "iat": now,
        "exp": now + timedelta(days=REFRESH_TOKEN_EXPIRE_DAYS),
    }
    return jwt.encode(to_encode, settings.jwt_refresh_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[ALGORITHM],
            audience=AUDIENCE,
            issuer=ISSUER,
        )
    except JWTError:
        return None
    if payload.get("type") != "access" or "sub" not in payload:
        return None
    return payload


def decode_refresh_token(token: str) -> dict | None:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_refresh_secret,
            algorithms=[ALGORITHM],
            issuer=ISSUER,
        )
    except JWTError:
        return None
    if payload.get("type") != "refresh" or "sub" not in payload:
        return None
    return payload


def hash_token(token: str) -> str:
    """One-way keyed hash of a refresh token; the raw token is never stored."""
    return hmac.new(
        settings.jwt_refresh_secret.encode("utf-8"),
        token.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def hmac_sha256_hex(secret: str, message: str | bytes) -> str:
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def constant_time_equals(provided: str | None, expected: str | None) -> bool:
    """Timing-safe comparison; empty values never match."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))
