import re

from pydantic import BaseModel, EmailStr, Field, field_validator

from .common import sanitize_text


def _check_password_strength(v: str) -> str:
    if not re.search(r"[a-z]", v) or not re.search(r"[A-Z]", v) or not re.search(r"\d", v):
        raise ValueError("Password must contain uppercase, lowercase, and number")
    return v


class UserCreate(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    phone: str | None = Field(default=None, max_length=20)

    @field_validator("name", "phone", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("password")
    @classmethod
    def password_strength(cls, v: str) -> str:
        return _check_password_strength(v)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class RefreshRequest(BaseModel):
    """Body fallback for clients that cannot hold the refresh cookie."""
    refresh_token: str | None = None


class ProfileUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=100)
    phone: str | None = Field(default=None, max_length=20)

    @field_validator("name", "phone", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone: str | None = None
    role: str
    created_at: str | None = None
    admin_permissions: dict | None = None
    is_super_admin: bool = False
