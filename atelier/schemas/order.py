import re

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from .common import sanitize_text

NAME_PATTERN = r"^[A-Za-z\s'\-]+$"
PHONE_PATTERN = r"^[\d\s+()\-]{7,20}$"


class OrderCreate(BaseModel):
    """Public order form. Prices are never accepted from the client."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=2, max_length=100, pattern=NAME_PATTERN)
    email: EmailStr
    phone: str | None = None
    service: str = Field(min_length=1, max_length=50)
    size: str = Field(min_length=1, max_length=50)
    addons: str = Field(default="none", max_length=50)
    message: str = Field(min_length=10, max_length=1000)
    captcha_token: str | None = Field(default=None, alias="captchaToken")

    @field_validator("name", "message", "service", "size", "addons", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)

    @field_validator("email", mode="before")
    @classmethod
    def lower_email(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("phone", mode="before")
    @classmethod
    def check_phone(cls, v):
        v = sanitize_text(v)
        if v in (None, ""):
            return None
        if not re.match(PHONE_PATTERN, v):
            raise ValueError("Invalid phone number")
        return v


class OrderStatusUpdate(BaseModel):
    status: str
