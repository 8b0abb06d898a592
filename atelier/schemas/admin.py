from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .common import sanitize_text


class BanRequest(BaseModel):
    banned: bool
    reason: str | None = Field(default=None, max_length=500)

    @field_validator("reason", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)


class AdminPermissions(BaseModel):
    manage_orders: bool = False
    manage_tickets: bool = False
    manage_gallery: bool = False
    manage_users: bool = False
    view_logs: bool = False


class ManageAdminRequest(BaseModel):
    user_id: int
    permissions: AdminPermissions = Field(default_factory=AdminPermissions)


class PriceUpdate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price: int = Field(ge=0)
    is_active: bool = True

    @field_validator("name", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)


PriceKind = Literal["services", "sizes", "addons"]
