from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

PERMISSIONS = ("manage_orders", "manage_tickets", "manage_gallery", "manage_users", "view_logs")


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    email: str = Field(unique=True, index=True, max_length=255)  # always lower-cased
    password_hash: str
    name: str = ""
    phone: str | None = None
    role: str = Field(default="user", index=True)  # "user" | "admin"
    # {permission: bool}; None for plain users
    admin_permissions: dict | None = Field(default=None, sa_column=Column(JSON, nullable=True))
    banned: bool = Field(default=False, index=True)
    banned_reason: str | None = None
    banned_at: datetime | None = None
    last_login: datetime | None = None
    last_ip: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
