from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class ActivityLog(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int | None = Field(default=None, index=True)
    action: str = Field(index=True)  # LOGIN_SUCCESS, PAYMENT_VERIFIED, ADMIN_ACCESS_TERMINATED, ...
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    ip_address: str | None = None
    user_agent: str | None = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
