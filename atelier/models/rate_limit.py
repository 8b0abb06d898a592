from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class RateLimitCounter(SQLModel, table=True):
    __tablename__ = "rate_limit_counter"
    __table_args__ = (UniqueConstraint("identifier", "action"),)

    id: int | None = Field(default=None, primary_key=True)
    identifier: str = Field(index=True)
    action: str
    attempts: int = 1
    window_start: datetime = Field(default_factory=datetime.utcnow)
    blocked_until: datetime | None = None
