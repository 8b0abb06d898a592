from datetime import datetime

from sqlmodel import Field, SQLModel


class RefreshToken(SQLModel, table=True):
    """Server-side refresh session. Only the keyed hash of the token is stored."""

    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    token_hash: str = Field(unique=True, index=True)
    expires_at: datetime = Field(index=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    revoked_at: datetime | None = None  # set once, never cleared
    ip_address: str | None = None
    user_agent: str | None = Field(default=None, max_length=500)
