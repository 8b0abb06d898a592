from datetime import datetime

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class Ticket(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    ticket_number: str = Field(unique=True, index=True)
    order_id: int | None = Field(default=None, foreign_key="order.id", index=True)
    # None only for the auto-ticket of a guest order
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    subject: str
    category: str = "general"  # order | payment | revision | general | refund | other
    priority: str = "normal"  # low | normal | high | urgent
    status: str = Field(default="open", index=True)  # open | pending | in_progress | resolved | closed
    assigned_to: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    resolved_at: datetime | None = None


class TicketMessage(SQLModel, table=True):
    """Append-only."""

    id: int | None = Field(default=None, primary_key=True)
    ticket_id: int = Field(foreign_key="ticket.id", index=True)
    author_id: int | None = None
    author_name: str = ""
    is_admin: bool = False
    is_system: bool = False
    message: str
    attachments: list = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=datetime.utcnow)
