from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .common import sanitize_text

TicketCategory = Literal["order", "payment", "revision", "general", "refund", "other"]
TicketPriority = Literal["low", "normal", "high", "urgent"]


class Attachment(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    type: str = Field(min_length=1, max_length=100)
    # data: URLs are allowed, hence the generous bound
    url: str = Field(min_length=1, max_length=500_000)


class TicketCreate(BaseModel):
    order_id: int | None = None
    subject: str = Field(min_length=1, max_length=200)
    category: TicketCategory = "general"
    message: str = Field(min_length=1, max_length=2000)

    @field_validator("subject", "message", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)


class TicketUpdate(BaseModel):
    status: str | None = None
    priority: TicketPriority | None = None


class MessageCreate(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    attachments: list[Attachment] = Field(default_factory=list, max_length=5)

    @field_validator("message", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)
