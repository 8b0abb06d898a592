from datetime import datetime

from sqlmodel import Field, SQLModel


class Order(SQLModel, table=True):
    """
    Commission order. Prices are copied from the pricing tables at creation and
    never recomputed; the gateway fields are filled by the payment handler.
    """

    id: int | None = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)
    user_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    # Guest contact, only stored when the order has no owner
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    service: str
    service_name: str
    size: str
    size_name: str
    addons: str = "none"
    addons_name: str = "None"
    message: str = ""
    base_price: int
    size_price: int = 0
    addons_price: int = 0
    total: int
    advance: int
    remaining: int
    status: str = Field(default="pending", index=True)
    gateway_order_id: str | None = Field(default=None, index=True)
    gateway_payment_id: str | None = None
    gateway_signature: str | None = None
    payment_verified: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    delivered_at: datetime | None = None
