from datetime import datetime

from sqlmodel import Field, SQLModel


class ServicePrice(SQLModel, table=True):
    __tablename__ = "service_price"

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    name: str
    price: int  # base price, whole currency units
    is_active: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SizePrice(SQLModel, table=True):
    __tablename__ = "size_price"

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    name: str
    price: int  # surcharge on top of the service price
    is_active: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AddonPrice(SQLModel, table=True):
    __tablename__ = "addon_price"

    id: int | None = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    name: str
    price: int
    is_active: bool = True
    updated_at: datetime = Field(default_factory=datetime.utcnow)
