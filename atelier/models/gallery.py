from datetime import datetime

from sqlmodel import Field, SQLModel


class GalleryItem(SQLModel, table=True):
    __tablename__ = "gallery_item"

    id: int | None = Field(default=None, primary_key=True)
    image_url: str
    thumbnail_url: str | None = None
    title: str
    description: str = ""
    category: str = Field(index=True)  # charcoal | anime | portrait | couple | custom
    is_featured: bool = False
    display_order: int = 0
    uploaded_by: int | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
