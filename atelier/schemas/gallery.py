from typing import Literal

from pydantic import BaseModel, Field, field_validator

from .common import sanitize_text

GalleryCategory = Literal["charcoal", "anime", "portrait", "couple", "custom"]


class GalleryItemCreate(BaseModel):
    image: str = Field(min_length=1, max_length=5_000_000)
    thumbnail: str | None = Field(default=None, max_length=5_000_000)
    title: str = Field(min_length=2, max_length=100)
    description: str = Field(default="", max_length=500)
    category: GalleryCategory
    is_featured: bool = False
    display_order: int = 0

    @field_validator("title", "description", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)


class GalleryItemUpdate(BaseModel):
    title: str | None = Field(default=None, min_length=2, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    category: GalleryCategory | None = None
    image_url: str | None = Field(default=None, max_length=5_000_000)
    is_featured: bool | None = None
    display_order: int | None = None

    @field_validator("title", "description", mode="before")
    @classmethod
    def clean(cls, v):
        return sanitize_text(v)
