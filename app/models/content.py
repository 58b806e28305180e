from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime
from enum import Enum


class ContentType(str, Enum):
    COURSE = "course"
    LESSON = "lesson"
    EVENT = "event"
    BUNDLE = "bundle"


class Content(SQLModel, table=True):
    """Catalog snapshot of purchasable content. Source of truth for prices."""

    __table_args__ = (
        UniqueConstraint("content_type", "content_id", name="uq_content_type_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    content_type: str = Field(index=True)  # course | lesson | event | bundle
    content_id: str = Field(index=True)

    title: str
    slug: Optional[str] = None
    price: float = Field(default=0)
    currency: str = Field(default="MZN")
    is_published: bool = Field(default=True)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
