from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON


class CheckoutEvent(SQLModel, table=True):
    __tablename__ = "checkout_event"
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)

    session_id: str = Field(foreign_key="checkout_session.id", index=True)
    event_type: str = Field(index=True)

    label: str
    meta: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=datetime.utcnow)
    created_by: str = Field(default="system")
