from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON
from typing import Optional
from datetime import datetime
from uuid import uuid4


class CheckoutSession(SQLModel, table=True):
    __tablename__ = "checkout_session"

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)

    user_id: int = Field(foreign_key="user.id", index=True)

    # ContentReference snapshot taken when checkout opened
    content_type: str = Field(index=True)
    content_id: str = Field(index=True)
    title: str
    amount: float
    currency: str

    payment_method_kind: Optional[str] = None  # card | mobile_money | bank_transfer
    gateway: Optional[str] = None              # stripe | paytek
    # display fragments only (brand, last4, provider, bank ...)
    method_details: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    status: str = Field(default="created", index=True)
    failure_reason: Optional[str] = None
    attempts: int = Field(default=0)

    awaiting_since: Optional[datetime] = None
    is_overdue: bool = Field(default=False)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
