from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime
from uuid import uuid4


def new_invoice_id() -> str:
    return f"INV-{uuid4().hex[:8].upper()}"


class Transaction(SQLModel, table=True):
    __tablename__ = "payment_transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    invoice_id: str = Field(default_factory=new_invoice_id, unique=True, index=True)

    session_id: str = Field(foreign_key="checkout_session.id", index=True)
    user_id: int = Field(index=True)
    content_type: str
    content_id: str

    amount: float
    currency: str

    gateway: str                # stripe | paytek
    payment_method_kind: str    # card | mobile_money | bank_transfer
    # payment intent / checkout session / paytek charge id
    gateway_reference: str = Field(unique=True, index=True)
    # the other id of the same charge (payment intent <-> checkout session)
    alias_reference: Optional[str] = Field(default=None, unique=True, index=True)

    status: str = Field(default="pending", index=True)  # pending | succeeded | failed
    failure_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    paid_at: Optional[datetime] = None
