from sqlmodel import SQLModel, Field
from typing import Optional
from datetime import datetime


class SavedPaymentMethod(SQLModel, table=True):
    """
    A user's stored payment method.

    Only non-sensitive display fragments are kept. Card numbers, full phone
    numbers and account numbers never reach this table.
    """

    __tablename__ = "saved_payment_method"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)

    kind: str  # card | mobile_money | bank_transfer
    label: str

    # card
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    gateway_token: Optional[str] = None  # pm_... from the card gateway

    # mobile money / bank
    provider: Optional[str] = None
    bank: Optional[str] = None

    is_default: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)
