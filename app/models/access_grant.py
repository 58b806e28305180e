from sqlmodel import SQLModel, Field
from sqlalchemy import UniqueConstraint
from typing import Optional
from datetime import datetime
from enum import Enum


class GrantSource(str, Enum):
    FREE = "free"
    PAID = "paid"
    ADMIN = "admin"


class AccessGrant(SQLModel, table=True):
    __tablename__ = "access_grant"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "content_type", "content_id",
            name="uq_access_grant_user_content",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    user_id: int = Field(foreign_key="user.id", index=True)
    content_type: str
    content_id: str

    source: str  # free | paid | admin
    transaction_id: Optional[int] = Field(
        default=None, foreign_key="payment_transaction.id"
    )

    granted_at: datetime = Field(default_factory=datetime.utcnow)
