# app/schemas/checkout_schemas.py
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.models.access_grant import AccessGrant
from app.models.checkout_session import CheckoutSession
from app.models.payment_method import SavedPaymentMethod
from app.models.transaction import Transaction


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------- requests ----------

class StartCheckoutRequest(CamelModel):
    content_type: str
    content_id: str


class SelectMethodRequest(CamelModel):
    payment_method_kind: str
    method_details: Dict[str, Any] = {}


class SubmitPaymentRequest(CamelModel):
    client_price: Optional[float] = None
    payment_data: Dict[str, Any] = {}


class ProcessPaymentRequest(CamelModel):
    content_type: str
    content_id: str
    payment_method_kind: str
    payment_data: Dict[str, Any] = {}
    gateway: Optional[str] = None
    client_price: Optional[float] = None


class ResendConfirmationRequest(CamelModel):
    invoice_id: str


class SavePaymentMethodRequest(CamelModel):
    kind: str
    data: Dict[str, Any] = {}
    is_default: bool = False


# ---------- responses ----------

class ErrorBody(CamelModel):
    code: str
    message: str
    retryable: bool = False


class AccessStatusResponse(CamelModel):
    has_access: bool
    free_acquisition: bool = False
    label: Optional[str] = None
    button_text: Optional[str] = None
    access_url: Optional[str] = None


class AccessGrantRead(CamelModel):
    id: int
    user_id: int
    content_type: str
    content_id: str
    source: str
    transaction_id: Optional[int] = None
    granted_at: datetime

    @classmethod
    def from_grant(cls, grant: AccessGrant) -> "AccessGrantRead":
        return cls(
            id=grant.id,
            user_id=grant.user_id,
            content_type=grant.content_type,
            content_id=grant.content_id,
            source=grant.source,
            transaction_id=grant.transaction_id,
            granted_at=grant.granted_at,
        )


class TransactionRead(CamelModel):
    transaction_id: int
    invoice_id: str
    session_id: str
    content_type: str
    content_id: str
    amount: float
    currency: str
    gateway: str
    payment_method_kind: str
    gateway_reference: str
    status: str
    failure_reason: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_transaction(cls, txn: Transaction) -> "TransactionRead":
        return cls(
            transaction_id=txn.id,
            invoice_id=txn.invoice_id,
            session_id=txn.session_id,
            content_type=txn.content_type,
            content_id=txn.content_id,
            amount=txn.amount,
            currency=txn.currency,
            gateway=txn.gateway,
            payment_method_kind=txn.payment_method_kind,
            gateway_reference=txn.gateway_reference,
            status=txn.status,
            failure_reason=txn.failure_reason,
            created_at=txn.created_at,
            paid_at=txn.paid_at,
        )


class CheckoutSessionRead(CamelModel):
    session_id: str
    status: str
    content_type: str
    content_id: str
    title: str
    amount: float
    currency: str
    payment_method_kind: Optional[str] = None
    gateway: Optional[str] = None
    method_details: Optional[Dict[str, Any]] = None
    failure_reason: Optional[str] = None
    attempts: int = 0
    is_overdue: bool = False
    awaiting_since: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_session(cls, checkout: CheckoutSession) -> "CheckoutSessionRead":
        return cls(
            session_id=checkout.id,
            status=checkout.status,
            content_type=checkout.content_type,
            content_id=checkout.content_id,
            title=checkout.title,
            amount=checkout.amount,
            currency=checkout.currency,
            payment_method_kind=checkout.payment_method_kind,
            gateway=checkout.gateway,
            method_details=checkout.method_details,
            failure_reason=checkout.failure_reason,
            attempts=checkout.attempts,
            is_overdue=checkout.is_overdue,
            awaiting_since=checkout.awaiting_since,
            created_at=checkout.created_at,
            updated_at=checkout.updated_at,
        )


class CheckoutOutcomeResponse(CamelModel):
    session: CheckoutSessionRead
    transaction: Optional[TransactionRead] = None
    grant: Optional[AccessGrantRead] = None
    message: str
    error: Optional[ErrorBody] = None
    instructions: Optional[Dict[str, Any]] = None


class ProcessPaymentResponse(CamelModel):
    transaction_id: Optional[int] = None
    invoice_id: Optional[str] = None
    session_id: str
    status: str
    message: str
    instructions: Optional[Dict[str, Any]] = None
    error: Optional[ErrorBody] = None


class PaymentConfigResponse(CamelModel):
    publishable_key: str
    default_currency: str
    mobile_providers: Dict[str, str]
    banks: Dict[str, str]


class SavedPaymentMethodRead(CamelModel):
    id: int
    kind: str
    label: str
    brand: Optional[str] = None
    last4: Optional[str] = None
    exp_month: Optional[int] = None
    exp_year: Optional[int] = None
    provider: Optional[str] = None
    bank: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_method(cls, method: SavedPaymentMethod) -> "SavedPaymentMethodRead":
        return cls(
            id=method.id,
            kind=method.kind,
            label=method.label,
            brand=method.brand,
            last4=method.last4,
            exp_month=method.exp_month,
            exp_year=method.exp_year,
            provider=method.provider,
            bank=method.bank,
            is_default=method.is_default,
        )


class PaymentHistoryResponse(CamelModel):
    total_items: int
    total_pages: int
    current_page: int
    limit: int
    results: List[TransactionRead]


class ConfirmationResponse(CamelModel):
    transaction: TransactionRead
    has_access: bool
    access_url: Optional[str] = None
    message: str


def error_body(error) -> Optional[ErrorBody]:
    if error is None:
        return None
    return ErrorBody(code=error.code, message=error.user_message, retryable=error.retryable)


def outcome_response(outcome) -> CheckoutOutcomeResponse:
    return CheckoutOutcomeResponse(
        session=CheckoutSessionRead.from_session(outcome.session),
        transaction=(
            TransactionRead.from_transaction(outcome.transaction)
            if outcome.transaction else None
        ),
        grant=AccessGrantRead.from_grant(outcome.grant) if outcome.grant else None,
        message=outcome.message,
        error=error_body(outcome.error),
        instructions=outcome.instructions,
    )
