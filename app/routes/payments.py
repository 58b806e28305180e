import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session, select

from app.config import settings
from app.constants.checkout_status import CheckoutStatus
from app.constants.payment_methods import (
    BANKS,
    MOBILE_PROVIDERS,
    PaymentMethodKind,
    TransactionStatus,
)
from app.database import get_session
from app.gateways import get_gateways
from app.models.checkout_session import CheckoutSession
from app.models.transaction import Transaction
from app.models.user import User
from app.schemas.checkout_schemas import (
    ConfirmationResponse,
    PaymentConfigResponse,
    PaymentHistoryResponse,
    ProcessPaymentRequest,
    ProcessPaymentResponse,
    ResendConfirmationRequest,
    SavedPaymentMethodRead,
    SavePaymentMethodRequest,
    TransactionRead,
    error_body,
)
from app.services import payment_method_service
from app.services.access_grants import has_grant
from app.services.checkout_service import CheckoutOrchestrator
from app.services.content_resolver import access_url, load_reference
from app.services.errors import ContentNotFoundError
from app.services.email_service import send_payment_confirmation
from app.services.invoice_service import get_invoice_transaction, render_invoice_pdf
from app.services.reconciliation_service import (
    ConfirmationReconciler,
    LatestPendingRef,
    PaymentIntentRef,
    SessionIdRef,
    identifier_from_query,
)
from app.utils.pagination import paginate
from app.utils.token import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter()


def _confirmation_message(txn: Transaction) -> str:
    if txn.status == TransactionStatus.SUCCEEDED.value:
        return "Pagamento confirmado"
    if txn.status == TransactionStatus.FAILED.value:
        return txn.failure_reason or "Pagamento não concluído"
    if txn.payment_method_kind == PaymentMethodKind.BANK_TRANSFER.value:
        return "Transferência pendente. A confirmação pode levar 1 a 2 dias úteis."
    if txn.payment_method_kind == PaymentMethodKind.MOBILE_MONEY.value:
        return "Confirme o pagamento no seu telemóvel"
    return "Pagamento pendente de confirmação"


# ---------- one-shot checkout ----------

@router.post("/process", response_model=ProcessPaymentResponse)
def process_payment(
    payload: ProcessPaymentRequest,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    ref = load_reference(session, payload.content_type, payload.content_id)

    outcome = CheckoutOrchestrator(session, gateways).process_payment(
        current_user.id,
        ref,
        payload.payment_method_kind,
        payload.payment_data,
        client_price=payload.client_price,
        gateway=payload.gateway,
    )

    if outcome.transaction:
        status = outcome.transaction.status
    elif outcome.session.status == CheckoutStatus.COMPLETED.value:
        status = TransactionStatus.SUCCEEDED.value
    elif outcome.error and outcome.session.status != CheckoutStatus.PROCESSING.value:
        status = TransactionStatus.FAILED.value
    else:
        status = TransactionStatus.PENDING.value

    return ProcessPaymentResponse(
        transaction_id=outcome.transaction.id if outcome.transaction else None,
        invoice_id=outcome.transaction.invoice_id if outcome.transaction else None,
        session_id=outcome.session.id,
        status=status,
        message=outcome.message,
        instructions=outcome.instructions,
        error=error_body(outcome.error),
    )


# ---------- confirmation paths ----------

@router.get("/verify-session/{session_id}", response_model=TransactionRead)
def verify_session(
    session_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    txn = ConfirmationReconciler(session, gateways).reconcile(
        SessionIdRef(session_id), user_id=current_user.id
    )
    return TransactionRead.from_transaction(txn)


@router.get("/verify-intent/{payment_intent_id}", response_model=TransactionRead)
def verify_intent(
    payment_intent_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    txn = ConfirmationReconciler(session, gateways).reconcile(
        PaymentIntentRef(payment_intent_id), user_id=current_user.id
    )
    return TransactionRead.from_transaction(txn)


@router.get("/latest-payment", response_model=TransactionRead)
def latest_payment(
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    txn = ConfirmationReconciler(session, gateways).reconcile(
        LatestPendingRef(current_user.id), user_id=current_user.id
    )
    return TransactionRead.from_transaction(txn)


@router.get("/latest-payment/{content_type}/{content_id}", response_model=TransactionRead)
def latest_payment_for_content(
    content_type: str,
    content_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    txn = ConfirmationReconciler(session, gateways).reconcile(
        LatestPendingRef(current_user.id, content_type.lower(), content_id),
        user_id=current_user.id,
    )
    return TransactionRead.from_transaction(txn)


@router.get("/confirmation", response_model=ConfirmationResponse)
def confirmation(
    session_id: Optional[str] = None,
    payment_intent: Optional[str] = None,
    success: Optional[bool] = None,
    content_type: Optional[str] = Query(None, alias="contentType"),
    content_id: Optional[str] = Query(None, alias="contentId"),
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    """Confirmation page: whichever redirect parameter arrived, one answer."""
    identifier = identifier_from_query(
        session_id=session_id,
        payment_intent=payment_intent,
        success=success,
        user_id=current_user.id,
        content_type=content_type.lower() if content_type else None,
        content_id=content_id,
    )

    txn = ConfirmationReconciler(session, gateways).reconcile(
        identifier, user_id=current_user.id
    )

    granted = has_grant(session, txn.user_id, txn.content_type, txn.content_id)
    url = None
    if granted:
        try:
            url = access_url(load_reference(session, txn.content_type, txn.content_id))
        except ContentNotFoundError:
            url = None

    return ConfirmationResponse(
        transaction=TransactionRead.from_transaction(txn),
        has_access=granted,
        access_url=url,
        message=_confirmation_message(txn),
    )


# ---------- config / history ----------

@router.get("/config", response_model=PaymentConfigResponse)
def payment_config():
    return PaymentConfigResponse(
        publishable_key=settings.STRIPE_PUBLISHABLE_KEY,
        default_currency=settings.DEFAULT_CURRENCY,
        mobile_providers=MOBILE_PROVIDERS,
        banks=BANKS,
    )


@router.get("/history", response_model=PaymentHistoryResponse)
def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    query = (
        select(Transaction)
        .where(Transaction.user_id == current_user.id)
        .order_by(Transaction.created_at.desc(), Transaction.id.desc())
    )

    return paginate(
        session=session,
        query=query,
        page=page,
        limit=limit,
        serialize=TransactionRead.from_transaction,
    )


# ---------- saved payment methods ----------

@router.get("/methods", response_model=List[SavedPaymentMethodRead])
def list_payment_methods(
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    return [
        SavedPaymentMethodRead.from_method(m)
        for m in payment_method_service.list_methods(session, current_user.id)
    ]


@router.post("/methods", response_model=SavedPaymentMethodRead)
def save_payment_method(
    payload: SavePaymentMethodRequest,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    method = payment_method_service.add_method(
        session,
        current_user.id,
        payload.kind,
        payload.data,
        card_gateway=gateways["stripe"],
        make_default=payload.is_default,
    )
    return SavedPaymentMethodRead.from_method(method)


@router.delete("/methods/{method_id}")
def delete_payment_method(
    method_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    if not payment_method_service.delete_method(session, current_user.id, method_id):
        raise HTTPException(404, "Payment method not found")

    return {"message": "Payment method removed"}


# ---------- confirmation e-mail ----------

@router.post("/resend-confirmation")
def resend_confirmation(
    payload: ResendConfirmationRequest,
    session: Session = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    txn = get_invoice_transaction(session, payload.invoice_id, current_user.id)

    if not txn:
        raise HTTPException(404, "Invoice not found")

    if txn.status != TransactionStatus.SUCCEEDED.value:
        raise HTTPException(400, "Payment not confirmed yet")

    checkout = session.get(CheckoutSession, txn.session_id)
    pdf = render_invoice_pdf(txn, current_user, checkout.title)

    if not send_payment_confirmation(txn, current_user, checkout.title, pdf):
        raise HTTPException(502, "Não foi possível enviar o email")

    logger.info(f"Confirmation for {txn.invoice_id} resent to user={current_user.id}")
    return {"message": "Confirmation sent", "invoiceId": txn.invoice_id}
