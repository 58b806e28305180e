from fastapi import APIRouter, Depends
from sqlmodel import Session, select

from app.database import get_session
from app.gateways import get_gateways
from app.models.checkout_event import CheckoutEvent
from app.models.user import User
from app.schemas.checkout_schemas import (
    CheckoutOutcomeResponse,
    SelectMethodRequest,
    StartCheckoutRequest,
    SubmitPaymentRequest,
    outcome_response,
)
from app.services.checkout_service import (
    CheckoutOrchestrator,
    RetryCheckout,
    SelectMethod,
    SubmitPayment,
)
from app.services.content_resolver import load_reference
from app.utils.token import get_current_user

router = APIRouter()


@router.post("/sessions", response_model=CheckoutOutcomeResponse)
def start_checkout(
    payload: StartCheckoutRequest,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    ref = load_reference(session, payload.content_type, payload.content_id)
    outcome = CheckoutOrchestrator(session, gateways).start_checkout(current_user.id, ref)
    return outcome_response(outcome)


@router.get("/sessions/{session_id}", response_model=CheckoutOutcomeResponse)
def get_checkout(
    session_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    orchestrator = CheckoutOrchestrator(session, gateways)
    checkout = orchestrator.get(session_id, current_user.id)
    return outcome_response(orchestrator.outcome(checkout))


@router.get("/sessions/{session_id}/events")
def get_checkout_events(
    session_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    """Timeline of a checkout session, oldest first"""
    CheckoutOrchestrator(session, gateways).get(session_id, current_user.id)

    events = session.exec(
        select(CheckoutEvent)
        .where(CheckoutEvent.session_id == session_id)
        .order_by(CheckoutEvent.created_at)
    ).all()

    return [
        {
            "eventType": e.event_type,
            "label": e.label,
            "meta": e.meta,
            "createdAt": e.created_at,
        }
        for e in events
    ]


@router.post("/sessions/{session_id}/method", response_model=CheckoutOutcomeResponse)
def select_method(
    session_id: str,
    payload: SelectMethodRequest,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    outcome = CheckoutOrchestrator(session, gateways).advance(
        session_id,
        SelectMethod(payload.payment_method_kind, payload.method_details),
        user_id=current_user.id,
    )
    return outcome_response(outcome)


@router.post("/sessions/{session_id}/pay", response_model=CheckoutOutcomeResponse)
def submit_payment(
    session_id: str,
    payload: SubmitPaymentRequest,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    outcome = CheckoutOrchestrator(session, gateways).advance(
        session_id,
        SubmitPayment(client_price=payload.client_price, payment_data=payload.payment_data),
        user_id=current_user.id,
    )
    return outcome_response(outcome)


@router.post("/sessions/{session_id}/retry", response_model=CheckoutOutcomeResponse)
def retry_checkout(
    session_id: str,
    session: Session = Depends(get_session),
    gateways: dict = Depends(get_gateways),
    current_user: User = Depends(get_current_user),
):
    outcome = CheckoutOrchestrator(session, gateways).advance(
        session_id, RetryCheckout(), user_id=current_user.id
    )
    return outcome_response(outcome)
