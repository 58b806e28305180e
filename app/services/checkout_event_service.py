# app/services/checkout_event_service.py

import logging
from datetime import datetime
from typing import Iterable, Optional
from uuid import uuid4

from sqlmodel import Session

from app.constants.checkout_status import CheckoutStatus, can_transition
from app.models.checkout_event import CheckoutEvent
from app.models.checkout_session import CheckoutSession
from app.services.errors import InvalidTransitionError

logger = logging.getLogger(__name__)

LABELS = {
    "created": "Checkout started",
    "method_selected": "Payment method selected",
    "processing": "Payment submitted",
    "awaiting_external_confirmation": "Waiting for payment confirmation",
    "succeeded": "Payment confirmed",
    "grant_requested": "Access requested",
    "completed": "Access granted",
    "failed": "Payment failed",
    "expired": "Checkout expired",
}


def log_checkout_event(
    session: Session,
    session_id: str,
    event_type: str,
    label: str,
    created_by: str = "system",
    meta: Optional[dict] = None,
):
    """
    Append-only event log for the checkout timeline
    """

    event = CheckoutEvent(
        id=str(uuid4()),
        session_id=session_id,
        event_type=event_type,
        label=label,
        meta=meta,
        created_by=created_by,
        created_at=datetime.utcnow(),
    )

    session.add(event)


def transition(
    session: Session,
    checkout: CheckoutSession,
    target: CheckoutStatus,
    *,
    reason: Optional[str] = None,
    meta: Optional[dict] = None,
    created_by: str = "system",
) -> CheckoutSession:
    target = CheckoutStatus(target)
    current = checkout.status

    if not can_transition(current, target.value):
        raise InvalidTransitionError(current, target.value)

    now = datetime.utcnow()
    checkout.status = target.value
    checkout.updated_at = now

    if target == CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION:
        checkout.awaiting_since = now
    if target == CheckoutStatus.FAILED:
        checkout.failure_reason = reason
    if target == CheckoutStatus.METHOD_SELECTED:
        checkout.failure_reason = None

    session.add(checkout)

    log_checkout_event(
        session,
        checkout.id,
        event_type=target.value,
        label=LABELS[target.value],
        created_by=created_by,
        meta={"from": current, **({"reason": reason} if reason else {}), **(meta or {})},
    )

    logger.info(f"Checkout {checkout.id}: {current} -> {target.value}")
    return checkout


def walk(
    session: Session,
    checkout: CheckoutSession,
    path: Iterable[CheckoutStatus],
    *,
    reason: Optional[str] = None,
) -> CheckoutSession:
    """
    Move along ``path`` taking every step the state machine allows from the
    current status and skipping the rest.

    Confirmations can reach a session in several states (still processing,
    awaiting confirmation, or failed after a newer attempt); this brings each
    of them to the same end state.
    """
    for target in path:
        if checkout.status == CheckoutStatus(target).value:
            continue
        if can_transition(checkout.status, CheckoutStatus(target).value):
            transition(session, checkout, target, reason=reason)
    return checkout
