import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlmodel import Session, select

from app.config import settings
from app.database import engine
from app.constants.checkout_status import CheckoutStatus
from app.constants.payment_methods import PaymentMethodKind, TransactionStatus
from app.gateways import get_gateways
from app.gateways.base import GatewayAdapter
from app.models.checkout_session import CheckoutSession
from app.models.transaction import Transaction
from app.services.checkout_event_service import log_checkout_event, transition
from app.services.errors import CheckoutError
from app.services.reconciliation_service import ConfirmationReconciler

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    checked: int = 0
    settled: int = 0
    failed: int = 0
    overdue: int = 0
    expired: int = 0
    errors: int = 0


def sweep_pending_checkouts(
    session: Session,
    gateways: Dict[str, GatewayAdapter],
    now: Optional[datetime] = None,
) -> SweepReport:
    """
    Background poll for sessions awaiting external confirmation.

    Bank transfers past BANK_TRANSFER_PENDING_DAYS are flagged overdue and
    stay pending. Sessions only expire when AWAITING_EXPIRY_DAYS is set.
    """
    now = now or datetime.utcnow()
    reconciler = ConfirmationReconciler(session, gateways)
    report = SweepReport()

    awaiting = session.exec(
        select(CheckoutSession)
        .where(CheckoutSession.status == CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION.value)
        .order_by(CheckoutSession.awaiting_since)
    ).all()

    for checkout in awaiting:
        report.checked += 1

        pending = session.exec(
            select(Transaction)
            .where(Transaction.session_id == checkout.id)
            .where(Transaction.status == TransactionStatus.PENDING.value)
        ).all()

        for txn in pending:
            try:
                txn = reconciler.reconcile_transaction(txn)
            except CheckoutError as e:
                report.errors += 1
                logger.warning(f"Sweep could not reconcile {txn.gateway_reference}: {e}")
                continue

            if txn.status == TransactionStatus.SUCCEEDED.value:
                report.settled += 1
            elif txn.status == TransactionStatus.FAILED.value:
                report.failed += 1

        session.refresh(checkout)
        if checkout.status != CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION.value:
            continue

        waited = now - (checkout.awaiting_since or checkout.created_at)

        if settings.AWAITING_EXPIRY_DAYS and waited > timedelta(days=settings.AWAITING_EXPIRY_DAYS):
            transition(
                session,
                checkout,
                CheckoutStatus.EXPIRED,
                meta={"waited_days": waited.days},
            )
            session.commit()
            report.expired += 1
            continue

        if (
            checkout.payment_method_kind == PaymentMethodKind.BANK_TRANSFER.value
            and not checkout.is_overdue
            and waited > timedelta(days=settings.BANK_TRANSFER_PENDING_DAYS)
        ):
            checkout.is_overdue = True
            checkout.updated_at = now
            session.add(checkout)
            log_checkout_event(
                session,
                checkout.id,
                event_type="overdue",
                label="Bank transfer still pending",
                meta={"waited_days": waited.days},
            )
            session.commit()
            report.overdue += 1

    logger.info(
        f"Pending checkout sweep: checked={report.checked} settled={report.settled} "
        f"failed={report.failed} overdue={report.overdue} expired={report.expired} "
        f"errors={report.errors}"
    )
    return report


def run_pending_checkout_sweep() -> SweepReport:
    with Session(engine) as session:
        return sweep_pending_checkouts(session, get_gateways())


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    run_pending_checkout_sweep()
