"""
Confirmation reconciliation.

Redirects carrying ``session_id`` or ``payment_intent``, latest-payment polling,
the background sweep and synchronous charge results all converge here on one
canonical Transaction per gateway reference and one AccessGrant per
(user, content).
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Optional, Union

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.constants.checkout_status import CheckoutStatus
from app.constants.payment_methods import GatewayName, TransactionStatus
from app.gateways.base import ChargeResult, GatewayAdapter, VerifyResult
from app.models.access_grant import GrantSource
from app.models.checkout_session import CheckoutSession
from app.models.transaction import Transaction
from app.models.user import User
from app.services.access_grants import get_grant, grant_if_absent
from app.services.checkout_event_service import walk
from app.services.email_service import send_payment_confirmation
from app.services.errors import (
    GatewayRejected,
    GatewayUnavailable,
    ReconciliationError,
    ValidationError,
)
from app.services.invoice_service import render_invoice_pdf

logger = logging.getLogger(__name__)

SUCCESS_PATH = (
    CheckoutStatus.METHOD_SELECTED,
    CheckoutStatus.PROCESSING,
    CheckoutStatus.SUCCEEDED,
    CheckoutStatus.GRANT_REQUESTED,
    CheckoutStatus.COMPLETED,
)


@dataclass(frozen=True)
class SessionIdRef:
    session_id: str


@dataclass(frozen=True)
class PaymentIntentRef:
    payment_intent_id: str


@dataclass(frozen=True)
class LatestPendingRef:
    user_id: int
    content_type: Optional[str] = None
    content_id: Optional[str] = None


Identifier = Union[SessionIdRef, PaymentIntentRef, LatestPendingRef]


def identifier_from_query(
    *,
    session_id: Optional[str] = None,
    payment_intent: Optional[str] = None,
    success: Optional[bool] = None,
    user_id: Optional[int] = None,
    content_type: Optional[str] = None,
    content_id: Optional[str] = None,
) -> Identifier:
    """Map confirmation page query parameters to a reconcile identifier."""
    given = [value for value in (session_id, payment_intent, success) if value]

    if len(given) != 1:
        raise ValidationError(
            "Exactly one of session_id, payment_intent or success=true is expected"
        )

    if session_id:
        return SessionIdRef(session_id)
    if payment_intent:
        return PaymentIntentRef(payment_intent)

    if user_id is None:
        raise ValidationError("Latest payment lookup requires a user")
    return LatestPendingRef(user_id, content_type, content_id)


class ConfirmationReconciler:
    def __init__(self, session: Session, gateways: Dict[str, GatewayAdapter]):
        self.session = session
        self.gateways = gateways

    # ---------- lookups ----------

    def by_reference(self, reference: str) -> Optional[Transaction]:
        return self.session.exec(
            select(Transaction).where(
                or_(
                    Transaction.gateway_reference == reference,
                    Transaction.alias_reference == reference,
                )
            )
        ).first()

    def latest_for_user(
        self,
        user_id: int,
        content_type: Optional[str] = None,
        content_id: Optional[str] = None,
    ) -> Optional[Transaction]:
        query = select(Transaction).where(Transaction.user_id == user_id)
        if content_type and content_id:
            query = (
                query.where(Transaction.content_type == content_type)
                .where(Transaction.content_id == str(content_id))
            )

        newest_first = (Transaction.created_at.desc(), Transaction.id.desc())

        pending = self.session.exec(
            query.where(Transaction.status == TransactionStatus.PENDING.value)
            .order_by(*newest_first)
        ).first()
        if pending:
            return pending

        return self.session.exec(query.order_by(*newest_first)).first()

    def _latest_for_checkout(self, checkout_id: str) -> Optional[Transaction]:
        return self.session.exec(
            select(Transaction)
            .where(Transaction.session_id == checkout_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).first()

    # ---------- entry points ----------

    def reconcile(self, identifier: Identifier, user_id: Optional[int] = None) -> Transaction:
        """
        Resolve ``identifier`` to its canonical Transaction and settle it.

        Safe to call any number of times: a Transaction that already
        succeeded with its grant in place is returned without touching the
        gateway.
        """
        verified = None

        if isinstance(identifier, LatestPendingRef):
            txn = self.latest_for_user(
                identifier.user_id, identifier.content_type, identifier.content_id
            )
            if txn is None:
                raise ReconciliationError(
                    "No payment found", retryable=False, status_code=404
                )
        else:
            reference = (
                identifier.session_id
                if isinstance(identifier, SessionIdRef)
                else identifier.payment_intent_id
            )
            txn = self.by_reference(reference)

            if txn is None and isinstance(identifier, SessionIdRef):
                # our own checkout session id works as well
                txn = self._latest_for_checkout(reference)

            if txn is None:
                txn, verified = self._materialize(reference, user_id)

        if user_id is not None and txn.user_id != user_id:
            raise ReconciliationError("Payment not found", retryable=False, status_code=404)

        return self._converge(txn, verified)

    def reconcile_transaction(self, txn: Transaction) -> Transaction:
        return self._converge(txn)

    def settle_charge(
        self,
        checkout: CheckoutSession,
        result: ChargeResult,
    ) -> Transaction:
        """Record a charge the orchestrator just submitted and settle it."""
        txn = self.by_reference(result.gateway_reference)

        if txn is None:
            txn = Transaction(
                session_id=checkout.id,
                user_id=checkout.user_id,
                content_type=checkout.content_type,
                content_id=checkout.content_id,
                amount=checkout.amount,
                currency=checkout.currency,
                gateway=checkout.gateway,
                payment_method_kind=checkout.payment_method_kind,
                gateway_reference=result.gateway_reference,
            )
            self.session.add(txn)
            self.session.flush()

        if result.status == TransactionStatus.SUCCEEDED.value:
            self._mark_succeeded(txn)
        elif result.status == TransactionStatus.FAILED.value:
            self._mark_failed(txn, "failed", result.message)
        else:
            walk(self.session, checkout, [CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION])
            self.session.commit()

        self.session.refresh(txn)
        return txn

    # ---------- internals ----------

    def _materialize(self, reference: str, user_id: Optional[int] = None):
        """
        A confirmation arrived before we knew the reference: ask the gateway.

        A hosted checkout session and its payment intent are two ids for one
        charge. Whichever arrives first creates the Transaction; the other is
        kept in ``alias_reference`` so later lookups by either id find it.
        """
        verified = self._verify(GatewayName.STRIPE.value, reference)

        alias = verified.metadata.get("payment_intent")
        if alias == reference:
            alias = None
        if alias:
            existing = self.by_reference(alias)
            if existing:
                self._remember_alias(existing, reference)
                return existing, None

        checkout_id = verified.metadata.get("checkout_session_id")
        checkout = self.session.get(CheckoutSession, checkout_id) if checkout_id else None
        if checkout is None:
            logger.error(f"Verified payment {reference} is not linked to a checkout")
            raise ReconciliationError(
                "Payment is not linked to a checkout", retryable=False, status_code=404
            )

        if user_id is not None and checkout.user_id != user_id:
            raise ReconciliationError("Payment not found", retryable=False, status_code=404)

        if not reference.startswith("cs_"):
            hosted = self._unlinked_hosted_session(checkout.id, verified.amount)
            if hosted:
                self._remember_alias(hosted, reference)
                return hosted, None

        txn = Transaction(
            session_id=checkout.id,
            user_id=checkout.user_id,
            content_type=checkout.content_type,
            content_id=checkout.content_id,
            amount=checkout.amount,
            currency=checkout.currency,
            gateway=GatewayName.STRIPE.value,
            payment_method_kind=checkout.payment_method_kind or "card",
            gateway_reference=reference,
            alias_reference=alias,
        )

        try:
            with self.session.begin_nested():
                self.session.add(txn)
        except IntegrityError:
            txn = self.by_reference(reference) or (self.by_reference(alias) if alias else None)
            if txn is None:
                raise
        self.session.commit()

        logger.info(f"Materialized transaction {txn.invoice_id} from {reference}")
        return txn, verified

    def _unlinked_hosted_session(self, checkout_id: str, amount: float) -> Optional[Transaction]:
        """Hosted-session Transaction whose payment intent was not known yet."""
        candidates = self.session.exec(
            select(Transaction)
            .where(Transaction.session_id == checkout_id)
            .where(Transaction.gateway == GatewayName.STRIPE.value)
            .where(Transaction.gateway_reference.startswith("cs_"))
            .where(Transaction.alias_reference.is_(None))
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).all()
        for txn in candidates:
            if not amount or abs(txn.amount - amount) <= 0.005:
                return txn
        return None

    def _remember_alias(self, txn: Transaction, reference: str):
        if not reference or txn.alias_reference or txn.gateway_reference == reference:
            return

        txn.alias_reference = reference
        try:
            with self.session.begin_nested():
                self.session.add(txn)
        except IntegrityError:
            logger.warning(
                f"Reference {reference} already belongs to another transaction, "
                f"not aliasing {txn.invoice_id}"
            )
            self.session.refresh(txn)
        self.session.commit()

    def _verify(self, gateway_name: str, reference: str) -> VerifyResult:
        gateway = self.gateways.get(gateway_name)
        if gateway is None:
            raise ReconciliationError(
                f"No gateway adapter for {gateway_name}", retryable=False, status_code=502
            )

        try:
            return gateway.verify(reference)
        except GatewayUnavailable as e:
            logger.warning(f"Verify {reference} on {gateway_name} unavailable: {e}")
            raise ReconciliationError(str(e)) from e
        except GatewayRejected as e:
            raise ReconciliationError(
                f"Unknown payment reference {reference}", retryable=False, status_code=404
            ) from e

    def _converge(self, txn: Transaction, verified: Optional[VerifyResult] = None) -> Transaction:
        if txn.status == TransactionStatus.SUCCEEDED.value:
            if get_grant(self.session, txn.user_id, txn.content_type, txn.content_id) is None:
                logger.warning(f"Transaction {txn.invoice_id} succeeded without grant, granting")
                self._mark_succeeded(txn)
            return txn

        if txn.status == TransactionStatus.FAILED.value:
            return txn

        if verified is None:
            verified = self._verify(txn.gateway, txn.gateway_reference)

        if txn.gateway_reference.startswith("cs_"):
            self._remember_alias(txn, verified.metadata.get("payment_intent"))

        if verified.status == "succeeded":
            if verified.amount and abs(verified.amount - txn.amount) > 0.005:
                logger.error(
                    f"Amount mismatch on {txn.gateway_reference}: "
                    f"paid {verified.amount} expected {txn.amount}"
                )
                raise ReconciliationError(
                    "Paid amount does not match the checkout", retryable=False, status_code=409
                )
            self._mark_succeeded(txn)
        elif verified.status in ("failed", "expired"):
            self._mark_failed(txn, verified.status, verified.metadata.get("failure_reason"))

        self.session.refresh(txn)
        return txn

    def _mark_succeeded(self, txn: Transaction):
        now = datetime.utcnow()

        # compare-and-swap: only one caller moves pending -> succeeded
        result = self.session.execute(
            update(Transaction)
            .where(Transaction.id == txn.id)
            .where(Transaction.status == TransactionStatus.PENDING.value)
            .values(status=TransactionStatus.SUCCEEDED.value, paid_at=now, updated_at=now)
        )
        self.session.refresh(txn)

        if txn.status != TransactionStatus.SUCCEEDED.value:
            self.session.commit()
            return

        if result.rowcount:
            logger.info(f"Transaction {txn.invoice_id} succeeded ({txn.gateway_reference})")

        grant_if_absent(
            self.session,
            user_id=txn.user_id,
            content_type=txn.content_type,
            content_id=txn.content_id,
            source=GrantSource.PAID,
            transaction_id=txn.id,
        )

        checkout = self.session.get(CheckoutSession, txn.session_id)
        if checkout.status == CheckoutStatus.EXPIRED.value:
            logger.warning(f"Payment settled after checkout {checkout.id} expired")
        walk(self.session, checkout, SUCCESS_PATH)

        self.session.commit()

        if result.rowcount:
            self._notify_paid(txn, checkout)

    def _notify_paid(self, txn: Transaction, checkout: CheckoutSession):
        user = self.session.get(User, txn.user_id)
        if user is None:
            return
        pdf = render_invoice_pdf(txn, user, checkout.title)
        send_payment_confirmation(txn, user, checkout.title, pdf)

    def _mark_failed(self, txn: Transaction, status: str, reason: Optional[str] = None):
        now = datetime.utcnow()
        reason = reason or ("Pagamento expirado" if status == "expired" else "Pagamento recusado")

        result = self.session.execute(
            update(Transaction)
            .where(Transaction.id == txn.id)
            .where(Transaction.status == TransactionStatus.PENDING.value)
            .values(
                status=TransactionStatus.FAILED.value,
                failure_reason=reason,
                updated_at=now,
            )
        )
        self.session.refresh(txn)

        if result.rowcount:
            logger.info(f"Transaction {txn.invoice_id} {status}: {reason}")
            checkout = self.session.get(CheckoutSession, txn.session_id)
            if status == "expired" and checkout.status == CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION.value:
                walk(self.session, checkout, [CheckoutStatus.EXPIRED])
            else:
                walk(self.session, checkout, [CheckoutStatus.FAILED], reason=reason)

        self.session.commit()
