"""
Checkout session orchestration.

Every public method returns a CheckoutOutcome. Gateway and validation errors
raised while advancing a session are captured on the outcome so the HTTP layer
only renders state; programming errors (invalid transitions on a session the
caller does not own, missing sessions) still raise.
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app.constants.checkout_status import CheckoutStatus
from app.constants.payment_methods import (
    BANKS,
    METHOD_GATEWAYS,
    MOBILE_PROVIDERS,
    PaymentMethodKind,
)
from app.gateways.base import GatewayAdapter
from app.models.access_grant import AccessGrant, GrantSource
from app.models.checkout_session import CheckoutSession
from app.models.payment_method import SavedPaymentMethod
from app.models.transaction import Transaction
from app.services.access_grants import get_grant, grant_if_absent
from app.services.checkout_event_service import log_checkout_event, transition
from app.services.content_resolver import ContentReference, load_reference
from app.services.entitlement_service import (
    EntitlementChecker,
    build_entitlement_checker,
)
from app.services.errors import (
    CheckoutError,
    CheckoutSessionNotFoundError,
    ContentNotFoundError,
    EntitlementCheckFailed,
    GatewayAuthError,
    GatewayError,
    GatewayRejected,
    GatewayUnavailable,
    InvalidTransitionError,
    PriceMismatchError,
    ValidationError,
)
from app.services.reconciliation_service import ConfirmationReconciler

logger = logging.getLogger(__name__)

FREE_GRANT_ATTEMPTS = 3
FREE_GRANT_BACKOFF_SECONDS = 0.2

PHONE_RE = re.compile(r"^(?:\+?258)?8[2-7]\d{7}$")


@dataclass
class SelectMethod:
    kind: str
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SubmitPayment:
    client_price: Optional[float] = None
    payment_data: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RetryCheckout:
    pass


CheckoutInput = Union[SelectMethod, SubmitPayment, RetryCheckout]


@dataclass
class CheckoutOutcome:
    session: CheckoutSession
    transaction: Optional[Transaction] = None
    grant: Optional[AccessGrant] = None
    error: Optional[CheckoutError] = None
    instructions: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error:
            return self.error.user_message
        status = self.session.status
        if status == CheckoutStatus.COMPLETED.value:
            return "Acesso liberado"
        if status == CheckoutStatus.AWAITING_EXTERNAL_CONFIRMATION.value:
            return "Pagamento pendente de confirmação"
        if status == CheckoutStatus.EXPIRED.value:
            return "Sessão de pagamento expirada"
        return "Prossiga com o pagamento"


class CheckoutOrchestrator:
    def __init__(
        self,
        session: Session,
        gateways: Dict[str, GatewayAdapter],
        entitlement: Optional[EntitlementChecker] = None,
    ):
        self.session = session
        self.gateways = gateways
        self.entitlement = entitlement or build_entitlement_checker(session)
        self.reconciler = ConfirmationReconciler(session, gateways)

    # ---------- queries ----------

    def get(self, session_id: str, user_id: Optional[int] = None) -> CheckoutSession:
        checkout = self.session.get(CheckoutSession, session_id)
        if not checkout or (user_id is not None and checkout.user_id != user_id):
            raise CheckoutSessionNotFoundError(f"Checkout {session_id} not found")
        return checkout

    def outcome(self, checkout: CheckoutSession) -> CheckoutOutcome:
        txn = self.session.exec(
            select(Transaction)
            .where(Transaction.session_id == checkout.id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
        ).first()
        grant = get_grant(
            self.session, checkout.user_id, checkout.content_type, checkout.content_id
        )
        return CheckoutOutcome(
            session=checkout,
            transaction=txn,
            grant=grant,
            error=(
                CheckoutError(checkout.failure_reason)
                if checkout.status == CheckoutStatus.FAILED.value
                else None
            ),
        )

    # ---------- start ----------

    def start_checkout(self, user_id: int, ref: ContentReference) -> CheckoutOutcome:
        if user_id is None:
            raise ValidationError("Authentication required to checkout")

        try:
            check = self.entitlement.check(user_id, ref)
        except EntitlementCheckFailed as e:
            # grant-if-absent keeps a redundant checkout harmless
            logger.warning(f"Entitlement check failed, opening checkout anyway: {e}")
            check = None

        checkout = CheckoutSession(
            user_id=user_id,
            content_type=ref.content_type.value,
            content_id=ref.content_id,
            title=ref.title,
            amount=ref.price,
            currency=ref.currency,
        )
        self.session.add(checkout)
        self.session.flush()
        log_checkout_event(
            self.session,
            checkout.id,
            event_type=CheckoutStatus.CREATED.value,
            label="Checkout started",
            created_by=str(user_id),
            meta={"amount": ref.price, "currency": ref.currency},
        )

        if check is not None and check.has_access:
            return self._already_granted(checkout)

        if ref.is_free:
            return self._grant_free(checkout)

        self.session.commit()
        self.session.refresh(checkout)
        logger.info(
            f"Checkout {checkout.id} opened: user={user_id} "
            f"{checkout.content_type}/{checkout.content_id} {checkout.amount} {checkout.currency}"
        )
        return CheckoutOutcome(session=checkout)

    def _already_granted(self, checkout: CheckoutSession) -> CheckoutOutcome:
        grant = get_grant(
            self.session, checkout.user_id, checkout.content_type, checkout.content_id
        )
        transition(self.session, checkout, CheckoutStatus.GRANT_REQUESTED, meta={"existing": True})
        transition(self.session, checkout, CheckoutStatus.COMPLETED)
        self.session.commit()
        self.session.refresh(checkout)
        return CheckoutOutcome(session=checkout, grant=grant)

    def _grant_free(self, checkout: CheckoutSession) -> CheckoutOutcome:
        transition(self.session, checkout, CheckoutStatus.GRANT_REQUESTED, meta={"free": True})
        self.session.commit()

        for attempt in range(1, FREE_GRANT_ATTEMPTS + 1):
            try:
                grant = grant_if_absent(
                    self.session,
                    user_id=checkout.user_id,
                    content_type=checkout.content_type,
                    content_id=checkout.content_id,
                    source=GrantSource.FREE,
                )
                transition(self.session, checkout, CheckoutStatus.COMPLETED)
                self.session.commit()
                break
            except OperationalError as e:
                self.session.rollback()
                if attempt == FREE_GRANT_ATTEMPTS:
                    logger.error(f"Free grant for checkout {checkout.id} failed: {e}")
                    raise
                logger.warning(f"Free grant attempt {attempt} failed, retrying: {e}")
                time.sleep(FREE_GRANT_BACKOFF_SECONDS * attempt)

        self.session.refresh(checkout)
        self.session.refresh(grant)
        return CheckoutOutcome(session=checkout, grant=grant)

    # ---------- advance ----------

    def advance(
        self,
        session_id: str,
        step: CheckoutInput,
        user_id: Optional[int] = None,
    ) -> CheckoutOutcome:
        checkout = self.get(session_id, user_id)

        if isinstance(step, SelectMethod):
            return self.select_method(checkout, step)
        if isinstance(step, SubmitPayment):
            return self.submit_payment(checkout, step)
        if isinstance(step, RetryCheckout):
            return self.retry(checkout)

        raise ValidationError(f"Unknown checkout step: {type(step).__name__}")

    def select_method(self, checkout: CheckoutSession, step: SelectMethod) -> CheckoutOutcome:
        try:
            kind = PaymentMethodKind(step.kind)
        except ValueError:
            return CheckoutOutcome(
                session=checkout,
                error=ValidationError(f"Unsupported payment method: {step.kind}"),
            )

        details = step.details or {}
        display: Dict[str, Any] = {}

        if kind == PaymentMethodKind.MOBILE_MONEY:
            provider = (details.get("provider") or "").lower()
            if provider not in MOBILE_PROVIDERS:
                return CheckoutOutcome(
                    session=checkout,
                    error=ValidationError("Selecione M-Pesa ou e-Mola"),
                )
            display = {"provider": provider, "providerLabel": MOBILE_PROVIDERS[provider]}

        elif kind == PaymentMethodKind.BANK_TRANSFER:
            bank = (details.get("bank") or "bim").lower()
            if bank not in BANKS:
                return CheckoutOutcome(
                    session=checkout,
                    error=ValidationError(f"Banco não suportado: {bank}"),
                )
            display = {"bank": bank, "bankLabel": BANKS[bank]}

        gateway = METHOD_GATEWAYS[kind].value
        if gateway not in self.gateways:
            logger.error(f"No gateway adapter configured for {gateway}")
            return CheckoutOutcome(session=checkout, error=GatewayAuthError(f"{gateway} not configured"))

        if checkout.status != CheckoutStatus.METHOD_SELECTED.value:
            transition(
                self.session,
                checkout,
                CheckoutStatus.METHOD_SELECTED,
                meta={"kind": kind.value, "gateway": gateway},
            )
        else:
            log_checkout_event(
                self.session,
                checkout.id,
                event_type="method_changed",
                label="Payment method changed",
                meta={"kind": kind.value, "gateway": gateway},
            )

        checkout.payment_method_kind = kind.value
        checkout.gateway = gateway
        checkout.method_details = display
        self.session.add(checkout)
        self.session.commit()
        self.session.refresh(checkout)

        return CheckoutOutcome(session=checkout)

    def retry(self, checkout: CheckoutSession) -> CheckoutOutcome:
        """Explicit retry after a failure, keeping the previous method."""
        transition(
            self.session,
            checkout,
            CheckoutStatus.METHOD_SELECTED,
            meta={"retry": True, "kind": checkout.payment_method_kind},
        )
        self.session.commit()
        self.session.refresh(checkout)
        return CheckoutOutcome(session=checkout)

    def submit_payment(self, checkout: CheckoutSession, step: SubmitPayment) -> CheckoutOutcome:
        """
        Charge the selected method.

        A session left in ``processing`` by an unconfirmed charge (timeout,
        gateway outage) is resubmitted with the same attempt number, so the
        gateway sees the same idempotency key and reference and cannot charge
        twice.
        """
        resuming = checkout.status == CheckoutStatus.PROCESSING.value
        if checkout.status != CheckoutStatus.METHOD_SELECTED.value and not resuming:
            raise InvalidTransitionError(checkout.status, CheckoutStatus.PROCESSING.value)

        # 1. price is re-validated against the catalog before anything is charged
        try:
            current = load_reference(self.session, checkout.content_type, checkout.content_id)
        except ContentNotFoundError as e:
            return self._fail(checkout, e)

        mismatch = current.price != checkout.amount
        if step.client_price is not None:
            try:
                client_price = round(float(step.client_price), 2)
            except (TypeError, ValueError):
                return CheckoutOutcome(
                    session=checkout, error=ValidationError("Invalid client price")
                )
            mismatch = mismatch or client_price != current.price
        else:
            client_price = checkout.amount

        if mismatch:
            logger.warning(
                f"Price mismatch on checkout {checkout.id}: "
                f"catalog={current.price} session={checkout.amount} client={client_price}"
            )
            return self._fail(checkout, PriceMismatchError(current.price, client_price))

        gateway = self.gateways[checkout.gateway]

        # 2. method details for the gateway; missing fields keep the session as is
        try:
            charge_details = self._charge_details(checkout, gateway, step.payment_data or {})
        except ValidationError as e:
            return CheckoutOutcome(session=checkout, error=e)
        except GatewayUnavailable as e:
            logger.warning(f"Tokenization for checkout {checkout.id} unavailable: {e}")
            return CheckoutOutcome(session=checkout, error=e)
        except GatewayError as e:
            return self._fail(checkout, e)

        if resuming:
            log_checkout_event(
                self.session,
                checkout.id,
                event_type="charge_resubmitted",
                label="Charge resubmitted",
                meta={"attempt": checkout.attempts, "gateway": gateway.name},
            )
        else:
            checkout.attempts += 1
            transition(
                self.session,
                checkout,
                CheckoutStatus.PROCESSING,
                meta={"attempt": checkout.attempts, "gateway": gateway.name},
            )
        self.session.commit()

        # 3. charge
        try:
            result = gateway.charge(
                checkout.id,
                checkout.amount,
                checkout.currency,
                charge_details,
                attempt=checkout.attempts,
                metadata={
                    "user_id": str(checkout.user_id),
                    "content_type": checkout.content_type,
                    "content_id": checkout.content_id,
                },
            )
        except GatewayUnavailable as e:
            # the charge may or may not exist; stay in processing until resubmitted
            logger.warning(
                f"Charge for checkout {checkout.id} attempt {checkout.attempts} unconfirmed: {e}"
            )
            log_checkout_event(
                self.session,
                checkout.id,
                event_type="charge_unconfirmed",
                label="Gateway did not confirm the charge",
                meta={"attempt": checkout.attempts, "error": str(e)},
            )
            self.session.commit()
            self.session.refresh(checkout)
            return CheckoutOutcome(session=checkout, error=e)
        except GatewayError as e:
            return self._fail(checkout, e)

        # 4. settle through the same path redirects and polling use
        txn = self.reconciler.settle_charge(checkout, result)
        self.session.refresh(checkout)

        grant = get_grant(
            self.session, checkout.user_id, checkout.content_type, checkout.content_id
        )
        error = None
        if checkout.status == CheckoutStatus.FAILED.value:
            error = GatewayRejected(checkout.failure_reason)

        return CheckoutOutcome(
            session=checkout,
            transaction=txn,
            grant=grant,
            error=error,
            instructions=result.instructions,
        )

    def process_payment(
        self,
        user_id: int,
        ref: ContentReference,
        kind: str,
        payment_data: Dict[str, Any],
        client_price: Optional[float] = None,
        gateway: Optional[str] = None,
    ) -> CheckoutOutcome:
        """One-shot checkout: start, select the method and submit the payment."""
        outcome = self.start_checkout(user_id, ref)
        if outcome.session.status == CheckoutStatus.COMPLETED.value:
            return outcome

        try:
            expected = METHOD_GATEWAYS[PaymentMethodKind(kind)].value
        except ValueError:
            expected = None
        if gateway and expected and gateway != expected:
            return CheckoutOutcome(
                session=outcome.session,
                error=ValidationError(f"{kind} payments go through {expected}, not {gateway}"),
            )

        outcome = self.select_method(outcome.session, SelectMethod(kind, payment_data))
        if not outcome.ok:
            return outcome

        return self.submit_payment(
            outcome.session, SubmitPayment(client_price=client_price, payment_data=payment_data)
        )

    # ---------- internals ----------

    def _charge_details(
        self,
        checkout: CheckoutSession,
        gateway: GatewayAdapter,
        payment_data: Dict[str, Any],
    ) -> Dict[str, Any]:
        kind = checkout.payment_method_kind
        display = dict(checkout.method_details or {})

        if kind == PaymentMethodKind.CARD.value:
            saved_id = payment_data.get("savedMethodId") or payment_data.get("saved_method_id")
            if saved_id:
                try:
                    saved = self.session.get(SavedPaymentMethod, int(saved_id))
                except (TypeError, ValueError):
                    raise ValidationError("Saved payment method not found")
                if not saved or saved.user_id != checkout.user_id or not saved.gateway_token:
                    raise ValidationError("Saved payment method not found")
                token = saved.gateway_token
                display.update({"brand": saved.brand, "last4": saved.last4})
            else:
                token = gateway.tokenize_payment_method(payment_data)
                display.update(
                    {k: payment_data[k] for k in ("brand", "last4") if payment_data.get(k)}
                )
            details = {"kind": kind, "token": token}

        elif kind == PaymentMethodKind.MOBILE_MONEY.value:
            phone = re.sub(
                r"[\s-]", "", str(payment_data.get("phoneNumber") or payment_data.get("phone_number") or "")
            )
            if not PHONE_RE.match(phone):
                raise ValidationError("Número de telefone inválido")
            details = {
                "kind": kind,
                "provider": display.get("provider"),
                "phone_number": phone,
            }
            display["phoneLast4"] = phone[-4:]

        else:
            details = {"kind": kind, "bank": display.get("bank")}

        checkout.method_details = display
        self.session.add(checkout)
        return details

    def _fail(self, checkout: CheckoutSession, error: CheckoutError) -> CheckoutOutcome:
        if isinstance(error, GatewayAuthError):
            logger.error(f"Gateway misconfigured on checkout {checkout.id}: {error}")
        else:
            logger.warning(f"Checkout {checkout.id} failed: {error}")

        transition(
            self.session,
            checkout,
            CheckoutStatus.FAILED,
            reason=error.user_message,
            meta={"code": error.code},
        )
        self.session.commit()
        self.session.refresh(checkout)
        return CheckoutOutcome(session=checkout, error=error)
