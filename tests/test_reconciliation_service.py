import pytest
from sqlmodel import select

from app.gateways.base import VerifyResult
from app.models.access_grant import AccessGrant
from app.models.transaction import Transaction
from app.services import reconciliation_service
from app.services.checkout_service import CheckoutOrchestrator, SelectMethod, SubmitPayment
from app.services.content_resolver import load_reference
from app.services.errors import GatewayRejected, GatewayUnavailable, ReconciliationError, ValidationError
from app.services.reconciliation_service import (
    ConfirmationReconciler,
    LatestPendingRef,
    PaymentIntentRef,
    SessionIdRef,
    identifier_from_query,
)


@pytest.fixture
def orchestrator(session, gateways):
    return CheckoutOrchestrator(session, gateways)


@pytest.fixture
def reconciler(session, gateways):
    return ConfirmationReconciler(session, gateways)


@pytest.fixture
def notifications(monkeypatch):
    sent = []
    monkeypatch.setattr(
        reconciliation_service,
        "send_payment_confirmation",
        lambda txn, user, title, pdf=None: sent.append((txn.invoice_id, pdf[:4])),
    )
    return sent


def _open(orchestrator, session, user, content_type="course", content_id="c-500"):
    return orchestrator.start_checkout(user.id, load_reference(session, content_type, content_id)).session


def _pending_mobile_money(orchestrator, session, user):
    checkout = _open(orchestrator, session, user, "event", "e-1")
    orchestrator.advance(checkout.id, SelectMethod("mobile_money", {"provider": "mpesa"}), user.id)
    outcome = orchestrator.advance(
        checkout.id, SubmitPayment(payment_data={"phoneNumber": "841234567"}), user.id
    )
    assert outcome.session.status == "awaiting_external_confirmation"
    return outcome.session, outcome.transaction


def _all(session, model):
    return session.exec(select(model)).all()


# ---------- identifiers ----------


def test_identifier_from_query():
    assert identifier_from_query(session_id="cs_1") == SessionIdRef("cs_1")
    assert identifier_from_query(payment_intent="pi_1") == PaymentIntentRef("pi_1")
    assert identifier_from_query(success=True, user_id=3, content_type="course", content_id="c-1") == (
        LatestPendingRef(3, "course", "c-1")
    )


@pytest.mark.parametrize(
    "params",
    [
        {},
        {"session_id": "cs_1", "payment_intent": "pi_1"},
        {"session_id": "cs_1", "success": True},
        {"success": False},
    ],
)
def test_identifier_needs_exactly_one(params):
    with pytest.raises(ValidationError):
        identifier_from_query(**params)


def test_latest_payment_needs_a_user():
    with pytest.raises(ValidationError):
        identifier_from_query(success=True)


# ---------- redirects ----------


def test_repeated_redirect_converges(session, reconciler, orchestrator, user, catalog, stripe_gateway, notifications):
    checkout = _open(orchestrator, session, user)
    stripe_gateway.verify_results["cs_abc"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )

    results = [reconciler.reconcile(SessionIdRef("cs_abc"), user.id) for _ in range(3)]

    assert {txn.id for txn in results} == {results[0].id}
    assert results[0].status == "succeeded"
    assert len(_all(session, Transaction)) == 1
    assert len(_all(session, AccessGrant)) == 1
    assert stripe_gateway.verifies == ["cs_abc"]
    assert len(notifications) == 1
    assert notifications[0][1] == b"%PDF"

    session.refresh(checkout)
    assert checkout.status == "completed"


def test_checkout_session_id_resolves_its_transaction(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    checkout, txn = _pending_mobile_money(orchestrator, session, user)
    paytek_gateway.settle(txn.gateway_reference)

    result = reconciler.reconcile(SessionIdRef(checkout.id), user.id)

    assert result.id == txn.id
    assert result.status == "succeeded"


def test_payment_intent_alias_reuses_transaction(session, reconciler, orchestrator, user, catalog, stripe_gateway):
    # 3-D Secure: the charge is pending until the customer returns from the bank page
    stripe_gateway.charge_status = "pending"
    checkout = _open(orchestrator, session, user)
    orchestrator.advance(checkout.id, SelectMethod("card"), user.id)
    outcome = orchestrator.advance(checkout.id, SubmitPayment(payment_data={"paymentMethodId": "pm_1"}), user.id)
    intent = outcome.transaction.gateway_reference

    stripe_gateway.settle(intent)
    stripe_gateway.verify_results["cs_hosted"] = VerifyResult(
        status="succeeded",
        amount=500,
        currency="MZN",
        metadata={"checkout_session_id": checkout.id, "payment_intent": intent},
    )

    txn = reconciler.reconcile(SessionIdRef("cs_hosted"), user.id)
    again = reconciler.reconcile(PaymentIntentRef(intent), user.id)

    assert txn.id == again.id == outcome.transaction.id
    assert txn.status == "succeeded"
    assert len(_all(session, Transaction)) == 1
    assert len(_all(session, AccessGrant)) == 1


def test_hosted_session_then_payment_intent_converge(
    session, reconciler, orchestrator, user, catalog, stripe_gateway, notifications
):
    checkout = _open(orchestrator, session, user)
    metadata = {"checkout_session_id": checkout.id}
    stripe_gateway.verify_results["cs_hosted"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={**metadata, "payment_intent": "pi_hosted"}
    )
    stripe_gateway.verify_results["pi_hosted"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata=metadata
    )

    first = reconciler.reconcile(SessionIdRef("cs_hosted"), user.id)
    second = reconciler.reconcile(PaymentIntentRef("pi_hosted"), user.id)

    assert first.id == second.id
    assert first.gateway_reference == "cs_hosted"
    assert first.alias_reference == "pi_hosted"
    assert len(_all(session, Transaction)) == 1
    assert len(_all(session, AccessGrant)) == 1
    assert len(notifications) == 1
    assert stripe_gateway.verifies == ["cs_hosted"]


def test_payment_intent_adopts_unlinked_hosted_session(
    session, reconciler, orchestrator, user, catalog, stripe_gateway, notifications
):
    # the hosted session was confirmed before stripe attached its intent
    checkout = _open(orchestrator, session, user)
    stripe_gateway.verify_results["cs_early"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )
    stripe_gateway.verify_results["pi_late"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )

    first = reconciler.reconcile(SessionIdRef("cs_early"), user.id)
    second = reconciler.reconcile(PaymentIntentRef("pi_late"), user.id)

    assert first.id == second.id
    assert second.alias_reference == "pi_late"
    assert len(_all(session, Transaction)) == 1
    assert len(notifications) == 1


def test_unknown_reference(reconciler, stripe_gateway):
    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(PaymentIntentRef("pi_missing"))

    assert not exc.value.retryable
    assert exc.value.status_code == 404


def test_verified_payment_without_checkout(reconciler, stripe_gateway):
    stripe_gateway.verify_results["pi_orphan"] = VerifyResult(status="succeeded", amount=10, currency="MZN")

    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(PaymentIntentRef("pi_orphan"))

    assert exc.value.status_code == 404


def test_other_users_payment_is_not_found(session, reconciler, orchestrator, user, other_user, catalog):
    _, txn = _pending_mobile_money(orchestrator, session, user)

    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(SessionIdRef(txn.gateway_reference), other_user.id)

    assert exc.value.status_code == 404


def test_other_users_checkout_is_not_materialized(session, reconciler, orchestrator, user, other_user, catalog, stripe_gateway):
    checkout = _open(orchestrator, session, user)
    stripe_gateway.verify_results["cs_foreign"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )

    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(SessionIdRef("cs_foreign"), other_user.id)

    assert exc.value.status_code == 404
    assert _all(session, Transaction) == []
    assert _all(session, AccessGrant) == []


# ---------- polling ----------


def test_bank_transfer_polling(session, reconciler, orchestrator, user, catalog, paytek_gateway, notifications):
    checkout = _open(orchestrator, session, user, "bundle", "b-1")
    orchestrator.advance(checkout.id, SelectMethod("bank_transfer"), user.id)
    txn = orchestrator.advance(checkout.id, SubmitPayment(), user.id).transaction

    pending = reconciler.reconcile(LatestPendingRef(user.id, "bundle", "b-1"), user.id)
    assert pending.status == "pending"
    assert _all(session, AccessGrant) == []

    paytek_gateway.settle(txn.gateway_reference)
    for _ in range(3):
        settled = reconciler.reconcile(LatestPendingRef(user.id), user.id)

    assert settled.id == txn.id
    assert settled.status == "succeeded"
    assert settled.paid_at is not None
    assert len(_all(session, AccessGrant)) == 1
    # pending poll, then the settling poll; later polls stop at the database
    assert paytek_gateway.verifies == [txn.gateway_reference] * 2
    assert len(notifications) == 1

    session.refresh(checkout)
    assert checkout.status == "completed"


def test_no_payment_to_poll(reconciler, user):
    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(LatestPendingRef(user.id))

    assert exc.value.status_code == 404


def test_gateway_outage_leaves_state_untouched(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    checkout, txn = _pending_mobile_money(orchestrator, session, user)
    paytek_gateway.verify_error = GatewayUnavailable("timeout")

    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(LatestPendingRef(user.id), user.id)

    assert exc.value.retryable
    session.refresh(txn)
    session.refresh(checkout)
    assert txn.status == "pending"
    assert checkout.status == "awaiting_external_confirmation"


def test_rejected_mobile_payment(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    checkout, txn = _pending_mobile_money(orchestrator, session, user)
    paytek_gateway.settle(txn.gateway_reference, "failed")

    result = reconciler.reconcile(SessionIdRef(txn.gateway_reference), user.id)

    assert result.status == "failed"
    assert result.failure_reason == "Pagamento recusado"
    session.refresh(checkout)
    assert checkout.status == "failed"
    assert _all(session, AccessGrant) == []


def test_expired_mobile_payment(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    checkout, txn = _pending_mobile_money(orchestrator, session, user)
    paytek_gateway.settle(txn.gateway_reference, "expired")

    result = reconciler.reconcile(SessionIdRef(txn.gateway_reference), user.id)

    assert result.status == "failed"
    session.refresh(checkout)
    assert checkout.status == "expired"


# ---------- late confirmations ----------


def test_success_after_decline_still_grants(session, reconciler, orchestrator, user, catalog, stripe_gateway):
    checkout = _open(orchestrator, session, user)
    orchestrator.advance(checkout.id, SelectMethod("card"), user.id)
    stripe_gateway.charge_error = GatewayRejected("declined")
    orchestrator.advance(checkout.id, SubmitPayment(payment_data={"paymentMethodId": "pm_1"}), user.id)

    stripe_gateway.verify_results["cs_late"] = VerifyResult(
        status="succeeded", amount=500, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )
    reconciler.reconcile(SessionIdRef("cs_late"), user.id)

    session.refresh(checkout)
    assert checkout.status == "completed"
    assert len(_all(session, AccessGrant)) == 1


def test_success_after_expiry_grants_without_reopening(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    checkout, txn = _pending_mobile_money(orchestrator, session, user)
    checkout.status = "expired"
    session.add(checkout)
    session.commit()

    paytek_gateway.settle(txn.gateway_reference)
    result = reconciler.reconcile(SessionIdRef(txn.gateway_reference), user.id)

    assert result.status == "succeeded"
    assert len(_all(session, AccessGrant)) == 1
    session.refresh(checkout)
    assert checkout.status == "expired"


def test_missing_grant_is_repaired(session, reconciler, orchestrator, user, catalog, paytek_gateway):
    _, txn = _pending_mobile_money(orchestrator, session, user)
    paytek_gateway.settle(txn.gateway_reference)
    reconciler.reconcile(SessionIdRef(txn.gateway_reference), user.id)

    for grant in _all(session, AccessGrant):
        session.delete(grant)
    session.commit()
    verifies = len(paytek_gateway.verifies)

    reconciler.reconcile(SessionIdRef(txn.gateway_reference), user.id)

    assert len(_all(session, AccessGrant)) == 1
    assert len(paytek_gateway.verifies) == verifies


def test_amount_mismatch_is_not_granted(session, reconciler, orchestrator, user, catalog, stripe_gateway):
    checkout = _open(orchestrator, session, user)
    stripe_gateway.verify_results["cs_cheap"] = VerifyResult(
        status="succeeded", amount=5, currency="MZN", metadata={"checkout_session_id": checkout.id}
    )

    with pytest.raises(ReconciliationError) as exc:
        reconciler.reconcile(SessionIdRef("cs_cheap"), user.id)

    assert exc.value.status_code == 409
    assert _all(session, AccessGrant) == []
    assert _all(session, Transaction)[0].status == "pending"
