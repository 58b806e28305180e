import os

# Settings are read at import time
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BREVO_API_KEY"] = ""
os.environ["STRIPE_PUBLISHABLE_KEY"] = "pk_test_123"
os.environ.pop("ACCESS_STATUS_BASE_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import event
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from app.database import get_session
from app.gateways import get_gateways
from app.gateways.base import ChargeResult, GatewayAdapter, VerifyResult
from app.main import app
from app.models import Content, User
from app.services.errors import GatewayRejected, ValidationError
from app.utils.token import create_access_token


class FakeGateway(GatewayAdapter):
    """
    Scriptable gateway double.

    Every charge is remembered with a VerifyResult that mirrors the charge
    status; ``settle`` changes what later verify calls report.
    """

    def __init__(self, name: str, synchronous: bool = True):
        self.name = name
        self.synchronous = synchronous
        self.charge_status = "succeeded" if synchronous else "pending"
        self.charge_message = None
        self.charge_error = None
        self.instructions = None
        self.verify_error = None
        self.verify_results = {}
        self.charges = []
        self.verifies = []
        self.tokenized = []

    def tokenize_payment_method(self, card_details):
        token = card_details.get("paymentMethodId") or card_details.get("token")
        if not token:
            raise ValidationError("Missing card payment method")
        self.tokenized.append(token)
        return token

    def charge(self, session_id, amount, currency, method_details, *, attempt=1, metadata=None):
        self.charges.append(
            {
                "session_id": session_id,
                "amount": amount,
                "currency": currency,
                "method_details": method_details,
                "attempt": attempt,
            }
        )
        if self.charge_error:
            raise self.charge_error

        reference = f"{self.name}_ref_{len(self.charges)}"
        self.verify_results[reference] = VerifyResult(
            status=self.charge_status,
            amount=amount,
            currency=currency,
            metadata={"checkout_session_id": session_id, **(metadata or {})},
        )
        return ChargeResult(
            gateway_reference=reference,
            status=self.charge_status,
            message=self.charge_message,
            instructions=self.instructions,
        )

    def verify(self, gateway_reference):
        self.verifies.append(gateway_reference)
        if self.verify_error:
            raise self.verify_error
        if gateway_reference not in self.verify_results:
            raise GatewayRejected("No such payment")
        return self.verify_results[gateway_reference]

    def settle(self, gateway_reference, status="succeeded"):
        current = self.verify_results[gateway_reference]
        self.verify_results[gateway_reference] = VerifyResult(
            status=status,
            amount=current.amount,
            currency=current.currency,
            metadata=current.metadata,
        )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite needs explicit BEGIN for SAVEPOINTs to nest
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def stripe_gateway():
    return FakeGateway("stripe", synchronous=True)


@pytest.fixture
def paytek_gateway():
    return FakeGateway("paytek", synchronous=False)


@pytest.fixture
def gateways(stripe_gateway, paytek_gateway):
    return {"stripe": stripe_gateway, "paytek": paytek_gateway}


@pytest.fixture
def user(session):
    user = User(first_name="Ana", last_name="Machava", email="ana@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def other_user(session):
    user = User(first_name="Rui", last_name="Cossa", email="rui@example.com")
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


@pytest.fixture
def catalog(session):
    items = {
        "course": Content(content_type="course", content_id="c-500", title="Python do Zero", slug="python-do-zero", price=500, currency="MZN"),
        "lesson": Content(content_type="lesson", content_id="l-1", title="Aula Inaugural", price=0, currency="MZN"),
        "event": Content(content_type="event", content_id="e-1", title="Workshop Maputo", price=1500, currency="MZN"),
        "bundle": Content(content_type="bundle", content_id="b-1", title="Pacote Dados", price=2500, currency="MZN"),
        "draft": Content(content_type="course", content_id="c-draft", title="Rascunho", price=100, is_published=False),
    }
    for item in items.values():
        session.add(item)
    session.commit()
    return items


@pytest.fixture
def auth_headers(user):
    token = create_access_token({"user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def client(session, gateways):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_gateways] = lambda: gateways
    yield TestClient(app)
    app.dependency_overrides.clear()
