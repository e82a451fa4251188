import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MOLLIE_API_KEY"] = "test_dummy_key"
os.environ["APP_URL"] = "https://api.fanmora.test"
os.environ["FRONTEND_URL"] = "https://fanmora.test"
os.environ["JWT_SECRET_KEY"] = "test-secret"

from datetime import datetime, timezone  # noqa: E402
from dataclasses import replace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db, get_payment_provider  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Base, User  # noqa: E402
from app.services.auth import create_access_token  # noqa: E402
from app.services.payments import (  # noqa: E402
    CreatedPayment,
    Mandate,
    PaymentProviderError,
    PaymentStatus,
    ProviderPayment,
)

SCENARIO_PLANS = [
    {"id": "m", "interval": "monthly", "price": 9.99, "is_default": True},
    {"id": "y", "interval": "yearly", "price": 99.99, "is_default": False},
]


def aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


class FakePaymentProvider:
    """In-memory stand-in for the Mollie adapter."""

    name = "mollie"

    def __init__(self):
        self.payments: dict[str, ProviderPayment] = {}
        self.created: list[dict] = []
        self.customers: list[dict] = []
        self.mandates: dict[str, list[Mandate]] = {}
        self.fail_create = False
        self.fail_get = False
        self.fail_customers = False

    def create_payment(self, *, amount, description, redirect_url, webhook_url, metadata):
        if self.fail_create:
            raise PaymentProviderError("Mollie API error: 422", status_code=422)

        ref = f"tr_test{len(self.created) + 1}"
        self.created.append(
            {
                "id": ref,
                "amount": amount,
                "description": description,
                "redirect_url": redirect_url,
                "webhook_url": webhook_url,
                "metadata": dict(metadata),
            }
        )
        self.payments[ref] = ProviderPayment(id=ref, status=PaymentStatus.other, metadata=dict(metadata))
        return CreatedPayment(id=ref, checkout_url=f"https://www.mollie.com/checkout/select-method/{ref}")

    def set_status(self, ref: str, status: PaymentStatus, customer_id: str | None = None) -> None:
        self.payments[ref] = replace(self.payments[ref], status=status, customer_id=customer_id)

    def get_payment(self, payment_reference):
        if self.fail_get:
            raise PaymentProviderError("Mollie request timed out")
        if payment_reference not in self.payments:
            raise PaymentProviderError("Mollie API error: 404", status_code=404)
        return self.payments[payment_reference]

    def create_customer(self, *, name, email):
        if self.fail_customers:
            raise PaymentProviderError("Mollie API error: 500", status_code=500)
        customer_id = f"cst_test{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "name": name, "email": email})
        self.mandates.setdefault(customer_id, [Mandate(id="mdt_pending", status="pending"), Mandate(id="mdt_ok", status="valid")])
        return customer_id

    def get_customer_mandates(self, customer_id):
        return self.mandates.get(customer_id, [])


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def client(db, provider):
    def _get_db():
        yield db

    def _get_provider():
        yield provider

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_payment_provider] = _get_provider
    try:
        with TestClient(app, follow_redirects=False) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_user(db):
    def _make(username: str, **fields) -> User:
        user = User(
            name=fields.pop("name", username.title()),
            username=username,
            email=fields.pop("email", f"{username}@example.com"),
            password_hash=fields.pop("password_hash", "not-a-real-hash"),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def subscriber(make_user):
    return make_user("sam")


@pytest.fixture
def paid_creator(make_user):
    return make_user(
        "clara",
        name="Clara",
        is_subscription_required=True,
        subscription_plans=[dict(p) for p in SCENARIO_PLANS],
        trial_option={"enabled": True, "duration_days": 7, "price": 0},
    )


@pytest.fixture
def free_creator(make_user):
    return make_user("felix", name="Felix", is_subscription_required=False)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(subject=str(user.id))}"}
