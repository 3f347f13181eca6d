"""Shared fixtures: in-memory SQLite store, fake gateway, fake replay guard."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("CB_STORAGE", "memory")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import GatewayConfig
from app.db.base import Base
from app.models import payment  # noqa: F401  (registers tables)
from app.services.payments.errors import GatewayUnavailable
from app.services.payments.gateway import GatewayInitialization, GatewayVerification
from app.services.payments.reconciler import PaymentReconciler
from app.services.payments.signature import SignatureVerifier
from app.services.payments.store import PaymentStore

WEBHOOK_SECRET = "sk_test_secret"


class FakeGateway:
    """Records calls; returns queued initialize/verify results."""

    def __init__(self):
        self.initialize_calls = []
        self.verify_calls = []
        self.next_reference = "ref_123"
        self.verifications: dict[str, GatewayVerification] = {}
        self.fail_with: Exception | None = None

    def initialize(self, email, amount, currency=None, metadata=None):
        self.initialize_calls.append(
            {"email": email, "amount": amount, "currency": currency, "metadata": metadata}
        )
        if self.fail_with is not None:
            raise self.fail_with
        return GatewayInitialization(
            authorization_url=f"https://checkout.paystack.com/{self.next_reference}",
            access_code=f"ac_{self.next_reference}",
            reference=self.next_reference,
            message="Authorization URL created",
        )

    def verify(self, reference):
        self.verify_calls.append(reference)
        if self.fail_with is not None:
            raise self.fail_with
        if reference not in self.verifications:
            raise GatewayUnavailable("no verification queued")
        return self.verifications[reference]


class FakeReplayGuard:
    def __init__(self):
        self.keys: set[str] = set()

    def check_and_set(self, key, ttl_seconds=None):
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    def release(self, key):
        self.keys.discard(key)


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        api_key="sk_test_secret",
        initialize_url="https://gateway.test/transaction/initialize",
        verify_url="https://gateway.test/transaction/verify/",
        webhook_secret=WEBHOOK_SECRET,
        timeout=5.0,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return PaymentStore(db)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def replay_guard():
    return FakeReplayGuard()


@pytest.fixture
def reconciler(store, gateway, gateway_config, replay_guard):
    return PaymentReconciler(
        store=store,
        gateway=gateway,
        verifier=SignatureVerifier(gateway_config),
        replay_guard=replay_guard,
    )
