"""Shared fixtures: in-memory database, fake Stripe client, API test client."""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("IDENTITY_CALLBACK_SECRET", "identity_test_secret")
os.environ.setdefault("TRACING_ENABLED", "false")

import pytest
import stripe
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from flowbench.common.db import build_session_factory, create_schema
from flowbench.services.api_gateway.main import app, get_order_store, get_payment_provider, get_user_store
from flowbench.services.identity.service import UserStore
from flowbench.services.payments.provider import StripePaymentProvider
from flowbench.services.payments.service import OrderStore


class FakePaymentIntents:
    """Stands in for `StripeClient.payment_intents`."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.error: Exception | None = None
        self.response = {"id": "pi_1", "client_secret": "secret_1"}

    def create(self, params=None, options=None):
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return self.response


class FakeStripeClient:
    def __init__(self) -> None:
        self.payment_intents = FakePaymentIntents()


@pytest.fixture
def session_factory():
    factory = build_session_factory(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_schema(factory)
    return factory


@pytest.fixture
def user_store(session_factory):
    return UserStore(session_factory)


@pytest.fixture
def order_store(session_factory):
    return OrderStore(session_factory)


@pytest.fixture
def stripe_client():
    return FakeStripeClient()


@pytest.fixture
def payment_provider(stripe_client):
    return StripePaymentProvider("sk_test_dummy", client=stripe_client)


@pytest.fixture
def client(payment_provider, user_store, order_store):
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider
    app.dependency_overrides[get_user_store] = lambda: user_store
    app.dependency_overrides[get_order_store] = lambda: order_store
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def stripe_connection_error():
    return stripe.APIConnectionError("connection reset by api.stripe.com")
