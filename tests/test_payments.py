"""Create-intent endpoint and the Stripe adapter."""

import pytest

from flowbench.common.errors import CollaboratorError
from flowbench.services.payments.provider import to_minor_units

ORDER_ID = "123e4567-e89b-12d3-a456-426614174000"
URL = "/api/marketplace/payments/create-intent"


def test_create_intent_returns_client_secret(client, stripe_client):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": 25.00})

    assert resp.status_code == 200
    assert resp.json() == {"success": True, "clientSecret": "secret_1", "paymentIntentId": "pi_1"}
    assert stripe_client.payment_intents.calls == [
        {
            "amount": 2500,
            "currency": "usd",
            "metadata": {"orderId": ORDER_ID},
            "capture_method": "manual",
        }
    ]


def test_invalid_order_id_is_rejected(client, stripe_client):
    resp = client.post(URL, json={"orderId": "not-a-uuid", "amount": 10})

    assert resp.status_code == 400
    assert [d["path"] for d in resp.json()["details"]] == [["orderId"]]
    assert stripe_client.payment_intents.calls == []


def test_negative_amount_must_be_positive(client, stripe_client):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": -5})

    assert resp.status_code == 400
    assert resp.json()["details"] == [{"path": ["amount"], "message": "must be positive"}]
    assert stripe_client.payment_intents.calls == []


@pytest.mark.parametrize("amount", [0.001, 0.004])
def test_amount_below_one_cent_must_be_positive(client, stripe_client, amount):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": amount})

    assert resp.status_code == 400
    assert resp.json()["details"] == [{"path": ["amount"], "message": "must be positive"}]
    assert stripe_client.payment_intents.calls == []


@pytest.mark.parametrize(
    "order_id",
    [
        "123E4567E89B12D3A456426614174000",
        "urn:uuid:123e4567-e89b-12d3-a456-426614174000",
        "{123e4567-e89b-12d3-a456-426614174000}",
    ],
)
def test_order_id_must_be_hyphenated_uuid(client, stripe_client, order_id):
    resp = client.post(URL, json={"orderId": order_id, "amount": 10})

    assert resp.status_code == 400
    assert resp.json()["details"] == [{"path": ["orderId"], "message": "must be a UUID"}]
    assert stripe_client.payment_intents.calls == []


def test_order_id_reaches_stripe_exactly_as_sent(client, stripe_client):
    order_id = ORDER_ID.upper()

    resp = client.post(URL, json={"orderId": order_id, "amount": 10})

    assert resp.status_code == 200
    assert stripe_client.payment_intents.calls[0]["metadata"] == {"orderId": order_id}


@pytest.mark.parametrize("amount", ["10", True, None])
def test_amount_must_be_a_number(client, amount):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": amount})

    assert resp.status_code == 400
    assert ["amount"] in [d["path"] for d in resp.json()["details"]]


def test_missing_fields_are_all_reported(client):
    resp = client.post(URL, json={})

    assert resp.status_code == 400
    paths = [d["path"] for d in resp.json()["details"]]
    assert ["orderId"] in paths
    assert ["amount"] in paths


def test_stripe_failure_returns_generic_error(client, stripe_client, stripe_connection_error):
    stripe_client.payment_intents.error = stripe_connection_error

    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": 25})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to create payment intent"}
    assert "stripe.com" not in resp.text
    assert len(stripe_client.payment_intents.calls) == 1


def test_extra_input_fields_are_not_echoed(client):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": 12.5, "note": "leave at door"})

    assert resp.status_code == 200
    assert set(resp.json()) == {"success", "clientSecret", "paymentIntentId"}


def test_malformed_body_is_a_generic_failure(client, stripe_client):
    resp = client.post(URL, content=b'{"orderId": ', headers={"content-type": "application/json"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to create payment intent"}
    assert stripe_client.payment_intents.calls == []


def test_correlation_id_is_echoed(client):
    resp = client.post(URL, json={"orderId": ORDER_ID, "amount": 1}, headers={"x-correlation-id": "trace-abc"})

    assert resp.headers["x-correlation-id"] == "trace-abc"


@pytest.mark.parametrize("amount, cents", [(25.0, 2500), (0.285, 29), (19.99, 1999), (3, 300)])
def test_to_minor_units_rounds_half_up(amount, cents):
    assert to_minor_units(amount) == cents


def test_provider_wraps_stripe_errors(payment_provider, stripe_client, stripe_connection_error):
    stripe_client.payment_intents.error = stripe_connection_error

    with pytest.raises(CollaboratorError) as excinfo:
        payment_provider.create_payment_intent(10, ORDER_ID)

    assert excinfo.value.collaborator == "stripe"
    assert excinfo.value.__cause__ is stripe_connection_error


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"ok": True}
    client.post(URL, json={"orderId": ORDER_ID, "amount": 5})

    metrics = client.get("/metrics").text

    assert "handler_outcomes_total" in metrics
    assert 'handler="create_payment_intent"' in metrics
