"""Sign-in callback and the user upsert."""

import json
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from flowbench.common.errors import CollaboratorError
from flowbench.services.identity.models import User
from flowbench.services.identity.service import SIGNATURE_HEADER, sign_body

URL = "/api/auth/callback/signin"
SECRET = "identity_test_secret"


def post_sign_in(client, payload, secret: str = SECRET):
    body = json.dumps(payload).encode()
    headers = {"content-type": "application/json", SIGNATURE_HEADER: sign_body(body, secret)}
    return client.post(URL, content=body, headers=headers)


def count_users(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(User)).scalar_one()


def test_first_sign_in_creates_one_user(client, session_factory):
    resp = post_sign_in(client, {"email": "ada@example.com", "name": "Ada"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["created"] is True
    assert count_users(session_factory) == 1
    with session_factory() as db:
        user = db.execute(select(User)).scalar_one()
    assert user.id == body["userId"]
    assert user.email == "ada@example.com"
    assert user.name == "Ada"
    assert user.is_anonymous is False


def test_repeat_sign_in_keeps_single_record(client, session_factory):
    first = post_sign_in(client, {"email": "ada@example.com", "name": "Ada"}).json()
    second = post_sign_in(client, {"email": "  ADA@example.com ", "name": "Someone Else"}).json()

    assert second == {"success": True, "userId": first["userId"], "created": False}
    assert count_users(session_factory) == 1
    with session_factory() as db:
        assert db.execute(select(User.name)).scalar_one() == "Ada"


def test_blank_name_is_stored_as_null(user_store, client):
    post_sign_in(client, {"email": "grace@example.com", "name": "   "})

    assert user_store.get_user_by_email("grace@example.com").name is None


@pytest.mark.parametrize("payload", [{}, {"email": "not-an-email"}, {"email": 42}])
def test_invalid_identity_is_rejected(client, session_factory, payload):
    resp = post_sign_in(client, payload)

    assert resp.status_code == 400
    assert ["email"] in [d["path"] for d in resp.json()["details"]]
    assert count_users(session_factory) == 0


def test_unsigned_callback_creates_nothing(client, session_factory):
    resp = client.post(URL, json={"email": "mallory@example.com"})

    assert resp.status_code == 400
    assert resp.json() == {
        "error": "Validation failed",
        "details": [{"path": ["headers", "x-identity-signature"], "message": "Missing signature"}],
    }
    assert count_users(session_factory) == 0


def test_forged_signature_creates_nothing(client, session_factory):
    resp = post_sign_in(client, {"email": "mallory@example.com"}, secret="guessed")

    assert resp.status_code == 400
    assert resp.json()["details"] == [{"path": ["headers", "x-identity-signature"], "message": "Invalid signature"}]
    assert count_users(session_factory) == 0


def test_signature_covers_the_exact_body(client, session_factory):
    signed = json.dumps({"email": "ada@example.com"}).encode()
    tampered = json.dumps({"email": "mallory@example.com"}).encode()

    resp = client.post(
        URL,
        content=tampered,
        headers={"content-type": "application/json", SIGNATURE_HEADER: sign_body(signed, SECRET)},
    )

    assert resp.status_code == 400
    assert count_users(session_factory) == 0


def test_store_failure_blocks_sign_in(client, user_store, monkeypatch):
    def broken(email, name=None):
        raise CollaboratorError("user-store", "connection refused by db-primary:5432")

    monkeypatch.setattr(user_store, "ensure_user", broken)

    resp = post_sign_in(client, {"email": "ada@example.com"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Sign-in failed"}
    assert "db-primary" not in resp.text


def test_soft_deleted_user_can_sign_up_again(client, user_store, session_factory):
    user, created = user_store.ensure_user("linus@example.com")
    assert created is True
    with session_factory() as db:
        db.get(User, user.id).deleted_at = datetime.now(timezone.utc)
        db.commit()

    assert user_store.get_user_by_email("linus@example.com") is None

    resp = post_sign_in(client, {"email": "linus@example.com"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["created"] is True
    assert body["userId"] != user.id
    assert count_users(session_factory) == 2


def test_ensure_user_recovers_from_concurrent_create(user_store, monkeypatch):
    winner = user_store.create_user("ada@example.com", name="Ada")
    lookups = iter([None, winner])
    monkeypatch.setattr(user_store, "get_user_by_email", lambda email: next(lookups))

    user, created = user_store.ensure_user("ada@example.com", name="Ada")

    assert created is False
    assert user.id == winner.id


def test_ensure_user_wraps_database_errors(user_store, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def fail(email):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    monkeypatch.setattr(user_store, "get_user_by_email", fail)

    with pytest.raises(CollaboratorError):
        user_store.ensure_user("ada@example.com")
