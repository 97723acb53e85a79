"""User store, the sign-in upsert and the account data routes."""

import hashlib
import hmac
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from flowbench.common.errors import CollaboratorError, NotFoundError, ValidationError, Violation
from flowbench.common.handler import parse_json
from flowbench.common.logging import logger
from flowbench.services.identity.models import User
from flowbench.services.identity.schemas import SignInEvent, UserRef
from flowbench.services.payments.models import Order


SIGNATURE_HEADER = "x-identity-signature"
SIGNATURE_PATH = ("headers", SIGNATURE_HEADER)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class UserStore:
    """Looks up, creates and deletes users; one short session per call."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def get_user_by_email(self, email: str) -> User | None:
        with self.session_factory() as db:
            return db.execute(
                select(User).where(User.email == email, User.deleted_at.is_(None))
            ).scalar_one_or_none()

    def create_user(self, email: str, name: str | None = None, is_anonymous: bool = False) -> User:
        with self.session_factory() as db:
            user = User(email=email, name=name, is_anonymous=is_anonymous)
            db.add(user)
            db.commit()
            return user

    def ensure_user(self, email: str, name: str | None = None) -> tuple[User, bool]:
        """Return `(user, created)`; an existing record is never modified."""

        try:
            existing = self.get_user_by_email(email)
            if existing is not None:
                return existing, False
            try:
                return self.create_user(email, name=name, is_anonymous=False), True
            except IntegrityError:
                # A concurrent sign-in created the row between lookup and insert.
                logger.info("user created concurrently, re-reading")
                existing = self.get_user_by_email(email)
                if existing is None:
                    raise
                return existing, False
        except SQLAlchemyError as exc:
            raise CollaboratorError("user-store", "user upsert failed") from exc

    def delete_user(self, user_id: str) -> datetime:
        """Soft-delete the account and drop its identifying fields."""

        try:
            with self.session_factory() as db:
                user = db.execute(
                    select(User).where(User.id == user_id, User.deleted_at.is_(None))
                ).scalar_one_or_none()
                if user is None:
                    raise NotFoundError("User not found")
                deleted_at = datetime.now(timezone.utc)
                user.deleted_at = deleted_at
                user.email = None
                user.name = None
                db.commit()
                return deleted_at
        except SQLAlchemyError as exc:
            raise CollaboratorError("user-store", "user delete failed") from exc

    def export_user(self, user_id: str) -> dict[str, Any]:
        """Everything stored about a live account, read in one session."""

        try:
            with self.session_factory() as db:
                user = db.execute(
                    select(User).where(User.id == user_id, User.deleted_at.is_(None))
                ).scalar_one_or_none()
                if user is None:
                    raise NotFoundError("User not found")
                orders = db.execute(
                    select(Order).where(Order.buyer_id == user_id).order_by(Order.created_at.desc())
                ).scalars()
                return {
                    "user": {
                        "id": user.id,
                        "email": user.email,
                        "name": user.name,
                        "createdAt": _iso(user.created_at),
                    },
                    "orders": [
                        {
                            "id": order.id,
                            "orderNumber": order.order_number,
                            "status": order.status,
                            "paymentStatus": order.payment_status,
                            "totalPrice": float(order.total_price) if order.total_price is not None else None,
                            "dueDate": _iso(order.due_date),
                            "createdAt": _iso(order.created_at),
                        }
                        for order in orders
                    ],
                }
        except SQLAlchemyError as exc:
            raise CollaboratorError("user-store", "user export failed") from exc


def sign_in(users: UserStore, event: SignInEvent) -> dict[str, Any]:
    """Record the signed-in identity, creating the user on first sign-in."""

    user, created = users.ensure_user(event.email, event.name)
    if created:
        logger.info("user created on first sign-in user_id=%s", user.id)
    return {"userId": user.id, "created": created}


def delete_account(users: UserStore, ref: UserRef) -> dict[str, Any]:
    deleted_at = users.delete_user(ref.userId)
    logger.info("user deleted user_id=%s", ref.userId)
    return {"message": "All your data has been permanently deleted", "deletedAt": deleted_at.isoformat()}


def export_account(users: UserStore, ref: UserRef) -> dict[str, Any]:
    data = users.export_user(ref.userId)
    return {**data, "exportedAt": datetime.now(timezone.utc).isoformat()}


def sign_body(body: bytes, secret: str) -> str:
    """Value of the `x-identity-signature` header for `body`."""

    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def identity_callback_decoder(secret: str) -> Callable[[Request], Any]:
    """Build a decoder that only accepts bodies signed by the identity provider."""

    async def decode(request: Request) -> Any:
        signature = request.headers.get(SIGNATURE_HEADER)
        if not signature or not secret:
            raise ValidationError(
                [Violation(path=SIGNATURE_PATH, message="Missing signature", constraint="signature_missing")]
            )
        raw = await request.body()
        if not hmac.compare_digest(signature.strip().encode(), sign_body(raw, secret).encode()):
            raise ValidationError(
                [Violation(path=SIGNATURE_PATH, message="Invalid signature", constraint="signature_invalid")]
            )
        return parse_json(raw)

    return decode
