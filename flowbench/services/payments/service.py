"""Payment operations run behind the request handler.

Each operation makes exactly one collaborator call and returns only the
fields derived from that call's result.
"""

import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from uuid import uuid4

import stripe
from fastapi import Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from flowbench.common.errors import CollaboratorError, DecodeError, ValidationError, Violation
from flowbench.common.logging import logger
from flowbench.common.metrics import webhook_events_total
from flowbench.services.payments.models import Order
from flowbench.services.payments.provider import StripePaymentProvider
from flowbench.services.payments.schemas import CreateOrderRequest, CreatePaymentIntentRequest, StripeWebhookEvent


SIGNATURE_PATH = ("headers", "stripe-signature")

# Stripe event type -> (order status, payment status).
PAYMENT_OUTCOMES: dict[str, tuple[str, str]] = {
    "payment_intent.succeeded": ("in_progress", "paid"),
    "payment_intent.payment_failed": ("cancelled", "failed"),
}

# Package tier -> (price in dollars, delivery days).
PACKAGES: dict[str, tuple[Decimal, int]] = {
    "basic": (Decimal("50"), 5),
    "standard": (Decimal("150"), 7),
    "premium": (Decimal("300"), 14),
}
SERVICE_FEE_RATE = Decimal("0.05")


def create_intent(provider: StripePaymentProvider, req: CreatePaymentIntentRequest) -> dict[str, Any]:
    """Create a payment intent for the order and expose the client-facing handles."""

    intent = provider.create_payment_intent(req.amount, req.orderId)
    return {"clientSecret": intent["client_secret"], "paymentIntentId": intent["id"]}


class OrderStore:
    """Order persistence for order placement and the payment webhook."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def update_payment_status(
        self,
        order_id: str,
        status: str,
        payment_status: str,
        payment_intent_id: str | None = None,
    ) -> Order:
        try:
            with self.session_factory() as db:
                order = db.execute(select(Order).where(Order.id == order_id)).scalar_one_or_none()
                if order is None:
                    raise CollaboratorError("order-store", f"order {order_id} not found")
                order.status = status
                order.payment_status = payment_status
                if payment_intent_id is not None:
                    order.payment_intent_id = payment_intent_id
                db.commit()
                return order
        except SQLAlchemyError as exc:
            raise CollaboratorError("order-store", "order update failed") from exc

    def create_order(
        self,
        buyer_id: str,
        gig_id: str,
        package_id: str,
        total_price: Decimal,
        requirements: dict[str, Any],
        due_date: datetime,
    ) -> Order:
        try:
            with self.session_factory() as db:
                order = Order(
                    order_number=f"FLW{uuid4().hex[:8].upper()}",
                    buyer_id=buyer_id,
                    gig_id=gig_id,
                    package_id=package_id,
                    total_price=total_price,
                    requirements=requirements,
                    due_date=due_date,
                    status="pending",
                    payment_status="unpaid",
                )
                db.add(order)
                db.commit()
                return order
        except SQLAlchemyError as exc:
            raise CollaboratorError("order-store", "order insert failed") from exc


def place_order(orders: OrderStore, req: CreateOrderRequest) -> dict[str, Any]:
    """Price the chosen package, add the service fee and store a pending order."""

    price, delivery_days = PACKAGES[req.packageTier]
    total = (price * (1 + SERVICE_FEE_RATE)).quantize(Decimal("0.01"))
    due_date = datetime.now(timezone.utc) + timedelta(days=delivery_days)
    order = orders.create_order(
        buyer_id=req.buyerId,
        gig_id=req.gigId,
        package_id=f"{req.gigId}-{req.packageTier}",
        total_price=total,
        requirements=req.requirements.model_dump(exclude_none=True),
        due_date=due_date,
    )
    logger.info("order placed order_id=%s buyer_id=%s tier=%s", order.id, req.buyerId, req.packageTier)
    return {
        "order": {
            "id": order.id,
            "orderNumber": order.order_number,
            "dueDate": due_date.isoformat(),
            "totalPrice": float(total),
        }
    }


def apply_webhook_event(orders: OrderStore, event: StripeWebhookEvent) -> dict[str, Any]:
    """Move the order referenced by a payment intent event to its new state."""

    outcome = PAYMENT_OUTCOMES.get(event.type)
    order_id = event.order_id
    if outcome is None or order_id is None:
        logger.info("webhook event acknowledged without update event_id=%s type=%s", event.id, event.type)
        webhook_events_total.labels(event_type=event.type, applied="false").inc()
        return {"received": True, "eventType": event.type}

    status, payment_status = outcome
    orders.update_payment_status(order_id, status, payment_status, payment_intent_id=event.data.object.id)
    logger.info(
        "order payment status updated event_id=%s order_id=%s payment_status=%s",
        event.id,
        order_id,
        payment_status,
    )
    webhook_events_total.labels(event_type=event.type, applied="true").inc()
    return {"received": True, "eventType": event.type}


def stripe_event_decoder(webhook_secret: str, tolerance: int = 300) -> Callable[[Request], Any]:
    """Build a decoder that verifies the Stripe signature before parsing the body."""

    async def decode(request: Request) -> Any:
        signature = request.headers.get("stripe-signature")
        if not signature or not webhook_secret:
            raise ValidationError(
                [Violation(path=SIGNATURE_PATH, message="Missing signature", constraint="signature_missing")]
            )
        raw = await request.body()
        try:
            payload = raw.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise DecodeError("webhook body is not UTF-8") from exc
        try:
            stripe.WebhookSignature.verify_header(payload, signature, webhook_secret, tolerance)
        except stripe.SignatureVerificationError as exc:
            raise ValidationError(
                [Violation(path=SIGNATURE_PATH, message="Invalid signature", constraint="signature_invalid")]
            ) from exc
        try:
            return json.loads(payload)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"webhook body is not valid JSON: {exc}") from exc

    return decode
