"""Request schemas for payment and order endpoints."""

import re
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, Field
from pydantic_core import PydanticCustomError

from flowbench.services.payments.provider import to_minor_units


UUID_PATTERN = re.compile(r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}", re.IGNORECASE)


def _must_be_uuid(value: str) -> str:
    if not UUID_PATTERN.fullmatch(value):
        raise PydanticCustomError("uuid_format", "must be a UUID")
    return value


def _must_be_positive(value: float) -> float:
    if value <= 0:
        raise PydanticCustomError("positive_number", "must be positive")
    # 0.001 is positive but charges nothing once converted to cents.
    if to_minor_units(value) < 1:
        raise PydanticCustomError("positive_minor_units", "must be positive")
    return value


# Hyphenated 8-4-4-4-12 form only; the id is passed on exactly as sent.
UUIDString = Annotated[str, Field(strict=True), AfterValidator(_must_be_uuid)]

# Strict keeps booleans and numeric strings out; ints are still accepted.
PositiveAmount = Annotated[float, Field(strict=True, allow_inf_nan=False), AfterValidator(_must_be_positive)]


class CreatePaymentIntentRequest(BaseModel):
    """Payload accepted by `POST /api/marketplace/payments/create-intent`."""

    orderId: UUIDString
    amount: PositiveAmount


PackageTier = Literal["basic", "standard", "premium"]


class OrderRequirements(BaseModel):
    projectDescription: str = Field(min_length=20)
    deliveryInstructions: str | None = None
    referenceLinks: str | None = None


class CreateOrderRequest(BaseModel):
    """Payload accepted by `POST /api/marketplace/orders/create`; `buyerId` comes from the session header."""

    buyerId: str = Field(min_length=1)
    gigId: UUIDString
    packageTier: PackageTier
    requirements: OrderRequirements


class StripeEventObject(BaseModel):
    """The `data.object` of a payment intent event; other fields are ignored."""

    id: str = Field(min_length=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class StripeEventData(BaseModel):
    object: StripeEventObject


class StripeWebhookEvent(BaseModel):
    """Verified Stripe event delivered to the webhook endpoint."""

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    data: StripeEventData

    @property
    def order_id(self) -> str | None:
        order_id = self.data.object.metadata.get("orderId")
        return order_id if isinstance(order_id, str) and order_id else None
