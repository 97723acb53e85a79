"""Public HTTP entrypoint for the flowbench API routes.

Every JSON route goes through a `RequestHandler` with exactly one
collaborator call. Collaborators are FastAPI dependencies so they can be
swapped per deployment (and in tests via `app.dependency_overrides`).
"""

from functools import lru_cache, partial
from time import perf_counter, time
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from flowbench.common.config import settings
from flowbench.common.db import SessionLocal
from flowbench.common.handler import RequestHandler, decode_json, user_scoped
from flowbench.common.logging import configure_logging, trace_id_ctx
from flowbench.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from flowbench.common.startup import log_startup_config
from flowbench.common.tracing import instrument_app, setup_tracing
from flowbench.services.identity.schemas import SignInEvent, UserRef
from flowbench.services.identity.service import (
    UserStore,
    delete_account,
    export_account,
    identity_callback_decoder,
    sign_in,
)
from flowbench.services.payments.provider import StripePaymentProvider
from flowbench.services.payments.schemas import CreateOrderRequest, CreatePaymentIntentRequest, StripeWebhookEvent
from flowbench.services.payments.service import (
    OrderStore,
    apply_webhook_event,
    create_intent,
    place_order,
    stripe_event_decoder,
)

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "IDENTITY_CALLBACK_SECRET",
        "PAYMENT_CURRENCY",
        "PAYMENT_CAPTURE_METHOD",
        "TRACING_ENABLED",
    ],
)
app = FastAPI(title="Flowbench API")
instrument_app(app)

create_intent_handler = RequestHandler(
    "create_payment_intent",
    CreatePaymentIntentRequest,
    failure_message="Failed to create payment intent",
)
sign_in_handler = RequestHandler(
    "sign_in",
    SignInEvent,
    failure_message="Sign-in failed",
    decoder=identity_callback_decoder(settings.identity_callback_secret),
)
create_order_handler = RequestHandler(
    "create_order",
    CreateOrderRequest,
    failure_message="Failed to create order",
    success_status=201,
    decoder=user_scoped(decode_json, field="buyerId"),
)
delete_user_handler = RequestHandler(
    "delete_user",
    UserRef,
    failure_message="Failed to delete user data",
    decoder=user_scoped(),
)
export_user_handler = RequestHandler(
    "export_user",
    UserRef,
    failure_message="Failed to export user data",
    decoder=user_scoped(),
)
webhook_handler = RequestHandler(
    "stripe_webhook",
    StripeWebhookEvent,
    failure_message="Webhook processing failed",
    decoder=stripe_event_decoder(settings.stripe_webhook_secret, settings.stripe_webhook_tolerance_seconds),
)


@lru_cache
def get_payment_provider() -> StripePaymentProvider:
    return StripePaymentProvider(
        settings.stripe_secret_key,
        currency=settings.payment_currency,
        capture_method=settings.payment_capture_method,
    )


@lru_cache
def get_user_store() -> UserStore:
    return UserStore(SessionLocal)


@lru_cache
def get_order_store() -> OrderStore:
    return OrderStore(SessionLocal)


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    """Bind the correlation id and record request count and latency for every HTTP call."""

    trace_id = request.headers.get("x-correlation-id") or str(uuid4())
    trace_id_ctx.set(trace_id)
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        response.headers["x-correlation-id"] = trace_id
        return response
    finally:
        elapsed = max(0.0, perf_counter() - start)
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(elapsed)
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.post("/api/marketplace/payments/create-intent")
async def create_payment_intent(
    request: Request,
    provider: StripePaymentProvider = Depends(get_payment_provider),
) -> JSONResponse:
    """Create a Stripe payment intent for an order and return its client secret."""

    return await create_intent_handler.handle(request, partial(create_intent, provider))


@app.post("/api/marketplace/payments/webhooks")
async def stripe_webhook(
    request: Request,
    orders: OrderStore = Depends(get_order_store),
) -> JSONResponse:
    """Apply verified payment intent outcomes to the referenced order."""

    return await webhook_handler.handle(request, partial(apply_webhook_event, orders))


@app.post("/api/auth/callback/signin")
async def sign_in_callback(
    request: Request,
    users: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Upsert the user the mail provider just verified.

    The body must carry the provider's `x-identity-signature`. A failed upsert
    answers 500, which blocks the sign-in.
    """

    return await sign_in_handler.handle(request, partial(sign_in, users))


@app.post("/api/marketplace/orders/create", status_code=201)
async def create_order(
    request: Request,
    orders: OrderStore = Depends(get_order_store),
) -> JSONResponse:
    """Place a pending order for a gig package on behalf of the signed-in buyer."""

    return await create_order_handler.handle(request, partial(place_order, orders))


@app.post("/api/user/delete")
async def delete_user(
    request: Request,
    users: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Soft-delete the signed-in user's account."""

    return await delete_user_handler.handle(request, partial(delete_account, users))


@app.get("/api/user/export")
async def export_user(
    request: Request,
    users: UserStore = Depends(get_user_store),
) -> JSONResponse:
    """Return the signed-in user's stored data as a JSON download."""

    response = await export_user_handler.handle(request, partial(export_account, users))
    if response.status_code == 200:
        response.headers["Content-Disposition"] = (
            f'attachment; filename="flowbench-data-export-{int(time() * 1000)}.json"'
        )
    return response


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True}

