"""Public checkout endpoints used by the storefront."""

from uuid import uuid4

from fastapi import Header, HTTPException
from fastapi.responses import HTMLResponse

from ikhaya.common.app import create_app
from ikhaya.common.config import settings
from ikhaya.common.db import SessionLocal
from ikhaya.common.logging import order_number_ctx, trace_id_ctx
from ikhaya.common.metrics import checkout_latency_seconds, checkout_requests_total
from ikhaya.common.ratelimit import RateLimitExceeded, TokenBucketLimiter
from ikhaya.services.checkout.schemas import CheckoutRequest, ClientEvent, RedirectDescriptor
from ikhaya.services.checkout.service import (
    CheckoutService,
    CheckoutValidationError,
    PendingOrderStoreError,
    render_redirect_form,
)

app = create_app(
    "Ikhaya Checkout",
    [
        "REDIS_URL",
        "PAYFAST_MERCHANT_ID",
        "PAYFAST_PASSPHRASE",
        "PAYFAST_SANDBOX",
        "SITE_URL",
        "NOTIFY_URL",
        "RATE_LIMIT_PER_MINUTE",
    ],
)
service = CheckoutService(SessionLocal, limiter=TokenBucketLimiter.from_settings(prefix="tokenbucket:checkout"))


def _initiate(req: CheckoutRequest, x_trace_id: str | None) -> RedirectDescriptor:
    trace_id_ctx.set(x_trace_id or str(uuid4()))
    checkout_requests_total.labels(service=settings.service_name).inc()
    with checkout_latency_seconds.labels(service=settings.service_name).time():
        try:
            descriptor = service.initiate(req)
        except CheckoutValidationError as exc:
            raise HTTPException(status_code=422, detail=str(exc)) from exc
        except RateLimitExceeded as exc:
            raise HTTPException(status_code=429, detail="rate limit exceeded") from exc
        except PendingOrderStoreError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc
    order_number_ctx.set(descriptor.m_payment_id)
    return descriptor


@app.post("/checkout", response_model=RedirectDescriptor)
def create_checkout(req: CheckoutRequest, x_trace_id: str | None = Header(default=None)):
    """Store the pending order and return the signed PayFast redirect."""

    return _initiate(req, x_trace_id)


@app.post("/checkout/form", response_class=HTMLResponse)
def create_checkout_form(req: CheckoutRequest, x_trace_id: str | None = Header(default=None)):
    """Same as `/checkout`, rendered as a self-submitting HTML form."""

    return HTMLResponse(render_redirect_form(_initiate(req, x_trace_id)))


@app.post("/checkout/events", status_code=202)
def record_event(event: ClientEvent):
    """Browser-side funnel events: cancel, success page, client error."""

    return {"recorded": service.record_client_event(event)}
