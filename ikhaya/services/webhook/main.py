"""PayFast ITN endpoint.

PayFast retries a notification until it sees a 2xx, so replays and terminal
payment failures are acknowledged with `OK` while anything that deserves a
retry or a human gets a non-2xx status.
"""

from uuid import uuid4

from fastapi import Header, Request
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError

from ikhaya.common.app import create_app
from ikhaya.common.db import SessionLocal
from ikhaya.common.logging import logger, order_number_ctx, trace_id_ctx
from ikhaya.services.webhook.schemas import PayFastNotification
from ikhaya.services.webhook.service import NotificationOutcome, WebhookReconciler

app = create_app(
    "Ikhaya PayFast Webhook",
    ["PAYFAST_MERCHANT_ID", "PAYFAST_PASSPHRASE", "PAYFAST_SANDBOX"],
)
service = WebhookReconciler(SessionLocal)

OUTCOME_RESPONSES = {
    NotificationOutcome.CONFIRMED: (200, "OK"),
    NotificationOutcome.DUPLICATE: (200, "OK"),
    NotificationOutcome.PAYMENT_FAILED: (200, "OK"),
    NotificationOutcome.IGNORED: (200, "OK"),
    NotificationOutcome.SIGNATURE_MISMATCH: (400, "Invalid signature"),
    NotificationOutcome.AMOUNT_MISMATCH: (400, "Amount mismatch"),
    NotificationOutcome.UNKNOWN_ORDER: (404, "Order not found"),
    NotificationOutcome.RETRY: (500, "Processing failed"),
}


@app.post("/payfast/notify", response_class=PlainTextResponse)
async def payfast_notify(request: Request, x_trace_id: str | None = Header(default=None)):
    """Receive one form-encoded ITN and reconcile it against the pending order."""

    trace_id = x_trace_id or str(uuid4())
    trace_id_ctx.set(trace_id)
    form = await request.form()
    try:
        notification = PayFastNotification.from_form(dict(form))
    except ValidationError as exc:
        logger.warning("malformed notification error_count=%s", exc.error_count())
        return PlainTextResponse("Invalid notification", status_code=400)

    order_number_ctx.set(notification.m_payment_id)
    outcome = service.handle_notification(notification)
    status_code, body = OUTCOME_RESPONSES[outcome]
    return PlainTextResponse(body, status_code=status_code)
