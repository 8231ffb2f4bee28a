"""Checkout initiation: pending order first, then a signed PayFast redirect.

The pending snapshot must be durable before the browser leaves for PayFast,
otherwise a paid notification would have nothing to promote. Every funnel
step is written to the payment audit log synchronously.
"""

import html
import re

from ikhaya.common.config import settings
from ikhaya.common.logging import logger
from ikhaya.common.metrics import checkout_failures_total
from ikhaya.common.money import format_amount, to_cents
from ikhaya.common.ratelimit import TokenBucketLimiter
from ikhaya.common.signature import CHECKOUT_FIELD_ORDER, ordered_fields, sign
from ikhaya.services.checkout.schemas import (
    CheckoutItem,
    CheckoutRequest,
    ClientEvent,
    RedirectDescriptor,
    SignedPaymentRequest,
)
from ikhaya.services.orders.audit import CLIENT_EVENT_TYPES, PaymentEventType, PaymentLogger
from ikhaya.services.orders.pending import PendingOrderStore, new_temp_order_id
from ikhaya.services.orders.schemas import EMAIL_PATTERN, LineItem, PendingOrderPayload


class CheckoutValidationError(ValueError):
    """Checkout input cannot produce a valid signed request."""


class PendingOrderStoreError(RuntimeError):
    """The pending order could not be saved; the customer should try again."""


def _clean(value: str | None) -> str:
    return (value or "").strip()


def _cell_number(phone: str | None) -> str | None:
    digits = re.sub(r"\D", "", phone or "")
    return digits[:10] if len(digits) >= 10 else None


def price_items(items: list[CheckoutItem]) -> list[LineItem]:
    """Freeze cart lines into cent-denominated line items."""

    lines = []
    for item in items:
        unit_cents = to_cents(item.unit_price)
        lines.append(
            LineItem(
                product_id=item.product_id,
                product_name=item.product_name.strip(),
                product_sku=item.product_sku,
                quantity=item.quantity,
                unit_price_cents=unit_cents,
                total_price_cents=unit_cents * item.quantity,
            )
        )
    return lines


class CheckoutService:
    """Builds the pending order and the signed redirect for one checkout."""

    def __init__(
        self,
        session_factory,
        pending_store: PendingOrderStore | None = None,
        limiter: TokenBucketLimiter | None = None,
        service_name: str = "checkout",
    ) -> None:
        self.pending_store = pending_store or PendingOrderStore(session_factory, service_name=service_name)
        self.audit = PaymentLogger(session_factory)
        self.limiter = limiter
        self.service_name = service_name

    def _fail(self, reason: str, message: str) -> CheckoutValidationError:
        checkout_failures_total.labels(service=self.service_name, reason=reason).inc()
        return CheckoutValidationError(message)

    def validate(self, req: CheckoutRequest) -> None:
        """Reject input before anything is stored or signed."""

        if not settings.payfast_merchant_id.strip() or not settings.payfast_merchant_key.strip():
            raise self._fail("configuration", "payment gateway is not configured")
        missing = [
            name
            for name, value in (
                ("first_name", req.customer.first_name),
                ("last_name", req.customer.last_name),
                ("email", req.customer.email),
            )
            if not _clean(value)
        ]
        if missing:
            raise self._fail("validation", f"missing buyer fields: {', '.join(missing)}")
        if not re.match(EMAIL_PATTERN, _clean(req.customer.email)):
            raise self._fail("validation", "invalid email address")

    def build_pending(self, req: CheckoutRequest) -> PendingOrderPayload:
        """Snapshot the cart with totals recomputed in cents."""

        items = price_items(req.items)
        subtotal_cents = sum(item.total_price_cents for item in items)
        shipping_cents = to_cents(req.shipping)
        total_cents = subtotal_cents + shipping_cents
        if req.subtotal is not None and to_cents(req.subtotal) != subtotal_cents:
            raise self._fail("validation", "subtotal does not match cart items")
        if req.total is not None and to_cents(req.total) != total_cents:
            raise self._fail("validation", "total does not match subtotal plus shipping")
        if total_cents <= 0:
            raise self._fail("validation", "order total must be positive")

        return PendingOrderPayload(
            order_number=req.temp_order_id or new_temp_order_id(),
            user_id=req.user_id,
            email=_clean(req.customer.email),
            billing_address=req.billing_address,
            shipping_address=req.shipping_address,
            items=items,
            subtotal_cents=subtotal_cents,
            shipping_cents=shipping_cents,
            total_cents=total_cents,
            currency=settings.currency,
            notes=req.notes,
        )

    def build_fields(self, req: CheckoutRequest, pending: PendingOrderPayload) -> dict[str, str | None]:
        summary = ", ".join(f"{item.product_name} x{item.quantity}" for item in pending.items)
        return {
            "merchant_id": settings.payfast_merchant_id.strip(),
            "merchant_key": settings.payfast_merchant_key.strip(),
            "return_url": f"{settings.site_url}/checkout/success",
            "cancel_url": f"{settings.site_url}/checkout?cancelled=true",
            "notify_url": settings.notify_url,
            "name_first": _clean(req.customer.first_name),
            "name_last": _clean(req.customer.last_name),
            "email_address": _clean(req.customer.email),
            "cell_number": _cell_number(req.customer.phone),
            "m_payment_id": pending.order_number,
            "amount": format_amount(pending.total_cents),
            "item_name": f"Ikhaya Order {pending.order_number}",
            "item_description": summary[:255],
            "custom_str1": pending.user_id,
            "payment_method": _clean(req.payment_method) or None,
        }

    def sign_request(self, fields: dict[str, str | None]) -> SignedPaymentRequest:
        return SignedPaymentRequest(
            action_url=settings.payfast_process_url,
            fields=ordered_fields(fields, CHECKOUT_FIELD_ORDER),
            signature=sign(fields, settings.payfast_passphrase, CHECKOUT_FIELD_ORDER),
        )

    def initiate(self, req: CheckoutRequest) -> RedirectDescriptor:
        """Store the pending order and return the signed redirect descriptor.

        Raises `CheckoutValidationError`, `RateLimitExceeded` or
        `PendingOrderStoreError`; in each case the browser must not redirect.
        """

        self.validate(req)
        if self.limiter is not None:
            self.limiter.acquire(_clean(req.customer.email).lower())
        pending = self.build_pending(req)
        temp_order_id = pending.order_number

        self.audit.log(
            PaymentEventType.PAYMENT_INITIATED,
            temp_order_id,
            data={"total_cents": pending.total_cents, "items": len(pending.items)},
        )
        if not self.pending_store.store(pending):
            self.audit.log(
                PaymentEventType.PENDING_ORDER_FAILED,
                temp_order_id,
                error_message="pending order could not be stored",
            )
            checkout_failures_total.labels(service=self.service_name, reason="storage").inc()
            raise PendingOrderStoreError("could not save your order, please try again")
        self.audit.log(PaymentEventType.PENDING_ORDER_CREATED, temp_order_id)

        signed = self.sign_request(self.build_fields(req, pending))
        self.audit.log(
            PaymentEventType.FORM_PREPARED,
            temp_order_id,
            data={"action_url": signed.action_url, "amount": format_amount(pending.total_cents)},
        )
        descriptor = RedirectDescriptor(
            action_url=signed.action_url,
            fields=signed.form_fields(),
            m_payment_id=temp_order_id,
        )
        self.audit.log(PaymentEventType.FORM_SUBMITTED, temp_order_id)
        logger.info("checkout_initiated m_payment_id=%s total_cents=%s", temp_order_id, pending.total_cents)
        return descriptor

    def record_client_event(self, event: ClientEvent) -> bool:
        event_type = PaymentEventType(event.event_type)
        if event_type not in CLIENT_EVENT_TYPES:
            raise CheckoutValidationError(f"{event.event_type} is not a client event")
        return self.audit.log(
            event_type,
            event.m_payment_id,
            data=event.data,
            error_message=event.error_message,
        )


def render_redirect_form(descriptor: RedirectDescriptor) -> str:
    """HTML page that POSTs the descriptor fields to PayFast on load."""

    inputs = "\n".join(
        f'    <input type="hidden" name="{html.escape(name)}" value="{html.escape(value)}">'
        for name, value in descriptor.fields
    )
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head><title>Redirecting to PayFast</title></head>\n"
        '<body onload="document.forms[0].submit()">\n'
        f'  <form action="{html.escape(descriptor.action_url)}" method="{html.escape(descriptor.method)}">\n'
        f"{inputs}\n"
        '    <noscript><button type="submit">Continue to PayFast</button></noscript>\n'
        "  </form>\n"
        "</body>\n</html>\n"
    )
