"""Order creation and lifecycle logic.

Promotes a pending checkout into a confirmed order plus its line items in a
single transaction, with a compensating delete when item insertion fails,
and applies admin status changes through the order state machines.
"""

import secrets
from datetime import datetime, timezone
from time import perf_counter

from pydantic import ValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from ikhaya.common.config import settings
from ikhaya.common.logging import logger
from ikhaya.common.metrics import order_creation_seconds, order_rollbacks_total, orders_created_total
from ikhaya.common.state_machine import (
    ORDER_STATUS_TRANSITIONS,
    PAYMENT_STATUS_TRANSITIONS,
    validate_transition,
)
from ikhaya.services.orders.models import Order, OrderItem
from ikhaya.services.orders.pending import PendingOrderStore
from ikhaya.services.orders.schemas import (
    LineItem,
    OrderCreationResult,
    OrderItemView,
    OrderView,
    PendingOrderPayload,
)


class OrderCreationError(Exception):
    """Base class for failures while promoting a pending order."""

    retryable = True


class PendingOrderNotFound(OrderCreationError):
    """No pending row to promote: unknown id, or another caller already did it."""

    retryable = False


class OrderInsertFailed(OrderCreationError):
    """The order row could not be written; nothing was persisted."""


class ItemInsertFailed(OrderCreationError):
    """Line items could not be written; the order row was removed again."""


class OrderNotFound(Exception):
    pass


def generate_order_number(now: datetime | None = None) -> str:
    """Human-readable order number: `ORD-{epoch_ms}-{10 hex upper}`."""

    now = now or datetime.now(timezone.utc)
    return f"ORD-{int(now.timestamp() * 1000)}-{secrets.token_hex(5).upper()}"


class OrderCreationService:
    """Owns the pending → confirmed order promotion."""

    def __init__(
        self,
        session_factory,
        pending_store: PendingOrderStore | None = None,
        service_name: str = "orders",
    ) -> None:
        self.session_factory = session_factory
        self.pending_store = pending_store or PendingOrderStore(session_factory, service_name=service_name)
        self.service_name = service_name

    def _build_order(self, pending: PendingOrderPayload, payment_reference: str, source: str) -> Order:
        billing = pending.billing_address.model_dump(mode="json")
        billing.setdefault("email", pending.email)
        shipping = (pending.shipping_address or pending.billing_address).model_dump(mode="json")
        return Order(
            order_number=generate_order_number(),
            temp_order_id=pending.order_number,
            user_id=pending.user_id,
            email=pending.email,
            billing_address=billing,
            shipping_address=shipping,
            subtotal_cents=pending.subtotal_cents,
            shipping_cents=pending.shipping_cents,
            total_cents=pending.total_cents,
            currency=pending.currency or settings.currency,
            status="confirmed",
            payment_status="paid",
            payment_gateway="payfast",
            payment_reference=payment_reference,
            source_channel=source,
            notes=pending.notes,
            state_version=0,
        )

    def _insert_items(self, db, order: Order, items: list[LineItem]) -> None:
        for item in items:
            db.add(
                OrderItem(
                    order_id=order.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    total_price_cents=item.total_price_cents,
                )
            )
        db.flush()

    def create_from_pending(
        self, temp_order_id: str, payment_reference: str, source: str = "webhook"
    ) -> OrderCreationResult:
        """Materialise the pending order `temp_order_id` exactly once.

        Raises `PendingOrderNotFound` when there is nothing to promote (the
        normal outcome for a duplicate delivery), `OrderInsertFailed` or
        `ItemInsertFailed` otherwise. On any failure the pending row survives.
        """

        started = perf_counter()
        with self.session_factory() as db:
            try:
                pending = self.pending_store.claim(db, temp_order_id)
            except ValidationError as exc:
                db.rollback()
                logger.error("pending_order_unreadable temp_order_id=%s error=%s", temp_order_id, exc)
                raise OrderInsertFailed(f"pending order {temp_order_id} failed validation") from exc
            if pending is None:
                db.rollback()
                logger.info("pending_order_not_found temp_order_id=%s", temp_order_id)
                raise PendingOrderNotFound(temp_order_id)

            order = self._build_order(pending, payment_reference, source)
            try:
                db.add(order)
                db.flush()
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error("order_insert_failed temp_order_id=%s error=%s", temp_order_id, exc)
                raise OrderInsertFailed(str(exc)) from exc

            try:
                with db.begin_nested():
                    self._insert_items(db, order, pending.items)
            except SQLAlchemyError as exc:
                order_number = order.order_number
                # Compensation: remove the order, then roll back to release the pending claim.
                db.delete(order)
                db.flush()
                db.rollback()
                order_rollbacks_total.labels(service=self.service_name).inc()
                logger.error(
                    "order_items_insert_failed order_number=%s temp_order_id=%s error=%s",
                    order_number,
                    temp_order_id,
                    exc,
                )
                raise ItemInsertFailed(str(exc)) from exc

            db.commit()
            result = OrderCreationResult(
                order_id=order.id,
                order_number=order.order_number,
                temp_order_id=temp_order_id,
            )

        orders_created_total.labels(service=self.service_name, source=source).inc()
        order_creation_seconds.labels(service=self.service_name, source=source).observe(perf_counter() - started)
        logger.info(
            "order_created order_number=%s temp_order_id=%s source=%s items=%s",
            result.order_number,
            temp_order_id,
            source,
            len(pending.items),
        )
        return result

    def find_by_temp_order_id(self, temp_order_id: str) -> Order | None:
        with self.session_factory() as db:
            return db.execute(select(Order).where(Order.temp_order_id == temp_order_id)).scalar_one_or_none()

    def find_by_payment_reference(self, payment_reference: str) -> Order | None:
        with self.session_factory() as db:
            return (
                db.execute(select(Order).where(Order.payment_reference == payment_reference).limit(1))
                .scalars()
                .first()
            )

    def get_order(self, order_number: str) -> OrderView:
        with self.session_factory() as db:
            order = db.execute(select(Order).where(Order.order_number == order_number)).scalar_one_or_none()
            if order is None:
                raise OrderNotFound(order_number)
            items = db.execute(select(OrderItem).where(OrderItem.order_id == order.id)).scalars().all()
            return self._view(order, items)

    def _view(self, order: Order, items: list[OrderItem]) -> OrderView:
        return OrderView(
            id=order.id,
            order_number=order.order_number,
            temp_order_id=order.temp_order_id,
            email=order.email,
            status=order.status,
            payment_status=order.payment_status,
            payment_gateway=order.payment_gateway,
            payment_reference=order.payment_reference,
            source_channel=order.source_channel,
            subtotal_cents=order.subtotal_cents,
            shipping_cents=order.shipping_cents,
            total_cents=order.total_cents,
            currency=order.currency,
            items=[
                OrderItemView(
                    product_id=item.product_id,
                    product_name=item.product_name,
                    product_sku=item.product_sku,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    total_price_cents=item.total_price_cents,
                )
                for item in items
            ],
        )

    def update_status(
        self, order_number: str, status: str | None = None, payment_status: str | None = None
    ) -> OrderView:
        """Apply one admin status change with optimistic concurrency.

        The write is guarded by `(id, state_version)` so two operators racing on
        the same order cannot both succeed from the same starting state.
        """

        with self.session_factory() as db:
            order = db.execute(select(Order).where(Order.order_number == order_number)).scalar_one_or_none()
            if order is None:
                raise OrderNotFound(order_number)
            values: dict = {}
            if status is not None and status != order.status:
                validate_transition(order.status, status, ORDER_STATUS_TRANSITIONS)
                values["status"] = status
            if payment_status is not None and payment_status != order.payment_status:
                validate_transition(order.payment_status, payment_status, PAYMENT_STATUS_TRANSITIONS)
                values["payment_status"] = payment_status
            if values:
                current_version = order.state_version
                result = db.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.state_version == current_version)
                    .values(
                        **values,
                        state_version=current_version + 1,
                        updated_at=datetime.now(timezone.utc),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise RuntimeError(
                        f"optimistic concurrency conflict for order {order_number} "
                        f"(expected version {current_version})"
                    )
                db.commit()
                logger.info("order_status_updated order_number=%s changes=%s", order_number, values)
            db.refresh(order)
            items = db.execute(select(OrderItem).where(OrderItem.order_id == order.id)).scalars().all()
            return self._view(order, items)
