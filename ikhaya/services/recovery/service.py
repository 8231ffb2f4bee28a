"""Operator tooling for payments whose notification never produced an order.

Recovery always goes through `OrderCreationService.create_from_pending`, the
same promotion the webhook uses. A lost pending row is first re-staged from
the operator's reconstruction and then promoted like any other.
"""

from sqlalchemy import func, select

from ikhaya.common.config import settings
from ikhaya.common.logging import logger
from ikhaya.common.money import to_cents
from ikhaya.services.checkout.service import price_items
from ikhaya.services.orders.audit import PaymentEventType, PaymentLogger
from ikhaya.services.orders.models import Order, PendingOrder
from ikhaya.services.orders.pending import new_temp_order_id
from ikhaya.services.orders.schemas import PendingOrderPayload
from ikhaya.services.orders.service import (
    OrderCreationError,
    OrderCreationService,
    OrderNotFound,
    PendingOrderNotFound,
)
from ikhaya.services.recovery.schemas import (
    ManualReconstruction,
    OrphanedPayment,
    PaymentDetails,
    PaymentEventView,
    PendingOrderSummary,
    ReconciliationReport,
    RecoveryRequest,
    RecoveryResult,
)
from ikhaya.services.webhook.service import WebhookReconciler


RECOVERY_NOTE = "Order created manually from payment recovery"


class RecoveryError(Exception):
    """The requested recovery cannot be carried out as asked."""


class RecoveryConflict(RecoveryError):
    """An order already exists for this payment."""

    def __init__(self, message: str, order_number: str) -> None:
        super().__init__(message)
        self.order_number = order_number


class RecoveryService:
    def __init__(
        self,
        session_factory,
        order_service: OrderCreationService | None = None,
        reconciler: WebhookReconciler | None = None,
        service_name: str = "recovery",
    ) -> None:
        self.session_factory = session_factory
        self.order_service = order_service or OrderCreationService(session_factory, service_name=service_name)
        self.pending_store = self.order_service.pending_store
        self.reconciler = reconciler or WebhookReconciler(
            session_factory, order_service=self.order_service, service_name=service_name
        )
        self.audit = PaymentLogger(session_factory)

    def _ensure_no_existing_order(self, temp_order_id: str | None, payment_reference: str) -> None:
        existing = self.order_service.find_by_temp_order_id(temp_order_id) if temp_order_id else None
        if existing is None:
            existing = self.order_service.find_by_payment_reference(payment_reference)
        if existing is not None:
            raise RecoveryConflict(
                f"order {existing.order_number} already exists for this payment",
                existing.order_number,
            )

    def _pending_from_reconstruction(self, temp_order_id: str, rebuilt: ManualReconstruction) -> PendingOrderPayload:
        items = price_items(rebuilt.items)
        subtotal_cents = sum(item.total_price_cents for item in items)
        shipping_cents = to_cents(rebuilt.shipping)
        if rebuilt.total is not None and to_cents(rebuilt.total) != subtotal_cents + shipping_cents:
            raise RecoveryError("reconstructed total does not match items plus shipping")
        return PendingOrderPayload(
            order_number=temp_order_id,
            user_id=rebuilt.user_id,
            email=rebuilt.email,
            billing_address=rebuilt.billing_address,
            shipping_address=rebuilt.shipping_address,
            items=items,
            subtotal_cents=subtotal_cents,
            shipping_cents=shipping_cents,
            total_cents=subtotal_cents + shipping_cents,
            currency=settings.currency,
            notes=rebuilt.notes or RECOVERY_NOTE,
        )

    def recreate_order(self, request: RecoveryRequest) -> RecoveryResult:
        """Create the order for a paid checkout that never got one.

        Raises `RecoveryConflict` when an order already exists for the temp id
        or payment reference, `RecoveryError` for anything else.
        """

        temp_order_id = request.temp_order_id
        self._ensure_no_existing_order(temp_order_id, request.payment_reference)

        if request.reconstruction is not None:
            mode = "reconstruction"
            if temp_order_id and self.pending_store.get(temp_order_id) is not None:
                raise RecoveryError(f"pending order {temp_order_id} still exists; recover it by temp_order_id")
            temp_order_id = temp_order_id or new_temp_order_id(prefix="RECOVERY")
            pending = self._pending_from_reconstruction(temp_order_id, request.reconstruction)
            if not self.pending_store.store(pending):
                raise RecoveryError(f"could not stage reconstructed order {temp_order_id}")
        else:
            mode = "pending_order"
            if self.pending_store.get(temp_order_id) is None:
                raise RecoveryError(f"no pending order {temp_order_id}; supply a manual reconstruction")

        try:
            result = self.order_service.create_from_pending(
                temp_order_id, request.payment_reference, source="manual_recovery"
            )
        except PendingOrderNotFound as exc:
            # Lost the claim to a concurrent webhook or recovery.
            existing = self.order_service.find_by_temp_order_id(temp_order_id)
            if existing is not None:
                raise RecoveryConflict(
                    f"order {existing.order_number} already exists for this payment",
                    existing.order_number,
                ) from exc
            raise RecoveryError(f"pending order {temp_order_id} disappeared during recovery") from exc
        except OrderCreationError as exc:
            raise RecoveryError(f"order creation failed: {exc}") from exc

        if self.reconciler.reconciliation_state(temp_order_id) == "AWAITING_PAYMENT":
            try:
                self.reconciler.transition(
                    temp_order_id,
                    "CONFIRMED",
                    "manual_recovery",
                    request.payment_reference,
                    order_id=result.order_id,
                )
            except (ValueError, RuntimeError) as exc:
                logger.warning("reconciliation state not updated m_payment_id=%s error=%s", temp_order_id, exc)

        self.audit.log(
            PaymentEventType.ORDER_RECOVERED,
            temp_order_id,
            data={
                "order_id": result.order_id,
                "order_number": result.order_number,
                "payment_reference": request.payment_reference,
                "mode": mode,
            },
        )
        logger.info(
            "order_recovered order_number=%s temp_order_id=%s mode=%s",
            result.order_number,
            temp_order_id,
            mode,
        )
        return RecoveryResult(
            order_id=result.order_id,
            order_number=result.order_number,
            temp_order_id=temp_order_id,
            mode=mode,
        )

    def list_orphaned(self, limit: int = 50) -> list[OrphanedPayment]:
        """Paid notifications that still have no order.

        Covers a missing pending order and a COMPLETE that arrived after the
        reconciliation had already failed.
        """

        events = [
            *self.audit.events_of_type(PaymentEventType.PENDING_ORDER_NOT_FOUND, limit=limit * 4),
            *self.audit.events_of_type(PaymentEventType.PAID_AFTER_FAILURE, limit=limit * 4),
        ]
        events.sort(key=lambda event: event.created_at, reverse=True)
        orphaned: dict[str, OrphanedPayment] = {}
        for event in events:
            m_payment_id = event.m_payment_id
            if not m_payment_id or m_payment_id in orphaned:
                continue
            if self.order_service.find_by_temp_order_id(m_payment_id) is not None:
                continue
            data = event.event_data or {}
            orphaned[m_payment_id] = OrphanedPayment(
                m_payment_id=m_payment_id,
                pf_payment_id=data.get("pf_payment_id"),
                amount_gross=data.get("amount_gross"),
                has_pending_order=self.pending_store.get(m_payment_id) is not None,
                reconciliation_state=self.reconciler.reconciliation_state(m_payment_id),
                last_seen_at=event.created_at,
            )
            if len(orphaned) >= limit:
                break
        return list(orphaned.values())

    def payment_details(self, m_payment_id: str) -> PaymentDetails:
        order = self.order_service.find_by_temp_order_id(m_payment_id)
        order_view = None
        if order is not None:
            try:
                order_view = self.order_service.get_order(order.order_number)
            except OrderNotFound:
                order_view = None
        return PaymentDetails(
            m_payment_id=m_payment_id,
            reconciliation_state=self.reconciler.reconciliation_state(m_payment_id),
            pending_order=self.pending_store.get(m_payment_id),
            order=order_view,
            events=[
                PaymentEventView(
                    event_type=event.event_type,
                    payment_status=event.payment_status,
                    event_data=event.event_data or {},
                    error_message=event.error_message,
                    created_at=event.created_at,
                )
                for event in self.audit.events_for(m_payment_id)
            ],
        )

    def reconciliation_report(self, limit: int = 50) -> ReconciliationReport:
        with self.session_factory() as db:
            pending_count = db.execute(select(func.count()).select_from(PendingOrder)).scalar_one()
            by_source = db.execute(
                select(Order.source_channel, func.count(Order.id)).group_by(Order.source_channel)
            ).all()
        return ReconciliationReport(
            event_counts=self.audit.counts_by_type(),
            pending_orders=int(pending_count),
            orphaned_payments=len(self.list_orphaned(limit)),
            orders_by_source={source: int(count) for source, count in by_source},
        )

    def list_pending(self, limit: int = 100) -> list[PendingOrderSummary]:
        return [
            PendingOrderSummary(
                order_number=row.order_number,
                email=row.email,
                total_cents=row.total_cents,
                created_at=row.created_at,
            )
            for row in self.pending_store.list_pending(limit)
        ]

    def purge_expired(self) -> int:
        return self.pending_store.purge_expired()

    def discard_pending(self, temp_order_id: str) -> bool:
        """Drop one abandoned pending order; the audit trail keeps the evidence."""

        if not self.pending_store.clear(temp_order_id):
            return False
        self.audit.log(
            PaymentEventType.PENDING_ORDER_EXPIRED,
            temp_order_id,
            data={"reason": "discarded_by_operator"},
        )
        return True
