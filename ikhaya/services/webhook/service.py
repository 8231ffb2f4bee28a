"""PayFast ITN reconciliation.

Authenticates each notification by recomputing its signature, then drives the
per-order `AWAITING_PAYMENT -> {CONFIRMED, FAILED}` state machine. Delivery is
at-least-once, so a replay for an already confirmed order is acknowledged
without creating anything.
"""

from enum import Enum

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ikhaya.common.config import settings
from ikhaya.common.logging import logger
from ikhaya.common.metrics import duplicate_notifications_total, webhook_notifications_total
from ikhaya.common.money import to_cents
from ikhaya.common.signature import verify_signature
from ikhaya.common.state_machine import RECONCILIATION_TRANSITIONS, is_terminal, validate_transition
from ikhaya.services.orders.audit import PaymentEventType, PaymentLogger
from ikhaya.services.orders.service import (
    OrderCreationError,
    OrderCreationService,
    PendingOrderNotFound,
)
from ikhaya.services.webhook.models import PaymentReconciliation
from ikhaya.services.webhook.schemas import FAILURE_STATUSES, PayFastNotification


AMOUNT_TOLERANCE_CENTS = 1


class NotificationOutcome(str, Enum):
    CONFIRMED = "confirmed"
    DUPLICATE = "duplicate"
    PAYMENT_FAILED = "payment_failed"
    IGNORED = "ignored"
    SIGNATURE_MISMATCH = "signature_mismatch"
    AMOUNT_MISMATCH = "amount_mismatch"
    UNKNOWN_ORDER = "unknown_order"
    RETRY = "retry"


class WebhookReconciler:
    """Turns verified COMPLETE notifications into confirmed orders."""

    def __init__(
        self,
        session_factory,
        order_service: OrderCreationService | None = None,
        merchant_id: str | None = None,
        passphrase: str | None = None,
        service_name: str = "webhook",
    ) -> None:
        self.session_factory = session_factory
        self.order_service = order_service or OrderCreationService(session_factory, service_name=service_name)
        self.pending_store = self.order_service.pending_store
        self.audit = PaymentLogger(session_factory)
        self.merchant_id = settings.payfast_merchant_id if merchant_id is None else merchant_id
        self.passphrase = settings.payfast_passphrase if passphrase is None else passphrase
        self.service_name = service_name

    def reconciliation_state(self, m_payment_id: str) -> str:
        with self.session_factory() as db:
            row = db.get(PaymentReconciliation, m_payment_id)
            return row.state if row is not None else "AWAITING_PAYMENT"

    def transition(
        self,
        m_payment_id: str,
        new_state: str,
        reason: str,
        pf_payment_id: str | None = None,
        order_id: str | None = None,
    ) -> None:
        """Apply one validated reconciliation transition with optimistic concurrency."""

        with self.session_factory() as db:
            row = db.get(PaymentReconciliation, m_payment_id)
            if row is None:
                try:
                    row = PaymentReconciliation(m_payment_id=m_payment_id, state="AWAITING_PAYMENT", state_version=0)
                    db.add(row)
                    db.flush()
                except IntegrityError:
                    # Another delivery created the row first.
                    db.rollback()
                    row = db.get(PaymentReconciliation, m_payment_id)

            validate_transition(row.state, new_state, RECONCILIATION_TRANSITIONS)
            from_state = row.state
            current_version = row.state_version
            result = db.execute(
                update(PaymentReconciliation)
                .where(
                    PaymentReconciliation.m_payment_id == m_payment_id,
                    PaymentReconciliation.state == from_state,
                    PaymentReconciliation.state_version == current_version,
                )
                .values(
                    state=new_state,
                    state_version=current_version + 1,
                    reason=reason,
                    pf_payment_id=pf_payment_id,
                    order_id=order_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise RuntimeError(
                    f"optimistic concurrency conflict for reconciliation {m_payment_id} "
                    f"(expected version {current_version})"
                )
            db.commit()
        logger.info(
            "reconciliation_transition m_payment_id=%s %s->%s reason=%s",
            m_payment_id,
            from_state,
            new_state,
            reason,
        )

    def _mark_failed(self, m_payment_id: str, reason: str, pf_payment_id: str | None) -> str:
        """Move to FAILED, returning the state the reconciliation ends up in.

        A concurrent delivery may have settled the reconciliation between the
        terminal check and the update; that is a replay, not an error.
        """

        try:
            self.transition(m_payment_id, "FAILED", reason, pf_payment_id)
        except (ValueError, RuntimeError) as exc:
            state = self.reconciliation_state(m_payment_id)
            if state == "AWAITING_PAYMENT":
                raise
            logger.info(
                "reconciliation already settled m_payment_id=%s state=%s error=%s", m_payment_id, state, exc
            )
            return state
        return "FAILED"

    def _record(self, outcome: NotificationOutcome) -> NotificationOutcome:
        webhook_notifications_total.labels(service=self.service_name, outcome=outcome.value).inc()
        return outcome

    def _duplicate(self, notification: PayFastNotification) -> NotificationOutcome:
        logger.info("duplicate notification acknowledged m_payment_id=%s", notification.m_payment_id)
        duplicate_notifications_total.labels(service=self.service_name).inc()
        self.audit.log(
            PaymentEventType.DUPLICATE_NOTIFICATION,
            notification.m_payment_id,
            data={"pf_payment_id": notification.pf_payment_id},
            payment_status=notification.payment_status,
        )
        return self._record(NotificationOutcome.DUPLICATE)

    def _already_confirmed(self, m_payment_id: str) -> bool:
        if self.reconciliation_state(m_payment_id) == "CONFIRMED":
            return True
        return self.order_service.find_by_temp_order_id(m_payment_id) is not None

    def handle_notification(self, notification: PayFastNotification) -> NotificationOutcome:
        """Verify, then confirm or fail the order referenced by `m_payment_id`."""

        m_payment_id = notification.m_payment_id
        status = notification.payment_status.strip().upper()
        self.audit.log(
            PaymentEventType.WEBHOOK_RECEIVED,
            m_payment_id,
            data=notification.audit_data(),
            payment_status=status,
        )

        # PayFast signs the ITN variables in the order it posts them.
        signed = notification.signed_fields()
        merchant_ok = not self.merchant_id or notification.merchant_id == self.merchant_id
        if not merchant_ok or not verify_signature(signed, notification.signature, self.passphrase, tuple(signed)):
            logger.warning("notification rejected m_payment_id=%s reason=signature", m_payment_id)
            self.audit.log(
                PaymentEventType.SIGNATURE_MISMATCH,
                m_payment_id,
                data={"pf_payment_id": notification.pf_payment_id},
                error_message="signature verification failed",
                payment_status=status,
            )
            return self._record(NotificationOutcome.SIGNATURE_MISMATCH)

        if self._already_confirmed(m_payment_id):
            return self._duplicate(notification)

        if is_terminal(self.reconciliation_state(m_payment_id)):
            logger.warning("notification after terminal failure m_payment_id=%s status=%s", m_payment_id, status)
            # Money taken after rejection needs an operator, not a failure count.
            event_type = (
                PaymentEventType.PAID_AFTER_FAILURE if status == "COMPLETE" else PaymentEventType.PAYMENT_FAILED
            )
            self.audit.log(
                event_type,
                m_payment_id,
                data=notification.audit_data(),
                error_message="reconciliation already failed; use manual recovery",
                payment_status=status,
            )
            return self._record(NotificationOutcome.IGNORED)

        if status in FAILURE_STATUSES:
            settled = self._mark_failed(m_payment_id, f"gateway_status:{status}", notification.pf_payment_id)
            if settled == "CONFIRMED":
                return self._duplicate(notification)
            self.audit.log(
                PaymentEventType.PAYMENT_FAILED,
                m_payment_id,
                data={"pf_payment_id": notification.pf_payment_id},
                payment_status=status,
            )
            return self._record(NotificationOutcome.PAYMENT_FAILED)

        if status != "COMPLETE":
            logger.info("notification ignored m_payment_id=%s status=%s", m_payment_id, status)
            return self._record(NotificationOutcome.IGNORED)

        pending = self.pending_store.get(m_payment_id)
        if pending is None:
            if self._already_confirmed(m_payment_id):
                return self._duplicate(notification)
            logger.error("pending order not found for paid notification m_payment_id=%s", m_payment_id)
            self.audit.log(
                PaymentEventType.PENDING_ORDER_NOT_FOUND,
                m_payment_id,
                data=notification.audit_data(),
                payment_status=status,
            )
            return self._record(NotificationOutcome.UNKNOWN_ORDER)

        try:
            paid_cents = to_cents(notification.amount_gross) if notification.amount_gross is not None else None
        except ValueError:
            paid_cents = None
        if paid_cents is None or abs(paid_cents - pending.total_cents) > AMOUNT_TOLERANCE_CENTS:
            settled = self._mark_failed(m_payment_id, "amount_mismatch", notification.pf_payment_id)
            if settled == "CONFIRMED":
                return self._duplicate(notification)
            self.audit.log(
                PaymentEventType.AMOUNT_MISMATCH,
                m_payment_id,
                data={"expected_cents": pending.total_cents, "paid_cents": paid_cents},
                error_message="amount_gross does not match pending order total",
                payment_status=status,
            )
            return self._record(NotificationOutcome.AMOUNT_MISMATCH)

        try:
            result = self.order_service.create_from_pending(
                m_payment_id, notification.pf_payment_id or "", source="webhook"
            )
        except PendingOrderNotFound:
            if self._already_confirmed(m_payment_id):
                return self._duplicate(notification)
            self.audit.log(
                PaymentEventType.PENDING_ORDER_NOT_FOUND,
                m_payment_id,
                data=notification.audit_data(),
                payment_status=status,
            )
            return self._record(NotificationOutcome.UNKNOWN_ORDER)
        except OrderCreationError as exc:
            self.audit.log(
                PaymentEventType.PROCESSING_FAILED,
                m_payment_id,
                data={"pf_payment_id": notification.pf_payment_id, "error_type": type(exc).__name__},
                error_message=str(exc),
                payment_status=status,
            )
            return self._record(NotificationOutcome.RETRY)

        try:
            self.transition(
                m_payment_id,
                "CONFIRMED",
                "payment_complete",
                notification.pf_payment_id,
                order_id=result.order_id,
            )
        except (ValueError, RuntimeError) as exc:
            # The order exists; it stays the source of truth for replays.
            logger.warning("reconciliation state not updated m_payment_id=%s error=%s", m_payment_id, exc)
        self.audit.log(
            PaymentEventType.PROCESSING_COMPLETED,
            m_payment_id,
            data={"order_id": result.order_id, "order_number": result.order_number},
            payment_status=status,
        )
        return self._record(NotificationOutcome.CONFIRMED)
