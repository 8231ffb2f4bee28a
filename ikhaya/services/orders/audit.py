"""Payment audit log helpers.

Rows in `payment_logs` are only ever inserted. `record_payment_event` adds an
entry to the caller's transaction; `PaymentLogger` writes and commits one
entry on its own so funnel events survive an aborted checkout.
"""

from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from ikhaya.common.logging import logger
from ikhaya.services.orders.models import PaymentLog


class PaymentEventType(str, Enum):
    # checkout funnel
    PAYMENT_INITIATED = "payment_initiated"
    PENDING_ORDER_CREATED = "pending_order_created"
    PENDING_ORDER_FAILED = "pending_order_failed"
    FORM_PREPARED = "form_prepared"
    FORM_SUBMITTED = "form_submitted"
    PAYMENT_CANCELLED = "payment_cancelled"
    PAYMENT_SUCCESS_PAGE = "payment_success_page"
    CLIENT_ERROR = "client_error"
    # reconciliation
    WEBHOOK_RECEIVED = "webhook_received"
    SIGNATURE_MISMATCH = "signature_mismatch"
    PENDING_ORDER_NOT_FOUND = "pending_order_not_found"
    AMOUNT_MISMATCH = "amount_mismatch"
    PAYMENT_FAILED = "payment_failed"
    DUPLICATE_NOTIFICATION = "duplicate_notification"
    PROCESSING_COMPLETED = "processing_completed"
    PROCESSING_FAILED = "processing_failed"
    PAID_AFTER_FAILURE = "paid_after_failure"
    ORDER_RECOVERED = "order_recovered"
    PENDING_ORDER_EXPIRED = "pending_order_expired"


CLIENT_EVENT_TYPES = {
    PaymentEventType.PAYMENT_CANCELLED,
    PaymentEventType.PAYMENT_SUCCESS_PAGE,
    PaymentEventType.CLIENT_ERROR,
}


def record_payment_event(
    db,
    event_type: PaymentEventType,
    m_payment_id: str | None = None,
    data: dict | None = None,
    error_message: str | None = None,
    payment_status: str | None = None,
) -> PaymentLog:
    """Add one audit row to the current session without committing."""

    entry = PaymentLog(
        event_type=event_type.value,
        m_payment_id=m_payment_id,
        payment_status=payment_status,
        event_data=data or {},
        error_message=error_message,
    )
    db.add(entry)
    return entry


class PaymentLogger:
    """Commits audit rows in their own short transaction."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def log(
        self,
        event_type: PaymentEventType,
        m_payment_id: str | None = None,
        data: dict | None = None,
        error_message: str | None = None,
        payment_status: str | None = None,
    ) -> bool:
        try:
            with self.session_factory() as db:
                record_payment_event(db, event_type, m_payment_id, data, error_message, payment_status)
                db.commit()
        except SQLAlchemyError as exc:
            logger.warning("payment_log_write_failed event_type=%s error=%s", event_type.value, exc)
            return False
        logger.info("payment_event event_type=%s m_payment_id=%s", event_type.value, m_payment_id)
        return True

    def events_for(self, m_payment_id: str) -> list[PaymentLog]:
        with self.session_factory() as db:
            return (
                db.execute(
                    select(PaymentLog)
                    .where(PaymentLog.m_payment_id == m_payment_id)
                    .order_by(PaymentLog.created_at.desc())
                )
                .scalars()
                .all()
            )

    def events_of_type(self, event_type: PaymentEventType, limit: int = 50) -> list[PaymentLog]:
        with self.session_factory() as db:
            return (
                db.execute(
                    select(PaymentLog)
                    .where(PaymentLog.event_type == event_type.value)
                    .order_by(PaymentLog.created_at.desc())
                    .limit(limit)
                )
                .scalars()
                .all()
            )

    def counts_by_type(self) -> dict[str, int]:
        with self.session_factory() as db:
            rows = db.execute(
                select(PaymentLog.event_type, func.count(PaymentLog.id)).group_by(PaymentLog.event_type)
            ).all()
        return {event_type: int(count) for event_type, count in rows}
