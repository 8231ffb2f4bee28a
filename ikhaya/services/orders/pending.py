"""Durable holding area for checkouts awaiting payment confirmation.

Pending rows are keyed by the temporary order id the browser carries through
the PayFast round trip. Checkout, webhook and recovery processes all reach the
same table, so nothing here depends on in-process state.
"""

import re
import secrets
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from ikhaya.common.config import settings
from ikhaya.common.logging import logger
from ikhaya.common.metrics import pending_orders_purged_total
from ikhaya.services.orders.audit import PaymentEventType, record_payment_event
from ikhaya.services.orders.models import PendingOrder
from ikhaya.services.orders.schemas import PendingOrderPayload


_TEMP_ID_TIMESTAMP = re.compile(r"^[A-Z]+-(\d{13})-[0-9a-f]{8}$")


def new_temp_order_id(prefix: str = "TEMP", now: datetime | None = None) -> str:
    """Return `{prefix}-{epoch_ms}-{8 hex}`, e.g. `TEMP-1700000000000-abc123de`."""

    now = now or datetime.now(timezone.utc)
    return f"{prefix}-{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


def temp_id_timestamp(order_number: str) -> datetime | None:
    """Creation time embedded in a temporary order id, if it parses."""

    match = _TEMP_ID_TIMESTAMP.match(order_number or "")
    if not match:
        return None
    return datetime.fromtimestamp(int(match.group(1)) / 1000, tz=timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PendingOrderStore:
    """store / get / claim / clear / purge_expired over `pending_orders`."""

    def __init__(self, session_factory, ttl_seconds: int | None = None, service_name: str = "orders") -> None:
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.pending_order_ttl_seconds
        self.service_name = service_name

    def store(self, pending: PendingOrderPayload) -> bool:
        """Persist the snapshot; `False` means checkout must not redirect."""

        try:
            with self.session_factory() as db:
                db.add(
                    PendingOrder(
                        order_number=pending.order_number,
                        user_id=pending.user_id,
                        email=pending.email,
                        payload=pending.model_dump(mode="json"),
                        total_cents=pending.total_cents,
                        created_at=pending.created_at,
                    )
                )
                db.commit()
        except SQLAlchemyError as exc:
            logger.error("pending_order_store_failed order_number=%s error=%s", pending.order_number, exc)
            return False
        logger.info("pending_order_stored order_number=%s", pending.order_number)
        return True

    def _load(self, order_number: str, payload: dict) -> PendingOrderPayload | None:
        try:
            return PendingOrderPayload.model_validate(payload)
        except ValidationError as exc:
            logger.warning("pending_order_corrupt order_number=%s error=%s", order_number, exc)
            return None

    def get(self, order_number: str) -> PendingOrderPayload | None:
        """Return the snapshot, or `None` when unknown, cleared or unreadable."""

        with self.session_factory() as db:
            row = db.get(PendingOrder, order_number)
            if row is None:
                return None
            return self._load(row.order_number, row.payload)

    def clear(self, order_number: str) -> bool:
        with self.session_factory() as db:
            result = db.execute(delete(PendingOrder).where(PendingOrder.order_number == order_number))
            db.commit()
        return result.rowcount == 1

    def claim(self, db, order_number: str) -> PendingOrderPayload | None:
        """Delete the row inside the caller's transaction and return its snapshot.

        Only one concurrent transaction can delete a given row; every other
        caller gets `None` once the winner commits. Rolling back the caller's
        transaction puts the row back.
        """

        table = PendingOrder.__table__
        row = db.execute(
            delete(table)
            .where(table.c.order_number == order_number)
            .returning(table.c.order_number, table.c.payload)
        ).first()
        if row is None:
            return None
        return PendingOrderPayload.model_validate(row.payload)

    def list_pending(self, limit: int = 100) -> list[PendingOrder]:
        with self.session_factory() as db:
            return (
                db.execute(select(PendingOrder).order_by(PendingOrder.created_at.asc()).limit(limit))
                .scalars()
                .all()
            )

    def _purge_reason(self, row: PendingOrder, cutoff: datetime) -> str | None:
        created_at = _as_utc(row.created_at) or temp_id_timestamp(row.order_number)
        if created_at is None:
            return "invalid"
        try:
            PendingOrderPayload.model_validate(row.payload)
        except ValidationError:
            return "invalid"
        if created_at < cutoff:
            return "expired"
        return None

    def purge_expired(self, now: datetime | None = None) -> int:
        """Remove rows older than the TTL and rows that no longer validate."""

        now = _as_utc(now) or datetime.now(timezone.utc)
        cutoff = now - timedelta(seconds=self.ttl_seconds)
        purged = 0
        with self.session_factory() as db:
            rows = db.execute(select(PendingOrder)).scalars().all()
            for row in rows:
                reason = self._purge_reason(row, cutoff)
                if reason is None:
                    continue
                # Core delete: a row claimed concurrently simply matches nothing.
                result = db.execute(delete(PendingOrder).where(PendingOrder.order_number == row.order_number))
                if result.rowcount != 1:
                    continue
                record_payment_event(
                    db,
                    PaymentEventType.PENDING_ORDER_EXPIRED,
                    m_payment_id=row.order_number,
                    data={"reason": reason, "email": row.email, "total_cents": row.total_cents},
                )
                pending_orders_purged_total.labels(service=self.service_name, reason=reason).inc()
                purged += 1
            db.commit()
        if purged:
            logger.info("pending_orders_purged count=%s cutoff=%s", purged, cutoff.isoformat())
        return purged
