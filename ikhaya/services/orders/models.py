"""Order database models.

This DB is the source of truth for pending checkouts, confirmed orders and
their line items, and the append-only payment audit log.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from ikhaya.common.db import Base, JSONType


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PendingOrder(Base):
    """Checkout snapshot saved before the browser is sent to PayFast."""

    __tablename__ = "pending_orders"

    # Temporary order id, also sent to PayFast as `m_payment_id`.
    order_number: Mapped[str] = mapped_column(String, primary_key=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str] = mapped_column(String, index=True)
    payload: Mapped[dict] = mapped_column(JSONType)
    total_cents: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True
    )


class Order(Base):
    """Confirmed order created once payment is established."""

    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_number: Mapped[str] = mapped_column(String, unique=True, index=True)
    temp_order_id: Mapped[str] = mapped_column(String, unique=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    email: Mapped[str] = mapped_column(String, index=True)
    billing_address: Mapped[dict] = mapped_column(JSONType)
    shipping_address: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    subtotal_cents: Mapped[int] = mapped_column(Integer)
    shipping_cents: Mapped[int] = mapped_column(Integer, default=0)
    total_cents: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="ZAR")
    status: Mapped[str] = mapped_column(String, index=True)
    payment_status: Mapped[str] = mapped_column(String, index=True)
    payment_gateway: Mapped[str] = mapped_column(String, default="payfast")
    payment_reference: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    source_channel: Mapped[str] = mapped_column(String, default="webhook")
    notes: Mapped[str | None] = mapped_column(String, nullable=True)
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow
    )


class OrderItem(Base):
    """Product snapshot at purchase time; decoupled from the live catalog."""

    __tablename__ = "order_items"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_items_quantity_positive"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id", ondelete="CASCADE"), index=True)
    product_id: Mapped[str | None] = mapped_column(String, nullable=True)
    product_name: Mapped[str] = mapped_column(String, nullable=False)
    product_sku: Mapped[str | None] = mapped_column(String, nullable=True)
    quantity: Mapped[int] = mapped_column(Integer)
    unit_price_cents: Mapped[int] = mapped_column(Integer)
    total_price_cents: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class PaymentLog(Base):
    """Append-only audit trail of checkout and reconciliation steps."""

    __tablename__ = "payment_logs"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    event_type: Mapped[str] = mapped_column(String, index=True)
    m_payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    payment_status: Mapped[str | None] = mapped_column(String, nullable=True)
    event_data: Mapped[dict] = mapped_column(JSONType, default=dict)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), index=True
    )
