"""Admin recovery request/response schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, model_validator

from ikhaya.services.checkout.schemas import CheckoutItem
from ikhaya.services.orders.schemas import (
    EMAIL_PATTERN,
    TEMP_ORDER_ID_PATTERN,
    Address,
    OrderView,
    PendingOrderPayload,
)


class ManualReconstruction(BaseModel):
    """Cart and customer details re-entered by an operator when the pending row is gone."""

    email: str = Field(pattern=EMAIL_PATTERN)
    user_id: str | None = None
    billing_address: Address
    shipping_address: Address | None = None
    items: list[CheckoutItem] = Field(min_length=1)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal | None = None
    notes: str | None = None


class RecoveryRequest(BaseModel):
    """Either a temp id whose pending row survives, or a full reconstruction."""

    temp_order_id: str | None = Field(default=None, pattern=TEMP_ORDER_ID_PATTERN)
    payment_reference: str = Field(min_length=1)
    reconstruction: ManualReconstruction | None = None

    @model_validator(mode="after")
    def _require_source(self) -> "RecoveryRequest":
        if self.temp_order_id is None and self.reconstruction is None:
            raise ValueError("temp_order_id or reconstruction is required")
        return self


class RecoveryResult(BaseModel):
    order_id: str
    order_number: str
    temp_order_id: str
    mode: str


class PaymentEventView(BaseModel):
    event_type: str
    payment_status: str | None
    event_data: dict
    error_message: str | None
    created_at: datetime


class OrphanedPayment(BaseModel):
    """A paid notification that never turned into an order."""

    m_payment_id: str
    pf_payment_id: str | None
    amount_gross: str | None
    has_pending_order: bool
    reconciliation_state: str
    last_seen_at: datetime


class PaymentDetails(BaseModel):
    m_payment_id: str
    reconciliation_state: str
    pending_order: PendingOrderPayload | None
    order: OrderView | None
    events: list[PaymentEventView]


class ReconciliationReport(BaseModel):
    event_counts: dict[str, int]
    pending_orders: int
    orphaned_payments: int
    orders_by_source: dict[str, int]


class PendingOrderSummary(BaseModel):
    order_number: str
    email: str
    total_cents: int
    created_at: datetime


class PurgeResult(BaseModel):
    purged: int
