"""Pending-order snapshot and order read models.

`PendingOrderPayload` is validated both when checkout writes it and whenever
the webhook or recovery path reads it back from storage.
"""

from datetime import datetime, timezone

from pydantic import BaseModel, Field, model_validator


EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
TEMP_ORDER_ID_PATTERN = r"^(TEMP|RECOVERY)-\d{13}-[0-9a-f]{8}$"


class Address(BaseModel):
    """Billing or shipping address as captured at checkout."""

    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    email: str | None = None
    phone: str | None = None
    address_line_1: str = Field(min_length=1)
    address_line_2: str | None = None
    city: str = Field(min_length=1)
    province: str | None = None
    postal_code: str = Field(min_length=1)
    country: str = "South Africa"


class LineItem(BaseModel):
    """One cart line frozen at checkout time."""

    product_id: str | None = None
    product_name: str = Field(min_length=1)
    product_sku: str | None = None
    quantity: int = Field(gt=0)
    unit_price_cents: int = Field(ge=0)
    total_price_cents: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_line_total(self) -> "LineItem":
        if self.total_price_cents != self.unit_price_cents * self.quantity:
            raise ValueError("line total must equal unit price x quantity")
        return self


class PendingOrderPayload(BaseModel):
    """Everything needed to materialise an order without re-reading the catalog."""

    order_number: str = Field(pattern=TEMP_ORDER_ID_PATTERN)
    user_id: str | None = None
    email: str = Field(pattern=EMAIL_PATTERN)
    billing_address: Address
    shipping_address: Address | None = None
    items: list[LineItem] = Field(min_length=1)
    subtotal_cents: int = Field(ge=0)
    shipping_cents: int = Field(default=0, ge=0)
    total_cents: int = Field(gt=0)
    currency: str = Field(default="ZAR", min_length=3, max_length=3)
    notes: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def _check_totals(self) -> "PendingOrderPayload":
        if self.subtotal_cents != sum(item.total_price_cents for item in self.items):
            raise ValueError("subtotal must equal the sum of line totals")
        if self.total_cents != self.subtotal_cents + self.shipping_cents:
            raise ValueError("total must equal subtotal + shipping")
        return self


class OrderCreationResult(BaseModel):
    """Outcome of promoting one pending order."""

    order_id: str
    order_number: str
    temp_order_id: str


class OrderItemView(BaseModel):
    product_id: str | None
    product_name: str
    product_sku: str | None
    quantity: int
    unit_price_cents: int
    total_price_cents: int


class OrderView(BaseModel):
    """Order plus items as returned by admin endpoints."""

    id: str
    order_number: str
    temp_order_id: str
    email: str
    status: str
    payment_status: str
    payment_gateway: str
    payment_reference: str | None
    source_channel: str
    subtotal_cents: int
    shipping_cents: int
    total_cents: int
    currency: str
    items: list[OrderItemView]


class OrderStatusUpdate(BaseModel):
    """Admin status change; at least one field must be provided."""

    status: str | None = None
    payment_status: str | None = None

    @model_validator(mode="after")
    def _require_change(self) -> "OrderStatusUpdate":
        if self.status is None and self.payment_status is None:
            raise ValueError("status or payment_status is required")
        return self
