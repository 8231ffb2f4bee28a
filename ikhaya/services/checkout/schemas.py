"""Checkout request/response schemas."""

from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field

from ikhaya.services.orders.schemas import Address


class Customer(BaseModel):
    first_name: str
    last_name: str
    email: str
    phone: str | None = None


class CheckoutItem(BaseModel):
    """Cart line as priced by the storefront at checkout time."""

    product_id: str | None = None
    product_name: str = Field(min_length=1)
    product_sku: str | None = None
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(gt=0)


class CheckoutRequest(BaseModel):
    """Payload accepted by `POST /checkout` and `POST /checkout/form`.

    `subtotal` and `total` are optional client-side figures; when present they
    must agree with the server's recomputation.
    """

    temp_order_id: str | None = Field(default=None, pattern=r"^TEMP-\d{13}-[0-9a-f]{8}$")
    user_id: str | None = None
    customer: Customer
    billing_address: Address
    shipping_address: Address | None = None
    items: list[CheckoutItem] = Field(min_length=1)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    subtotal: Decimal | None = None
    total: Decimal | None = None
    payment_method: str | None = None
    notes: str | None = None


class SignedPaymentRequest(BaseModel):
    """Gateway fields in schema order plus their signature; never persisted."""

    action_url: str
    fields: list[tuple[str, str]]
    signature: str

    def form_fields(self) -> list[tuple[str, str]]:
        return [*self.fields, ("signature", self.signature)]


class RedirectDescriptor(BaseModel):
    """Everything a browser needs to POST itself to PayFast."""

    action_url: str
    method: str = "POST"
    fields: list[tuple[str, str]]
    m_payment_id: str


class ClientEvent(BaseModel):
    """Funnel event reported by the browser after it left for PayFast."""

    event_type: Literal["payment_cancelled", "payment_success_page", "client_error"]
    m_payment_id: str | None = Field(default=None, max_length=64)
    data: dict = Field(default_factory=dict)
    error_message: str | None = Field(default=None, max_length=2000)
