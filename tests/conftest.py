"""Shared fixtures: SQLite-backed database, fake Redis, sample checkouts and ITNs."""

import os
import tempfile
from decimal import Decimal

_DB_PATH = os.path.join(tempfile.gettempdir(), f"ikhaya-tests-{os.getpid()}.db")

os.environ["POSTGRES_DSN"] = f"sqlite:///{_DB_PATH}"
os.environ["API_KEY"] = "test-api-key"
os.environ["OTEL_ENABLED"] = "false"
os.environ["SERVICE_NAME"] = "ikhaya-tests"
os.environ["PAYFAST_MERCHANT_ID"] = "10000100"
os.environ["PAYFAST_MERCHANT_KEY"] = "46f0cd694581a"
os.environ["PAYFAST_PASSPHRASE"] = "jt7NOE43FZPn"
os.environ["PAYFAST_SANDBOX"] = "true"
os.environ["SITE_URL"] = "https://shop.example.co.za"
os.environ["NOTIFY_URL"] = "https://api.example.co.za/payfast/notify"
os.environ["RATE_LIMIT_PER_MINUTE"] = "10"

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import event  # noqa: E402

from ikhaya.common.db import Base, SessionLocal, engine  # noqa: E402
from ikhaya.common.ratelimit import TokenBucketLimiter  # noqa: E402
from ikhaya.common.signature import NOTIFICATION_FIELD_ORDER, sign  # noqa: E402
from ikhaya.services.checkout.schemas import CheckoutRequest  # noqa: E402
from ikhaya.services.orders import models as order_models  # noqa: E402,F401
from ikhaya.services.orders.pending import PendingOrderStore, new_temp_order_id  # noqa: E402
from ikhaya.services.orders.schemas import Address, LineItem, PendingOrderPayload  # noqa: E402
from ikhaya.services.webhook import models as webhook_models  # noqa: E402,F401

PASSPHRASE = "jt7NOE43FZPn"
MERCHANT_ID = "10000100"


# pysqlite needs these for SAVEPOINT to behave; see the SQLAlchemy SQLite dialect docs.
@event.listens_for(engine, "connect")
def _sqlite_connect(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


@event.listens_for(engine, "begin")
def _sqlite_begin(conn):
    conn.exec_driver_sql("BEGIN")


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def store():
    return PendingOrderStore(SessionLocal)


@pytest.fixture
def limiter():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    return TokenBucketLimiter(client, limit_per_minute=3, prefix="test")


def make_address(**overrides) -> Address:
    data = {
        "first_name": "Thandi",
        "last_name": "Nkosi",
        "email": "thandi@example.co.za",
        "phone": "082 555 0123",
        "address_line_1": "12 Long Street",
        "city": "Cape Town",
        "province": "Western Cape",
        "postal_code": "8001",
    }
    data.update(overrides)
    return Address(**data)


def make_pending(order_number: str | None = None, **overrides) -> PendingOrderPayload:
    """Subtotal 250.00 + shipping 50.00 = total 300.00."""

    data = {
        "order_number": order_number or new_temp_order_id(),
        "user_id": "user-1",
        "email": "thandi@example.co.za",
        "billing_address": make_address(),
        "items": [
            LineItem(
                product_id="prod-1",
                product_name="Ceramic Vase",
                product_sku="VASE-01",
                quantity=2,
                unit_price_cents=10000,
                total_price_cents=20000,
            ),
            LineItem(
                product_id="prod-2",
                product_name="Linen Napkins",
                product_sku="NAP-04",
                quantity=1,
                unit_price_cents=5000,
                total_price_cents=5000,
            ),
        ],
        "subtotal_cents": 25000,
        "shipping_cents": 5000,
        "total_cents": 30000,
    }
    data.update(overrides)
    return PendingOrderPayload(**data)


def make_checkout_request(**overrides) -> CheckoutRequest:
    data = {
        "user_id": "user-1",
        "customer": {
            "first_name": "Thandi",
            "last_name": "Nkosi",
            "email": "thandi@example.co.za",
            "phone": "082 555 0123",
        },
        "billing_address": make_address().model_dump(),
        "items": [
            {"product_id": "prod-1", "product_name": "Ceramic Vase", "unit_price": "100.00", "quantity": 2},
            {"product_id": "prod-2", "product_name": "Linen Napkins", "unit_price": "50.00", "quantity": 1},
        ],
        "shipping": Decimal("50.00"),
        "subtotal": Decimal("250.00"),
        "total": Decimal("300.00"),
    }
    data.update(overrides)
    return CheckoutRequest.model_validate(data)


def signed_itn(
    m_payment_id: str,
    amount: str = "300.00",
    status: str = "COMPLETE",
    pf_payment_id: str = "PF-999",
    passphrase: str = PASSPHRASE,
    merchant_id: str = MERCHANT_ID,
) -> dict[str, str]:
    """Form body of an ITN signed the way PayFast signs it."""

    fields = {
        "m_payment_id": m_payment_id,
        "pf_payment_id": pf_payment_id,
        "payment_status": status,
        "item_name": f"Ikhaya Order {m_payment_id}",
        "amount_gross": amount,
        "amount_fee": "6.90",
        "amount_net": "293.10",
        "name_first": "Thandi",
        "name_last": "Nkosi",
        "email_address": "thandi@example.co.za",
        "merchant_id": merchant_id,
    }
    body = {key: fields[key] for key in NOTIFICATION_FIELD_ORDER if key in fields}
    body["signature"] = sign(body, passphrase, NOTIFICATION_FIELD_ORDER)
    return body


@pytest.fixture
def pending_factory():
    return make_pending


@pytest.fixture
def checkout_request_factory():
    return make_checkout_request


@pytest.fixture
def itn_factory():
    return signed_itn
