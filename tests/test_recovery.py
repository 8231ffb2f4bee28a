"""Manual recovery: reuse of order creation, conflicts and the admin API."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from ikhaya.services.orders.models import Order
from ikhaya.services.recovery.main import app
from ikhaya.services.recovery.schemas import RecoveryRequest
from ikhaya.services.recovery.service import RecoveryConflict, RecoveryError, RecoveryService
from ikhaya.services.webhook.main import app as webhook_app

TEMP_ID = "TEMP-1700000000000-abc123de"
HEADERS = {"x-api-key": "test-api-key"}


@pytest.fixture
def recovery(session_factory):
    return RecoveryService(session_factory)


@pytest.fixture
def client():
    return TestClient(app)


def _reconstruction() -> dict:
    return {
        "email": "thandi@example.co.za",
        "billing_address": {
            "first_name": "Thandi",
            "last_name": "Nkosi",
            "address_line_1": "12 Long Street",
            "city": "Cape Town",
            "postal_code": "8001",
        },
        "items": [{"product_name": "Ceramic Vase", "unit_price": "100.00", "quantity": 2}],
        "shipping": "50.00",
        "total": "250.00",
    }


def _order_count(session_factory) -> int:
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(Order)).scalar_one()


def test_recover_from_surviving_pending_order(recovery, store, pending_factory):
    store.store(pending_factory(TEMP_ID))

    result = recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))

    assert result.mode == "pending_order"
    view = recovery.order_service.get_order(result.order_number)
    assert view.source_channel == "manual_recovery"
    assert view.payment_reference == "PF-999"
    assert len(view.items) == 2
    assert store.get(TEMP_ID) is None
    assert recovery.reconciler.reconciliation_state(TEMP_ID) == "CONFIRMED"
    details = recovery.payment_details(TEMP_ID)
    assert "order_recovered" in [event.event_type for event in details.events]


def test_second_recovery_conflicts(recovery, store, pending_factory):
    store.store(pending_factory(TEMP_ID))
    first = recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))

    with pytest.raises(RecoveryConflict) as exc_info:
        recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))

    assert exc_info.value.order_number == first.order_number


def test_late_webhook_after_recovery_is_a_duplicate(recovery, store, pending_factory, session_factory, itn_factory):
    store.store(pending_factory(TEMP_ID))
    recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))

    resp = TestClient(webhook_app).post("/payfast/notify", data=itn_factory(TEMP_ID))

    assert resp.status_code == 200
    assert _order_count(session_factory) == 1


def test_recover_by_reconstruction(recovery, store):
    request = RecoveryRequest.model_validate({"payment_reference": "PF-1234", "reconstruction": _reconstruction()})

    result = recovery.recreate_order(request)

    assert result.mode == "reconstruction"
    assert result.temp_order_id.startswith("RECOVERY-")
    view = recovery.order_service.get_order(result.order_number)
    assert view.total_cents == 25000
    assert view.shipping_cents == 5000
    assert store.get(result.temp_order_id) is None


def test_reconstruction_keeps_original_temp_id(recovery):
    request = RecoveryRequest.model_validate(
        {"temp_order_id": TEMP_ID, "payment_reference": "PF-1234", "reconstruction": _reconstruction()}
    )

    result = recovery.recreate_order(request)

    assert result.temp_order_id == TEMP_ID
    assert recovery.order_service.find_by_temp_order_id(TEMP_ID) is not None


def test_reconstruction_total_must_match(recovery):
    data = _reconstruction()
    data["total"] = "999.00"

    with pytest.raises(RecoveryError):
        recovery.recreate_order(RecoveryRequest.model_validate({"payment_reference": "PF-1", "reconstruction": data}))


def test_missing_pending_without_reconstruction(recovery):
    with pytest.raises(RecoveryError):
        recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))


def test_existing_payment_reference_conflicts(recovery, store, pending_factory):
    store.store(pending_factory(TEMP_ID))
    recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-999"))

    request = RecoveryRequest.model_validate({"payment_reference": "PF-999", "reconstruction": _reconstruction()})
    with pytest.raises(RecoveryConflict):
        recovery.recreate_order(request)


def test_request_needs_temp_id_or_reconstruction():
    with pytest.raises(ValueError):
        RecoveryRequest(payment_reference="PF-1")


def test_orphaned_payments_listed_until_recovered(recovery, itn_factory):
    TestClient(webhook_app).post("/payfast/notify", data=itn_factory(TEMP_ID, pf_payment_id="PF-777"))

    orphaned = recovery.list_orphaned()
    assert [(row.m_payment_id, row.pf_payment_id, row.amount_gross) for row in orphaned] == [
        (TEMP_ID, "PF-777", "300.00")
    ]
    assert orphaned[0].has_pending_order is False

    request = RecoveryRequest.model_validate(
        {"temp_order_id": TEMP_ID, "payment_reference": "PF-777", "reconstruction": _reconstruction()}
    )
    recovery.recreate_order(request)

    assert recovery.list_orphaned() == []


def test_admin_requires_api_key(client):
    assert client.get("/admin/pending-orders").status_code == 401
    assert client.get("/admin/pending-orders", headers={"x-api-key": "nope"}).status_code == 401
    assert client.get("/health").status_code == 200


def test_admin_recover_endpoint(client, store, pending_factory):
    store.store(pending_factory(TEMP_ID))
    body = {"temp_order_id": TEMP_ID, "payment_reference": "PF-999"}

    created = client.post("/admin/recovery/orders", json=body, headers=HEADERS)
    conflict = client.post("/admin/recovery/orders", json=body, headers=HEADERS)

    assert created.status_code == 201
    assert conflict.status_code == 409
    assert conflict.json()["detail"]["order_number"] == created.json()["order_number"]


def test_admin_pending_orders_and_purge(client, store, pending_factory):
    store.store(pending_factory(TEMP_ID))

    listed = client.get("/admin/pending-orders", headers=HEADERS).json()
    assert [row["order_number"] for row in listed] == [TEMP_ID]

    assert client.post("/admin/pending-orders/purge", headers=HEADERS).json() == {"purged": 0}
    assert client.delete(f"/admin/pending-orders/{TEMP_ID}", headers=HEADERS).status_code == 204
    assert client.delete(f"/admin/pending-orders/{TEMP_ID}", headers=HEADERS).status_code == 404


def test_admin_order_status(client, store, pending_factory):
    store.store(pending_factory(TEMP_ID))
    order_number = client.post(
        "/admin/recovery/orders",
        json={"temp_order_id": TEMP_ID, "payment_reference": "PF-999"},
        headers=HEADERS,
    ).json()["order_number"]

    ok = client.patch(f"/admin/orders/{order_number}/status", json={"status": "processing"}, headers=HEADERS)
    bad = client.patch(f"/admin/orders/{order_number}/status", json={"status": "pending"}, headers=HEADERS)

    assert ok.status_code == 200
    assert ok.json()["status"] == "processing"
    assert bad.status_code == 409
    assert client.get(f"/admin/orders/{order_number}", headers=HEADERS).json()["status"] == "processing"
    assert client.get("/admin/orders/ORD-0-MISSING", headers=HEADERS).status_code == 404


def test_admin_report(client, store, pending_factory):
    store.store(pending_factory(TEMP_ID))
    client.post(
        "/admin/recovery/orders",
        json={"temp_order_id": TEMP_ID, "payment_reference": "PF-999"},
        headers=HEADERS,
    )

    report = client.get("/admin/recovery/report", headers=HEADERS).json()

    assert report["pending_orders"] == 0
    assert report["orders_by_source"] == {"manual_recovery": 1}
    assert report["event_counts"]["order_recovered"] == 1


def test_payment_after_failure_is_listed_for_recovery(recovery, store, pending_factory, itn_factory):
    store.store(pending_factory(TEMP_ID))
    webhook = TestClient(webhook_app)
    webhook.post("/payfast/notify", data=itn_factory(TEMP_ID, status="FAILED"))
    webhook.post("/payfast/notify", data=itn_factory(TEMP_ID, pf_payment_id="PF-888"))

    orphaned = recovery.list_orphaned()
    assert [(row.m_payment_id, row.pf_payment_id, row.reconciliation_state) for row in orphaned] == [
        (TEMP_ID, "PF-888", "FAILED")
    ]
    assert orphaned[0].has_pending_order is True
    assert recovery.reconciliation_report().event_counts["paid_after_failure"] == 1

    recovery.recreate_order(RecoveryRequest(temp_order_id=TEMP_ID, payment_reference="PF-888"))

    assert recovery.list_orphaned() == []
