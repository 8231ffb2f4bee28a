"""Pending order store: durability, claim semantics and the expiry sweep."""

import re
from datetime import datetime, timedelta, timezone

from ikhaya.services.orders.audit import PaymentLogger
from ikhaya.services.orders.models import PendingOrder
from ikhaya.services.orders.pending import PendingOrderStore, new_temp_order_id, temp_id_timestamp


def test_temp_order_id_format():
    now = datetime.fromtimestamp(1700000000, tz=timezone.utc)
    temp_id = new_temp_order_id(now=now)

    assert re.fullmatch(r"TEMP-1700000000000-[0-9a-f]{8}", temp_id)
    assert temp_id_timestamp(temp_id) == now
    assert temp_id_timestamp("ORDER-123") is None


def test_store_get_clear(store, pending_factory):
    pending = pending_factory("TEMP-1700000000000-abc123de")

    assert store.store(pending)
    loaded = store.get("TEMP-1700000000000-abc123de")
    assert loaded is not None
    assert loaded.total_cents == 30000
    assert [item.product_name for item in loaded.items] == ["Ceramic Vase", "Linen Napkins"]

    # idempotent read
    assert store.get("TEMP-1700000000000-abc123de") == loaded

    assert store.clear("TEMP-1700000000000-abc123de")
    assert store.get("TEMP-1700000000000-abc123de") is None
    assert not store.clear("TEMP-1700000000000-abc123de")


def test_get_unknown_is_none(store):
    assert store.get("TEMP-1700000000000-00000000") is None


def test_store_duplicate_id_reports_failure(store, pending_factory):
    pending = pending_factory()

    assert store.store(pending)
    assert not store.store(pending)


def test_corrupt_row_reads_as_absent(store, session_factory):
    with session_factory() as db:
        db.add(PendingOrder(order_number="TEMP-1700000000000-deadbeef", email="x@example.com", payload={"bad": 1}, total_cents=1))
        db.commit()

    assert store.get("TEMP-1700000000000-deadbeef") is None


def test_claim_is_released_on_rollback(store, pending_factory, session_factory):
    pending = pending_factory()
    store.store(pending)

    with session_factory() as db:
        claimed = store.claim(db, pending.order_number)
        assert claimed is not None
        assert claimed.order_number == pending.order_number
        assert store.claim(db, pending.order_number) is None
        db.rollback()

    assert store.get(pending.order_number) is not None


def test_purge_removes_expired_and_invalid_rows(store, pending_factory, session_factory):
    now = datetime.now(timezone.utc)
    fresh = pending_factory()
    stale = pending_factory(created_at=now - timedelta(hours=2))
    store.store(fresh)
    store.store(stale)
    with session_factory() as db:
        db.add(PendingOrder(order_number="TEMP-1700000000000-deadbeef", email="x@example.com", payload={"bad": 1}, total_cents=1, created_at=now))
        db.commit()

    assert store.purge_expired(now=now) == 2

    assert store.get(fresh.order_number) is not None
    assert store.get(stale.order_number) is None
    with session_factory() as db:
        assert db.get(PendingOrder, "TEMP-1700000000000-deadbeef") is None

    expired = PaymentLogger(session_factory).events_for(stale.order_number)
    assert [event.event_type for event in expired] == ["pending_order_expired"]
    assert expired[0].event_data["reason"] == "expired"


def test_purge_respects_configured_ttl(pending_factory, session_factory):
    short_lived = PendingOrderStore(session_factory, ttl_seconds=60)
    now = datetime.now(timezone.utc)
    pending = pending_factory(created_at=now - timedelta(minutes=5))
    short_lived.store(pending)

    assert short_lived.purge_expired(now=now) == 1
    assert short_lived.purge_expired(now=now) == 0


def test_purge_boundary_at_one_hour(store, pending_factory):
    now = datetime.now(timezone.utc)
    recent = pending_factory(created_at=now - timedelta(minutes=59))
    old = pending_factory(created_at=now - timedelta(minutes=61))
    store.store(recent)
    store.store(old)

    assert store.ttl_seconds == 3600
    assert store.purge_expired(now=now) == 1
    assert store.get(recent.order_number) is not None
    assert store.get(old.order_number) is None


def test_purge_falls_back_to_temp_id_timestamp(store, pending_factory):
    """Rows without `created_at` are aged by the timestamp in their temp id."""

    now = datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=store.ttl_seconds)
    valid = pending_factory().model_dump(mode="json")

    def row(order_number):
        return PendingOrder(order_number=order_number, email="x@example.com", payload=valid, total_cents=1, created_at=None)

    assert store._purge_reason(row(new_temp_order_id(now=now - timedelta(minutes=61))), cutoff) == "expired"
    assert store._purge_reason(row(new_temp_order_id(now=now - timedelta(minutes=59))), cutoff) is None
    assert store._purge_reason(row("ORDER-without-timestamp"), cutoff) == "invalid"
