"""Admin HTTP surface for recovery, pending-order housekeeping and order status."""

from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ikhaya.common.app import create_app, enforce_api_key
from ikhaya.common.db import SessionLocal
from ikhaya.common.logging import trace_id_ctx
from ikhaya.services.orders.schemas import OrderStatusUpdate, OrderView
from ikhaya.services.orders.service import OrderNotFound
from ikhaya.services.recovery.schemas import (
    OrphanedPayment,
    PaymentDetails,
    PendingOrderSummary,
    PurgeResult,
    ReconciliationReport,
    RecoveryRequest,
    RecoveryResult,
)
from ikhaya.services.recovery.service import RecoveryConflict, RecoveryError, RecoveryService

app = create_app("Ikhaya Recovery Admin", ["API_KEY", "PENDING_ORDER_TTL_SECONDS"])
service = RecoveryService(SessionLocal)
admin = APIRouter(prefix="/admin", dependencies=[Depends(enforce_api_key)])


@admin.post("/recovery/orders", response_model=RecoveryResult, status_code=201)
def recover_order(req: RecoveryRequest, x_trace_id: str | None = Header(default=None)):
    """Create the order for a paid checkout whose notification never landed."""

    trace_id_ctx.set(x_trace_id or str(uuid4()))
    try:
        return service.recreate_order(req)
    except RecoveryConflict as exc:
        raise HTTPException(
            status_code=409,
            detail={"message": str(exc), "order_number": exc.order_number},
        ) from exc
    except RecoveryError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@admin.get("/recovery/orphaned", response_model=list[OrphanedPayment])
def orphaned_payments(limit: int = Query(default=50, ge=1, le=500)):
    return service.list_orphaned(limit)


@admin.get("/recovery/payments/{m_payment_id}", response_model=PaymentDetails)
def payment_details(m_payment_id: str):
    """Pending snapshot, order, reconciliation state and audit trail for one payment."""

    return service.payment_details(m_payment_id)


@admin.get("/recovery/report", response_model=ReconciliationReport)
def reconciliation_report(limit: int = Query(default=50, ge=1, le=500)):
    return service.reconciliation_report(limit)


@admin.get("/pending-orders", response_model=list[PendingOrderSummary])
def pending_orders(limit: int = Query(default=100, ge=1, le=1000)):
    return service.list_pending(limit)


@admin.post("/pending-orders/purge", response_model=PurgeResult)
def purge_pending_orders():
    """Delete expired or unreadable pending orders."""

    return PurgeResult(purged=service.purge_expired())


@admin.delete("/pending-orders/{temp_order_id}", status_code=204)
def discard_pending_order(temp_order_id: str):
    if not service.discard_pending(temp_order_id):
        raise HTTPException(status_code=404, detail="pending order not found")


@admin.get("/orders/{order_number}", response_model=OrderView)
def get_order(order_number: str):
    try:
        return service.order_service.get_order(order_number)
    except OrderNotFound as exc:
        raise HTTPException(status_code=404, detail="order not found") from exc


@admin.patch("/orders/{order_number}/status", response_model=OrderView)
def update_order_status(order_number: str, req: OrderStatusUpdate):
    """Move an order along its fulfilment or payment state machine."""

    try:
        return service.order_service.update_status(order_number, req.status, req.payment_status)
    except OrderNotFound as exc:
        raise HTTPException(status_code=404, detail="order not found") from exc
    except (ValueError, RuntimeError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc


app.include_router(admin)
