import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware

from . import security
from .errors import (
    ApiError,
    KanbanTransitionError,
    NoCancelableOrderError,
    PartialReconciliationError,
    QuantityValidationError,
    ReconciliationTimeoutError,
)
from .models import (
    AggregateRow,
    KanbanMove,
    KitchenBoard,
    Notification,
    PastOrder,
    PaymentRequest,
    PaymentStatus,
    PaymentUpdate,
    QuantityUpdate,
    SettleRequest,
    TableSession,
    TableStatus,
)
from .service import TableSyncService, build_service
from .settings import settings

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Start the realtime controller on startup
    service = build_service(settings)
    app.state.service = service
    await service.start()
    yield
    await service.stop()


app = FastAPI(title="Table Sync API", lifespan=lifespan)

# Parse CORS origins from environment (comma-separated)
cors_origins_list = [
    origin.strip()
    for origin in settings.cors_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_service(request: Request) -> TableSyncService:
    return request.app.state.service


ServiceDep = Annotated[TableSyncService, Depends(get_service)]
StaffDep = Annotated[security.StaffIdentity, Depends(security.get_current_staff)]


def _upstream_error(e: ApiError) -> HTTPException:
    logger.error(f"Order API error: {e}")
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=f"Order API error: {e.message}")


@app.get("/health")
def health(service: ServiceDep) -> dict:
    return {
        "status": "ok",
        "realtime": service.controller.connection_state.value,
        "refreshed_at": service.controller.state.refreshed_at,
    }


# ============ TABLES ============

@app.get("/tables")
async def list_tables(service: ServiceDep, staff: StaffDep) -> list[TableStatus]:
    await service.ensure_synced()
    return service.table_statuses()


@app.get("/tables/{table_id}/session")
async def get_table_session(table_id: int, service: ServiceDep, staff: StaffDep) -> TableSession:
    """Aggregated bill for a table, with any in-flight quantity edits applied."""
    await service.ensure_synced()
    return service.table_session(table_id)


@app.put("/tables/{table_id}/items/quantity", status_code=status.HTTP_202_ACCEPTED)
async def update_item_quantity(
    table_id: int,
    update: QuantityUpdate,
    service: ServiceDep,
    staff: StaffDep,
) -> AggregateRow | None:
    await service.ensure_synced()
    try:
        return service.request_quantity(table_id, update.variant_key, update.quantity)
    except QuantityValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.delete("/tables/{table_id}/items", status_code=status.HTTP_204_NO_CONTENT)
async def remove_item(
    table_id: int,
    service: ServiceDep,
    staff: StaffDep,
    variant_key: str = Query(...),
) -> Response:
    await service.ensure_synced()
    if service.find_row(table_id, variant_key) is None:
        raise HTTPException(status_code=404, detail="Item not found in table session")
    try:
        await service.remove_variant(table_id, variant_key)
    except NoCancelableOrderError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except PartialReconciliationError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    except ReconciliationTimeoutError as e:
        raise HTTPException(status_code=status.HTTP_504_GATEWAY_TIMEOUT, detail=str(e))
    except ApiError as e:
        raise _upstream_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.post("/tables/{table_id}/settle")
async def settle_table(
    table_id: int,
    settle: SettleRequest,
    service: ServiceDep,
    staff: StaffDep,
) -> dict:
    result = await service.settle_table(table_id, settle.payment_method)
    if result.failed and not result.settled:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Could not update orders")
    return {"settled": result.settled, "failed": result.failed}


@app.post("/tables/{table_id}/clear")
async def clear_table(table_id: int, service: ServiceDep, staff: StaffDep) -> dict:
    try:
        await service.clear_table(table_id)
    except ApiError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Table not found")
        raise _upstream_error(e)
    return {"status": "cleared", "table_id": table_id}


@app.get("/tables/{table_id}/orders")
async def list_table_orders(table_id: int, service: ServiceDep) -> list[PastOrder]:
    """Customer-facing order history for one table; no staff login needed."""
    await service.ensure_synced()
    return service.customer_orders(table_id)


# ============ PAYMENTS ============

def _payment_error(e: ApiError) -> HTTPException:
    if e.status_code == 404:
        return HTTPException(status_code=404, detail="Order not found")
    return _upstream_error(e)


@app.post("/orders/{order_id}/payment-request")
async def request_payment(order_id: int, payment: PaymentRequest, service: ServiceDep) -> dict:
    """Customer asks for the bill; no staff login needed."""
    try:
        await service.request_payment(order_id, payment.payment_method)
    except ApiError as e:
        raise _payment_error(e)
    return {"order_id": order_id, "payment_status": PaymentStatus.requested.value}


@app.post("/orders/{order_id}/payment/approve")
async def approve_payment(order_id: int, service: ServiceDep, staff: StaffDep) -> dict:
    try:
        await service.approve_payment(order_id)
    except ApiError as e:
        raise _payment_error(e)
    return {"order_id": order_id, "payment_status": PaymentStatus.approved.value}


@app.put("/orders/{order_id}/payment")
async def update_payment(
    order_id: int,
    payment: PaymentUpdate,
    service: ServiceDep,
    staff: StaffDep,
) -> dict:
    try:
        await service.update_payment_method(order_id, payment.payment_method, payment.payment_status)
    except ApiError as e:
        raise _payment_error(e)
    return {
        "order_id": order_id,
        "payment_status": payment.payment_status.value,
        "payment_method": payment.payment_method,
    }


# ============ KITCHEN ============

@app.get("/kitchen")
async def get_kitchen_board(
    service: ServiceDep,
    staff: StaffDep,
    category: str | None = None,
) -> KitchenBoard:
    await service.ensure_synced()
    return service.kitchen_board(category)


@app.post("/kitchen/orders/{order_id}/move")
async def move_kitchen_order(
    order_id: int,
    move: KanbanMove,
    service: ServiceDep,
    staff: StaffDep,
) -> dict:
    try:
        new_status = await service.move_kitchen_order(order_id, move.from_column)
    except KanbanTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ApiError as e:
        if e.status_code == 404:
            raise HTTPException(status_code=404, detail="Order not found")
        raise _upstream_error(e)
    return {"order_id": order_id, "status": new_status.value}


# ============ NOTIFICATIONS ============

@app.get("/notifications")
def list_notifications(service: ServiceDep, staff: StaffDep) -> list[Notification]:
    return service.notifications.active()


@app.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
def dismiss_notification(notification_id: int, service: ServiceDep, staff: StaffDep) -> Response:
    if not service.notifications.dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
