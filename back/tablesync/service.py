"""
Table sync service.

Wires the realtime controller, the optimistic overlay, the debounced
reconciliation and the kitchen board around one order API client, and
exposes the operations the HTTP layer calls.
"""
import asyncio
import logging
from dataclasses import dataclass

from .aggregator import build_table_session, session_orders
from .api_client import OrderApiClient
from .channels import PushChannel, RedisChannel, WebSocketChannel
from .errors import ApiError
from .kanban import KitchenKanban, build_board, filter_board
from .mapper import map_to_customer_order
from .models import (
    AggregateRow,
    KitchenBoard,
    KitchenBucket,
    OrderStatus,
    PastOrder,
    PaymentStatus,
    TableSession,
    TableStatus,
)
from .notifications import NotificationCenter
from .overlay import OptimisticOverlay, QuantityEditor
from .realtime import RealtimeSyncController
from .reconciliation import ReconciliationEngine, ReconciliationResult, VariantTemplate
from .settings import Settings
from .tables import derive_table_statuses

logger = logging.getLogger(__name__)


@dataclass
class SettleResult:
    settled: int
    failed: int


class TableSyncService:
    def __init__(
        self,
        client: OrderApiClient,
        channel: PushChannel | None = None,
        *,
        table_id: int | None = None,
        restaurant_id: int | None = None,
        customer_name: str | None = None,
        customer_phone: str | None = None,
        debounce_seconds: float = 0.4,
        reconcile_timeout_seconds: float | None = 20.0,
        order_fetch_limit: int | None = 200,
        active_order_fetch_limit: int | None = 1000,
    ):
        self.client = client
        self.notifications = NotificationCenter()
        self.overlay = OptimisticOverlay()
        self.controller = RealtimeSyncController(
            client,
            channel,
            notifications=self.notifications,
            table_id=table_id,
            order_fetch_limit=order_fetch_limit,
            active_order_fetch_limit=active_order_fetch_limit,
        )
        self.engine = ReconciliationEngine(
            client,
            restaurant_id=restaurant_id,
            customer_name=customer_name,
            customer_phone=customer_phone,
        )
        self.editor = QuantityEditor(
            self.engine,
            self.overlay,
            self.notifications,
            refresh=self.controller.refresh,
            debounce_seconds=debounce_seconds,
            timeout_seconds=reconcile_timeout_seconds,
        )
        self.kanban = KitchenKanban(client, refresh=self.controller.refresh_kitchen)
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self.controller.run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.editor.aclose()
        await self.client.aclose()

    async def ensure_synced(self) -> None:
        if self.controller.state.refreshed_at is None:
            await self.controller.refresh()

    # ============ TABLE SESSIONS ============

    def table_session(self, table_id: int) -> TableSession:
        return build_table_session(
            self.controller.session_orders,
            table_id,
            overlay=self.overlay.for_table(table_id),
        )

    def find_row(self, table_id: int, key: str) -> AggregateRow | None:
        """Authoritative row for a variant, without any optimistic value."""
        session = build_table_session(self.controller.session_orders, table_id)
        return next((row for row in session.rows if row.variant_key == key), None)

    def request_quantity(self, table_id: int, key: str, quantity: int) -> AggregateRow | None:
        """Show `quantity` now and reconcile once the edits for this variant settle."""
        row = self.find_row(table_id, key)
        template = VariantTemplate.from_row(row) if row else None
        self.editor.request(table_id, key, quantity, template=template)
        return next((r for r in self.table_session(table_id).rows if r.variant_key == key), None)

    async def remove_variant(self, table_id: int, key: str) -> ReconciliationResult | None:
        return await self.editor.commit(table_id, key, 0)

    async def settle_table(self, table_id: int, payment_method: str) -> SettleResult:
        """Approve payment on every unpaid order of the table's session."""
        await self.controller.refresh()
        unpaid = [o for o in session_orders(self.controller.session_orders, table_id) if not o.is_paid]
        if not unpaid:
            self.notifications.notify("Nothing to Settle", "No unpaid orders to settle.")
            return SettleResult(settled=0, failed=0)

        result = SettleResult(settled=0, failed=0)
        for order in unpaid:
            try:
                await self.client.update_payment(order.order_id, PaymentStatus.approved.value, payment_method)
                result.settled += 1
            except ApiError as e:
                logger.error(f"Failed to settle order #{order.order_id}: {e}", exc_info=True)
                result.failed += 1

        if result.settled:
            self.notifications.notify(
                "Table Settled",
                f"Marked {result.settled} orders as Paid via {payment_method}",
            )
            await self.controller.refresh()
        elif result.failed:
            self.notifications.error("Settlement Failed", "Could not update orders.")
        return result

    # ============ PAYMENTS ============

    async def request_payment(self, order_id: int, payment_method: str) -> None:
        """Customer asks staff to collect payment for one order."""
        try:
            await self.client.request_payment(order_id, payment_method)
        except ApiError as e:
            logger.error(f"Payment request for order #{order_id} failed: {e}", exc_info=True)
            self.notifications.error("Request Failed", "Could not notify staff. Please try again.")
            raise
        await self.controller.refresh()
        if payment_method == "Cash":
            self.notifications.notify("Waiter Notified", "Please wait for a staff member to collect cash.")
        else:
            self.notifications.notify("Payment Sent", "Please wait for confirmation.")

    async def approve_payment(self, order_id: int) -> None:
        try:
            await self.client.update_payment(order_id, PaymentStatus.approved.value)
        except ApiError as e:
            logger.error(f"Failed to approve payment for order #{order_id}: {e}", exc_info=True)
            self.notifications.error("Approval Failed", e.message)
            raise
        self.notifications.notify("Payment Approved", f"Order #{order_id} marked as paid.")
        await self.controller.refresh()

    async def update_payment_method(
        self,
        order_id: int,
        payment_method: str,
        payment_status: PaymentStatus = PaymentStatus.approved,
    ) -> None:
        try:
            await self.client.update_payment(order_id, payment_status.value, payment_method)
        except ApiError as e:
            logger.error(f"Failed to update payment of order #{order_id}: {e}", exc_info=True)
            self.notifications.error("Update Failed", "Could not update payment method.")
            raise
        self.notifications.notify("Payment Updated", f"Method set to {payment_method}")
        await self.controller.refresh()

    async def clear_table(self, table_id: int) -> None:
        await self.client.clear_table(table_id)
        self.notifications.notify("Table Cleared", f"Table {table_id} session closed and table is free.")
        await self.controller.refresh()

    def customer_orders(self, table_id: int) -> list[PastOrder]:
        return [
            map_to_customer_order(o)
            for o in self.controller.state.orders
            if o.table_id == table_id and o.status != OrderStatus.cancelled.value
        ]

    def table_statuses(self) -> list[TableStatus]:
        return derive_table_statuses(self.controller.state.tables, self.controller.session_orders)

    # ============ KITCHEN ============

    def kitchen_board(self, category: str | None = None) -> KitchenBoard:
        return filter_board(build_board(self.controller.state.kitchen_orders), category)

    async def move_kitchen_order(self, order_id: int, from_column: KitchenBucket) -> OrderStatus:
        return await self.kanban.move(order_id, from_column)


def build_channel(settings: Settings) -> PushChannel | None:
    delay = settings.reconnect_delay_seconds
    if settings.push_transport == "redis":
        if settings.table_id is not None:
            return RedisChannel.for_table(settings.redis_url, settings.table_id, delay)
        if settings.tenant_id is not None:
            return RedisChannel.for_tenant(settings.redis_url, settings.tenant_id, delay)
    else:
        if settings.table_id is not None and settings.table_token:
            return WebSocketChannel.for_table(settings.ws_url, settings.table_token, delay)
        if settings.tenant_id is not None and settings.api_token:
            return WebSocketChannel.for_tenant(settings.ws_url, settings.tenant_id, settings.api_token, delay)
    logger.warning(f"Push channel '{settings.push_transport}' is not fully configured")
    return None


def build_service(settings: Settings) -> TableSyncService:
    client = OrderApiClient(
        settings.api_url,
        token=settings.api_token,
        timeout=settings.request_timeout_seconds,
    )
    return TableSyncService(
        client,
        build_channel(settings),
        table_id=settings.table_id,
        restaurant_id=settings.restaurant_id,
        customer_name=settings.staff_customer_name,
        customer_phone=settings.staff_customer_phone,
        debounce_seconds=settings.debounce_seconds,
        reconcile_timeout_seconds=settings.reconcile_timeout_seconds,
        order_fetch_limit=settings.order_fetch_limit,
        active_order_fetch_limit=settings.active_order_fetch_limit,
    )
