"""
Realtime sync controller.

Push events are treated purely as invalidation signals: whenever the channel
(re)connects or reports a new order / status change, the controller re-pulls
orders, active orders, tables and the kitchen queue over HTTP. Event payloads
are only read to word the operator notification, never merged into local state.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .api_client import OrderApiClient
from .channels import PushChannel
from .errors import ApiError
from .models import ACTIVE_STATUSES, ALL_STATUSES, CUSTOMER_STATUSES, BackendOrder, BackendTable, OrderStatus
from .notifications import NotificationCenter

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    disconnected = "disconnected"
    connecting = "connecting"
    connected = "connected"


NEW_ORDER = "newOrder"
ORDER_STATUS_UPDATE = "orderStatusUpdate"

# Names used by the different publishers for the two events we react to
EVENT_ALIASES = {
    "newOrder": NEW_ORDER,
    "order:new": NEW_ORDER,
    "new_order": NEW_ORDER,
    "items_added": NEW_ORDER,
    "orderStatusUpdate": ORDER_STATUS_UPDATE,
    "order:statusUpdate": ORDER_STATUS_UPDATE,
    "status_update": ORDER_STATUS_UPDATE,
    "order_cancelled": ORDER_STATUS_UPDATE,
    "order_paid": ORDER_STATUS_UPDATE,
}


@dataclass
class SyncState:
    orders: list[BackendOrder] = field(default_factory=list)
    active_orders: list[BackendOrder] = field(default_factory=list)
    tables: list[BackendTable] = field(default_factory=list)
    kitchen_orders: list[BackendOrder] = field(default_factory=list)
    refreshed_at: datetime | None = None


class RealtimeSyncController:
    def __init__(
        self,
        client: OrderApiClient,
        channel: PushChannel | None,
        notifications: NotificationCenter | None = None,
        table_id: int | None = None,
        order_fetch_limit: int | None = 200,
        active_order_fetch_limit: int | None = 1000,
    ):
        self.client = client
        self.channel = channel
        self.notifications = notifications
        self.table_id = table_id
        self.order_fetch_limit = order_fetch_limit
        self.active_order_fetch_limit = active_order_fetch_limit
        self.state = SyncState()
        self.connection_state = ConnectionState.disconnected
        self._refresh_lock = asyncio.Lock()

    @property
    def staff_context(self) -> bool:
        return self.table_id is None

    @property
    def session_orders(self) -> list[BackendOrder]:
        """Orders that table sessions, settlement and the roster are derived from."""
        return self.state.active_orders if self.staff_context else self.state.orders

    async def run(self) -> None:
        if self.channel is None:
            logger.warning("No push channel configured, running on manual refreshes only")
            await self.refresh()
            return
        await self.channel.run(self)

    # ============ CHANNEL CALLBACKS ============

    async def on_connecting(self) -> None:
        self.connection_state = ConnectionState.connecting
        logger.info("Push channel connecting...")

    async def on_connected(self) -> None:
        self.connection_state = ConnectionState.connected
        logger.info("Push channel connected, refreshing")
        await self.refresh()

    async def on_disconnected(self, reason: str) -> None:
        self.connection_state = ConnectionState.disconnected
        logger.warning(f"Push channel disconnected: {reason}")

    async def on_event(self, name: str, payload: dict) -> None:
        event = EVENT_ALIASES.get(name)
        if event is None:
            logger.debug(f"Ignoring push event {name!r}")
            return

        logger.info(f"Event {name!r} received: {payload}")
        if self.notifications is not None:
            table = payload.get("tableId") or payload.get("table_id") or payload.get("table_name")
            if event == NEW_ORDER:
                self.notifications.notify("New Order!", f"Table {table}" if table else "New order received")
            else:
                status = str(payload.get("status") or "updated").capitalize()
                subject = f"Table {table}" if table else "Your order"
                self.notifications.notify("Order Update", f"{subject} is {status}")
        await self.refresh()

    # ============ REFETCH ============

    async def refresh(self) -> None:
        """
        Re-pull everything the current context displays.

        Each fetch fails independently: a failed one is logged and leaves its
        part of the state as it was until the next successful refresh.
        """
        async with self._refresh_lock:
            await self._refresh_orders()
            if self.staff_context:
                await self._refresh_active_orders()
                await self._refresh_tables()
                await self._refresh_kitchen()
            self.state.refreshed_at = datetime.now(timezone.utc)

    async def refresh_kitchen(self) -> None:
        async with self._refresh_lock:
            await self._refresh_kitchen()

    async def _refresh_orders(self) -> None:
        try:
            if self.staff_context:
                orders = await self.client.list_orders(ALL_STATUSES, limit=self.order_fetch_limit)
            else:
                orders = await self.client.list_orders(CUSTOMER_STATUSES, table_id=self.table_id)
                orders = [o for o in orders if o.status != OrderStatus.cancelled.value]
        except ApiError as e:
            self._fetch_failed("orders", e)
            return
        self.state.orders = orders

    async def _refresh_active_orders(self) -> None:
        # The recent-orders window can push an old open order out; this list cannot
        try:
            self.state.active_orders = await self.client.list_orders(
                ACTIVE_STATUSES, limit=self.active_order_fetch_limit,
            )
        except ApiError as e:
            self._fetch_failed("active orders", e)

    async def _refresh_tables(self) -> None:
        try:
            self.state.tables = await self.client.list_tables()
        except ApiError as e:
            self._fetch_failed("tables", e)

    async def _refresh_kitchen(self) -> None:
        try:
            self.state.kitchen_orders = await self.client.list_kitchen_orders()
        except ApiError as e:
            self._fetch_failed("kitchen queue", e)

    def _fetch_failed(self, what: str, error: ApiError) -> None:
        logger.error(f"Refresh of {what} failed: {error}", exc_info=True)
        if self.notifications is not None:
            self.notifications.error("Sync failed", f"Could not load {what}, showing last known data.")
