"""
Kitchen kanban.

Three display-only columns derived from the backend status of each order.
A move is a single status PATCH; the board itself is never edited locally,
it is rebuilt from the next kitchen fetch so a failed move can never show
an order as done.
"""
import logging
import time
from collections.abc import Awaitable, Callable, Iterable

from .api_client import OrderApiClient
from .errors import KanbanTransitionError
from .mapper import map_to_kitchen_order
from .models import BackendOrder, KitchenBoard, KitchenBucket, KitchenOrder, OrderStatus

logger = logging.getLogger(__name__)

BUCKETS = {
    OrderStatus.pending.value: KitchenBucket.new,
    OrderStatus.confirmed.value: KitchenBucket.new,
    OrderStatus.preparing.value: KitchenBucket.in_progress,
    OrderStatus.ready.value: KitchenBucket.completed,
}

# Column an order leaves -> status the backend is asked to set
TRANSITIONS = {
    KitchenBucket.new: OrderStatus.preparing,
    KitchenBucket.in_progress: OrderStatus.ready,
}

ALL_CATEGORIES = "All"


def map_bucket(status: str | None) -> KitchenBucket:
    """Served, completed, cancelled and unknown statuses are excluded from the board."""
    return BUCKETS.get((status or "").lower(), KitchenBucket.excluded)


def next_status(from_column: KitchenBucket) -> OrderStatus:
    status = TRANSITIONS.get(from_column)
    if status is None:
        raise KanbanTransitionError(f"No kitchen transition out of '{from_column.value}'")
    return status


def build_board(orders: Iterable[BackendOrder], now_ms: int | None = None) -> KitchenBoard:
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    board = KitchenBoard()
    for order in orders:
        bucket = map_bucket(order.order_status)
        if bucket == KitchenBucket.excluded:
            continue
        board.column(bucket).append(map_to_kitchen_order(order, now_ms))

    for column in (board.new, board.in_progress, board.completed):
        column.sort(key=lambda o: o.created_at, reverse=True)
    return board


def _filter_column(orders: list[KitchenOrder], category: str) -> list[KitchenOrder]:
    filtered = []
    for order in orders:
        items = [item for item in order.items if item.category == category]
        if items:
            filtered.append(order.model_copy(update={"items": items}))
    return filtered


def filter_board(board: KitchenBoard, category: str | None) -> KitchenBoard:
    """Keep only one station's items; orders with nothing left for it are dropped."""
    if not category or category == ALL_CATEGORIES:
        return board
    return KitchenBoard(
        new=_filter_column(board.new, category),
        in_progress=_filter_column(board.in_progress, category),
        completed=_filter_column(board.completed, category),
    )


class KitchenKanban:
    def __init__(self, client: OrderApiClient, refresh: Callable[[], Awaitable[None]]):
        self.client = client
        self.refresh = refresh

    async def move(self, order_id: int, from_column: KitchenBucket) -> OrderStatus:
        """
        Move an order one column to the right.

        Raises before touching anything if the column has no forward move;
        an API failure propagates and the board stays as last fetched.
        """
        status = next_status(from_column)
        logger.info(f"Kitchen move: order #{order_id} {from_column.value} -> {status.value}")
        await self.client.update_status(order_id, status.value)
        await self.refresh()
        return status
