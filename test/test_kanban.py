import pytest

from conftest import line
from tablesync.errors import ApiError, KanbanTransitionError
from tablesync.kanban import KitchenKanban, build_board, filter_board, map_bucket, next_status
from tablesync.models import BackendOrder, KitchenBucket, OrderStatus

NOW = 1_700_000_100_000


@pytest.mark.parametrize("status, bucket", [
    ("pending", KitchenBucket.new),
    ("confirmed", KitchenBucket.new),
    ("preparing", KitchenBucket.in_progress),
    ("ready", KitchenBucket.completed),
    ("served", KitchenBucket.excluded),
    ("completed", KitchenBucket.excluded),
    ("cancelled", KitchenBucket.excluded),
    ("PREPARING", KitchenBucket.in_progress),
    ("on_hold", KitchenBucket.excluded),
    ("", KitchenBucket.excluded),
    (None, KitchenBucket.excluded),
])
def test_map_bucket(status, bucket):
    assert map_bucket(status) == bucket


def test_transitions():
    assert next_status(KitchenBucket.new) == OrderStatus.preparing
    assert next_status(KitchenBucket.in_progress) == OrderStatus.ready
    with pytest.raises(KanbanTransitionError):
        next_status(KitchenBucket.completed)
    with pytest.raises(KanbanTransitionError):
        next_status(KitchenBucket.excluded)


def kitchen_order(order_id, status, items, created_at):
    return BackendOrder.model_validate({
        "order_id": order_id,
        "table_id": 1,
        "order_status": status,
        "created_at": created_at,
        "items": items,
    })


def test_board_columns_are_newest_first():
    orders = [
        kitchen_order(1, "pending", [line(1, 1)], NOW - 3000),
        kitchen_order(2, "confirmed", [line(2, 1)], NOW - 1000),
        kitchen_order(3, "preparing", [line(3, 1)], NOW - 2000),
        kitchen_order(4, "ready", [line(1, 1)], NOW - 4000),
        kitchen_order(5, "served", [line(1, 1)], NOW),
    ]
    board = build_board(orders, now_ms=NOW)
    assert [o.id for o in board.new] == ["2", "1"]
    assert [o.id for o in board.in_progress] == ["3"]
    assert [o.id for o in board.completed] == ["4"]


def test_category_filter():
    orders = [
        kitchen_order(1, "pending", [line(1, 1), line(3, 2)], NOW - 1000),
        kitchen_order(2, "pending", [line(2, 4)], NOW - 2000),
    ]
    board = build_board(orders, now_ms=NOW)

    beverages = filter_board(board, "Beverages")
    assert [o.id for o in beverages.new] == ["1"]
    assert [i.name for i in beverages.new[0].items] == ["Lassi"]
    assert filter_board(board, "All") is board
    assert filter_board(board, None) is board


@pytest.mark.anyio
async def test_move_patches_status_and_refreshes(fake, client):
    order = fake.add_order(1, [line(1, 1)])
    refreshes = []

    async def refresh():
        refreshes.append(True)

    kanban = KitchenKanban(client, refresh)
    assert await kanban.move(order["order_id"], KitchenBucket.new) == OrderStatus.preparing
    assert fake.orders[order["order_id"]]["order_status"] == "preparing"
    assert len(refreshes) == 1

    await kanban.move(order["order_id"], KitchenBucket.in_progress)
    assert fake.orders[order["order_id"]]["order_status"] == "ready"


@pytest.mark.anyio
async def test_move_out_of_completed_is_rejected_without_a_call(fake, client):
    order = fake.add_order(1, [line(1, 1)], status="ready")

    async def refresh():
        pass

    with pytest.raises(KanbanTransitionError):
        await KitchenKanban(client, refresh).move(order["order_id"], KitchenBucket.completed)
    assert fake.count_calls("PATCH") == 0


@pytest.mark.anyio
async def test_failed_move_propagates_and_skips_refresh(fake, client):
    refreshes = []

    async def refresh():
        refreshes.append(True)

    with pytest.raises(ApiError) as exc_info:
        await KitchenKanban(client, refresh).move(404, KitchenBucket.new)
    assert exc_info.value.status_code == 404
    assert refreshes == []
