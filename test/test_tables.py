from conftest import line
from tablesync.models import BackendOrder, BackendTable
from tablesync.tables import derive_table_statuses


def test_table_statuses():
    tables = [
        BackendTable(id=1, table_number="T1", capacity=4),
        BackendTable(id=2, table_number="T2"),
        BackendTable(id=3, table_number="T3"),
        BackendTable(id=4, table_number="T4", is_available=False),
    ]
    orders = [
        BackendOrder.model_validate({
            "order_id": 1, "table_id": 1, "order_status": "preparing", "payment_status": "Pending",
            "total_amount": 290, "created_at": 2000, "items": [line(1, 1), line(2, 1)],
        }),
        BackendOrder.model_validate({
            "order_id": 2, "table_id": 1, "order_status": "served", "payment_status": "Approved",
            "total_amount": 80, "created_at": 1000, "items": [line(3, 1)],
        }),
        BackendOrder.model_validate({
            "order_id": 3, "table_id": 2, "order_status": "served", "payment_status": "Approved",
            "total_amount": 40, "created_at": 3000, "items": [line(2, 1)],
        }),
        BackendOrder.model_validate({
            "order_id": 4, "table_id": 3, "order_status": "cancelled", "total_amount": 250,
            "items": [line(1, 1)],
        }),
    ]

    by_id = {s.id: s for s in derive_table_statuses(tables, orders)}

    assert set(by_id) == {1, 2, 3}
    assert by_id[1].status == "Occupied"
    assert by_id[1].total_amount == 370
    assert by_id[1].unpaid_amount == 290
    assert by_id[1].active_orders_count == 2
    assert by_id[1].occupied_since == 1000
    assert by_id[2].status == "Paid & Occupied"
    assert by_id[2].unpaid_amount == 0
    assert by_id[3].status == "Empty"
    assert by_id[3].occupied_since is None
