from conftest import line
from tablesync.aggregator import (
    aggregate_session,
    build_table_session,
    has_active_session,
    real_quantity,
    session_orders,
    variant_key,
)
from tablesync.models import BackendOrder


def order(order_id, items, status="pending", payment_status="Pending", table_id=1, created_at=None):
    return BackendOrder.model_validate({
        "order_id": order_id,
        "table_id": table_id,
        "order_status": status,
        "payment_status": payment_status,
        "created_at": created_at or 1_700_000_000_000 + order_id,
        "items": items,
    })


def test_variant_key_format():
    assert variant_key(1, None, []) == "1||"
    assert variant_key(1, "Hot", ["No Onion", "Extra Cheese"]) == "1|Hot|Extra Cheese,No Onion"


def test_aggregation_is_idempotent():
    orders = [
        order(1, [line(1, 2), line(2, 1)]),
        order(2, [line(1, 1)], payment_status="Approved"),
    ]
    assert aggregate_session(orders) == aggregate_session(orders)


def test_customization_order_does_not_split_rows():
    orders = [
        order(1, [line(1, 1, customizations=(11, 12))]),
        order(2, [line(1, 2, customizations=(12, 11))]),
    ]
    rows = aggregate_session(orders)
    assert len(rows) == 1
    assert rows[0].quantity == 3
    assert rows[0].variant_key == "1||Extra Cheese,No Onion"


def test_spice_level_splits_rows():
    rows = aggregate_session([order(1, [line(1, 1, spice_level="Hot"), line(1, 1, spice_level="Mild")])])
    assert [r.variant_key for r in rows] == ["1|Hot|", "1|Mild|"]


def test_paid_and_unpaid_amounts():
    orders = [
        order(1, [line(1, 2)]),
        order(2, [line(1, 1)], payment_status="Approved"),
    ]
    [row] = aggregate_session(orders)
    assert row.quantity == 3
    assert row.paid_count == 1
    assert row.unpaid_amount == 500.0
    assert row.total_price == 750.0


def test_cancelled_orders_are_excluded():
    orders = [order(1, [line(1, 2)]), order(2, [line(1, 5)], status="cancelled")]
    [row] = aggregate_session(orders)
    assert row.quantity == 2
    assert real_quantity(orders, "1||") == 2


def test_overlay_replaces_quantity_and_clamps_paid():
    orders = [
        order(1, [line(1, 2)], payment_status="Approved"),
        order(2, [line(1, 2)]),
    ]
    [row] = aggregate_session(orders, overlay={"1||": 1})
    assert row.quantity == 1
    assert row.paid_count == 1
    assert row.unpaid_amount == 0
    assert row.pending is True


def test_overlay_for_unknown_variant_is_ignored():
    rows = aggregate_session([order(1, [line(2, 1)])], overlay={"1||": 4})
    assert [r.variant_key for r in rows] == ["2||"]
    assert rows[0].pending is False


def test_session_skips_settled_and_other_tables():
    orders = [
        order(1, [line(1, 1)]),
        order(2, [line(1, 1)], status="served", payment_status="Approved"),
        order(3, [line(1, 1)], table_id=2),
        order(4, [line(2, 2)], status="served"),
    ]
    assert [o.order_id for o in session_orders(orders, 1)] == [1, 4]

    session = build_table_session(orders, 1)
    assert session.order_count == 2
    assert session.item_count == 3
    assert session.total_amount == 330.0


def test_has_active_session():
    assert has_active_session([order(1, [line(1, 1)], status="served")], 1)
    assert not has_active_session([order(1, [line(1, 1)], status="completed")], 1)
    assert not has_active_session([order(1, [line(1, 1)])], 2)
