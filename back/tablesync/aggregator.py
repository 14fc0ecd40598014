"""
Table session aggregation.

Merges the line items of every open order on a table into one row per
variant (menu item + spice level + customization set). Everything here is a
pure function of the orders passed in, so the result can always be thrown
away and recomputed from a fresh fetch.
"""
from collections.abc import Iterable, Mapping

from .models import AggregateRow, BackendOrder, BackendOrderItem, OrderStatus, TableSession


def variant_key(menu_item_id: int, spice_level: str | None, customization_names: Iterable[str]) -> str:
    """
    Composite identity of a line item.

    Customization names are sorted so `[A, B]` and `[B, A]` give the same key.
    """
    names = ",".join(sorted(customization_names))
    return f"{menu_item_id}|{spice_level or ''}|{names}"


def item_variant_key(item: BackendOrderItem) -> str:
    return variant_key(item.item_id, item.spice_level, item.customization_names)


def is_open(order: BackendOrder) -> bool:
    return order.status != OrderStatus.cancelled.value


def session_orders(orders: Iterable[BackendOrder], table_id: int) -> list[BackendOrder]:
    """Non-cancelled, not yet settled orders of one table."""
    return [
        order for order in orders
        if order.table_id == table_id and is_open(order) and not order.is_settled
    ]


def has_active_session(orders: Iterable[BackendOrder], table_id: int) -> bool:
    """True if the table already has an order that is neither completed nor cancelled."""
    return any(
        order.table_id == table_id
        and order.status not in (OrderStatus.completed.value, OrderStatus.cancelled.value)
        for order in orders
    )


def real_quantity(orders: Iterable[BackendOrder], key: str) -> int:
    """Units of a variant across the given orders, ignoring any optimistic value."""
    return sum(
        item.quantity
        for order in orders if is_open(order)
        for item in order.line_items
        if item_variant_key(item) == key
    )


def aggregate_session(
    orders: Iterable[BackendOrder],
    overlay: Mapping[str, int] | None = None,
) -> list[AggregateRow]:
    rows: dict[str, AggregateRow] = {}

    for order in orders:
        if not is_open(order):
            continue
        for item in order.line_items:
            key = item_variant_key(item)
            row = rows.get(key)
            if row is None:
                row = AggregateRow(
                    variant_key=key,
                    menu_item_id=item.item_id,
                    name=item.item_name or "N/A",
                    category=item.item_category,
                    spice_level=item.spice_level,
                    customizations=list(item.customizations or []),
                    quantity=0,
                    unit_price=item.effective_unit_price,
                    total_price=0,
                )
                rows[key] = row

            row.quantity += item.quantity
            row.total_price += row.unit_price * item.quantity
            if order.is_paid:
                row.paid_count += item.quantity
            else:
                row.unpaid_amount += row.unit_price * item.quantity

    for key, pending_quantity in (overlay or {}).items():
        row = rows.get(key)
        if row is None:
            continue
        row.quantity = pending_quantity
        row.paid_count = min(row.paid_count, pending_quantity)
        row.total_price = row.unit_price * pending_quantity
        row.unpaid_amount = row.unit_price * pending_quantity - row.unit_price * row.paid_count
        row.pending = True

    return sorted(rows.values(), key=lambda r: r.name)


def build_table_session(
    orders: Iterable[BackendOrder],
    table_id: int,
    overlay: Mapping[str, int] | None = None,
) -> TableSession:
    open_orders = session_orders(orders, table_id)
    rows = aggregate_session(open_orders, overlay)
    return TableSession(
        table_id=table_id,
        rows=rows,
        order_count=len(open_orders),
        item_count=sum(row.quantity for row in rows),
        total_amount=sum(row.total_price for row in rows),
        unpaid_amount=sum(row.unpaid_amount for row in rows),
    )
