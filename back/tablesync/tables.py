from collections.abc import Iterable

from .models import ACTIVE_STATUSES, BackendOrder, BackendTable, TableStatus


def derive_table_statuses(tables: Iterable[BackendTable], orders: Iterable[BackendOrder]) -> list[TableStatus]:
    """Occupancy roster: every available table joined with its active orders."""
    active = [o for o in orders if o.status in ACTIVE_STATUSES]
    statuses = []
    for table in tables:
        if table.is_available is False or table.key is None:
            continue
        table_orders = [o for o in active if o.table_id == table.key]

        status = "Empty"
        if table_orders:
            status = "Paid & Occupied" if all(o.is_paid for o in table_orders) else "Occupied"

        created = [o.created_at for o in table_orders if o.created_at]
        statuses.append(TableStatus(
            id=table.key,
            table_number=table.table_number or str(table.key),
            capacity=table.capacity,
            qr_code_url=table.qr_code_url,
            is_available=table.is_available is not False,
            status=status,
            total_amount=sum(o.total for o in table_orders),
            unpaid_amount=sum(o.total for o in table_orders if not o.is_paid),
            active_orders_count=len(table_orders),
            occupied_since=min(created) if created else None,
        ))
    return statuses
