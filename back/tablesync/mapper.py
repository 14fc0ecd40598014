"""
Order mapping.

Pure translations of raw API order records into the customer-facing and
kitchen-facing views. Missing fields fall back to safe defaults instead of
failing, the API is not consistent about which fields it omits.
"""
import time

from .models import (
    BackendOrder,
    KitchenOrder,
    KitchenOrderItem,
    PastOrder,
    PastOrderItem,
    PaymentStatus,
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def humanize_elapsed(created_at_ms: int, now_ms: int | None = None) -> str:
    """Relative label such as "5 minutes ago", computed against `now_ms`."""
    now_ms = _now_ms() if now_ms is None else now_ms
    seconds = max(0, (now_ms - created_at_ms) / 1000)
    minutes = seconds / 60

    if seconds < 30:
        label = "less than a minute"
    elif seconds < 90:
        label = "1 minute"
    elif minutes < 44.5:
        label = f"{round(minutes)} minutes"
    elif minutes < 89.5:
        label = "about 1 hour"
    elif minutes < 24 * 60:
        label = f"about {round(minutes / 60)} hours"
    elif minutes < 42 * 60:
        label = "1 day"
    elif minutes < 30 * 24 * 60:
        label = f"{round(minutes / (24 * 60))} days"
    else:
        months = round(minutes / (30 * 24 * 60))
        label = "about 1 month" if months <= 1 else f"{months} months"
    return f"{label} ago"


def _table_label(raw: BackendOrder) -> str:
    if raw.table_number:
        return raw.table_number
    return "" if raw.table_id is None else str(raw.table_id)


def map_to_customer_order(raw: BackendOrder) -> PastOrder:
    return PastOrder(
        id=str(raw.order_id),
        order_number=raw.order_number or "",
        user_name=raw.customer_name or "",
        user_phone=raw.customer_phone or "",
        table_number=_table_label(raw),
        table_id="" if raw.table_id is None else str(raw.table_id),
        date=raw.created_at or 0,
        status=raw.status.capitalize(),
        payment_status=raw.payment_status or PaymentStatus.pending.value,
        payment_method=raw.payment_method,
        total=float(raw.total_amount or 0),
        subtotal=float(raw.subtotal or 0),
        tax=float(raw.tax_amount or 0),
        discount=float(raw.discount_amount or 0),
        order_type=raw.order_type,
        session_id=raw.session_id,
        platform=raw.external_platform,
        items=[
            PastOrderItem(
                id=str(item.item_id),
                name=item.item_name or "N/A",
                quantity=item.quantity,
                price=item.effective_unit_price,
                category=item.item_category,
                spice_level=item.spice_level,
                customizations=list(item.customizations or []),
            )
            for item in raw.line_items
        ],
    )


def map_to_kitchen_order(raw: BackendOrder, now_ms: int | None = None) -> KitchenOrder:
    """Kitchen view of an order. The `time` label is relative to `now_ms` and is never cached."""
    now_ms = _now_ms() if now_ms is None else now_ms
    created_at = raw.created_at or now_ms
    return KitchenOrder(
        id=str(raw.order_id),
        order_number=raw.order_number or "",
        table=_table_label(raw),
        items=[
            KitchenOrderItem(
                name=item.item_name or "N/A",
                quantity=item.quantity,
                special_instructions=item.special_instructions,
                category=item.item_category or "Uncategorized",
                spice_level=item.spice_level,
                customizations=item.customization_names,
            )
            for item in raw.line_items
        ],
        time=humanize_elapsed(created_at, now_ms),
        status=raw.status,
        created_at=created_at,
        order_type=raw.order_type,
        platform=raw.external_platform,
    )
