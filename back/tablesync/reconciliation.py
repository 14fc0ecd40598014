"""
Reconciliation engine.

The order API cannot edit a line inside an existing order, it can only
create and cancel whole orders. Changing the quantity of one variant on a
table is therefore done as diff-and-replay:

- increase: create one addon order carrying the missing units
- decrease: walk the table's open orders newest first, cancel each one that
  holds the variant and re-create it without the consumed units, keeping
  every other line untouched

Planning (`plan_reconciliation`) is pure and works on a freshly fetched
order list; `ReconciliationEngine` fetches, plans and executes the steps.
"""
import asyncio
import logging
from dataclasses import dataclass, field

from .aggregator import has_active_session, item_variant_key, real_quantity, session_orders
from .api_client import OrderApiClient
from .errors import (
    ApiError,
    NoCancelableOrderError,
    PartialReconciliationError,
    QuantityValidationError,
)
from .models import (
    ALL_STATUSES,
    IMMUTABLE_STATUSES,
    AggregateRow,
    BackendOrder,
    BackendOrderItem,
    OrderCreate,
    OrderItemCreate,
    OrderType,
)

logger = logging.getLogger(__name__)


# ============ PLAN STEPS ============

@dataclass(frozen=True)
class CreateStep:
    """Add `units` of the variant in a new order."""
    order: OrderCreate
    units: int


@dataclass(frozen=True)
class CancelStep:
    """Cancel an order whose only content was consumed units of the variant."""
    order_id: int
    removed: int


@dataclass(frozen=True)
class ReplaceStep:
    """Cancel an order and re-create it without the consumed units."""
    order_id: int
    removed: int
    replacement: OrderCreate


ReconciliationStep = CreateStep | CancelStep | ReplaceStep


@dataclass
class ReconciliationPlan:
    table_id: int
    variant_key: str
    real_quantity: int
    target_quantity: int
    steps: list[ReconciliationStep] = field(default_factory=list)

    @property
    def diff(self) -> int:
        return self.target_quantity - self.real_quantity

    @property
    def is_noop(self) -> bool:
        return not self.steps


@dataclass
class ReconciliationResult:
    plan: ReconciliationPlan
    cancelled_order_ids: list[int] = field(default_factory=list)
    created_orders: list[BackendOrder | None] = field(default_factory=list)


@dataclass(frozen=True)
class VariantTemplate:
    """What is needed to order more units of a variant."""
    item_id: int
    spice_level: str | None = None
    customization_ids: tuple[int, ...] = ()

    @classmethod
    def from_item(cls, item: BackendOrderItem) -> "VariantTemplate":
        return cls(
            item_id=item.item_id,
            spice_level=item.spice_level,
            customization_ids=tuple(c.option_id for c in (item.customizations or []) if c.option_id is not None),
        )

    @classmethod
    def from_row(cls, row: AggregateRow) -> "VariantTemplate":
        return cls(
            item_id=row.menu_item_id,
            spice_level=row.spice_level,
            customization_ids=tuple(c.option_id for c in row.customizations if c.option_id is not None),
        )


# ============ PLANNING ============

def validate_target(target: object) -> int:
    if isinstance(target, bool) or not isinstance(target, int):
        raise QuantityValidationError(f"Target quantity must be an integer, got {target!r}")
    if target < 0:
        raise QuantityValidationError(f"Target quantity must not be negative, got {target}")
    return target


def _copy_line(item: BackendOrderItem, quantity: int | None = None) -> OrderItemCreate:
    return OrderItemCreate(
        item_id=item.item_id,
        quantity=item.quantity if quantity is None else quantity,
        spice_level=item.spice_level,
        customizations=[c.option_id for c in (item.customizations or []) if c.option_id is not None],
        special_instructions=item.special_instructions,
    )


def cancel_candidates(orders: list[BackendOrder], key: str) -> list[BackendOrder]:
    """
    Orders that may be cancelled to remove units of `key`, newest first.

    Served, completed and cancelled orders are never candidates.
    """
    candidates = [
        order for order in orders
        if order.status not in IMMUTABLE_STATUSES
        and any(item_variant_key(item) == key for item in order.line_items)
    ]
    return sorted(candidates, key=lambda o: (o.created_at or 0, o.order_id), reverse=True)


def find_template(orders: list[BackendOrder], key: str) -> VariantTemplate | None:
    for order in orders:
        for item in order.line_items:
            if item_variant_key(item) == key:
                return VariantTemplate.from_item(item)
    return None


def plan_reconciliation(
    orders: list[BackendOrder],
    table_id: int,
    key: str,
    target: int,
    *,
    template: VariantTemplate | None = None,
    restaurant_id: int | None = None,
    customer_name: str | None = None,
    customer_phone: str | None = None,
) -> ReconciliationPlan:
    """
    Turn a target quantity into create/cancel/replace steps.

    `orders` must be the authoritative order list of the table as fetched
    right now; the real quantity is computed from it and never from a
    cached or optimistic value. A target of 0 removes the variant entirely.
    """
    target = validate_target(target)
    table_orders = [o for o in orders if o.table_id == table_id]
    open_orders = session_orders(table_orders, table_id)
    current = real_quantity(open_orders, key)
    plan = ReconciliationPlan(table_id=table_id, variant_key=key, real_quantity=current, target_quantity=target)

    if plan.diff == 0:
        return plan

    if plan.diff > 0:
        template = find_template(table_orders, key) or template
        if template is None:
            raise NoCancelableOrderError(key, 0)
        order_type = OrderType.addon if has_active_session(table_orders, table_id) else OrderType.regular
        plan.steps.append(CreateStep(
            order=OrderCreate(
                table_id=table_id,
                items=[OrderItemCreate(
                    item_id=template.item_id,
                    quantity=plan.diff,
                    spice_level=template.spice_level,
                    customizations=list(template.customization_ids),
                )],
                customer_name=customer_name,
                customer_phone=customer_phone,
                restaurant_id=restaurant_id,
                order_type=order_type,
            ),
            units=plan.diff,
        ))
        return plan

    needed = -plan.diff
    candidates = cancel_candidates(open_orders, key)
    removable = sum(
        item.quantity
        for order in candidates
        for item in order.line_items
        if item_variant_key(item) == key
    )
    remove_all = target == 0
    if not candidates:
        raise NoCancelableOrderError(key, needed)
    if removable < needed and not remove_all:
        # Units sitting in served orders cannot be taken back
        raise NoCancelableOrderError(key, needed, removable)

    removed_total = 0
    for order in candidates:
        if removed_total >= needed:
            break
        still_needed = needed - removed_total
        removed_here = 0
        kept: list[OrderItemCreate] = []

        for item in order.line_items:
            if item_variant_key(item) != key:
                kept.append(_copy_line(item))
                continue
            take = item.quantity if remove_all else min(item.quantity, still_needed - removed_here)
            removed_here += take
            if item.quantity > take:
                kept.append(_copy_line(item, item.quantity - take))

        removed_total += removed_here
        if kept:
            plan.steps.append(ReplaceStep(
                order_id=order.order_id,
                removed=removed_here,
                replacement=OrderCreate(
                    table_id=table_id,
                    items=kept,
                    customer_name=order.customer_name or customer_name,
                    customer_phone=order.customer_phone or customer_phone,
                    restaurant_id=restaurant_id,
                    order_type=OrderType.addon,
                ),
            ))
        else:
            plan.steps.append(CancelStep(order_id=order.order_id, removed=removed_here))

    return plan


# ============ EXECUTION ============

class ReconciliationEngine:
    def __init__(
        self,
        client: OrderApiClient,
        restaurant_id: int | None = None,
        customer_name: str | None = None,
        customer_phone: str | None = None,
    ):
        self.client = client
        self.restaurant_id = restaurant_id
        self.customer_name = customer_name
        self.customer_phone = customer_phone
        self._table_locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, table_id: int) -> asyncio.Lock:
        lock = self._table_locks.get(table_id)
        if lock is None:
            lock = asyncio.Lock()
            self._table_locks[table_id] = lock
        return lock

    async def fetch_table_orders(self, table_id: int) -> list[BackendOrder]:
        orders = await self.client.list_orders(ALL_STATUSES, table_id=table_id)
        return [o for o in orders if o.table_id == table_id]

    async def set_quantity(
        self,
        table_id: int,
        key: str,
        target: int,
        template: VariantTemplate | None = None,
    ) -> ReconciliationResult:
        """
        Bring the table's quantity of `key` to `target`.

        Runs under a per-table lock so two variants of the same table never
        interleave their cancel/create calls, and re-fetches the table first
        so the diff is taken against the current server state.
        """
        target = validate_target(target)
        async with self._lock_for(table_id):
            orders = await self.fetch_table_orders(table_id)
            plan = plan_reconciliation(
                orders,
                table_id,
                key,
                target,
                template=template,
                restaurant_id=self.restaurant_id,
                customer_name=self.customer_name,
                customer_phone=self.customer_phone,
            )
            logger.info(
                f"Table {table_id} {key}: real={plan.real_quantity} target={target} "
                f"diff={plan.diff} steps={len(plan.steps)}"
            )
            return await self.execute(plan)

    async def remove_variant(self, table_id: int, key: str) -> ReconciliationResult:
        return await self.set_quantity(table_id, key, 0)

    async def execute(self, plan: ReconciliationPlan) -> ReconciliationResult:
        result = ReconciliationResult(plan=plan)
        for step in plan.steps:
            if isinstance(step, CreateStep):
                logger.info(f"Creating {step.order.order_type.value} order with {step.units} x {plan.variant_key}")
                result.created_orders.append(await self.client.create_order(step.order))

            elif isinstance(step, CancelStep):
                logger.info(f"Cancelling order #{step.order_id} (removes {step.removed} x {plan.variant_key})")
                await self.client.cancel_order(step.order_id)
                result.cancelled_order_ids.append(step.order_id)

            elif isinstance(step, ReplaceStep):
                logger.info(
                    f"Replacing order #{step.order_id} (removes {step.removed} x {plan.variant_key}, "
                    f"keeps {len(step.replacement.items)} line(s))"
                )
                # Cancel and re-create run to completion together even if the caller is cancelled
                replace = asyncio.ensure_future(self._replace(step, result))
                replace.add_done_callback(_log_orphaned_replace)
                try:
                    await asyncio.shield(replace)
                except asyncio.CancelledError:
                    # The table lock stays held until the pair is done
                    await asyncio.wait([replace])
                    raise
        return result

    async def _replace(self, step: ReplaceStep, result: ReconciliationResult) -> None:
        await self.client.cancel_order(step.order_id)
        result.cancelled_order_ids.append(step.order_id)
        try:
            result.created_orders.append(await self.client.create_order(step.replacement))
        except ApiError as e:
            logger.error(
                f"Order #{step.order_id} cancelled but replacement failed: {e}",
                exc_info=True,
            )
            raise PartialReconciliationError(step.order_id, step.replacement.items, e) from e


def _log_orphaned_replace(task: asyncio.Future) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.error(f"Order replacement failed: {task.exception()}")
