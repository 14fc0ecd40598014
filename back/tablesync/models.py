from enum import Enum

from sqlmodel import Field, SQLModel


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    ready = "ready"
    served = "served"
    completed = "completed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "Pending"
    requested = "Requested"
    approved = "Approved"


class OrderType(str, Enum):
    regular = "regular"
    addon = "addon"
    online = "online"


class KitchenBucket(str, Enum):
    new = "new"
    in_progress = "in-progress"
    completed = "completed"
    excluded = "excluded"  # Never shown on the kitchen board


ALL_STATUSES = tuple(status.value for status in OrderStatus)

# Orders a customer at the table can still see (receipt download during grace period)
CUSTOMER_STATUSES = (
    OrderStatus.pending.value,
    OrderStatus.confirmed.value,
    OrderStatus.preparing.value,
    OrderStatus.ready.value,
    OrderStatus.served.value,
    OrderStatus.completed.value,
)

# Orders that count towards table occupancy
ACTIVE_STATUSES = (
    OrderStatus.pending.value,
    OrderStatus.confirmed.value,
    OrderStatus.preparing.value,
    OrderStatus.ready.value,
    OrderStatus.served.value,
)

# Orders that must never be cancelled or replaced
IMMUTABLE_STATUSES = frozenset({
    OrderStatus.served.value,
    OrderStatus.completed.value,
    OrderStatus.cancelled.value,
})


# ============ UPSTREAM RECORDS ============
# Raw records as returned by the order API. Every field that the API has been
# seen to omit is optional so a partial record never fails to parse.

class BackendCustomization(SQLModel):
    selection_id: int | None = None
    option_id: int | None = None
    name: str = ""
    price: float = 0


class BackendOrderItem(SQLModel):
    item_id: int
    item_name: str | None = None
    quantity: int = 1
    price: float | None = None
    unit_price: float | None = None
    special_instructions: str | None = None
    item_category: str | None = None
    spice_level: str | None = None
    customizations: list[BackendCustomization] | None = None

    @property
    def effective_unit_price(self) -> float:
        return float(self.unit_price or self.price or 0)

    @property
    def customization_names(self) -> list[str]:
        return [c.name for c in (self.customizations or [])]


class BackendOrder(SQLModel):
    order_id: int
    order_number: str | None = None
    table_id: int | None = None
    table_number: str | None = None
    customer_name: str | None = None
    customer_phone: str | None = None
    total_amount: float | None = None
    subtotal: float | None = None
    tax_amount: float | None = None
    discount_amount: float | None = None
    session_id: str | None = None
    order_status: str = OrderStatus.pending.value
    payment_status: str | None = None
    payment_method: str | None = None
    created_at: int | None = None  # Epoch milliseconds
    order_type: str | None = None
    external_platform: str | None = None
    items: list[BackendOrderItem] | None = None

    @property
    def status(self) -> str:
        return (self.order_status or "").lower()

    @property
    def is_paid(self) -> bool:
        return self.payment_status == PaymentStatus.approved.value

    @property
    def is_settled(self) -> bool:
        """Paid and finished serving: immutable from here on."""
        return self.is_paid and self.status in (OrderStatus.served.value, OrderStatus.completed.value)

    @property
    def line_items(self) -> list[BackendOrderItem]:
        return self.items or []

    @property
    def total(self) -> float:
        if self.total_amount is not None:
            return float(self.total_amount)
        return sum(item.effective_unit_price * item.quantity for item in self.line_items)


class BackendTable(SQLModel):
    id: int | None = None
    table_id: int | None = None
    table_number: str | None = None
    capacity: int | None = None
    qr_code_url: str | None = None
    is_available: bool | None = True

    @property
    def key(self) -> int | None:
        return self.table_id if self.table_id is not None else self.id


# ============ VIEWS ============

class PastOrderItem(SQLModel):
    id: str
    name: str
    quantity: int
    price: float
    category: str | None = None
    spice_level: str | None = None
    customizations: list[BackendCustomization] = Field(default_factory=list)


class PastOrder(SQLModel):
    """Customer-facing order."""
    id: str
    order_number: str
    user_name: str
    user_phone: str
    table_number: str
    table_id: str
    date: int  # Epoch milliseconds
    status: str  # Capitalized backend status, e.g. "Preparing"
    payment_status: str
    payment_method: str | None = None
    total: float
    subtotal: float
    tax: float
    discount: float
    order_type: str | None = None
    session_id: str | None = None
    platform: str | None = None
    items: list[PastOrderItem] = Field(default_factory=list)


class KitchenOrderItem(SQLModel):
    name: str
    quantity: int
    special_instructions: str | None = None
    category: str
    spice_level: str | None = None
    customizations: list[str] = Field(default_factory=list)


class KitchenOrder(SQLModel):
    """Kitchen-facing order."""
    id: str
    order_number: str
    table: str
    items: list[KitchenOrderItem] = Field(default_factory=list)
    time: str  # Relative label, recomputed on every render
    status: str
    created_at: int
    order_type: str | None = None
    platform: str | None = None


class KitchenBoard(SQLModel):
    new: list[KitchenOrder] = Field(default_factory=list)
    in_progress: list[KitchenOrder] = Field(default_factory=list)
    completed: list[KitchenOrder] = Field(default_factory=list)

    def column(self, bucket: KitchenBucket) -> list[KitchenOrder]:
        if bucket == KitchenBucket.new:
            return self.new
        if bucket == KitchenBucket.in_progress:
            return self.in_progress
        if bucket == KitchenBucket.completed:
            return self.completed
        raise ValueError(f"{bucket.value} is not a kitchen column")


class AggregateRow(SQLModel):
    """One displayed line of a table session: every unit of one variant."""
    variant_key: str
    menu_item_id: int
    name: str
    category: str | None = None
    spice_level: str | None = None
    customizations: list[BackendCustomization] = Field(default_factory=list)
    quantity: int
    unit_price: float
    total_price: float
    paid_count: int = 0
    unpaid_amount: float = 0
    pending: bool = False  # An optimistic value is being shown


class TableSession(SQLModel):
    table_id: int
    rows: list[AggregateRow] = Field(default_factory=list)
    order_count: int = 0
    item_count: int = 0
    total_amount: float = 0
    unpaid_amount: float = 0


class TableStatus(SQLModel):
    id: int
    table_number: str
    capacity: int | None = None
    qr_code_url: str | None = None
    is_available: bool = True
    status: str  # "Empty" | "Occupied" | "Paid & Occupied"
    total_amount: float = 0
    unpaid_amount: float = 0
    active_orders_count: int = 0
    occupied_since: int | None = None


class Notification(SQLModel):
    id: int
    level: str  # "info" | "error"
    title: str
    message: str
    created_at: str


# ============ REQUESTS ============

class OrderItemCreate(SQLModel):
    item_id: int
    quantity: int
    spice_level: str | None = None
    customizations: list[int] = Field(default_factory=list)  # Option ids
    special_instructions: str | None = None


class OrderCreate(SQLModel):
    table_id: int
    items: list[OrderItemCreate]
    customer_name: str | None = None
    customer_phone: str | None = None
    restaurant_id: int | None = None
    order_type: OrderType = OrderType.regular

    def to_payload(self) -> dict:
        """Body for `POST /orders`."""
        payload = {
            "tableId": self.table_id,
            "items": [
                {
                    "itemId": item.item_id,
                    "quantity": item.quantity,
                    "spiceLevel": item.spice_level,
                    "customizations": list(item.customizations),
                    "specialInstructions": item.special_instructions,
                }
                for item in self.items
            ],
            "customerName": self.customer_name,
            "customerPhone": self.customer_phone,
            "orderType": self.order_type.value,
        }
        if self.restaurant_id is not None:
            payload["restaurantId"] = self.restaurant_id
        return payload


class QuantityUpdate(SQLModel):
    variant_key: str
    quantity: int


class KanbanMove(SQLModel):
    from_column: KitchenBucket


class SettleRequest(SQLModel):
    payment_method: str = "Cash"


class PaymentRequest(SQLModel):
    payment_method: str = "Cash"


class PaymentUpdate(SQLModel):
    payment_method: str
    payment_status: PaymentStatus = PaymentStatus.approved
