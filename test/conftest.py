"""
Shared fixtures.

`FakeOrderBackend` is an in-memory stand-in for the restaurant order API,
served as a FastAPI app and reached through `httpx.ASGITransport`, so the
real `OrderApiClient` is exercised end to end without a network.
"""
import itertools
import os
import sys

import httpx
import pytest
from fastapi import FastAPI, HTTPException, Request

# Add back directory to path so `tablesync` is importable without installing
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "back"))

from tablesync.api_client import OrderApiClient  # noqa: E402

BASE_TIME = 1_700_000_000_000

MENU = {
    1: {"name": "Paneer Tikka", "price": 250.0, "category": "Starters"},
    2: {"name": "Naan", "price": 40.0, "category": "Breads"},
    3: {"name": "Lassi", "price": 80.0, "category": "Beverages"},
}

OPTIONS = {
    11: {"name": "Extra Cheese", "price": 30.0},
    12: {"name": "No Onion", "price": 0.0},
}

KITCHEN_STATUSES = ("pending", "confirmed", "preparing", "ready")


def line(item_id: int, quantity: int, spice_level=None, customizations=(), special_instructions=None) -> dict:
    """Order item record the way the API returns it."""
    menu = MENU[item_id]
    return {
        "item_id": item_id,
        "item_name": menu["name"],
        "quantity": quantity,
        "unit_price": menu["price"],
        "item_category": menu["category"],
        "spice_level": spice_level,
        "special_instructions": special_instructions,
        "customizations": [
            {"selection_id": option_id * 10, "option_id": option_id, **OPTIONS[option_id]}
            for option_id in customizations
        ],
    }


class FakeOrderBackend:
    def __init__(self):
        self.orders: dict[int, dict] = {}
        self.tables: list[dict] = [
            {"id": 1, "table_number": "T1", "capacity": 4, "is_available": True},
            {"id": 2, "table_number": "T2", "capacity": 2, "is_available": True},
            {"id": 3, "table_number": "T3", "capacity": 6, "is_available": False},
        ]
        self.calls: list[tuple[str, str]] = []
        self.created_payloads: list[dict] = []
        self.fail_create = False
        self.fail_reads = False
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)
        self.app = self._build_app()

    def add_order(
        self,
        table_id: int,
        items: list[dict],
        status: str = "pending",
        payment_status: str = "Pending",
        order_type: str = "regular",
        customer_name: str | None = "Guest",
        customer_phone: str | None = "5550100",
    ) -> dict:
        order_id = next(self._ids)
        order = {
            "order_id": order_id,
            "order_number": f"ORD-{order_id:04d}",
            "table_id": table_id,
            "table_number": f"T{table_id}",
            "customer_name": customer_name,
            "customer_phone": customer_phone,
            "order_status": status,
            "payment_status": payment_status,
            "payment_method": None,
            "order_type": order_type,
            "created_at": BASE_TIME + next(self._clock) * 1000,
            "items": items,
            "total_amount": sum(i["unit_price"] * i["quantity"] for i in items),
        }
        self.orders[order_id] = order
        return order

    def open_quantity(self, table_id: int, item_id: int) -> int:
        return sum(
            item["quantity"]
            for order in self.orders.values()
            if order["table_id"] == table_id and order["order_status"] != "cancelled"
            for item in order["items"]
            if item["item_id"] == item_id
        )

    def count_calls(self, method: str, prefix: str = "") -> int:
        return sum(1 for m, path in self.calls if m == method and path.startswith(prefix))

    def _get(self, order_id: int) -> dict:
        order = self.orders.get(order_id)
        if order is None:
            raise HTTPException(status_code=404, detail="Order not found")
        return order

    def _build_app(self) -> FastAPI:
        app = FastAPI()
        backend = self

        @app.middleware("http")
        async def record_calls(request: Request, call_next):
            backend.calls.append((request.method, request.url.path))
            return await call_next(request)

        @app.get("/orders/kitchen/active")
        def kitchen_active():
            orders = [o for o in backend.orders.values() if o["order_status"] in KITCHEN_STATUSES]
            return {"success": True, "orders": orders}

        @app.get("/orders")
        def list_orders(request: Request):
            if backend.fail_reads:
                raise HTTPException(status_code=503, detail="Service unavailable")
            statuses = request.query_params.getlist("status")
            table_id = request.query_params.get("tableId")
            limit = request.query_params.get("limit")
            orders = [
                o for o in backend.orders.values()
                if (not statuses or o["order_status"] in statuses)
                and (table_id is None or o["table_id"] == int(table_id))
            ]
            orders.sort(key=lambda o: o["created_at"], reverse=True)
            if limit is not None:
                orders = orders[:int(limit)]
            return {"data": orders}

        @app.get("/tables")
        def list_tables():
            return backend.tables

        @app.post("/orders")
        async def create_order(request: Request):
            payload = await request.json()
            backend.created_payloads.append(payload)
            if backend.fail_create:
                raise HTTPException(status_code=500, detail="Order service unavailable")
            items = [
                line(
                    item["itemId"],
                    item["quantity"],
                    spice_level=item.get("spiceLevel"),
                    customizations=item.get("customizations") or (),
                    special_instructions=item.get("specialInstructions"),
                )
                for item in payload["items"]
            ]
            order = backend.add_order(
                payload["tableId"],
                items,
                order_type=payload.get("orderType", "regular"),
                customer_name=payload.get("customerName"),
                customer_phone=payload.get("customerPhone"),
            )
            return {"success": True, "data": {"order": order}}

        @app.patch("/orders/{order_id}/cancel")
        def cancel_order(order_id: int):
            backend._get(order_id)["order_status"] = "cancelled"
            return {"success": True}

        @app.patch("/orders/{order_id}/status")
        async def update_status(order_id: int, request: Request):
            order = backend._get(order_id)
            order["order_status"] = (await request.json())["status"]
            return {"success": True}

        @app.patch("/orders/{order_id}/payment")
        async def update_payment(order_id: int, request: Request):
            order = backend._get(order_id)
            body = await request.json()
            order["payment_status"] = body["paymentStatus"]
            if "paymentMethod" in body:
                order["payment_method"] = body["paymentMethod"]
            return {"success": True}

        @app.patch("/orders/{order_id}/payment-request")
        async def request_payment(order_id: int, request: Request):
            order = backend._get(order_id)
            body = await request.json()
            order["payment_status"] = body["paymentStatus"]
            order["payment_method"] = body.get("paymentMethod")
            return {"success": True}

        @app.post("/tables/{table_id}/clear")
        def clear_table(table_id: int):
            if not any(t["id"] == table_id for t in backend.tables):
                raise HTTPException(status_code=404, detail="Table not found")
            for order in backend.orders.values():
                if order["table_id"] == table_id and order["order_status"] != "cancelled":
                    order["order_status"] = "completed"
            return {"success": True}

        return app


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def fake():
    return FakeOrderBackend()


@pytest.fixture
def client(fake):
    http = httpx.AsyncClient(transport=httpx.ASGITransport(app=fake.app), base_url="http://upstream")
    return OrderApiClient(client=http)
