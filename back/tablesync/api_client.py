"""
Order API client.

Thin async wrapper over the restaurant order API. The API only offers
whole-order operations (create, cancel, patch status/payment); anything
finer grained is built on top of these calls by the reconciliation engine.
"""
import logging
import time
from typing import Any, Iterable

import httpx
from pydantic import ValidationError
from sqlmodel import SQLModel

from .errors import ApiError
from .models import BackendOrder, BackendTable, OrderCreate, PaymentStatus

logger = logging.getLogger(__name__)


def extract_array(data: Any, context: str) -> list:
    """Pull the record list out of the API's various response envelopes."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        if isinstance(data.get("data"), list):
            return data["data"]
        if data.get("success") is True:
            for key in ("orders", "tables"):
                if isinstance(data.get(key), list):
                    return data[key]
    logger.warning(f"[{context}] Response is not an array or a known wrapper: {data!r}")
    return []


def extract_order(data: Any) -> dict | None:
    """Find the created order record in a `POST /orders` response, if any."""
    if not isinstance(data, dict):
        return None
    candidates = [data.get("data"), data.get("order"), data]
    if isinstance(data.get("data"), dict):
        candidates.insert(0, data["data"].get("order"))
    for candidate in candidates:
        if isinstance(candidate, dict) and "order_id" in candidate:
            return candidate
    return None


def _parse_records(model: type[SQLModel], records: list) -> list:
    parsed = []
    for record in records:
        try:
            parsed.append(model.model_validate(record))
        except ValidationError as e:
            logger.warning(f"Skipping malformed {model.__name__} record: {e}")
    return parsed


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.reason_phrase or "An error occurred"
    if isinstance(body, dict):
        message = body.get("message") or body.get("detail")
        if message:
            return str(message)
    return response.reason_phrase or "An error occurred"


class OrderApiClient:
    def __init__(
        self,
        base_url: str = "",
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self.token = token or None

    def _headers(self) -> dict[str, str]:
        if self.token:
            return {"Authorization": f"Bearer {self.token}"}
        return {}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, path, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise ApiError(None, f"{method} {path} failed: {e}") from e

        logger.debug(f"{method} {path} -> {response.status_code}")
        if response.is_error:
            raise ApiError(response.status_code, _error_message(response))
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def aclose(self) -> None:
        await self._client.aclose()

    # ============ READS ============

    async def list_orders(
        self,
        statuses: Iterable[str],
        table_id: int | None = None,
        limit: int | None = None,
    ) -> list[BackendOrder]:
        params: list[tuple[str, str | int]] = [("status", s) for s in statuses]
        if limit is not None:
            params.append(("limit", limit))
        if table_id is not None:
            params.append(("tableId", table_id))
        # Cache buster, some deployments sit behind an aggressive proxy cache
        params.append(("_t", int(time.time() * 1000)))

        data = await self._request("GET", "/orders", params=params)
        return _parse_records(BackendOrder, extract_array(data, "list_orders"))

    async def list_kitchen_orders(self) -> list[BackendOrder]:
        data = await self._request("GET", "/orders/kitchen/active")
        return _parse_records(BackendOrder, extract_array(data, "list_kitchen_orders"))

    async def list_tables(self) -> list[BackendTable]:
        data = await self._request("GET", "/tables")
        return _parse_records(BackendTable, extract_array(data, "list_tables"))

    # ============ WRITES ============
    # None of these are retried: a repeated create or cancel may double-apply.

    async def create_order(self, order: OrderCreate) -> BackendOrder | None:
        data = await self._request("POST", "/orders", json=order.to_payload())
        record = extract_order(data)
        if record is None:
            return None
        created = _parse_records(BackendOrder, [record])
        return created[0] if created else None

    async def cancel_order(self, order_id: int) -> None:
        await self._request("PATCH", f"/orders/{order_id}/cancel")

    async def update_status(self, order_id: int, status: str) -> None:
        await self._request("PATCH", f"/orders/{order_id}/status", json={"status": status})

    async def update_payment(
        self,
        order_id: int,
        payment_status: str,
        payment_method: str | None = None,
    ) -> None:
        body = {"paymentStatus": payment_status}
        if payment_method:
            body["paymentMethod"] = payment_method
        await self._request("PATCH", f"/orders/{order_id}/payment", json=body)

    async def request_payment(self, order_id: int, payment_method: str) -> None:
        await self._request(
            "PATCH",
            f"/orders/{order_id}/payment-request",
            json={"paymentStatus": PaymentStatus.requested.value, "paymentMethod": payment_method},
        )

    async def clear_table(self, table_id: int) -> None:
        await self._request("POST", f"/tables/{table_id}/clear")
