"""
Optimistic quantity overlay and debounced reconciliation.

A quantity edit shows up immediately through the overlay; the network work
is debounced per (table, variant) so a burst of +/- clicks turns into one
reconciliation against the final target. When that reconciliation settles,
the overlay entry is removed and the authoritative aggregate shows through
again: on success after the refetch, on failure straight away. A slow plan
is never cancelled half way; on timeout only the optimistic value is dropped.
"""
import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .errors import (
    ApiError,
    NoCancelableOrderError,
    PartialReconciliationError,
    ReconciliationError,
    ReconciliationTimeoutError,
)
from .notifications import NotificationCenter
from .reconciliation import ReconciliationEngine, ReconciliationResult, VariantTemplate, validate_target

logger = logging.getLogger(__name__)

EditKey = tuple[int, str]  # (table_id, variant_key)


class OptimisticOverlay:
    def __init__(self):
        self._entries: dict[EditKey, int] = {}

    def set(self, table_id: int, key: str, quantity: int) -> None:
        self._entries[(table_id, key)] = quantity

    def get(self, table_id: int, key: str) -> int | None:
        return self._entries.get((table_id, key))

    def clear(self, table_id: int, key: str) -> None:
        self._entries.pop((table_id, key), None)

    def for_table(self, table_id: int) -> dict[str, int]:
        return {key: qty for (tid, key), qty in self._entries.items() if tid == table_id}

    def __contains__(self, edit_key: EditKey) -> bool:
        return edit_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class _PendingEdit:
    target: int
    template: VariantTemplate | None = None


class QuantityEditor:
    def __init__(
        self,
        engine: ReconciliationEngine,
        overlay: OptimisticOverlay,
        notifications: NotificationCenter,
        refresh: Callable[[], Awaitable[None]] | None = None,
        debounce_seconds: float = 0.4,
        timeout_seconds: float | None = 20.0,
    ):
        self.engine = engine
        self.overlay = overlay
        self.notifications = notifications
        self.refresh = refresh
        self.debounce_seconds = debounce_seconds
        self.timeout_seconds = timeout_seconds
        self._pending: dict[EditKey, _PendingEdit] = {}
        self._timers: dict[EditKey, asyncio.Task] = {}
        self._running: dict[EditKey, asyncio.Task] = {}
        self._detached: set[asyncio.Task] = set()

    def request(
        self,
        table_id: int,
        key: str,
        quantity: int,
        template: VariantTemplate | None = None,
    ) -> None:
        """
        Record a quantity edit.

        The overlay is updated synchronously; reconciliation runs once the
        debounce window passes without another edit to the same variant.
        """
        quantity = validate_target(quantity)
        edit_key = (table_id, key)
        self.overlay.set(table_id, key, quantity)
        self._pending[edit_key] = _PendingEdit(quantity, template)

        timer = self._timers.get(edit_key)
        if timer is not None and not timer.done():
            timer.cancel()
        self._timers[edit_key] = asyncio.create_task(self._debounce(edit_key))

    async def commit(
        self,
        table_id: int,
        key: str,
        quantity: int,
        template: VariantTemplate | None = None,
    ) -> ReconciliationResult | None:
        """Apply an edit right away, skipping the debounce window. Errors propagate to the caller."""
        quantity = validate_target(quantity)
        edit_key = (table_id, key)
        timer = self._timers.pop(edit_key, None)
        if timer is not None:
            timer.cancel()
        # A debounced target still waiting to run is superseded by this one
        self._pending.pop(edit_key, None)
        self.overlay.set(table_id, key, quantity)
        await self._wait_running(edit_key)
        return await self._execute(edit_key, _PendingEdit(quantity, template))

    async def _debounce(self, edit_key: EditKey) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            return
        if self._timers.get(edit_key) is asyncio.current_task():
            del self._timers[edit_key]
        previous = self._running.get(edit_key)
        task = asyncio.create_task(self._run_in_background(edit_key, previous))
        self._running[edit_key] = task
        task.add_done_callback(lambda t: self._forget_running(edit_key, t))

    def _forget_running(self, edit_key: EditKey, task: asyncio.Task) -> None:
        if self._running.get(edit_key) is task:
            del self._running[edit_key]

    async def _wait_running(self, edit_key: EditKey) -> None:
        running = self._running.get(edit_key)
        if running is not None and not running.done():
            await asyncio.wait([running])

    async def _run_in_background(self, edit_key: EditKey, previous: asyncio.Task | None) -> None:
        # Executions for one variant never overlap
        if previous is not None and not previous.done():
            await asyncio.wait([previous])

        edit = self._pending.pop(edit_key, None)
        if edit is None:
            # An earlier execution or a commit already took the latest target
            return
        try:
            await self._execute(edit_key, edit)
        except Exception as e:
            self._report(edit_key, e)

    def _report(self, edit_key: EditKey, error: Exception) -> None:
        table_id, key = edit_key
        if isinstance(error, PartialReconciliationError):
            self.notifications.error(
                "Table needs checking",
                f"Table {table_id}: {error}. Verify the table and re-add the missing items manually.",
            )
        elif isinstance(error, NoCancelableOrderError):
            self.notifications.error("Update failed", str(error))
        elif isinstance(error, ReconciliationTimeoutError):
            self.notifications.error("Update timed out", f"Table {table_id}: {error}")
        elif isinstance(error, ReconciliationError):
            self.notifications.error("Update rejected", str(error))
        elif isinstance(error, ApiError):
            self.notifications.error("Update failed", f"Table {table_id}: {error}")
        else:
            logger.error(f"Unexpected reconciliation failure for {edit_key}: {error}", exc_info=error)
            self.notifications.error("Update failed", f"Table {table_id}: unexpected error")

    def _clear_overlay(self, edit_key: EditKey, target: int) -> None:
        # A newer edit keeps its own optimistic value
        table_id, key = edit_key
        if edit_key not in self._pending and self.overlay.get(table_id, key) == target:
            self.overlay.clear(table_id, key)

    async def _refresh_quietly(self) -> None:
        if self.refresh is None:
            return
        try:
            await self.refresh()
        except Exception as e:
            logger.error(f"Refetch after reconciliation failed: {e}", exc_info=True)

    async def _execute(self, edit_key: EditKey, edit: _PendingEdit) -> ReconciliationResult | None:
        """
        Run one reconciliation and settle its overlay entry.

        The plan itself is never cut short: a cancelled order whose
        replacement is not created yet would lose its other lines. When the
        timeout passes, or the caller goes away, only the optimistic value is
        given up and the plan finishes in the background.
        """
        table_id, key = edit_key
        execution = asyncio.create_task(
            self.engine.set_quantity(table_id, key, edit.target, template=edit.template)
        )
        try:
            if self.timeout_seconds:
                result = await asyncio.wait_for(asyncio.shield(execution), self.timeout_seconds)
            else:
                result = await asyncio.shield(execution)
        except asyncio.TimeoutError as e:
            self._detach(edit_key, execution)
            self._clear_overlay(edit_key, edit.target)
            raise ReconciliationTimeoutError(
                f"{key} did not settle within {self.timeout_seconds:g}s and is still being applied; "
                f"verify the table"
            ) from e
        except asyncio.CancelledError:
            self._detach(edit_key, execution)
            self._clear_overlay(edit_key, edit.target)
            raise
        except Exception:
            self._clear_overlay(edit_key, edit.target)
            raise

        await self._refresh_quietly()
        self._clear_overlay(edit_key, edit.target)
        return result

    def _detach(self, edit_key: EditKey, execution: asyncio.Task) -> None:
        task = asyncio.create_task(self._finish_detached(edit_key, execution))
        self._detached.add(task)
        task.add_done_callback(self._detached.discard)

    async def _finish_detached(self, edit_key: EditKey, execution: asyncio.Task) -> None:
        try:
            await execution
        except Exception as e:
            self._report(edit_key, e)
            return
        logger.info(f"Late reconciliation of {edit_key} finished")
        await self._refresh_quietly()

    def _tasks(self) -> list[asyncio.Task]:
        return [
            t for t in (*self._timers.values(), *self._running.values(), *self._detached)
            if not t.done()
        ]

    async def drain(self) -> None:
        """Wait until every pending edit has been reconciled, late ones included."""
        while tasks := self._tasks():
            await asyncio.wait(tasks)

    async def aclose(self) -> None:
        """Drop edits that have not started; let plans already running finish."""
        waiting = [*self._timers.values(), *self._running.values()]
        for task in waiting:
            task.cancel()
        self._timers.clear()
        self._running.clear()
        await asyncio.gather(*waiting, return_exceptions=True)
        await asyncio.gather(*self._detached, return_exceptions=True)
