"""Stock updates, order fulfilment and history queries."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from omnistock.models import InventoryTransaction, Order, StockLevel, StockUpdate

logger = logging.getLogger(__name__)

UPDATES_CHANNEL = "inventory_updates"

_UPSERT_STOCK = """
    INSERT INTO stock_levels (sku, warehouse_id, quantity)
    VALUES ($1, $2, $3)
    ON CONFLICT (sku, warehouse_id) DO UPDATE
    SET quantity = stock_levels.quantity + $3
"""

_RECORD_STOCK_UPDATE = """
    INSERT INTO inventory_transactions (sku, warehouse_id, change, type, timestamp)
    VALUES ($1, $2, $3, 'stock_update', $4)
"""

_SELECT_LEVELS = """
    SELECT sku, warehouse_id, quantity
    FROM stock_levels
    WHERE sku = $1
"""

_SELECT_AVAILABLE = """
    SELECT warehouse_id, quantity
    FROM stock_levels
    WHERE sku = $1 AND quantity > 0
    ORDER BY quantity DESC
"""

_DEDUCT_STOCK = """
    UPDATE stock_levels
    SET quantity = quantity - $1
    WHERE sku = $2 AND warehouse_id = $3
"""

_RECORD_ORDER = """
    INSERT INTO inventory_transactions (sku, warehouse_id, change, type, channel, timestamp)
    VALUES ($1, $2, $3, 'order', $4, $5)
"""

_SELECT_HISTORY = """
    SELECT id, sku, warehouse_id, change, type, channel, timestamp
    FROM inventory_transactions
    WHERE sku = $1
    ORDER BY timestamp DESC
"""


class InsufficientStockError(Exception):
    """The warehouses together do not hold enough stock for an order."""

    def __init__(self, message: str = "insufficient stock") -> None:
        super().__init__(message)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class InventoryService:
    """Inventory operations over a SQL database and a publish bus."""

    def __init__(
        self,
        database: Any,
        bus: Any,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = database
        self._bus = bus
        self._clock = clock or _utc_now

    def add_or_update_stock(self, update: StockUpdate) -> None:
        """Add the update's quantity to the warehouse stock and record it."""
        self._db.execute(_UPSERT_STOCK, update.sku, update.warehouse_id, update.quantity)
        self._db.execute(
            _RECORD_STOCK_UPDATE,
            update.sku,
            update.warehouse_id,
            update.quantity,
            self._clock(),
        )
        self._bus.publish(UPDATES_CHANNEL, update)

    def get_consolidated_stock(self, sku: str) -> list[StockLevel]:
        """Return the stock level of a SKU in every warehouse that holds it."""
        return [
            StockLevel(sku=row_sku, warehouse_id=int(warehouse_id), quantity=int(quantity))
            for row_sku, warehouse_id, quantity in self._db.query(_SELECT_LEVELS, sku)
        ]

    def simulate_order(self, order: Order) -> None:
        """Deduct an order from the fullest warehouses first.

        Deductions already made stay in place when the stock runs out.
        """
        remaining = order.quantity
        for warehouse_id, quantity in self._db.query(_SELECT_AVAILABLE, order.sku):
            to_deduct = min(remaining, int(quantity))
            if to_deduct <= 0:
                continue
            self._db.execute(_DEDUCT_STOCK, to_deduct, order.sku, warehouse_id)
            self._db.execute(
                _RECORD_ORDER,
                order.sku,
                warehouse_id,
                -to_deduct,
                order.channel,
                self._clock(),
            )
            remaining -= to_deduct
            if remaining == 0:
                break

        if remaining > 0:
            raise InsufficientStockError()

        self._bus.publish(UPDATES_CHANNEL, order)

    def get_inventory_history(self, sku: str) -> list[InventoryTransaction]:
        """Return the recorded changes for a SKU, newest first."""
        return [
            InventoryTransaction(
                id=int(row_id),
                sku=_text(row_sku),
                warehouse_id=int(warehouse_id),
                change=int(change),
                type=_text(kind),
                channel=_text(channel),
                timestamp=timestamp,
            )
            for row_id, row_sku, warehouse_id, change, kind, channel, timestamp in self._db.query(
                _SELECT_HISTORY, sku
            )
        ]