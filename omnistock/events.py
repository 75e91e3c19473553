"""Inventory event stream: publishing, consuming and low-stock checks."""

from __future__ import annotations

import json
import logging
import queue
import re
import threading
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import redis

from omnistock.webhooks import LOW_STOCK_THRESHOLD, notify_low_stock

logger = logging.getLogger(__name__)

INVENTORY_STREAM = "inventory_events"
EVENT_BUFFER_SIZE = 100

_POLL_BLOCK_MS = 1000
_RETRY_DELAY = 1.0
_DISPATCH_POLL = 0.1
_READ_COUNT = 10
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1
_LEADING_INT = re.compile(r"\s*([+-]?\d+)")

_STOCK_QUERY = """
    SELECT quantity
    FROM stock_levels
    WHERE sku = $1 AND warehouse_id = $2
"""


@dataclass(frozen=True)
class InventoryEvent:
    """A change to one SKU's stock in one warehouse."""

    sku: str = ""
    warehouse_id: int = 0
    change: int = 0
    channel: str = ""
    reason: str = ""


class EventProcessor:
    """Processes queued inventory events on worker threads."""

    def __init__(
        self,
        database: Any,
        notify: Callable[[str, int, int], None] | None = None,
        threshold: int = LOW_STOCK_THRESHOLD,
        buffer_size: int = EVENT_BUFFER_SIZE,
    ) -> None:
        self._db = database
        self._notify = notify or notify_low_stock
        self.threshold = threshold
        self._events: queue.Queue[InventoryEvent] = queue.Queue(maxsize=buffer_size)
        self._done = threading.Event()
        self._dispatcher: threading.Thread | None = None
        self._workers: ThreadPoolExecutor | None = None

    def start(self) -> None:
        """Begin dispatching queued events."""
        if self._dispatcher is not None:
            raise RuntimeError("event processor already started")
        self._workers = ThreadPoolExecutor(thread_name_prefix="inventory-event")
        self._dispatcher = threading.Thread(
            target=self._dispatch, name="inventory-dispatch", daemon=True
        )
        self._dispatcher.start()

    def stop(self) -> None:
        """Stop dispatching and wait for events being processed."""
        self._done.set()
        if self._dispatcher is not None:
            self._dispatcher.join()
        if self._workers is not None:
            self._workers.shutdown(wait=True)

    def submit(self, event: InventoryEvent) -> None:
        """Queue an event; blocks while the buffer is full."""
        self._events.put(event)

    def __enter__(self) -> EventProcessor:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _dispatch(self) -> None:
        while not self._done.is_set():
            try:
                event = self._events.get(timeout=_DISPATCH_POLL)
            except queue.Empty:
                continue
            assert self._workers is not None
            self._workers.submit(self.process_event, event)

    def process_event(self, event: InventoryEvent) -> bool:
        """Check stock after a decrease; return True if an alert was sent."""
        logger.info(
            "Received event: SKU=%s, WarehouseID=%d, Change=%d",
            event.sku, event.warehouse_id, event.change,
        )
        if event.change >= 0:
            logger.info("Positive stock change, no notification needed")
            return False

        try:
            rows = self._db.query(_STOCK_QUERY, event.sku, event.warehouse_id)
        except Exception as exc:
            logger.error("Error querying stock level: %s", exc)
            return False
        if not rows:
            logger.info(
                "No stock level found for SKU %s in warehouse %d", event.sku, event.warehouse_id
            )
            return False
        try:
            quantity = int(rows[0][0])
        except (TypeError, ValueError, IndexError) as exc:
            logger.error("Error scanning stock level: %s", exc)
            return False

        if quantity >= self.threshold:
            logger.info(
                "Stock level (%d) is above threshold (%d), no notification needed",
                quantity, self.threshold,
            )
            return False

        logger.warning(
            "Low stock detected for SKU %s (Current: %d, Threshold: %d)",
            event.sku, quantity, self.threshold,
        )
        try:
            self._notify(event.sku, event.warehouse_id, quantity)
        except Exception as exc:
            logger.error("Failed to send low stock notification: %s", exc)
            return False
        logger.info("Low stock notification sent successfully")
        return True


def parse_int(value: Any) -> int:
    """Read a leading decimal integer from a string; anything else gives 0."""
    if not isinstance(value, str):
        return 0
    match = _LEADING_INT.match(value)
    if match is None:
        return 0
    number = int(match.group(1))
    if not _INT64_MIN <= number <= _INT64_MAX:
        return 0
    return number


def _field_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        value = value.decode("utf-8", "replace")
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except ValueError:
            return value
        return decoded if isinstance(decoded, str) else value
    return str(value)


def event_from_fields(fields: Mapping[str, Any]) -> InventoryEvent:
    """Build an event from the fields of a stream entry."""
    return InventoryEvent(
        sku=_field_text(fields.get("sku")),
        warehouse_id=parse_int(fields.get("warehouse_id")),
        change=parse_int(fields.get("change")),
        channel=_field_text(fields.get("channel")),
        reason=_field_text(fields.get("reason")),
    )


def publish_inventory_event(bus: Any, event: InventoryEvent) -> str:
    """Append an event to the inventory stream and return the entry id."""
    logger.info(
        "Publishing inventory event: SKU=%s, WarehouseID=%d, Change=%d",
        event.sku, event.warehouse_id, event.change,
    )
    try:
        entry_id = bus.xadd(
            INVENTORY_STREAM,
            {
                "sku": event.sku,
                "warehouse_id": event.warehouse_id,
                "change": event.change,
                "channel": event.channel,
                "reason": event.reason,
            },
        )
    except redis.RedisError as exc:
        logger.error("Error publishing event to Redis: %s", exc)
        raise
    logger.info("Event published to Redis successfully")
    return entry_id


def start_inventory_event_consumer(
    bus: Any,
    processor: EventProcessor,
    stop_event: threading.Event | None = None,
) -> threading.Thread:
    """Read new stream entries on a background thread until stop_event is set."""
    stop = stop_event if stop_event is not None else threading.Event()

    def consume() -> None:
        last_id = "$"
        while not stop.is_set():
            try:
                streams = bus.xread(
                    {INVENTORY_STREAM: last_id}, count=_READ_COUNT, block=_POLL_BLOCK_MS
                )
            except redis.RedisError as exc:
                logger.warning("Error reading inventory stream: %s", exc)
                stop.wait(_RETRY_DELAY)
                continue
            for _stream, messages in streams:
                for message_id, fields in messages:
                    last_id = message_id
                    processor.submit(event_from_fields(fields))

    thread = threading.Thread(target=consume, name="inventory-consumer", daemon=True)
    thread.start()
    return thread