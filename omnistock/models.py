"""Inventory records and their JSON forms."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_TIMESTAMP = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def format_timestamp(value: datetime) -> str:
    """Format a datetime as RFC 3339 with trailing fraction zeros trimmed."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    text = value.isoformat(timespec="seconds")
    base, offset = text[:19], text[19:]
    fraction = f".{value.microsecond:06d}".rstrip("0") if value.microsecond else ""
    if offset == "+00:00":
        offset = "Z"
    return f"{base}{fraction}{offset}"


def parse_timestamp(text: str) -> datetime:
    """Parse an RFC 3339 timestamp; fractions finer than microseconds are truncated."""
    match = _TIMESTAMP.match(text)
    if match is None:
        raise ValueError(f"invalid timestamp {text!r}")
    date_part, time_part, fraction, offset = match.groups()
    micro = f".{(fraction or '')[:6].ljust(6, '0')}" if fraction else ""
    if offset in ("Z", "z"):
        offset = "+00:00"
    return datetime.fromisoformat(f"{date_part}T{time_part}{micro}{offset}")


def _dumps(obj: Any) -> str:
    return json.dumps(obj, separators=(",", ":"), ensure_ascii=False)


def _load_object(data: str | bytes | bytearray) -> dict[str, Any]:
    if isinstance(data, (bytes, bytearray)):
        data = data.decode("utf-8")
    obj = json.loads(data)
    if obj is None:
        return {}
    if not isinstance(obj, dict):
        raise ValueError("JSON value must be an object")
    return obj


def _read_str(obj: dict[str, Any], key: str) -> str:
    value = obj.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _read_int(obj: dict[str, Any], key: str) -> int:
    value = obj.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


def _read_time(obj: dict[str, Any], key: str) -> datetime:
    value = obj.get(key)
    if value is None:
        return ZERO_TIME
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a timestamp string")
    return parse_timestamp(value)


class _JsonRecord:
    def to_dict(self) -> dict[str, Any]:  # pragma: no cover - overridden
        raise NotImplementedError

    def to_json(self) -> str:
        """Return the record as compact JSON."""
        return _dumps(self.to_dict())


@dataclass
class StockUpdate(_JsonRecord):
    """A stock change for one SKU in one warehouse."""

    sku: str = ""
    warehouse_id: int = 0
    quantity: int = 0
    timestamp: datetime = field(default=ZERO_TIME)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku": self.sku,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
            "timestamp": format_timestamp(self.timestamp),
        }

    def to_json(self) -> str:
        return super().to_json()

    @classmethod
    def from_json(cls, data: str | bytes | bytearray) -> StockUpdate:
        obj = _load_object(data)
        return cls(
            sku=_read_str(obj, "sku"),
            warehouse_id=_read_int(obj, "warehouse_id"),
            quantity=_read_int(obj, "quantity"),
            timestamp=_read_time(obj, "timestamp"),
        )


@dataclass
class Order(_JsonRecord):
    """An order placed through a sales channel."""

    sku: str = ""
    channel: str = ""
    quantity: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"sku": self.sku, "channel": self.channel, "quantity": self.quantity}

    def to_json(self) -> str:
        return super().to_json()

    @classmethod
    def from_json(cls, data: str | bytes | bytearray) -> Order:
        obj = _load_object(data)
        return cls(
            sku=_read_str(obj, "sku"),
            channel=_read_str(obj, "channel"),
            quantity=_read_int(obj, "quantity"),
        )


@dataclass
class InventoryTransaction:
    """A recorded inventory change."""

    id: int = 0
    sku: str = ""
    warehouse_id: int = 0
    change: int = 0
    type: str = ""
    channel: str = ""
    timestamp: datetime = field(default=ZERO_TIME)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "sku": self.sku,
            "warehouse_id": self.warehouse_id,
            "change": self.change,
            "type": self.type,
            "channel": self.channel,
            "timestamp": format_timestamp(self.timestamp),
        }


@dataclass
class StockLevel(_JsonRecord):
    """The quantity of one SKU held in one warehouse."""

    sku: str = ""
    warehouse_id: int = 0
    quantity: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "sku": self.sku,
            "warehouse_id": self.warehouse_id,
            "quantity": self.quantity,
        }

    def to_json(self) -> str:
        return super().to_json()

    @classmethod
    def from_json(cls, data: str | bytes | bytearray) -> StockLevel:
        obj = _load_object(data)
        return cls(
            sku=_read_str(obj, "sku"),
            warehouse_id=_read_int(obj, "warehouse_id"),
            quantity=_read_int(obj, "quantity"),
        )