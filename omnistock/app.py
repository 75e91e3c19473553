"""HTTP API for stock updates, orders and history, and the server entry point."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from dotenv import load_dotenv
from flask import Flask, Response, g, jsonify, request, send_from_directory

from omnistock.db import build_database_url, connect_database, connect_redis
from omnistock.events import EventProcessor, start_inventory_event_consumer
from omnistock.models import Order, StockUpdate, format_timestamp
from omnistock.services import InsufficientStockError, InventoryService

logger = logging.getLogger(__name__)

DEFAULT_PORT = "8081"
DEFAULT_STATIC_FOLDER = "static"

INVALID_SKU = "invalid SKU"
INVALID_WAREHOUSE_ID = "invalid warehouse ID"
INVALID_QUANTITY = "invalid quantity"
INVALID_CHANNEL = "invalid channel"


class ValidationError(ValueError):
    """A request body was malformed or failed validation."""


def _decode(record_type: Any, payload: str | bytes | bytearray | Mapping[str, Any]) -> Any:
    if isinstance(payload, Mapping):
        payload = json.dumps(dict(payload))
    if not payload or (isinstance(payload, str) and not payload.strip()):
        raise ValidationError("EOF")
    if isinstance(payload, (bytes, bytearray)) and not bytes(payload).strip():
        raise ValidationError("EOF")
    try:
        return record_type.from_json(payload)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def validate_stock_update(payload: str | bytes | bytearray | Mapping[str, Any]) -> StockUpdate:
    """Decode a stock update and check its SKU, warehouse and quantity."""
    update = _decode(StockUpdate, payload)
    if not update.sku:
        raise ValidationError(INVALID_SKU)
    if update.warehouse_id <= 0:
        raise ValidationError(INVALID_WAREHOUSE_ID)
    if update.quantity == 0:
        raise ValidationError(INVALID_QUANTITY)
    return update


def validate_order(payload: str | bytes | bytearray | Mapping[str, Any]) -> Order:
    """Decode an order and check its SKU, channel and quantity."""
    order = _decode(Order, payload)
    if not order.sku:
        raise ValidationError(INVALID_SKU)
    if not order.channel:
        raise ValidationError(INVALID_CHANNEL)
    if order.quantity <= 0:
        raise ValidationError(INVALID_QUANTITY)
    return order


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def _records(items: list[Any]) -> Response:
    # An empty result is rendered as null, as the list is never allocated.
    return jsonify([item.to_dict() for item in items] if items else None)


def create_app(service: Any, static_folder: str = DEFAULT_STATIC_FOLDER) -> Flask:
    """Build the web application around an inventory service."""
    static_path = os.path.abspath(static_folder)
    app = Flask(__name__, static_folder=static_path, static_url_path="/static")
    app.json.sort_keys = False

    @app.before_request
    def _start_timer() -> None:
        g.request_started = time.perf_counter()

    @app.after_request
    def _log_request(response: Response) -> Response:
        started = getattr(g, "request_started", None)
        latency = "" if started is None else f"{(time.perf_counter() - started) * 1000:.3f}ms"
        logger.info(
            '%s - [%s] "%s %s %s %d %s "%s" %s"',
            request.remote_addr or "",
            datetime.now().astimezone().strftime("%a, %d %b %Y %H:%M:%S %Z"),
            request.method,
            request.path,
            request.environ.get("SERVER_PROTOCOL", ""),
            response.status_code,
            latency,
            request.user_agent.string,
            "",
        )
        return response

    @app.post("/api/stock")
    def add_or_update_stock():
        try:
            update = validate_stock_update(request.get_data())
        except ValidationError as exc:
            return _error(str(exc), 400)
        try:
            service.add_or_update_stock(update)
        except Exception as exc:
            return _error(str(exc), 500)
        return jsonify({"message": "stock updated successfully"})

    @app.get("/api/stock/<sku>")
    def get_consolidated_stock(sku: str):
        if not sku:
            return _error(INVALID_SKU, 400)
        try:
            levels = service.get_consolidated_stock(sku)
        except Exception as exc:
            return _error(str(exc), 500)
        return _records(levels)

    @app.post("/api/orders/simulate")
    def simulate_order():
        try:
            order = validate_order(request.get_data())
        except ValidationError as exc:
            return _error(str(exc), 400)
        try:
            service.simulate_order(order)
        except InsufficientStockError as exc:
            return _error(str(exc), 400)
        except Exception as exc:
            return _error(str(exc), 500)
        return jsonify({"message": "order processed successfully"})

    @app.get("/api/history/<sku>")
    def get_inventory_history(sku: str):
        if not sku:
            return _error(INVALID_SKU, 400)
        try:
            transactions = service.get_inventory_history(sku)
        except Exception as exc:
            return _error(str(exc), 500)
        return _records(transactions)

    @app.get("/debug/env")
    def debug_env():
        return jsonify({"SLACK_WEBHOOK_URL": os.environ.get("SLACK_WEBHOOK_URL", "")})

    @app.get("/health")
    def health():
        now = datetime.now().astimezone().replace(microsecond=0)
        return jsonify({"status": "ok", "time": format_timestamp(now)})

    @app.get("/")
    def index():
        return send_from_directory(static_path, "index.html")

    return app


def _report_url(name: str, label: str) -> None:
    value = os.environ.get(name, "")
    if value:
        logger.info("%s configured: %s", label, value)
    else:
        logger.warning("%s is not set in environment variables", name)


def main(argv: list[str] | None = None) -> int:
    """Start the inventory API server."""
    parser = argparse.ArgumentParser(
        description="Real-time multi-warehouse inventory sync for omnichannel retail."
    )
    parser.parse_args(sys.argv[1:] if argv is None else argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(filename)s:%(lineno)d: %(message)s",
        stream=sys.stdout,
    )

    if not load_dotenv(os.path.join(os.getcwd(), ".env")):
        logger.warning("Warning: .env file not found")

    _report_url("WEBHOOK_URL", "Webhook URL")

    try:
        database = connect_database(build_database_url())
    except Exception as exc:
        logger.error("Failed to initialize database: %s", exc)
        return 1

    try:
        bus = connect_redis(os.environ.get("REDIS_ADDR"), os.environ.get("REDIS_PASSWORD"))
    except Exception as exc:
        logger.error("Failed to initialize Redis: %s", exc)
        database.close()
        return 1

    _report_url("SLACK_WEBHOOK_URL", "Slack webhook URL")

    service = InventoryService(database, bus)
    processor = EventProcessor(database)
    stop = threading.Event()
    processor.start()
    try:
        start_inventory_event_consumer(bus, processor, stop)
        app = create_app(service, DEFAULT_STATIC_FOLDER)
        port = os.environ.get("APP_PORT") or DEFAULT_PORT
        logger.info("Starting server on port %s", port)
        try:
            app.run(host="0.0.0.0", port=int(port))
        except (OSError, ValueError) as exc:
            logger.error("Failed to start server: %s", exc)
            return 1
    finally:
        stop.set()
        processor.stop()
        bus.close()
        database.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())