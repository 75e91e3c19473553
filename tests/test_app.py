from datetime import datetime, timezone

import pytest

from omnistock.app import (
    ValidationError,
    create_app,
    main,
    validate_order,
    validate_stock_update,
)
from omnistock.models import InventoryTransaction, Order, StockLevel, StockUpdate
from omnistock.services import InsufficientStockError


class FakeService:
    def __init__(self, levels=None, history=None, error=None):
        self.levels = levels or []
        self.history = history or []
        self.error = error
        self.updates = []
        self.orders = []
        self.queried = []

    def add_or_update_stock(self, update):
        if self.error:
            raise self.error
        self.updates.append(update)

    def get_consolidated_stock(self, sku):
        if self.error:
            raise self.error
        self.queried.append(sku)
        return self.levels

    def simulate_order(self, order):
        if self.error:
            raise self.error
        self.orders.append(order)

    def get_inventory_history(self, sku):
        if self.error:
            raise self.error
        self.queried.append(sku)
        return self.history


@pytest.fixture
def static_dir(tmp_path):
    folder = tmp_path / "static"
    folder.mkdir()
    (folder / "index.html").write_text("<h1>Inventory</h1>")
    (folder / "app.js").write_text("console.log(1);")
    return folder


def client_for(service, static_dir):
    return create_app(service, str(static_dir)).test_client()


def test_add_stock_success(static_dir):
    service = FakeService()
    client = client_for(service, static_dir)
    resp = client.post("/api/stock", json={"sku": "ABC", "warehouse_id": 2, "quantity": 5})
    assert resp.status_code == 200
    assert resp.get_json() == {"message": "stock updated successfully"}
    assert service.updates[0].sku == "ABC"
    assert service.updates[0].warehouse_id == 2
    assert service.updates[0].quantity == 5


def test_add_stock_negative_quantity_allowed(static_dir):
    service = FakeService()
    resp = client_for(service, static_dir).post(
        "/api/stock", json={"sku": "ABC", "warehouse_id": 1, "quantity": -3}
    )
    assert resp.status_code == 200
    assert service.updates[0].quantity == -3


@pytest.mark.parametrize(
    "body, message",
    [
        ({"warehouse_id": 1, "quantity": 5}, "invalid SKU"),
        ({"sku": "ABC", "warehouse_id": 0, "quantity": 5}, "invalid warehouse ID"),
        ({"sku": "ABC", "warehouse_id": -1, "quantity": 5}, "invalid warehouse ID"),
        ({"sku": "ABC", "warehouse_id": 1, "quantity": 0}, "invalid quantity"),
    ],
)
def test_add_stock_validation(static_dir, body, message):
    service = FakeService()
    resp = client_for(service, static_dir).post("/api/stock", json=body)
    assert resp.status_code == 400
    assert resp.get_json() == {"error": message}
    assert service.updates == []


def test_add_stock_bad_json(static_dir):
    resp = client_for(FakeService(), static_dir).post(
        "/api/stock", data="{not json", content_type="application/json"
    )
    assert resp.status_code == 400
    assert "error" in resp.get_json()


def test_add_stock_empty_body(static_dir):
    resp = client_for(FakeService(), static_dir).post("/api/stock")
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "EOF"}


def test_add_stock_service_error(static_dir):
    service = FakeService(error=RuntimeError("database down"))
    resp = client_for(service, static_dir).post(
        "/api/stock", json={"sku": "ABC", "warehouse_id": 1, "quantity": 5}
    )
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "database down"}


def test_get_consolidated_stock(static_dir):
    service = FakeService(
        levels=[StockLevel("test", 1, 7), StockLevel("test", 2, 3)]
    )
    resp = client_for(service, static_dir).get("/api/stock/test")
    assert resp.status_code == 200
    assert resp.get_json() == [
        {"sku": "test", "warehouse_id": 1, "quantity": 7},
        {"sku": "test", "warehouse_id": 2, "quantity": 3},
    ]
    assert service.queried == ["test"]


def test_get_consolidated_stock_empty_is_null(static_dir):
    resp = client_for(FakeService(), static_dir).get("/api/stock/test")
    assert resp.status_code == 200
    assert resp.get_data(as_text=True).strip() == "null"


def test_get_consolidated_stock_error(static_dir):
    service = FakeService(error=RuntimeError("boom"))
    resp = client_for(service, static_dir).get("/api/stock/test")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "boom"}


def test_simulate_order_success(static_dir):
    service = FakeService()
    resp = client_for(service, static_dir).post(
        "/api/orders/simulate", json={"sku": "test", "channel": "amazon", "quantity": 1}
    )
    assert resp.status_code == 200
    assert resp.get_json() == {"message": "order processed successfully"}
    assert service.orders == [Order("test", "amazon", 1)]


@pytest.mark.parametrize(
    "body, message",
    [
        ({"channel": "amazon", "quantity": 1}, "invalid SKU"),
        ({"sku": "test", "quantity": 1}, "invalid channel"),
        ({"sku": "test", "channel": "amazon", "quantity": 0}, "invalid quantity"),
        ({"sku": "test", "channel": "amazon", "quantity": -2}, "invalid quantity"),
    ],
)
def test_simulate_order_validation(static_dir, body, message):
    resp = client_for(FakeService(), static_dir).post("/api/orders/simulate", json=body)
    assert resp.status_code == 400
    assert resp.get_json() == {"error": message}


def test_simulate_order_insufficient_stock(static_dir):
    service = FakeService(error=InsufficientStockError())
    resp = client_for(service, static_dir).post(
        "/api/orders/simulate", json={"sku": "test", "channel": "amazon", "quantity": 1}
    )
    assert resp.status_code == 400
    assert resp.get_json() == {"error": "insufficient stock"}


def test_simulate_order_other_error(static_dir):
    service = FakeService(error=RuntimeError("timeout"))
    resp = client_for(service, static_dir).post(
        "/api/orders/simulate", json={"sku": "test", "channel": "amazon", "quantity": 1}
    )
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "timeout"}


def test_get_inventory_history(static_dir):
    stamp = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    service = FakeService(
        history=[InventoryTransaction(9, "test", 1, -2, "order", "amazon", stamp)]
    )
    resp = client_for(service, static_dir).get("/api/history/test")
    assert resp.status_code == 200
    assert resp.get_json() == [
        {
            "id": 9,
            "sku": "test",
            "warehouse_id": 1,
            "change": -2,
            "type": "order",
            "channel": "amazon",
            "timestamp": "2024-01-02T03:04:05Z",
        }
    ]


def test_get_inventory_history_error(static_dir):
    service = FakeService(error=RuntimeError("gone"))
    resp = client_for(service, static_dir).get("/api/history/test")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "gone"}


def test_health(static_dir):
    resp = client_for(FakeService(), static_dir).get("/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "ok"
    assert datetime.fromisoformat(body["time"].replace("Z", "+00:00")).tzinfo is not None


def test_debug_env(static_dir, monkeypatch):
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "http://localhost/hook")
    resp = client_for(FakeService(), static_dir).get("/debug/env")
    assert resp.get_json() == {"SLACK_WEBHOOK_URL": "http://localhost/hook"}


def test_index_and_static(static_dir):
    client = client_for(FakeService(), static_dir)
    index = client.get("/")
    assert index.status_code == 200
    assert "<h1>Inventory</h1>" in index.get_data(as_text=True)
    script = client.get("/static/app.js")
    assert script.status_code == 200
    assert script.get_data(as_text=True) == "console.log(1);"


def test_validate_stock_update_from_dict_and_text():
    update = validate_stock_update({"sku": "A", "warehouse_id": 3, "quantity": 4})
    assert update == StockUpdate(sku="A", warehouse_id=3, quantity=4)
    again = validate_stock_update('{"sku":"A","warehouse_id":3,"quantity":4}')
    assert again == update


def test_validate_stock_update_bad_types():
    with pytest.raises(ValidationError):
        validate_stock_update({"sku": "A", "warehouse_id": "3", "quantity": 4})


def test_validate_order_messages():
    with pytest.raises(ValidationError, match="invalid channel"):
        validate_order({"sku": "A", "quantity": 1})
    assert validate_order(b'{"sku":"A","channel":"web","quantity":2}') == Order("A", "web", 2)


def test_main_fails_without_database(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DB_HOST", "127.0.0.1")
    monkeypatch.setenv("DB_PORT", "1")
    monkeypatch.setenv("DB_USER", "user")
    monkeypatch.setenv("DB_PASSWORD", "password")
    monkeypatch.setenv("DB_NAME", "inventory")
    assert main([]) == 1