"""
HTTP surface of the agent: status mapping for guard rejections and catalog
failures, confirm/select/cancel round trips. Uses FastAPI TestClient with
dependency overrides; no lifespan, no network.
"""

import sys
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from fastapi.testclient import TestClient

from app.api.deps import get_agent, get_catalog, get_catalog_token
from app.core.config import settings
from app.main import app
from app.schemas.catalog import Product
from fakes import FakeCatalog, FakeLLM, tool_reply
from test_orchestrator import make_orchestrator


@pytest.fixture
def catalog():
    return FakeCatalog([
        Product(id=1, name="iPhone 12", price=799, stock_quantity=5),
        Product(id=2, name="Чехол для iPhone", price=15, stock_quantity=10),
        Product(id=3, name="Чехол для Samsung", price=12, stock_quantity=3),
    ])


@pytest.fixture
def llm():
    return FakeLLM()


@pytest.fixture
def orchestrator(catalog, llm):
    return make_orchestrator(catalog, llm, guard_limit=3)


@pytest.fixture
def client(catalog, orchestrator):
    app.dependency_overrides[get_agent] = lambda: orchestrator
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_catalog_token] = lambda: "token"
    yield TestClient(app)
    app.dependency_overrides.clear()


def command(client, text, session_id="web_1"):
    return client.post("/agent/command", json={"session_id": session_id, "text": text, "shop_id": "shop-1"})


def test_fast_path_over_http(client, catalog):
    print("\n" + "=" * 70)
    print("TEST 1: /agent/command")
    print("=" * 70)

    response = command(client, "установи остаток iPhone 12 до 8")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["operation"] == "quick_stock_update"
    assert catalog.products[1].stock_quantity == 8
    assert response.headers["X-Content-Type-Options"] == "nosniff"
    print("  PASS: 200 with CommandResult body")


def test_clarification_then_select(client, catalog):
    body = command(client, "установи остаток Чехол до 4").json()
    assert body["needs_clarification"] is True
    assert [o["id"] for o in body["options"]] == [2, 3]

    selected = client.post("/agent/select", json={"session_id": "web_1", "product_id": 3, "shop_id": "shop-1"})
    assert selected.status_code == 200
    assert catalog.products[3].stock_quantity == 4
    print("  PASS: options returned, /select applies the choice")


def test_confirm_and_cancel(client, catalog, llm):
    print("\n" + "=" * 70)
    print("TEST 2: /agent/confirm and /agent/cancel")
    print("=" * 70)

    llm.script.append(tool_reply("bulk_delete_all", '{"confirm": false}'))
    body = command(client, "удали все товары").json()
    assert body["needs_confirmation"] is True
    assert len(catalog.products) == 3

    cancelled = client.post("/agent/cancel", json={"session_id": "web_1"})
    assert cancelled.json()["operation"] == "cancelled"

    nothing = client.post("/agent/confirm", json={"session_id": "web_1", "shop_id": "shop-1"})
    assert nothing.status_code == 200
    assert nothing.json()["success"] is False
    assert len(catalog.products) == 3

    llm.script.append(tool_reply("bulk_delete_all", "{}"))
    command(client, "очисти каталог")
    confirmed = client.post("/agent/confirm", json={"session_id": "web_1", "shop_id": "shop-1"})
    assert confirmed.json()["success"] is True
    assert catalog.products == {}
    print("  PASS: cancel drops, confirm runs exactly once")


def test_guard_rejections(client, orchestrator):
    print("\n" + "=" * 70)
    print("TEST 3: 409 / 429")
    print("=" * 70)

    orchestrator.store.try_acquire("web_busy")
    busy = command(client, "установи остаток iPhone 12 до 1", session_id="web_busy")
    assert busy.status_code == 409
    orchestrator.store.release("web_busy")

    for quantity in (1, 2, 3):
        assert command(client, f"установи остаток iPhone 12 до {quantity}").status_code == 200
    limited = command(client, "установи остаток iPhone 12 до 4")
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) > 0
    print("  PASS: busy session 409, over budget 429 with Retry-After")


def test_catalog_failures(client, catalog):
    catalog.fail_next("list_products", status_code=503)
    response = command(client, "покажи товары")
    assert response.status_code == 502
    assert "503" not in response.text

    catalog.fail_next("list_products", status_code=401)
    assert command(client, "покажи товары").status_code == 401

    missing_shop = client.post("/agent/command", json={"session_id": "web_1", "text": "покажи товары"})
    if not settings.SHOP_ID:
        assert missing_shop.status_code == 400
    print("  PASS: catalog outages never leak details")


def test_missing_token(catalog, orchestrator, monkeypatch):
    monkeypatch.setattr(settings, "CATALOG_API_TOKEN", "")
    app.dependency_overrides[get_agent] = lambda: orchestrator
    app.dependency_overrides[get_catalog] = lambda: catalog
    try:
        response = TestClient(app).post(
            "/agent/command", json={"session_id": "web_1", "text": "покажи товары", "shop_id": "shop-1"}
        )
        assert response.status_code == 401

        with_header = TestClient(app).post(
            "/agent/command",
            json={"session_id": "web_1", "text": "установи остаток iPhone 12 до 2", "shop_id": "shop-1"},
            headers={"Authorization": "Bearer owner-token"},
        )
        assert with_header.status_code == 200
    finally:
        app.dependency_overrides.clear()
    print("  PASS: bearer header or configured token required")


def test_reset_and_health(client, orchestrator):
    command(client, "установи остаток Чехол до 4")
    assert orchestrator.store.load("web_1").has_pending

    orchestrator.store.try_acquire("web_1")
    busy = client.delete("/agent/sessions/web_1")
    assert busy.status_code == 409
    assert orchestrator.store.load("web_1").has_pending
    orchestrator.store.release("web_1")

    assert client.delete("/agent/sessions/web_1").json() == {"ok": True}
    assert not orchestrator.store.load("web_1").has_pending

    health = client.get("/health").json()
    assert health["status"] == "ok"
    print("  PASS: session reset, health")
