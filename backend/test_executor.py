"""
Tool executor checks against an in-memory catalog: update planning, every
handler family, confirmation gating and catalog failures.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from ai.tools import ProductUpdates
from app.agent.executor import (
    PLACEHOLDER_PRICE,
    ToolExecutor,
    ToolValidationError,
    pending_from_preview,
    plan_product_update,
)
from app.schemas.catalog import Product
from app.schemas.session import PendingKind
from app.schemas.tool_result import ErrorCode
from app.services.duration import MS_PER_DAY
from fakes import FakeCatalog

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_catalog():
    return FakeCatalog([
        Product(id=1, name="iPhone", price=999, stock_quantity=5),
        Product(id=2, name="Чехол для iPhone", price=15, stock_quantity=10),
        Product(id=3, name="Чехол для Samsung", price=12, stock_quantity=0),
        Product(
            id=4, name="Кабель USB", price=8.0, stock_quantity=20,
            discount_percentage=20, original_price=10.0,
            discount_expires_at=NOW + timedelta(days=1),
        ),
    ])


def make_executor(catalog):
    return ToolExecutor(catalog=catalog, clock=lambda: NOW)


# ==============================================================================
# UPDATE PLANNING
# ==============================================================================

def test_plan_discount_rules():
    print("\n" + "=" * 70)
    print("TEST 1: Price and discount planning")
    print("=" * 70)

    catalog = make_catalog()
    iphone = catalog.products[1]
    cable = catalog.products[4]

    plan = plan_product_update(iphone, ProductUpdates(discount_percentage=20), NOW)
    assert plan.payload["price"] == 799.2
    assert plan.payload["original_price"] == 999
    assert plan.payload["discount_expires_at"] is None
    assert plan.changes["price"] == {"old": 999.0, "new": 799.2}
    print("  PASS: discount from current price")

    plan = plan_product_update(iphone, ProductUpdates(discount_percentage=10, discount_expires_at="6 часов"), NOW)
    assert plan.payload["discount_expires_at"] == (NOW + timedelta(hours=6)).isoformat()
    print("  PASS: discount with timer")

    plan = plan_product_update(cable, ProductUpdates(discount_percentage=10), NOW)
    assert plan.payload["price"] == 9.0, "base is the stored original price"
    assert plan.payload["original_price"] == 10.0

    plan = plan_product_update(cable, ProductUpdates(discount_percentage=0), NOW)
    assert plan.payload["price"] == 10.0
    assert plan.payload["original_price"] is None
    assert plan.payload["discount_expires_at"] is None
    assert plan.changes["discount_percentage"] == {"old": 20, "new": 0}
    print("  PASS: discount 0 restores the original price")

    plan = plan_product_update(cable, ProductUpdates(price=9.5), NOW)
    assert plan.payload["price"] == 9.5
    assert plan.payload["discount_percentage"] == 0
    assert "discount_expires_at" in plan.changes
    print("  PASS: plain price change clears an active discount")


def test_plan_rejects_bad_combinations():
    iphone = make_catalog().products[1]
    with pytest.raises(ToolValidationError) as excinfo:
        plan_product_update(iphone, ProductUpdates(discount_expires_at="3 дня"), NOW)
    assert excinfo.value.field == "discount_expires_at"

    with pytest.raises(ToolValidationError):
        plan_product_update(iphone, ProductUpdates(discount_percentage=150), NOW)
    with pytest.raises(ToolValidationError):
        plan_product_update(iphone, ProductUpdates(price=-1), NOW)
    with pytest.raises(ToolValidationError):
        plan_product_update(iphone, ProductUpdates(stock_quantity=-3), NOW)
    with pytest.raises(ToolValidationError):
        plan_product_update(iphone, ProductUpdates(discount_percentage=10, discount_expires_at="когда-нибудь"), NOW)
    print("  PASS: invalid requests never reach the catalog")


# ==============================================================================
# HANDLERS
# ==============================================================================

def test_update_product():
    print("\n" + "=" * 70)
    print("TEST 2: update_product")
    print("=" * 70)

    catalog = make_catalog()
    executor = make_executor(catalog)

    result = executor.execute("update_product", {"product_name": "iphone", "updates": {"price": 1099}}, catalog.context())
    assert result.success and result.action == "product_updated"
    assert catalog.products[1].price == 1099
    print("  PASS: exact name resolved and updated")

    result = executor.execute("update_product", {"product_name": "чехол", "updates": {"price": 20}}, catalog.context())
    assert result.needs_clarification
    assert [m.id for m in result.matches] == [2, 3]
    print("  PASS: ambiguous name asks for clarification")

    result = executor.execute(
        "update_product", {"product_name": "чехол", "updates": {"price": 20}}, catalog.context(clarified_product_id=3)
    )
    assert result.success
    assert catalog.products[3].price == 20
    print("  PASS: clarified id wins")

    result = executor.execute("update_product", {"product_name": "чехол", "updates": {}}, catalog.context())
    assert not result.success and result.error.code == ErrorCode.VALIDATION_ERROR
    assert not result.needs_clarification, "empty updates rejected before resolution"

    result = executor.execute("update_product", {"product_name": "ноутбук", "updates": {"price": 5}}, catalog.context())
    assert result.error.code == ErrorCode.PRODUCT_NOT_FOUND
    assert result.error.details["search_query"] == "ноутбук"
    print("  PASS: validation and not-found")


def test_add_products():
    catalog = make_catalog()
    executor = make_executor(catalog)

    result = executor.execute("add_product", {"name": "Зарядка", "stock": 4}, catalog.context())
    assert result.action == "product_created"
    assert result.data["product"]["price"] == PLACEHOLDER_PRICE
    assert result.data["product"]["stock_quantity"] == 4
    assert catalog.calls[-1][1]["shop_id"] == "shop-1"

    result = executor.execute("add_product", {"name": "ab", "price": 5}, catalog.context())
    assert result.error.code == ErrorCode.VALIDATION_ERROR and result.error.field == "name"

    result = executor.execute("bulk_add_products", {"products": [{"name": "Наушники", "price": 30}]}, catalog.context())
    assert result.error.code == ErrorCode.VALIDATION_ERROR

    result = executor.execute(
        "bulk_add_products",
        {"products": [{"name": "Наушники", "price": 30}, {"name": "x", "price": 1}]},
        catalog.context(),
    )
    assert result.action == "bulk_products_added"
    assert result.data["success_count"] == 1 and result.data["fail_count"] == 1

    result = executor.execute(
        "bulk_add_products", {"products": [{"name": "x"}, {"name": "y"}]}, catalog.context()
    )
    assert result.error.code == ErrorCode.BULK_ADD_FAILED
    print("  PASS: placeholder price, name check, partial bulk add")


def test_record_sale():
    catalog = make_catalog()
    executor = make_executor(catalog)

    result = executor.execute("record_sale", {"product_name": "iphone", "quantity": 2}, catalog.context())
    assert result.action == "sale_recorded"
    assert result.data["sale"] == {"quantity": 2, "previous_stock": 5, "new_stock": 3}
    assert catalog.products[1].stock_quantity == 3

    result = executor.execute("record_sale", {"product_name": "samsung", "quantity": 1}, catalog.context())
    assert result.error.code == ErrorCode.INSUFFICIENT_STOCK
    assert result.error.details["available"] == 0
    assert result.error.details["product_name"] == "Чехол для Samsung"

    result = executor.execute("record_sale", {"product_name": "iphone", "quantity": 0}, catalog.context())
    assert result.error.field == "quantity"
    print("  PASS: stock decremented, shortage reported")


def test_deletes():
    print("\n" + "=" * 70)
    print("TEST 3: Deletes")
    print("=" * 70)

    catalog = make_catalog()
    executor = make_executor(catalog)

    result = executor.execute("bulk_delete_all", {}, catalog.context())
    assert result.needs_confirmation
    assert result.data["kind"] == PendingKind.BULK_DELETE_ALL.value
    assert result.data["affected_count"] == 4
    assert catalog.calls == [], "no deletion before confirm"
    print("  PASS: delete-all previews without confirm")

    fresh = make_catalog()
    result = make_executor(fresh).execute("bulk_delete_all", {"confirm": True}, fresh.context())
    assert result.data == {"action": "bulk_delete_all", "deleted_count": 4}
    assert fresh.products == {}
    print("  PASS: confirm=true removes everything")

    result = executor.execute("bulk_delete_except", {"keep_product_names": ["iphone", "планшет"]}, catalog.context())
    assert result.error.code == ErrorCode.PRODUCTS_NOT_FOUND
    assert result.error.details["not_found"] == ["планшет"]
    assert catalog.calls == []
    print("  PASS: unmatched keep-name aborts")

    result = executor.execute("bulk_delete_by_names", {"product_names": ["кабель", "ноутбук"]}, catalog.context())
    assert result.data["deleted_products"] == ["Кабель USB"]
    assert result.data["not_found"] == ["ноутбук"]

    result = executor.execute("bulk_delete_except", {"keep_product_names": ["iphone"]}, catalog.context())
    assert result.action == "bulk_delete_except"
    assert sorted(catalog.products) == [1, 2]

    result = executor.execute("delete_product", {"product_name": "чехол для iphone"}, catalog.context())
    assert result.action == "product_deleted"
    assert sorted(catalog.products) == [1]

    result = executor.execute("bulk_delete_all", {"confirm": True}, catalog.context())
    assert result.data == {"action": "bulk_delete_all", "deleted_count": 1}
    assert catalog.products == {}
    print("  PASS: by names, except, single, confirmed delete-all")


def test_read_tools():
    catalog = make_catalog()
    executor = make_executor(catalog)

    listing = executor.execute("list_products", {}, catalog.context())
    assert listing.data["total_count"] == 4

    found = executor.execute("search_product", {"query": "чехол"}, catalog.context())
    assert found.data["total_found"] == 2

    empty = executor.execute("search_product", {"query": "дрон"}, catalog.context())
    assert empty.success and empty.data["products"] == []

    info = executor.execute("get_product_info", {"product_name": "кабель"}, catalog.context())
    assert info.data["product"]["original_price"] == 10.0
    print("  PASS: list, search, info")


def test_bulk_price_preview_and_apply():
    print("\n" + "=" * 70)
    print("TEST 4: Bulk price update")
    print("=" * 70)

    catalog = make_catalog()
    executor = make_executor(catalog)

    preview = executor.execute(
        "bulk_update_prices",
        {"percentage": 10, "operation": "decrease", "duration": "3 дня", "excluded_products": ["чехол"]},
        catalog.context(),
    )
    assert preview.needs_confirmation
    data = preview.data
    assert data["discount_type"] == "timer"
    assert data["duration_ms"] == 3 * MS_PER_DAY
    assert data["duration_text"] == "3 дня"
    assert sorted(data["excluded_product_ids"]) == [2, 3]
    assert data["affected_count"] == 2
    assert data["preview_products"][0] == {"id": 1, "name": "iPhone", "old_price": 999.0, "new_price": 899.1}
    assert catalog.calls == []
    print("  PASS: preview only, exclusions resolved")

    pending = pending_from_preview(preview, "скидка 10% на всё кроме чехлов на 3 дня")
    assert pending.kind == PendingKind.BULK_PRICE_UPDATE
    applied = executor.execute_bulk_price_update(pending, catalog.context())
    assert applied.action == "bulk_update_prices"
    assert applied.data["updated_count"] == 2
    assert applied.data["operation_symbol"] == "-"
    assert catalog.products[1].price == 899.1
    assert catalog.products[2].price == 15
    print("  PASS: confirmed change applied through the catalog")

    increase = executor.execute(
        "bulk_update_prices", {"percentage": 5, "operation": "increase", "duration": "3 дня"}, catalog.context()
    )
    assert increase.data["discount_type"] == "permanent"
    assert increase.data["duration_ms"] is None

    for bad in (
        {"percentage": 0, "operation": "decrease"},
        {"percentage": 10, "operation": "double"},
        {"percentage": 10, "operation": "decrease", "duration": "потом"},
        {"percentage": 10, "operation": "decrease", "discount_type": "timer"},
    ):
        assert executor.execute("bulk_update_prices", bad, catalog.context()).error.code == ErrorCode.VALIDATION_ERROR
    print("  PASS: increases are permanent, bad input rejected")


def test_dispatch_failures():
    catalog = make_catalog()
    executor = make_executor(catalog)

    result = executor.execute("drop_database", {}, catalog.context())
    assert result.error.code == ErrorCode.UNKNOWN_TOOL

    result = executor.execute("record_sale", {"product_name": "iphone", "quantity": "много"}, catalog.context())
    assert result.error.code == ErrorCode.VALIDATION_ERROR
    assert result.error.field == "quantity"

    catalog.fail_next("update_product", status_code=401)
    result = executor.execute("update_product", {"product_name": "iphone", "updates": {"price": 1}}, catalog.context())
    assert result.error.code == ErrorCode.API_ERROR
    assert result.error.details["status_class"] == "auth"

    preview = executor.execute("bulk_update_prices", {"percentage": 10, "operation": "increase"}, catalog.context())
    catalog.fail_next("apply_bulk_discount")
    result = executor.execute_bulk_price_update(pending_from_preview(preview, ""), catalog.context())
    assert result.error.code == ErrorCode.API_ERROR
    print("  PASS: unknown tool, bad arguments, catalog errors as results")


def main():
    test_plan_discount_rules()
    test_plan_rejects_bad_combinations()
    test_update_product()
    test_add_products()
    test_record_sale()
    test_deletes()
    test_read_tools()
    test_bulk_price_preview_and_apply()
    test_dispatch_failures()
    print("\n✅ All executor tests passed!")


if __name__ == "__main__":
    main()
