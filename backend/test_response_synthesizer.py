"""
Owner-facing text: deterministic templates, leak guard, model phrasing fallback.
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from ai.retry_policy import FailureKind, LLMProviderError
from app.agent.response_synthesizer import (
    GENERIC_FAILURE_MESSAGE,
    ResponseSynthesizer,
    build_confirmation_message,
    build_message_from_result,
    looks_leaky,
    provider_failure_message,
    quick_discount_message,
)
from app.schemas.tool_result import CandidateMatch, ErrorCode, ToolCallResult
from fakes import FakeLLM, text_reply

UPDATED = ToolCallResult.ok(
    "product_updated",
    product={"id": 1, "name": "iPhone", "price": 799.2},
    changes={"price": {"old": 999.0, "new": 799.2}, "discount_percentage": {"old": 0, "new": 20}},
)


def test_success_templates():
    print("\n" + "=" * 70)
    print("TEST 1: Success templates")
    print("=" * 70)

    assert build_message_from_result(UPDATED) == "iPhone обновлён: цена: $999 → $799.2, скидка: 0% → 20%."

    sale = ToolCallResult.ok(
        "sale_recorded",
        product={"id": 1, "name": "iPhone", "price": 999},
        sale={"quantity": 2, "previous_stock": 5, "new_stock": 3},
    )
    assert build_message_from_result(sale) == "Зафиксировал продажу: iPhone, 2 шт. Остаток 3."

    listing = ToolCallResult.ok("products_listed", total_count=0, products=[])
    assert build_message_from_result(listing) == "Каталог пуст — добавь первый товар?"

    deleted = ToolCallResult.ok("bulk_delete_all", deleted_count=0)
    assert build_message_from_result(deleted) == "Каталог уже был пустым."

    bulk = ToolCallResult.ok(
        "bulk_update_prices", percentage=15, operation="decrease", operation_text="Скидка",
        operation_symbol="-", discount_type="timer", duration_text="3 дня",
        excluded_product_ids=[4], updated_count=5, products=[],
    )
    assert build_message_from_result(bulk) == "Скидка -15% на 3 дня для 5 товаров (исключено 1)."
    print("  PASS: update, sale, empty list, delete-all, bulk prices")

    assert quick_discount_message(12.5, "Кабель", "6 часов") == "Сделал скидку 12.5% на Кабель на 6 часов."


def test_failure_and_question_templates():
    print("\n" + "=" * 70)
    print("TEST 2: Failure, clarification, confirmation templates")
    print("=" * 70)

    stock = ToolCallResult.fail(
        ErrorCode.INSUFFICIENT_STOCK, "Not enough stock available",
        product_name="Кабель", requested=5, available=2,
    )
    assert build_message_from_result(stock) == "Недостаточно товара Кабель: в наличии 2, нужно 5."

    missing = ToolCallResult.fail(ErrorCode.PRODUCT_NOT_FOUND, "Product not found", search_query="дрон")
    assert "«дрон»" in build_message_from_result(missing)

    expiry = ToolCallResult.fail(
        ErrorCode.VALIDATION_ERROR, "Provide discount_percentage together with discount_expires_at",
        field="discount_expires_at",
    )
    assert build_message_from_result(expiry) == "Срок скидки указывается вместе с процентом скидки."

    api = ToolCallResult.fail(ErrorCode.API_ERROR, "Catalog request failed", status_class="server")
    assert "status" not in build_message_from_result(api)

    clarify = ToolCallResult.clarify("update", "чехол", [
        CandidateMatch(id=2, name="Чехол для iPhone", price=15),
        CandidateMatch(id=3, name="Чехол для Samsung", price=12),
    ])
    assert build_message_from_result(clarify).splitlines() == [
        "Нашёл несколько товаров по запросу «чехол». Какой именно?",
        "1. Чехол для iPhone ($15)",
        "2. Чехол для Samsung ($12)",
    ]

    preview = build_confirmation_message("bulk_price_update", {
        "percentage": 10, "operation": "increase", "affected_count": 2,
        "preview_products": [{"name": "iPhone", "old_price": 999, "new_price": 1098.9}],
        "excluded_product_ids": [], "unmatched_exclusions": ["планшет"],
    })
    assert preview.startswith("⚠️ Наценка +10% для 2 товара.")
    assert "• iPhone: $999 → $1098.9" in preview
    assert "Не нашёл для исключения: планшет." in preview
    assert preview.endswith("Применить?")

    assert provider_failure_message(FailureKind.SERVER) == GENERIC_FAILURE_MESSAGE
    print("  PASS: no internal codes reach the owner")


def test_leak_guard():
    leaky = [
        '{"success": true}',
        "product_id: 12",
        "Вызвал update_product для iPhone",
        "stock_quantity = 5",
        "['iPhone', 'Чехол']: готово",
    ]
    clean = [
        "Сделал скидку 20% на iPhone.",
        "Остаток обновлён: теперь 5 шт.",
        "",
    ]
    for text in leaky:
        assert looks_leaky(text), text
    for text in clean:
        assert not looks_leaky(text), text
    print("  PASS: JSON, key/value pairs and tool names detected")


def test_synthesize_uses_model_when_safe():
    print("\n" + "=" * 70)
    print("TEST 3: Model phrasing")
    print("=" * 70)

    template = build_message_from_result(UPDATED)

    llm = FakeLLM([text_reply("Готово! iPhone теперь со скидкой 20%.")])
    synthesizer = ResponseSynthesizer(llm)
    assert synthesizer.synthesize(UPDATED, [], "Test Shop") == "Готово! iPhone теперь со скидкой 20%."
    assert "Test Shop" in llm.requests[0]["system"]

    for reply in (text_reply("  "), text_reply('{"action": "product_updated"}'), LLMProviderError(FailureKind.TIMEOUT)):
        assert ResponseSynthesizer(FakeLLM([reply])).synthesize(UPDATED, [], "Test Shop") == template

    assert ResponseSynthesizer(FakeLLM(), natural_responses=False).synthesize(UPDATED, [], "Shop") == template
    assert ResponseSynthesizer(FakeLLM(available=False)).synthesize(UPDATED, [], "Shop") == template

    failure = ToolCallResult.fail(ErrorCode.NO_PRODUCTS, "Catalog is empty")
    silent = FakeLLM()
    assert ResponseSynthesizer(silent).synthesize(failure, [], "Shop") == "В каталоге нет товаров для этой операции."
    assert silent.requests == [], "failures never go to the model"
    print("  PASS: empty, leaky and failed phrasing fall back to the template")


def main():
    test_success_templates()
    test_failure_and_question_templates()
    test_leak_guard()
    test_synthesize_uses_model_when_safe()
    print("\n✅ All synthesizer tests passed!")


if __name__ == "__main__":
    main()
