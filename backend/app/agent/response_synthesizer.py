"""
Response Synthesizer — turns tool results into what the owner reads.

1. A deterministic message is built for EVERY result (templates below)
2. For successful results the model may phrase the outcome in its own words
3. The model's text is discarded if it is empty, the call fails, or it looks
   like leaked internals (JSON, key: value on internal fields, tool names)

Failures, clarifications and confirmations always use the deterministic text.
"""
import json
import logging
import re
from typing import Any, Dict, List, Optional

from ai.prompts import build_synthesis_prompt
from ai.retry_policy import FailureKind, LLMProviderError
from ai.tools import TOOL_NAMES
from app.schemas.tool_result import ErrorCode, ToolCallResult
from app.services.duration import plural_ru
from app.services.pricing import format_number, format_usd

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 10
BULK_PREVIEW_LIMIT = 5

# ==============================================================================
# FIXED MESSAGES
# ==============================================================================

DONE_MESSAGE = "Готово."
EMPTY_COMMAND_MESSAGE = "❌ Пустая команда"
AI_UNAVAILABLE_MESSAGE = "❌ AI недоступен. Используйте обычное меню."
STILL_PROCESSING_MESSAGE = "⏳ Подождите, предыдущая команда ещё обрабатывается."
RATE_LIMITED_MESSAGE = "⚠️ Слишком много команд. Подождите {seconds} сек. и попробуйте снова."
PENDING_REMINDER_MESSAGE = (
    "⚠️ Сначала ответьте на предыдущий вопрос.\n\n"
    'Нажмите кнопку ниже или напишите "да" для применения / "нет" для отмены.'
)
CLARIFICATION_REMINDER_MESSAGE = (
    "⚠️ Сначала выберите товар из списка.\n\n"
    'Нажмите кнопку или напишите номер варианта. "нет" — отмена.'
)
CANCELLED_MESSAGE = "Отменено."
SESSION_RESET_MESSAGE = "🔄 Разговор начат заново."
NOTHING_PENDING_MESSAGE = "Нечего подтверждать — операция уже завершена или устарела."
EXPIRED_MESSAGE = "Время на ответ истекло, операция отменена."
DELETE_ALL_CONFIRM_MESSAGE = "⚠️ Точно удалить ВСЕ товары? Это действие нельзя отменить."

PROVIDER_FAILURE_MESSAGES = {
    FailureKind.OVERLOADED: "⏳ Сервис временно перегружен\n\nПовторите через минуту.",
    FailureKind.RATE_LIMITED: "⚠️ Слишком много запросов\n\nПодождите минуту и попробуйте снова.",
    FailureKind.UNAUTHORIZED: "🔐 Проблема с авторизацией\n\nПерезапустите бота командой /start",
    FailureKind.TIMEOUT: "⏱ Превышено время ожидания\n\nПопробуйте упростить запрос или повторите позже.",
    FailureKind.NETWORK: "🔌 Проблема с подключением\n\nПовторите через несколько секунд.",
}
GENERIC_FAILURE_MESSAGE = "❌ Не удалось обработать команду\n\nИспользуйте меню или попробуйте переформулировать."

VALIDATION_MESSAGES = {
    "name": "Название товара должно быть не короче 3 символов.",
    "price": "Цена должна быть больше 0.",
    "stock": "Остаток должен быть целым числом от 0.",
    "stock_quantity": "Остаток должен быть целым числом от 0.",
    "discount_percentage": "Скидка должна быть от 0 до 100%.",
    "discount_expires_at": "Не понял срок скидки. Пример: «на 3 дня» или «6 часов».",
    "percentage": "Процент должен быть от 0.1 до 100.",
    "operation": "Не понял, снизить или поднять цены.",
    "duration": "Не понял срок. Пример: «6 часов» или «3 дня».",
    "discount_type": "Тип скидки: постоянная или с таймером.",
    "quantity": "Количество должно быть больше 0.",
    "products": "Для массового добавления нужно минимум 2 товара.",
    "updates": "Укажи, что изменить: название, цену, остаток или скидку.",
    "product_name": "Укажи название товара.",
    "product_names": "Укажи названия товаров.",
    "keep_product_names": "Укажи, какие товары оставить.",
    "query": "Укажи, что искать.",
}


def provider_failure_message(kind: FailureKind) -> str:
    return PROVIDER_FAILURE_MESSAGES.get(kind, GENERIC_FAILURE_MESSAGE)


def quick_discount_message(percentage: float, product_name: str, duration: Optional[str]) -> str:
    suffix = f" на {duration}" if duration else ""
    return f"Сделал скидку {format_number(percentage)}% на {product_name}{suffix}."


def quick_stock_message(product_name: str, quantity: int) -> str:
    return f"Готово, {product_name}: остаток {quantity}."


def _products_word(count: int) -> str:
    return plural_ru(count, "товар", "товара", "товаров")


# ==============================================================================
# DETERMINISTIC TEMPLATES
# ==============================================================================

def format_product_line(product: Dict[str, Any], index: Optional[int] = None) -> str:
    price_text = format_usd(product.get("price") or 0)
    stock = product.get("stock_quantity") or 0
    stock_text = f" — {stock} шт" if stock > 0 else " — нет в наличии"
    discount = product.get("discount_percentage") or 0
    discount_text = f" (скидка {format_number(discount)}%)" if discount > 0 else ""
    prefix = f"{index + 1}. " if index is not None else ""
    return f"{prefix}{product.get('name')} — {price_text}{discount_text}{stock_text}"


def _preview(products: List[dict], limit: int = PREVIEW_LIMIT) -> str:
    return "\n".join(format_product_line(p, i) for i, p in enumerate(products[:limit]))


def _describe_changes(changes: Dict[str, Dict[str, Any]]) -> List[str]:
    parts = []
    if "name" in changes:
        parts.append(f"имя: {changes['name']['old']} → {changes['name']['new']}")
    if "price" in changes:
        parts.append(f"цена: {format_usd(changes['price']['old'])} → {format_usd(changes['price']['new'])}")
    if "stock_quantity" in changes:
        parts.append(f"остаток: {changes['stock_quantity']['old'] or 0} → {changes['stock_quantity']['new']}")
    if "discount_percentage" in changes:
        old = format_number(changes["discount_percentage"]["old"] or 0)
        new = format_number(changes["discount_percentage"]["new"] or 0)
        parts.append(f"скидка: {old}% → {new}%")
    if "discount_expires_at" in changes:
        parts.append("обновил таймер скидки")
    return parts


def _success_message(data: Dict[str, Any]) -> str:
    action = data.get("action")

    if action == "product_created":
        product = data.get("product")
        if not product:
            return DONE_MESSAGE
        stock = product.get("stock_quantity") or 0
        stock_text = f", {stock} шт" if stock > 0 else ", нет в наличии"
        return f"Готово, {product['name']}: {format_usd(product['price'])}{stock_text}."

    if action == "bulk_products_added":
        sections = []
        successful = data.get("successful") or []
        count = data.get("success_count", len(successful))
        if successful:
            sections.append(f"Добавил {count} {_products_word(count)}:\n{_preview(successful, BULK_PREVIEW_LIMIT)}")
            if len(successful) > BULK_PREVIEW_LIMIT:
                sections.append(f"... и ещё {len(successful) - BULK_PREVIEW_LIMIT}")
        failed_names = [f["name"] for f in (data.get("failed") or []) if f.get("name")]
        if failed_names:
            sections.append(f"Не удалось добавить: {', '.join(failed_names)}")
        return "\n".join(sections) or DONE_MESSAGE

    if action == "product_deleted":
        product = data.get("product")
        return f"Удалил {product['name']}." if product else "Удалил товар."

    if action == "products_listed":
        items = data.get("products") or []
        if not items:
            return "Каталог пуст — добавь первый товар?"
        extra = f"\n... и ещё {len(items) - PREVIEW_LIMIT} {_products_word(len(items) - PREVIEW_LIMIT)}" if len(items) > PREVIEW_LIMIT else ""
        return f"Сейчас в каталоге {len(items)} {_products_word(len(items))}:\n{_preview(items)}{extra}"

    if action == "products_found":
        items = data.get("products") or []
        query = data.get("search_query")
        if not items:
            return f"Не нашёл товаров по запросу «{query}»."
        extra = f"\n... и ещё {len(items) - PREVIEW_LIMIT}" if len(items) > PREVIEW_LIMIT else ""
        return f"Нашёл {len(items)} {_products_word(len(items))} по запросу «{query}»:\n{_preview(items)}{extra}"

    if action == "product_updated":
        parts = _describe_changes(data.get("changes") or {})
        name = (data.get("product") or {}).get("name") or "товар"
        return f"{name} обновлён: {', '.join(parts)}." if parts else f"Обновил {name}."

    if action == "bulk_products_updated":
        lines = []
        for entry in data.get("updated") or []:
            parts = _describe_changes(entry.get("changes") or {})
            name = entry["product"]["name"]
            lines.append(f"• {name}: {', '.join(parts)}" if parts else f"• {name}")
        count = data.get("updated_count", len(lines))
        text = f"Обновил {count} {_products_word(count)}:\n" + "\n".join(lines)
        failed_names = [f["name"] for f in (data.get("failed") or []) if f.get("name")]
        if failed_names:
            text += f"\nНе удалось обновить: {', '.join(failed_names)}"
        return text

    if action == "bulk_delete_all":
        count = data.get("deleted_count") or 0
        return f"Удалил все товары ({count} шт)." if count > 0 else "Каталог уже был пустым."

    if action == "bulk_delete_by_names":
        segments = []
        count = data.get("deleted_count") or 0
        if count > 0 and data.get("deleted_products"):
            segments.append(f"Удалил {count}: {', '.join(data['deleted_products'])}")
        if data.get("not_found"):
            segments.append(f"Не нашёл: {', '.join(data['not_found'])}")
        for entry in data.get("ambiguous") or []:
            segments.append(f"Не удалил «{entry['query']}» — подходят: {', '.join(entry['candidates'])}")
        return "\n".join(segments) or "Не удалось удалить товары."

    if action == "bulk_delete_except":
        count = data.get("deleted_count") or 0
        kept = data.get("kept_products") or []
        return f"Удалил {count} {_products_word(count)}, оставил: {', '.join(kept)}."

    if action == "sale_recorded":
        product, sale = data.get("product"), data.get("sale")
        if not product or not sale:
            return "Продажу зафиксировал."
        return f"Зафиксировал продажу: {product['name']}, {sale['quantity']} шт. Остаток {sale['new_stock']}."

    if action == "product_info_retrieved":
        product = data.get("product")
        if not product:
            return "Не нашёл информацию о товаре."
        stock = product.get("stock_quantity") or 0
        stock_text = f"{stock} шт" if stock > 0 else "нет в наличии"
        return f"{product['name']}: {format_usd(product['price'])} ({stock_text})."

    if action == "bulk_update_prices":
        updated = data.get("updated_count") or 0
        suffix = f" на {data['duration_text']}" if data.get("discount_type") == "timer" and data.get("duration_text") else ""
        excluded_ids = data.get("excluded_product_ids") or []
        excluded = f" (исключено {len(excluded_ids)})" if excluded_ids else ""
        return (
            f"{data.get('operation_text')} {data.get('operation_symbol')}{format_number(data.get('percentage'))}%"
            f"{suffix} для {updated} {_products_word(updated)}{excluded}."
        )

    return DONE_MESSAGE


def _failure_message(result: ToolCallResult) -> str:
    error = result.error
    if error is None:
        return GENERIC_FAILURE_MESSAGE
    details = error.details

    if error.code == ErrorCode.VALIDATION_ERROR:
        if error.field == "discount_expires_at" and error.message.startswith("Provide"):
            return "Срок скидки указывается вместе с процентом скидки."
        if error.message == "No fields to update":
            return VALIDATION_MESSAGES["updates"]
        return VALIDATION_MESSAGES.get(error.field or "", "Не получилось: проверь данные команды.")

    if error.code == ErrorCode.PRODUCT_NOT_FOUND:
        query = details.get("search_query")
        target = f" «{query}»" if query else ""
        return f"Не нашёл товар{target}. Проверь название или посмотри список товаров."

    if error.code == ErrorCode.PRODUCTS_NOT_FOUND:
        lines = []
        if details.get("not_found"):
            lines.append(f"Не нашёл: {', '.join(details['not_found'])}.")
        for entry in details.get("ambiguous") or []:
            lines.append(f"Уточни «{entry['query']}» — подходят: {', '.join(entry['candidates'])}.")
        return "\n".join(lines) or "Не нашёл указанные товары."

    if error.code == ErrorCode.INSUFFICIENT_STOCK:
        return (
            f"Недостаточно товара {details.get('product_name')}: "
            f"в наличии {details.get('available')}, нужно {details.get('requested')}."
        )

    if error.code == ErrorCode.NO_PRODUCTS:
        return "В каталоге нет товаров для этой операции."

    if error.code == ErrorCode.BULK_ADD_FAILED:
        names = [f["name"] for f in details.get("failures") or [] if f.get("name")]
        return f"Не удалось добавить ни одного товара: {', '.join(names)}." if names else "Не удалось добавить товары."

    if error.code == ErrorCode.UNKNOWN_TOOL:
        return "Не понял команду. Попробуй переформулировать."

    return "Сервис каталога не ответил. Попробуй ещё раз чуть позже."


def build_clarification_message(data: Dict[str, Any]) -> str:
    query = data.get("search_query")
    lines = [f"Нашёл несколько товаров по запросу «{query}». Какой именно?"]
    for idx, match in enumerate(data.get("matches") or []):
        lines.append(f"{idx + 1}. {match['name']} ({format_usd(match['price'])})")
    return "\n".join(lines)


def build_confirmation_message(kind: str, data: Dict[str, Any]) -> str:
    if kind == "bulk_delete_all":
        return DELETE_ALL_CONFIRM_MESSAGE

    decrease = data.get("operation") == "decrease"
    label = "Скидка" if decrease else "Наценка"
    symbol = "-" if decrease else "+"
    count = data.get("affected_count") or 0
    duration = f" на {data['duration_text']}" if data.get("duration_text") else ""
    lines = [f"⚠️ {label} {symbol}{format_number(data.get('percentage'))}%{duration} для {count} {_products_word(count)}."]

    preview = data.get("preview_products") or []
    if preview:
        lines.append("")
        lines.append("Например:")
        for item in preview:
            lines.append(f"• {item['name']}: {format_usd(item['old_price'])} → {format_usd(item['new_price'])}")

    excluded = data.get("excluded_product_ids") or []
    if excluded:
        lines.append(f"Исключено: {len(excluded)} {_products_word(len(excluded))}.")
    if data.get("unmatched_exclusions"):
        lines.append(f"Не нашёл для исключения: {', '.join(data['unmatched_exclusions'])}.")

    lines.append("")
    lines.append("Применить?")
    return "\n".join(lines)


def build_message_from_result(result: ToolCallResult) -> str:
    """Deterministic user-facing text for any ToolCallResult."""
    if result.message:
        return result.message
    if result.needs_clarification:
        return build_clarification_message(result.data or {})
    if result.success:
        return _success_message(result.data or {}) if result.data else DONE_MESSAGE
    return _failure_message(result)


# ==============================================================================
# LEAK GUARD
# ==============================================================================

INTERNAL_FIELDS = (
    "product_id", "product_name", "stock_quantity", "discount_percentage", "discount_expires_at",
    "original_price", "success", "needs_clarification", "needs_confirmation", "action", "error",
    "code", "tool_call_id", "tool_calls", "arguments", "updates",
)

_JSON_SHAPE = re.compile(r"[{\[]\s*\"?[A-Za-z_]+\"?\s*:")
_INTERNAL_KEY_VALUE = re.compile(
    r"[\"']?\b(?:" + "|".join(INTERNAL_FIELDS) + r")\b[\"']?\s*[:=]", re.IGNORECASE
)
_BRACKETED_PAYLOAD = re.compile(r"[\[{][^\]}]*[\"'][^\]}]*[\"']\s*[,:][^\]}]*[\]}]")
_TOOL_NAME = re.compile(r"\b(?:" + "|".join(sorted(TOOL_NAMES)) + r")\b")


def looks_leaky(text: str) -> bool:
    """True if text shows JSON, internal key/value pairs or tool names."""
    if not text:
        return False
    return bool(
        _JSON_SHAPE.search(text)
        or _INTERNAL_KEY_VALUE.search(text)
        or _BRACKETED_PAYLOAD.search(text)
        or _TOOL_NAME.search(text)
    )


# ==============================================================================
# SYNTHESIZER
# ==============================================================================

def tool_result_content(result: ToolCallResult) -> str:
    return json.dumps(result.to_tool_message(), ensure_ascii=False, default=str)


class ResponseSynthesizer:
    """Deterministic text first; model phrasing for successful results when enabled."""

    def __init__(self, llm: Any = None, natural_responses: bool = True):
        self.llm = llm
        self.natural_responses = natural_responses

    def synthesize(self, result: ToolCallResult, exchange: List[dict], shop_name: str) -> str:
        """
        Args:
            result: Executor outcome
            exchange: Messages for this turn ending with the tool-result message
            shop_name: Used in the phrasing prompt

        Returns:
            Text to show the owner
        """
        fallback = build_message_from_result(result)
        if not result.success or result.needs_clarification or result.needs_confirmation:
            return fallback
        if not self.natural_responses or self.llm is None or not self.llm.is_available():
            return fallback

        try:
            response = self.llm.chat(build_synthesis_prompt(shop_name), exchange, tools=None)
        except LLMProviderError as e:
            logger.warning(f"[Synthesizer] Phrasing call failed ({e.kind.value}), using template")
            return fallback

        text = (response.content or "").strip()
        if not text:
            return fallback
        if looks_leaky(text):
            logger.warning("[Synthesizer] Model reply looked like internal data, using template")
            return fallback
        return text
