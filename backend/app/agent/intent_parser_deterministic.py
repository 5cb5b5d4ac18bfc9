"""
Fast-Path Intent Detectors - Deterministic, no LLM round-trip

Two high-frequency, low-ambiguity commands skip the model entirely:
1. Single-product discount: "скидка 20% на iPhone", "сделай на него скидку 15% на 3 дня"
2. Stock quantity:          "установи остаток Чехол до 50", "остаток Чехол 50 шт"

Both detectors are pure functions of (command, catalog snapshot, AiContext).
Anything ambiguous returns None and the command goes to the model:
- "all products" wording, several percentages, several products
- no explicit product mention and no usable context
- candidates that are only keywords or have no letters

The discount detector never falls back to "the only product in the catalog".
"""
import re
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from app.schemas.catalog import Product
from app.schemas.session import AiContext
from app.services.duration import DURATION_IN_TEXT, find_duration_phrase
from app.services.product_resolver import (
    LOOSE_THRESHOLD,
    find_mentioned_products,
    normalize_product_input,
    resolve_product,
)

logger = logging.getLogger(__name__)

MAX_STOCK_QUANTITY = 1_000_000


@dataclass(frozen=True)
class StockIntent:
    product_candidate: str
    quantity: int


@dataclass(frozen=True)
class DiscountIntent:
    product: Product
    percentage: float
    duration: Optional[str] = None


@dataclass(frozen=True)
class IntentError:
    """Detected intent with an invalid value; answered without the model."""
    message: str
    value: Optional[float] = None


Intent = Union[StockIntent, DiscountIntent, IntentError]


# ==============================================================================
# STOCK DETECTOR
# ==============================================================================

STOCK_KEYWORDS = ["сток", "наличие", "остаток", "stock", "quantity", "qty", "qnty"]
STOCK_ACTION_KEYWORDS = [
    "обнови", "обновить", "выстави", "выставить", "поставь", "поставить",
    "установи", "установить", "измени", "изменить", "set", "update", "change",
]
STOCK_INVALID_TARGET_KEYWORDS = [
    "все", "всё", "каждый", "каждая", "каждому", "каждой", "каждые", "всем", "all", "every",
]
# Price/discount/rename wording belongs to other intents ("поставь скидку 20 на iPhone",
# "измени название iPhone 12 на iPhone 13")
STOCK_CONFLICT_PATTERN = re.compile(
    r"(скид|discount|%|цен|price|наценк|назван|имя|переимен|rename|name)", re.IGNORECASE
)

_ACTION = r"(?:обнови(?:ть)?|выстави(?:ть)?|поставь|поставить|установи(?:ть)?|измени(?:ть)?|set|update|change)"
_STOCK = r"(?:сток|наличие|остаток|stock|quantity|qty|qnty)"
_UNITS = r"(?:шт|штук|pcs|pieces|ед|единиц)"

# "50 шт для Чехол": only action/stock words may precede the quantity
QUANTITY_FIRST_PATTERN = re.compile(
    rf"(?P<quantity>\d+)\s*{_UNITS}?\s*(?:для|по|на)\s+(?P<product>.+)", re.IGNORECASE
)

STOCK_UPDATE_PATTERNS = [
    re.compile(rf"{_ACTION}\s+{_STOCK}\s+(?P<product>.+?)\s*(?:до|на|=)\s*(?P<quantity>\d+)", re.IGNORECASE),
    re.compile(rf"{_ACTION}\s+(?P<product>.+?)\s*{_STOCK}\s*(?:до|на|=)\s*(?P<quantity>\d+)", re.IGNORECASE),
    re.compile(rf"{_STOCK}\s+(?P<product>.+?)\s*(?:до|на|=)\s*(?P<quantity>\d+)", re.IGNORECASE),
    re.compile(rf"(?P<product>.+?)\s*{_STOCK}\s*(?:до|на|=)\s*(?P<quantity>\d+)", re.IGNORECASE),
    QUANTITY_FIRST_PATTERN,
    re.compile(rf"{_STOCK}\s+(?P<quantity>\d+)\s*{_UNITS}?\s*(?:для|у|по)?\s*(?P<product>.+)", re.IGNORECASE),
    re.compile(rf"{_STOCK}\s+(?P<product>.+?)\s+(?P<quantity>\d+)\s*{_UNITS}?\s*$", re.IGNORECASE),
]

_CANDIDATE_FILLERS = re.compile(
    r"\b(для|по|на|шт|штук|pcs|pieces|ед|единиц|товара|товар|количество|quantity|qty|qnty|stock|наличие|остаток)\b",
    re.IGNORECASE,
)


def clean_product_candidate(raw: Optional[str]) -> str:
    """Strip quotes and filler tokens from a captured product name."""
    if not raw or not isinstance(raw, str):
        return ""
    cleaned = re.sub(r"[\"'«»]", "", raw)
    cleaned = _CANDIDATE_FILLERS.sub(" ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _mentions_invalid_target(candidate_lower: str) -> bool:
    words = set(re.findall(r"\w+", candidate_lower))
    return any(keyword in words for keyword in STOCK_INVALID_TARGET_KEYWORDS)


def _only_stock_words(text: str) -> bool:
    words = re.findall(r"\w+", text.lower())
    return all(w in STOCK_KEYWORDS or w in STOCK_ACTION_KEYWORDS for w in words)


def detect_stock_update_intent(command: str) -> Optional[StockIntent]:
    """
    Extract {product_candidate, quantity} from a single-product stock command.

    The candidate is a raw name; the executor resolves it against the catalog.
    """
    if not command:
        return None

    normalized = command.lower()
    has_stock_keyword = any(keyword in normalized for keyword in STOCK_KEYWORDS)
    has_action_keyword = any(keyword in normalized for keyword in STOCK_ACTION_KEYWORDS)
    if not has_stock_keyword and not has_action_keyword:
        return None
    if STOCK_CONFLICT_PATTERN.search(normalized):
        return None

    for pattern in STOCK_UPDATE_PATTERNS:
        match = pattern.search(command)
        if not match:
            continue
        if pattern is QUANTITY_FIRST_PATTERN and not _only_stock_words(command[:match.start()]):
            continue

        quantity = int(match.group("quantity"))
        if quantity < 0 or quantity > MAX_STOCK_QUANTITY:
            continue

        candidate = clean_product_candidate(match.group("product"))
        if not candidate:
            continue

        candidate_lower = candidate.lower()
        if _mentions_invalid_target(candidate_lower):
            continue

        # Multiple products mentioned - defer to the model
        if " и " in f" {candidate_lower} " or " and " in f" {candidate_lower} " or "," in candidate:
            continue

        if not re.search(r"[a-zа-яё]", candidate_lower):
            continue

        tokens = candidate_lower.split()
        if not any(t not in STOCK_KEYWORDS and t not in STOCK_ACTION_KEYWORDS for t in tokens):
            continue

        logger.info(f"[FastPath] Stock intent: '{candidate}' -> {quantity}")
        return StockIntent(product_candidate=candidate, quantity=quantity)

    return None


# ==============================================================================
# DISCOUNT DETECTOR
# ==============================================================================

DISCOUNT_TRIGGER = re.compile(r"(скид|discount|%)", re.IGNORECASE)
PERCENT_PATTERN = re.compile(r"(-?\d+(?:[.,]\d+)?)\s*%")
MENTIONS_ALL = re.compile(r"\b(всем|на все|на всё|весь|по всем|по каталогу|all|every|each|каталог\w*)\b", re.IGNORECASE)

# Words that may surround a pronoun reference without naming a product
_DISCOUNT_FILLER_WORDS = {
    "скидка", "скидку", "скидки", "скидкой", "скидок", "discount", "сделай", "сделать",
    "поставь", "поставить", "дай", "дать", "установи", "добавь", "примени", "make", "set",
    "apply", "give", "add", "на", "в", "для", "с", "со", "него", "нее", "неё", "его", "ее",
    "её", "это", "этот", "эту", "эта", "этого", "тот", "ту", "him", "her", "it", "this",
    "that", "a", "of", "to", "процентов", "процента", "процент", "percent", "пожалуйста",
    "please", "ещё", "еще", "тоже", "также", "и",
}

DISCOUNT_PERCENT_TOO_LOW = "Скидка должна быть больше 0%. Укажи корректное значение."
DISCOUNT_PERCENT_TOO_HIGH = "Скидка не может быть больше 100%. Сколько поставить?"


def _names_something_else(command: str) -> bool:
    """True if the command contains words beyond discount wording and pronouns."""
    residual = PERCENT_PATTERN.sub(" ", command)
    residual = DURATION_IN_TEXT.sub(" ", residual)
    words = normalize_product_input(residual).split()
    return any(
        w not in _DISCOUNT_FILLER_WORDS and re.search(r"[a-zа-я]", w)
        for w in words
    )


def _choose_by_explicit_mention(command: str, products: Sequence[Product]) -> Optional[Product]:
    mentioned = find_mentioned_products(command, products)
    if not mentioned:
        return None
    longest = mentioned[0]
    longest_name = normalize_product_input(longest.name)
    # "iPhone 12" also mentions "iPhone"; two unrelated names are ambiguous
    for other in mentioned[1:]:
        if normalize_product_input(other.name) not in longest_name:
            return None
        if normalize_product_input(other.name) == longest_name:
            return None
    return longest


def _choose_from_context(ai_context: Optional[AiContext], products: Sequence[Product]) -> Optional[Product]:
    if ai_context is None or not ai_context.last_product_name:
        return None
    resolution = resolve_product(ai_context.last_product_name, products, min_confidence=LOOSE_THRESHOLD)
    return resolution.product


def detect_discount_intent(
    command: str,
    products: Sequence[Product],
    ai_context: Optional[AiContext] = None,
) -> Optional[Union[DiscountIntent, IntentError]]:
    """Single-product discount with an explicit percentage."""
    if not command or not DISCOUNT_TRIGGER.search(command):
        return None

    percents: List[str] = PERCENT_PATTERN.findall(command)
    if not percents:
        return None
    if len(percents) > 1:
        return None

    percentage = float(percents[0].replace(",", "."))
    if percentage <= 0:
        return IntentError(message=DISCOUNT_PERCENT_TOO_LOW, value=percentage)
    if percentage > 100:
        return IntentError(message=DISCOUNT_PERCENT_TOO_HIGH, value=percentage)

    if MENTIONS_ALL.search(command.lower()):
        return None

    product = _choose_by_explicit_mention(command, products)
    if product is None:
        if _names_something_else(command):
            return None
        product = _choose_from_context(ai_context, products)

    if product is None:
        return None

    duration = find_duration_phrase(command)
    logger.info(f"[FastPath] Discount intent: {percentage}% on '{product.name}' (duration={duration})")
    return DiscountIntent(product=product, percentage=percentage, duration=duration)


def detect_fast_path(
    command: str,
    products: Sequence[Product],
    ai_context: Optional[AiContext] = None,
) -> Optional[Intent]:
    """Discount first (it carries a %), then stock."""
    discount = detect_discount_intent(command, products, ai_context)
    if discount is not None:
        return discount
    return detect_stock_update_intent(command)
