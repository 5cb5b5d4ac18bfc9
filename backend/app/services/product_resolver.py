"""
PRODUCT RESOLUTION SERVICE

Purpose: Map free text ("айфон 12", "чехол") to rows of the live catalog snapshot
- Handles case, punctuation, filler words and small typos
- Never picks one of several plausible rows on its own

Architecture:
1. Normalize user input (lowercase, strip punctuation, remove fillers)
2. Score every product: exact, containment, word overlap, typo similarity
3. Keep matches above threshold, ranked by score
4. Decide: not found / resolved / needs clarification

Thresholds:
- STRICT_THRESHOLD (0.6): direct operation targets (update, delete, sale)
- LOOSE_THRESHOLD (0.4): exclusion lists, search, context lookups
"""
import re
import logging
from dataclasses import dataclass, field
from difflib import SequenceMatcher
from typing import List, Optional, Sequence

from app.schemas.catalog import Product
from app.schemas.tool_result import CandidateMatch

logger = logging.getLogger(__name__)

STRICT_THRESHOLD = 0.6
LOOSE_THRESHOLD = 0.4
MAX_CANDIDATES = 5
# Character similarity only counts for part of a word-level match
TYPO_WEIGHT = 0.75

# Common filler words to remove during normalization
NOISE_WORDS = {
    "товар", "товара", "товару", "товаров", "шт", "штук", "штуки",
    "пожалуйста", "плиз", "на", "для", "по", "the", "a", "an",
    "please", "item", "product", "pcs",
}


def normalize_product_input(user_text: str) -> str:
    """
    Normalize user input for product matching

    Examples:
        "Чехол для iPhone!" -> "чехол iphone"
        "iPhone-15, пожалуйста" -> "iphone 15"
        "Ёлка" -> "елка"
    """
    if not user_text:
        return ""

    text = user_text.lower().strip().replace("ё", "е")

    # Remove punctuation except digits and letters
    text = re.sub(r"[^\w\s]", " ", text)
    text = text.replace("_", " ")

    words = text.split()
    cleaned = [w for w in words if w not in NOISE_WORDS]

    return " ".join(cleaned)


def calculate_match_confidence(user_input: str, product_name: str) -> float:
    """
    Calculate confidence score for product match

    Returns: 0.0 to 1.0
    - 1.0 = exact match
    - 0.9+ = one contains the other ("iphone" vs "iphone 12")
    - 0.7+ = shared words
    - below = character similarity only (typos)
    """
    user_norm = normalize_product_input(user_input)
    product_norm = normalize_product_input(product_name)

    if not user_norm or not product_norm:
        return 0.0

    if user_norm == product_norm:
        return 1.0

    if user_norm in product_norm:
        return 0.95
    if product_norm in user_norm:
        return 0.92

    user_words = set(user_norm.split())
    product_words = set(product_norm.split())

    intersection = user_words & product_words
    union = user_words | product_words
    jaccard = len(intersection) / len(union) if union else 0.0

    if intersection:
        return min(0.7 + (jaccard * 0.2), 0.95)

    # No shared words: fall back to character similarity ("айфн" vs "айфон")
    ratio = SequenceMatcher(None, user_norm, product_norm).ratio()
    return max(jaccard * 0.6, ratio * TYPO_WEIGHT)


@dataclass
class ProductMatch:
    product: Product
    score: float

    def candidate(self) -> CandidateMatch:
        return CandidateMatch(id=self.product.id, name=self.product.name, price=self.product.price)


@dataclass
class Resolution:
    """Outcome of resolving one free-text reference."""
    query: str
    product: Optional[Product] = None
    matches: List[ProductMatch] = field(default_factory=list)

    @property
    def is_resolved(self) -> bool:
        return self.product is not None

    @property
    def is_ambiguous(self) -> bool:
        return self.product is None and len(self.matches) > 1

    @property
    def is_not_found(self) -> bool:
        return self.product is None and not self.matches

    def candidates(self) -> List[CandidateMatch]:
        return [m.candidate() for m in self.matches]


def score_products(
    user_input: str,
    products: Sequence[Product],
    min_confidence: float = STRICT_THRESHOLD,
) -> List[ProductMatch]:
    """All products scoring at or above min_confidence, best first (catalog order on ties)."""
    if not user_input or not user_input.strip():
        return []

    matches = []
    for product in products:
        confidence = calculate_match_confidence(user_input, product.name)
        if confidence >= min_confidence:
            matches.append(ProductMatch(product=product, score=confidence))

    # sort is stable: equal scores keep catalog order
    matches.sort(key=lambda m: m.score, reverse=True)
    return matches


def resolve_product(
    user_input: str,
    products: Sequence[Product],
    min_confidence: float = STRICT_THRESHOLD,
    max_results: int = MAX_CANDIDATES,
) -> Resolution:
    """
    Resolve user input to exactly one product or a clarification list.

    - no match above threshold -> not found
    - one match -> resolved
    - one exact (1.0) match among several -> resolved to the exact one
    - otherwise -> ambiguous, top max_results candidates
    """
    matches = score_products(user_input, products, min_confidence)

    if not matches:
        logger.info(f"[ProductResolver] No match above {min_confidence} for '{user_input}'")
        return Resolution(query=user_input)

    if len(matches) == 1:
        match = matches[0]
        logger.info(
            f"[ProductResolver] Matched '{user_input}' -> '{match.product.name}' "
            f"(product_id={match.product.id}, confidence: {match.score:.2f})"
        )
        return Resolution(query=user_input, product=match.product, matches=matches)

    exact = [m for m in matches if m.score >= 1.0]
    if len(exact) == 1:
        logger.info(
            f"[ProductResolver] Exact match '{user_input}' -> '{exact[0].product.name}' "
            f"among {len(matches)} candidates"
        )
        return Resolution(query=user_input, product=exact[0].product, matches=exact)

    logger.warning(
        f"[ProductResolver] AMBIGUOUS MATCH for '{user_input}': "
        + ", ".join(f"'{m.product.name}' ({m.score:.2f})" for m in matches[:max_results])
    )
    return Resolution(query=user_input, matches=matches[:max_results])


def search_products(query: str, products: Sequence[Product]) -> List[Product]:
    """Loose search used by the search tool: substring hits first, then fuzzy hits."""
    needle = normalize_product_input(query)
    if not needle:
        return []

    direct = [p for p in products if needle in normalize_product_input(p.name)]
    direct_ids = {p.id for p in direct}
    fuzzy = [
        m.product for m in score_products(query, products, LOOSE_THRESHOLD)
        if m.product.id not in direct_ids
    ]
    return direct + fuzzy


def find_mentioned_products(text: str, products: Sequence[Product]) -> List[Product]:
    """
    Products whose full normalized name appears inside text, longest name first.

    Used by fast paths that need an explicit mention rather than a guess.
    """
    haystack = f" {normalize_product_input(text)} "
    mentioned = []
    for product in products:
        name = normalize_product_input(product.name)
        if name and f" {name} " in haystack:
            mentioned.append(product)
    mentioned.sort(key=lambda p: len(normalize_product_input(p.name)), reverse=True)
    return mentioned
