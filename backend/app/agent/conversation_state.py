"""
Pending Operation State - clarification and confirmation between turns

A session holds at most one pending operation:
- CLARIFICATION: several products matched, waiting for the user to pick one
- BULK_PRICE_UPDATE / BULK_DELETE_ALL: destructive operation waiting for accept/decline

Every pending operation expires after PENDING_OPERATION_TTL_SECONDS (5 min).
An expired one is cancelled on the next interaction and the new text is
processed as a fresh command.
"""
import logging
import re
from datetime import datetime
from enum import Enum
from typing import List, Optional

from app.core.config import settings
from app.schemas.session import (
    PendingClarification,
    PendingConfirmation,
    SessionState,
    utcnow,
)
from app.schemas.tool_result import CandidateMatch
from app.services.product_resolver import score_products
from app.schemas.catalog import Product

logger = logging.getLogger(__name__)


class ReplyKind(str, Enum):
    """How free text is read while something is pending"""
    ACCEPT = "accept"
    DECLINE = "decline"
    OTHER = "other"


# Text answers to a pending confirmation (buttons are the primary path)
REPLY_KEYWORDS = {
    "accept": ["да", "yes", "apply", "применить", "подтверждаю", "ok", "ок"],
    "decline": ["нет", "no", "отмена", "cancel", "назад", "отменить"],
}

# Greetings and thanks: never worth a model call or a rate-limit slot
NOISE_KEYWORDS = [
    "привет", "здравствуй", "здравствуйте", "спасибо", "благодарю", "пока",
    "hi", "hello", "hey", "thanks", "thank you", "thx", "bye",
]


def _normalize(text: str) -> str:
    text = (text or "").lower().strip().replace("ё", "е")
    return re.sub(r"[^\w\s]", " ", text).strip()


def classify_reply(text: str) -> ReplyKind:
    normalized = " ".join(_normalize(text).split())
    if normalized in REPLY_KEYWORDS["accept"]:
        return ReplyKind.ACCEPT
    if normalized in REPLY_KEYWORDS["decline"]:
        return ReplyKind.DECLINE
    return ReplyKind.OTHER


def is_noise_command(text: str) -> bool:
    normalized = " ".join(_normalize(text).split())
    return normalized in NOISE_KEYWORDS


def pending_expired(
    state: SessionState,
    ttl_seconds: int = settings.PENDING_OPERATION_TTL_SECONDS,
    now: Optional[datetime] = None,
) -> bool:
    """True if the pending operation is older than the TTL. Clears it as a side effect."""
    now = now or utcnow()
    pending = state.pending_clarification or state.pending_confirmation
    if pending is None or not pending.is_expired(ttl_seconds, now):
        return False

    logger.info(f"[PendingState] {pending.kind.value} expired for session {state.session_id}")
    state.clear_pending()
    return True


def set_clarification(state: SessionState, clarification: PendingClarification) -> None:
    """Replaces any pending operation: only one at a time."""
    state.clear_pending()
    state.pending_clarification = clarification


def set_confirmation(state: SessionState, confirmation: PendingConfirmation) -> None:
    state.clear_pending()
    state.pending_confirmation = confirmation


def pick_candidate(text: str, candidates: List[CandidateMatch]) -> Optional[CandidateMatch]:
    """
    Read a free-text answer to a clarification.

    "2" -> second candidate; a name that fuzzy-matches exactly one candidate -> it.
    """
    normalized = _normalize(text)
    if normalized.isdigit():
        index = int(normalized) - 1
        if 0 <= index < len(candidates):
            return candidates[index]
        return None

    as_products = [Product(id=c.id, name=c.name, price=c.price) for c in candidates]
    matches = score_products(text, as_products)
    exact = [m for m in matches if m.score >= 1.0]
    if len(exact) == 1:
        matches = exact
    if len(matches) != 1:
        return None
    chosen = matches[0].product
    return next(c for c in candidates if c.id == chosen.id)
