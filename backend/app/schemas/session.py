"""
Session-scoped state.

One SessionState document per chat session holds everything a session owns:
conversation history, the derived AiContext and at most one pending operation.
Stores persist it as JSON. The processing flag lives beside it in the store so
it can be flipped atomically.
"""
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.schemas.tool_result import CandidateMatch


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ConversationMessage(BaseModel):
    role: MessageRole
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    def to_provider(self) -> dict:
        """OpenAI-compatible message dict."""
        message: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = self.tool_calls
        if self.tool_call_id:
            message["tool_call_id"] = self.tool_call_id
        if self.name:
            message["name"] = self.name
        return message


class ConversationState(BaseModel):
    messages: List[ConversationMessage] = Field(default_factory=list)
    last_activity: Optional[datetime] = None
    message_count: int = 0


class ProductRef(BaseModel):
    id: Optional[int] = None
    name: Optional[str] = None
    price: Optional[float] = None


class AiContext(BaseModel):
    """Derived hints for pronoun-like references. Never authoritative."""
    last_product_id: Optional[int] = None
    last_product_name: Optional[str] = None
    last_action: Optional[str] = None
    last_command: Optional[str] = None
    recent_products: List[ProductRef] = Field(default_factory=list)
    related_products: Optional[List[ProductRef]] = None
    updated_at: Optional[datetime] = None

    def is_empty(self) -> bool:
        return not self.last_product_name and not self.recent_products


class PendingKind(str, Enum):
    CLARIFICATION = "clarification"
    BULK_PRICE_UPDATE = "bulk_price_update"
    BULK_DELETE_ALL = "bulk_delete_all"


class PendingOperation(BaseModel):
    kind: PendingKind
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, ttl_seconds: int, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return now - self.created_at > timedelta(seconds=ttl_seconds)


class PendingClarification(PendingOperation):
    kind: PendingKind = PendingKind.CLARIFICATION
    operation: str
    tool_name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    candidate_matches: List[CandidateMatch] = Field(default_factory=list)
    original_command: str = ""


class PendingConfirmation(PendingOperation):
    """Bulk price update or delete-all waiting for accept/decline."""
    percentage: Optional[float] = None
    direction: Optional[str] = None
    multiplier: Optional[float] = None
    affected_count: int = 0
    discount_type: Optional[str] = None
    duration_ms: Optional[int] = None
    duration_text: Optional[str] = None
    excluded_product_ids: List[int] = Field(default_factory=list)
    original_command: str = ""


class SessionState(BaseModel):
    session_id: str
    conversation: Optional[ConversationState] = None
    ai_context: Optional[AiContext] = None
    pending_clarification: Optional[PendingClarification] = None
    pending_confirmation: Optional[PendingConfirmation] = None

    @property
    def has_pending(self) -> bool:
        return self.pending_clarification is not None or self.pending_confirmation is not None

    def clear_pending(self) -> None:
        self.pending_clarification = None
        self.pending_confirmation = None
