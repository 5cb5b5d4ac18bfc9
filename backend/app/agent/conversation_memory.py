"""
Conversation Memory — sliding-window history and AiContext per session.

Rules:
- At most max_messages (40) messages are kept; older ones fall off the front
- A conversation idle longer than timeout (2 hours) is dropped as a whole on
  read, together with the AiContext
- History sent to the provider never starts with an orphaned assistant/tool
  message cut off by the window

All methods mutate the SessionState passed in; the caller saves it.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Optional, Union

from app.core.config import settings
from app.schemas.catalog import Product
from app.schemas.session import (
    AiContext,
    ConversationMessage,
    ConversationState,
    MessageRole,
    ProductRef,
    SessionState,
)
from app.schemas.tool_result import ToolCallResult

logger = logging.getLogger(__name__)

MAX_RECENT_PRODUCTS = 5

MessageLike = Union[ConversationMessage, dict]


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_ref(product: Any) -> ProductRef:
    if isinstance(product, ProductRef):
        return product
    if isinstance(product, Product):
        return ProductRef(id=product.id, name=product.name, price=product.price)
    return ProductRef(id=product.get("id"), name=product.get("name"), price=product.get("price"))


class ConversationMemory:

    def __init__(
        self,
        max_messages: int = settings.CONVERSATION_MAX_MESSAGES,
        timeout_seconds: int = settings.CONVERSATION_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _now,
    ):
        self.max_messages = max_messages
        self.timeout = timedelta(seconds=timeout_seconds)
        self.clock = clock

    def expire_if_stale(self, state: SessionState) -> bool:
        """Drop conversation and AiContext when idle past the timeout. Returns True if dropped."""
        conversation = state.conversation
        if conversation is None or conversation.last_activity is None:
            return False
        if self.clock() - conversation.last_activity <= self.timeout:
            return False

        logger.info(f"[Memory] Conversation expired for session {state.session_id}")
        state.conversation = None
        state.ai_context = None
        return True

    def get_history(self, state: SessionState) -> List[dict]:
        """Provider-ready messages, oldest first."""
        self.expire_if_stale(state)
        if state.conversation is None:
            return []

        messages = list(state.conversation.messages)
        while messages and messages[0].role != MessageRole.USER:
            messages.pop(0)
        return [m.to_provider() for m in messages]

    def save_to_history(self, state: SessionState, new_messages: Union[MessageLike, Iterable[MessageLike]]) -> None:
        """Append one or more messages and trim to the window."""
        if isinstance(new_messages, (ConversationMessage, dict)):
            new_messages = [new_messages]
        to_add = [
            m if isinstance(m, ConversationMessage) else ConversationMessage.model_validate(m)
            for m in new_messages
        ]
        if not to_add:
            return

        if state.conversation is None:
            state.conversation = ConversationState()

        conversation = state.conversation
        conversation.messages.extend(to_add)
        if len(conversation.messages) > self.max_messages:
            conversation.messages = conversation.messages[-self.max_messages:]
        conversation.last_activity = self.clock()
        conversation.message_count += len(to_add)

        logger.debug(
            f"[Memory] session={state.session_id} history={len(conversation.messages)} "
            f"total={conversation.message_count} added={len(to_add)}"
        )

    def note_product_context(
        self,
        state: SessionState,
        product: Any,
        action: Optional[str] = None,
        command: Optional[str] = None,
        related_products: Optional[List[Any]] = None,
    ) -> None:
        """Remember the product just touched; keep 5 most recent distinct names."""
        if product is None:
            return
        snapshot = _as_ref(product)
        previous = state.ai_context or AiContext()

        recent: List[ProductRef] = []
        seen = set()
        for ref in [snapshot, *previous.recent_products]:
            if not ref.name or ref.name in seen:
                continue
            seen.add(ref.name)
            recent.append(ref)

        context = previous.model_copy(update={
            "last_product_id": snapshot.id if snapshot.id is not None else previous.last_product_id,
            "last_product_name": snapshot.name or previous.last_product_name,
            "last_action": action or previous.last_action,
            "last_command": command or previous.last_command,
            "recent_products": recent[:MAX_RECENT_PRODUCTS],
            "updated_at": self.clock(),
        })
        if related_products:
            context.related_products = [_as_ref(p) for p in related_products]
        state.ai_context = context

    def update_context_from_result(
        self,
        state: SessionState,
        result: ToolCallResult,
        command: str,
        operation: Optional[str] = None,
    ) -> None:
        """Derive AiContext from a successful tool result."""
        if not result.success or not result.data:
            return

        data = result.data
        action = data.get("action") or operation

        if data.get("product"):
            self.note_product_context(state, data["product"], action=action, command=command)
            return

        products = data.get("products") or []
        if len(products) == 1:
            self.note_product_context(state, products[0], action=action, command=command)
        elif len(products) > 1:
            self.note_product_context(
                state, products[0], action=action, command=command, related_products=products
            )

    def clear(self, state: SessionState) -> None:
        state.conversation = None
        state.ai_context = None
