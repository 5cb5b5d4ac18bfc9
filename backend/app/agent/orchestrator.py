"""
Catalog Command Orchestrator — one free-text command in, one result out.

================================================================================
PIPELINE
================================================================================

1. Sanitize (role prefixes, <think> tags, 500 chars)
2. Fast path: single-product discount / stock commands skip the model
3. Model path: system prompt (shop, live catalog, AiContext) + history + command
   -> tool call: execute, synthesize, record
   -> text: stream to the transport, record
4. Pending clarification/confirmation is stored for the next turn

handle_message() is the guarded entry for shells (Telegram, HTTP):
- one command in flight per session, a second one is rejected
- AI_RATE_LIMIT_COMMANDS per rolling window
- text answering a pending question is routed to the Decision Engine
- greetings and thanks are ignored

Provider failures never surface raw: they map to a fixed message plus
retry / fallback_to_menu flags.
================================================================================
"""
import logging
import time
from typing import Callable, List, Optional

from ai.groq_client import GroqClient, ToolArgumentsError, get_groq_client
from ai.prompts import build_system_prompt, sanitize_user_input
from ai.retry_policy import FailureKind, LLMProviderError, TRANSIENT_FAILURES
from ai.streaming import StreamTransport, ThrottledEmitter
from ai.tools import TOOL_DEFINITIONS, ToolName
from app.agent.command_guard import CommandGuard
from app.agent.conversation_memory import ConversationMemory
from app.agent.conversation_state import is_noise_command
from app.agent.decision_engine import DecisionEngine, to_command_result
from app.agent.executor import ToolExecutor
from app.agent.intent_parser_deterministic import (
    DiscountIntent,
    IntentError,
    detect_fast_path,
)
from app.agent.response_synthesizer import (
    AI_UNAVAILABLE_MESSAGE,
    EMPTY_COMMAND_MESSAGE,
    GENERIC_FAILURE_MESSAGE,
    RATE_LIMITED_MESSAGE,
    SESSION_RESET_MESSAGE,
    STILL_PROCESSING_MESSAGE,
    ResponseSynthesizer,
    build_message_from_result,
    provider_failure_message,
    quick_discount_message,
    quick_stock_message,
    tool_result_content,
)
from app.agent.session_store import InMemorySessionStore, SessionStore, SqlSessionStore
from app.core.config import settings
from app.core.exceptions import CommandInProgressError, RateLimitExceededError
from app.schemas.command import Command, CommandContext, CommandResult
from app.schemas.session import ConversationMessage, MessageRole, PendingKind, SessionState
from app.services.catalog_client import CatalogClient, get_catalog_client

logger = logging.getLogger(__name__)

TEXT_FALLBACK_MESSAGE = "✅ Команда обработана"
TOOL_RESULT_GRACE_SECONDS = 0.1


def accept_command(text: Optional[str], session_id: str) -> Optional[Command]:
    """Sanitize raw input; None when nothing is left to process."""
    cleaned = sanitize_user_input(text)
    if not cleaned:
        return None
    if cleaned != (text or "").strip():
        logger.info(f"[Orchestrator] Input sanitized for session {session_id}")
    return Command(raw_text=text, text=cleaned, session_id=session_id)


class Orchestrator:

    def __init__(
        self,
        store: SessionStore,
        catalog: Optional[CatalogClient] = None,
        llm: Optional[GroqClient] = None,
        memory: Optional[ConversationMemory] = None,
        guard: Optional[CommandGuard] = None,
        natural_responses: bool = settings.AI_NATURAL_RESPONSES,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.llm = llm or get_groq_client()
        self.memory = memory or ConversationMemory()
        self.guard = guard or CommandGuard(store)
        self.executor = ToolExecutor(catalog)
        self.decisions = DecisionEngine(self.executor, self.memory)
        self.synthesizer = ResponseSynthesizer(self.llm, natural_responses=natural_responses)
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Unguarded core
    # ------------------------------------------------------------------

    def process_command(
        self,
        text: str,
        context: CommandContext,
        session_id: str,
        transport: Optional[StreamTransport] = None,
    ) -> CommandResult:
        """Run one command against the session state, without admission checks."""
        command = accept_command(text, session_id)
        if command is None:
            return CommandResult(success=False, message=EMPTY_COMMAND_MESSAGE)

        state = self.store.load(session_id)
        self.memory.expire_if_stale(state)
        result = self._process(state, command.text, context, transport)
        self.store.save(state)
        return result

    def _process(
        self,
        state: SessionState,
        command: str,
        context: CommandContext,
        transport: Optional[StreamTransport],
    ) -> CommandResult:
        fast = self._try_fast_path(state, command, context)
        if fast is not None:
            return fast

        if not self.llm.is_available():
            return CommandResult(success=False, message=AI_UNAVAILABLE_MESSAGE, fallback_to_menu=True)

        return self._run_model(state, command, context, transport)

    def _try_fast_path(self, state: SessionState, command: str, context: CommandContext) -> Optional[CommandResult]:
        intent = detect_fast_path(command, context.products, state.ai_context)
        if intent is None:
            return None

        if isinstance(intent, IntentError):
            return CommandResult(success=False, message=intent.message)

        if isinstance(intent, DiscountIntent):
            updates = {"discount_percentage": intent.percentage}
            if intent.duration:
                updates["discount_expires_at"] = intent.duration
            arguments = {"product_name": intent.product.name, "updates": updates}
            # The detector already picked the exact row
            pinned = context.model_copy(update={"clarified_product_id": intent.product.id})
            result = self.executor.execute(ToolName.UPDATE_PRODUCT.value, arguments, pinned)
            operation = "quick_discount_update"
            success_message = quick_discount_message(intent.percentage, intent.product.name, intent.duration)
        else:
            arguments = {"product_name": intent.product_candidate, "updates": {"stock_quantity": intent.quantity}}
            result = self.executor.execute(ToolName.UPDATE_PRODUCT.value, arguments, context)
            operation = "quick_stock_update"
            updated_name = ((result.data or {}).get("product") or {}).get("name", intent.product_candidate)
            success_message = quick_stock_message(updated_name, intent.quantity)

        logger.info(f"[Orchestrator] Fast path {operation} success={result.success}")
        self.decisions.apply_result(state, result, command, ToolName.UPDATE_PRODUCT.value, arguments)
        message = success_message if result.success else build_message_from_result(result)
        self.memory.save_to_history(state, [
            ConversationMessage(role=MessageRole.USER, content=command),
            ConversationMessage(role=MessageRole.ASSISTANT, content=message),
        ])
        return to_command_result(result, message, operation=operation)

    def _run_model(
        self,
        state: SessionState,
        command: str,
        context: CommandContext,
        transport: Optional[StreamTransport],
    ) -> CommandResult:
        system_prompt = build_system_prompt(context.shop_name, context.products, state.ai_context)
        user_message = {"role": MessageRole.USER.value, "content": command}
        messages = self.memory.get_history(state) + [user_message]
        started = time.monotonic()

        emitter = None
        if transport is not None:
            emitter = ThrottledEmitter(
                transport,
                throttle_ms=settings.STREAM_THROTTLE_MS,
                words_per_update=settings.STREAM_WORDS_PER_UPDATE,
                sleep=self.sleep,
            )

        try:
            if emitter is not None:
                response = self.llm.chat_streaming(system_prompt, messages, emitter.feed, tools=TOOL_DEFINITIONS)
            else:
                response = self.llm.chat(system_prompt, messages, tools=TOOL_DEFINITIONS)
        except LLMProviderError as e:
            if emitter is not None:
                emitter.withdraw(TOOL_RESULT_GRACE_SECONDS)
            logger.error(f"[Orchestrator] Provider failure for session {state.session_id}: {e.kind.value} (status={e.status_code})")
            return self._provider_failure(e.kind)

        logger.info(
            f"[Orchestrator] Model answered in {time.monotonic() - started:.2f}s "
            f"tool_calls={len(response.tool_calls)} history={len(messages) - 1}"
        )

        if response.has_tool_calls:
            if emitter is not None:
                emitter.withdraw(TOOL_RESULT_GRACE_SECONDS)
            return self._run_tool(state, command, context, response)

        text = (response.content or "").strip() or TEXT_FALLBACK_MESSAGE
        streamed = False
        if emitter is not None:
            emitter.finish(text)
            streamed = emitter.has_message
        self.memory.save_to_history(state, [
            ConversationMessage(role=MessageRole.USER, content=command),
            ConversationMessage(role=MessageRole.ASSISTANT, content=text),
        ])
        return CommandResult(success=True, message=text, streamed=streamed)

    def _run_tool(self, state: SessionState, command: str, context: CommandContext, response) -> CommandResult:
        if len(response.tool_calls) > 1:
            logger.warning(f"[Orchestrator] Model returned {len(response.tool_calls)} tool calls, executing the first")
        tool_call = response.tool_calls[0]

        try:
            arguments = tool_call.parse_arguments()
        except ToolArgumentsError as e:
            logger.error(f"[Orchestrator] {e}")
            return CommandResult(success=False, message=GENERIC_FAILURE_MESSAGE, fallback_to_menu=True)

        result = self.executor.execute(tool_call.name, arguments, context)
        logger.info(f"[Orchestrator] Tool {tool_call.name} success={result.success}")

        exchange: List[ConversationMessage] = [
            ConversationMessage(role=MessageRole.USER, content=command),
            ConversationMessage(
                role=MessageRole.ASSISTANT,
                content=response.content,
                tool_calls=[tool_call.to_message()],
            ),
            ConversationMessage(
                role=MessageRole.TOOL,
                content=tool_result_content(result),
                tool_call_id=tool_call.id,
                name=tool_call.name,
            ),
        ]
        message = self.synthesizer.synthesize(result, [m.to_provider() for m in exchange], context.shop_name)

        self.decisions.apply_result(state, result, command, tool_call.name, arguments)
        self.memory.save_to_history(state, exchange + [ConversationMessage(role=MessageRole.ASSISTANT, content=message)])
        return to_command_result(result, message, operation=result.action or tool_call.name)

    @staticmethod
    def _provider_failure(kind: FailureKind) -> CommandResult:
        return CommandResult(
            success=False,
            message=provider_failure_message(kind),
            retry=kind in TRANSIENT_FAILURES,
            fallback_to_menu=kind not in TRANSIENT_FAILURES,
        )

    # ------------------------------------------------------------------
    # Guarded entries for shells
    # ------------------------------------------------------------------

    def _guarded(self, session_id: str, action: Callable[[SessionState], CommandResult]) -> CommandResult:
        try:
            with self.guard.admit(session_id, count_rate=False):
                state = self.store.load(session_id)
                self.memory.expire_if_stale(state)
                result = action(state)
                self.store.save(state)
                return result
        except CommandInProgressError:
            return CommandResult(success=False, message=STILL_PROCESSING_MESSAGE, rejected=True)
        except RateLimitExceededError as e:
            return CommandResult(
                success=False,
                message=RATE_LIMITED_MESSAGE.format(seconds=e.retry_after),
                rejected=True,
                retry_after=e.retry_after,
            )

    def handle_message(
        self,
        session_id: str,
        text: str,
        context: CommandContext,
        transport: Optional[StreamTransport] = None,
    ) -> CommandResult:
        accepted = accept_command(text, session_id)
        if accepted is None:
            return CommandResult(success=False, message=EMPTY_COMMAND_MESSAGE)
        command = accepted.text

        def action(state: SessionState) -> CommandResult:
            routed = self.decisions.route_text(state, command, context)
            if routed is not None:
                return routed
            if is_noise_command(command):
                logger.debug(f"[Orchestrator] Ignoring noise message in session {session_id}")
                return CommandResult(success=True, message="", ignored=True)
            self.guard.check_rate(session_id)
            return self._process(state, command, context, transport)

        return self._guarded(session_id, action)

    def handle_selection(self, session_id: str, product_id: int, context: CommandContext) -> CommandResult:
        return self._guarded(session_id, lambda state: self.decisions.select_candidate(state, product_id, context))

    def handle_confirmation(
        self, session_id: str, context: CommandContext, kind: Optional[PendingKind] = None
    ) -> CommandResult:
        """Accept the pending confirmation; with kind set, only a pending operation of that kind."""
        return self._guarded(session_id, lambda state: self.decisions.confirm(state, context, kind=kind))

    def handle_cancel(self, session_id: str) -> CommandResult:
        return self._guarded(session_id, self.decisions.cancel)

    def execute_bulk_price_update(self, session_id: str, context: CommandContext) -> CommandResult:
        """Apply the session's pending bulk price change (the confirm button)."""
        return self._guarded(
            session_id,
            lambda state: self.decisions.confirm(state, context, kind=PendingKind.BULK_PRICE_UPDATE),
        )

    def reset_session(self, session_id: str) -> CommandResult:
        """Forget history, AiContext and pending state. Refused while a command runs."""
        try:
            with self.guard.admit(session_id, count_rate=False):
                self.store.delete(session_id)
        except CommandInProgressError:
            return CommandResult(success=False, message=STILL_PROCESSING_MESSAGE, rejected=True)
        logger.info(f"[Orchestrator] Session {session_id} reset")
        return CommandResult(success=True, message=SESSION_RESET_MESSAGE, operation="session_reset")


def load_command_context(
    shop_id: str,
    shop_name: str,
    token: str,
    catalog: Optional[CatalogClient] = None,
) -> CommandContext:
    """
    Fetch a fresh catalog snapshot for one command.

    Raises:
        CatalogAPIError: the catalog service rejected or failed the listing
    """
    catalog = catalog or get_catalog_client()
    products = catalog.list_products(shop_id, token)
    logger.debug(f"[Orchestrator] Loaded {len(products)} products for shop {shop_id}")
    return CommandContext(shop_id=shop_id, shop_name=shop_name, token=token, products=products)


def build_session_store() -> SessionStore:
    if settings.SESSION_BACKEND == "memory":
        return InMemorySessionStore()
    from app.db.session import SessionLocal
    return SqlSessionStore(SessionLocal)


# Singleton instance
_orchestrator: Optional[Orchestrator] = None


def get_orchestrator() -> Orchestrator:
    """Get or create the process-wide orchestrator (shared by HTTP and Telegram)."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = Orchestrator(build_session_store())
        logger.info(f"[Orchestrator] Ready (session backend: {settings.SESSION_BACKEND})")
    return _orchestrator
