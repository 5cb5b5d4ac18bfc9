"""
Decision Engine — what happens to a result, and to the turn after it.

================================================================================
HUMAN-IN-THE-LOOP FOR AMBIGUOUS AND DESTRUCTIVE OPERATIONS
================================================================================

THE MODEL NEVER PICKS BETWEEN SIMILAR PRODUCTS AND NEVER CONFIRMS FOR THE USER.

Flow:
1. Executor returns needs_clarification or needs_confirmation
2. Decision Engine stores ONE pending operation on the session
3. The next turn resolves it:
   - button / number / unique name  -> select_candidate (re-runs the tool
     with the clarified product id)
   - accept (button or "да")         -> confirm (runs the stored operation)
   - decline (button or "нет")       -> cancel
   - anything else                   -> reminder, pending kept
4. A pending operation older than 5 minutes is dropped and the new text is
   handled as a fresh command

================================================================================
"""
import logging
from typing import Any, Dict, Optional

from app.agent.conversation_memory import ConversationMemory
from app.agent.conversation_state import (
    ReplyKind,
    classify_reply,
    pending_expired,
    pick_candidate,
    set_clarification,
    set_confirmation,
)
from app.agent.executor import ToolExecutor, pending_from_preview
from app.agent.response_synthesizer import (
    CANCELLED_MESSAGE,
    CLARIFICATION_REMINDER_MESSAGE,
    EXPIRED_MESSAGE,
    NOTHING_PENDING_MESSAGE,
    PENDING_REMINDER_MESSAGE,
    build_message_from_result,
)
from ai.tools import ToolName
from app.core.config import settings
from app.schemas.command import CommandContext, CommandResult
from app.schemas.session import (
    ConversationMessage,
    MessageRole,
    PendingClarification,
    PendingKind,
    SessionState,
)
from app.schemas.tool_result import ToolCallResult

logger = logging.getLogger(__name__)


def to_command_result(result: ToolCallResult, message: str, operation: Optional[str] = None) -> CommandResult:
    return CommandResult(
        success=result.success,
        message=message,
        data=result.data,
        needs_clarification=result.needs_clarification,
        needs_confirmation=result.needs_confirmation,
        operation=operation or result.action,
        options=result.matches if result.needs_clarification else [],
    )


class DecisionEngine:

    def __init__(
        self,
        executor: ToolExecutor,
        memory: ConversationMemory,
        ttl_seconds: int = settings.PENDING_OPERATION_TTL_SECONDS,
    ):
        self.executor = executor
        self.memory = memory
        self.ttl_seconds = ttl_seconds

    # ------------------------------------------------------------------
    # After a tool ran
    # ------------------------------------------------------------------

    def apply_result(
        self,
        state: SessionState,
        result: ToolCallResult,
        command: str,
        tool_name: str,
        arguments: Dict[str, Any],
    ) -> None:
        """Record pending operations or refresh AiContext for one tool result."""
        if result.needs_clarification:
            set_clarification(state, PendingClarification(
                operation=(result.data or {}).get("operation") or tool_name,
                tool_name=tool_name,
                arguments=arguments,
                candidate_matches=result.matches,
                original_command=command,
            ))
            logger.info(
                f"[DecisionEngine] Clarification pending for session {state.session_id}: "
                f"{len(result.matches)} candidates"
            )
        elif result.needs_confirmation:
            set_confirmation(state, pending_from_preview(result, command))
            logger.info(f"[DecisionEngine] Confirmation pending for session {state.session_id}: {result.data.get('kind')}")
        elif result.success:
            self.memory.update_context_from_result(state, result, command, operation=tool_name)

    # ------------------------------------------------------------------
    # Resolving turns
    # ------------------------------------------------------------------

    def _expired(self, state: SessionState) -> bool:
        return pending_expired(state, self.ttl_seconds)

    def _finish(self, state: SessionState, result: ToolCallResult, command: str, tool_name: str, arguments: dict) -> CommandResult:
        self.apply_result(state, result, command, tool_name, arguments)
        message = build_message_from_result(result)
        self.memory.save_to_history(state, ConversationMessage(role=MessageRole.ASSISTANT, content=message))
        return to_command_result(result, message)

    def select_candidate(self, state: SessionState, product_id: int, context: CommandContext) -> CommandResult:
        pending = state.pending_clarification
        if pending is None:
            return CommandResult(success=False, message=NOTHING_PENDING_MESSAGE)
        if self._expired(state):
            return CommandResult(success=False, message=EXPIRED_MESSAGE)
        if product_id not in {c.id for c in pending.candidate_matches}:
            return CommandResult(
                success=False,
                message=CLARIFICATION_REMINDER_MESSAGE,
                needs_clarification=True,
                operation=pending.operation,
                options=pending.candidate_matches,
            )

        state.clear_pending()
        if context.find_product(product_id) is None:
            logger.warning(f"[DecisionEngine] Selected product {product_id} no longer in catalog")
            return CommandResult(success=False, message="Этот товар больше не найден в каталоге.")

        logger.info(f"[DecisionEngine] Session {state.session_id} selected product {product_id} for {pending.tool_name}")
        clarified = context.model_copy(update={"clarified_product_id": product_id})
        result = self.executor.execute(pending.tool_name, pending.arguments, clarified)
        return self._finish(state, result, pending.original_command, pending.tool_name, pending.arguments)

    def confirm(self, state: SessionState, context: CommandContext, kind: Optional[PendingKind] = None) -> CommandResult:
        pending = state.pending_confirmation
        if pending is None or (kind is not None and pending.kind != kind):
            return CommandResult(success=False, message=NOTHING_PENDING_MESSAGE)
        if self._expired(state):
            return CommandResult(success=False, message=EXPIRED_MESSAGE)

        state.clear_pending()
        logger.info(f"[DecisionEngine] Session {state.session_id} confirmed {pending.kind.value}")

        if pending.kind == PendingKind.BULK_PRICE_UPDATE:
            result = self.executor.execute_bulk_price_update(pending, context)
            return self._finish(state, result, pending.original_command, ToolName.BULK_UPDATE_PRICES.value, {})

        arguments = {"confirm": True}
        result = self.executor.execute(ToolName.BULK_DELETE_ALL.value, arguments, context)
        return self._finish(state, result, pending.original_command, ToolName.BULK_DELETE_ALL.value, arguments)

    def cancel(self, state: SessionState) -> CommandResult:
        if state.has_pending:
            kind = (state.pending_clarification or state.pending_confirmation).kind
            logger.info(f"[DecisionEngine] Session {state.session_id} cancelled {kind.value}")
        state.clear_pending()
        return CommandResult(success=True, message=CANCELLED_MESSAGE, operation="cancelled")

    def route_text(self, state: SessionState, text: str, context: CommandContext) -> Optional[CommandResult]:
        """
        Answer free text against a pending operation.

        Returns None when nothing is pending (or it just expired): the caller
        processes the text as a new command.
        """
        if not state.has_pending or self._expired(state):
            return None

        reply = classify_reply(text)
        if reply == ReplyKind.DECLINE:
            return self.cancel(state)

        confirmation = state.pending_confirmation
        if confirmation is not None:
            if reply == ReplyKind.ACCEPT:
                return self.confirm(state, context)
            return CommandResult(
                success=False,
                message=PENDING_REMINDER_MESSAGE,
                needs_confirmation=True,
                operation=confirmation.kind.value,
            )

        clarification = state.pending_clarification
        chosen = pick_candidate(text, clarification.candidate_matches)
        if chosen is not None:
            return self.select_candidate(state, chosen.id, context)
        return CommandResult(
            success=False,
            message=CLARIFICATION_REMINDER_MESSAGE,
            needs_clarification=True,
            operation=clarification.operation,
            options=clarification.candidate_matches,
        )
