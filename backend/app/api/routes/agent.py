"""
Agent commands over HTTP: free text in, CommandResult out.
Trust: destructive and bulk operations run ONLY after an explicit confirm call.
"""
import logging
from fastapi import APIRouter, Depends

from app.agent.orchestrator import Orchestrator
from app.api.deps import build_context, get_agent, get_catalog, get_catalog_token
from app.core.exceptions import BusinessError
from app.schemas.command import CommandRequest, CommandResult, SelectRequest, SessionRequest
from app.services.catalog_client import CatalogClient

logger = logging.getLogger(__name__)
router = APIRouter()


def _accepted(result: CommandResult) -> CommandResult:
    """Turn guard rejections into HTTP errors; everything else is a 200."""
    if not result.rejected:
        return result
    if result.retry_after is not None:
        raise BusinessError.rate_limit_exceeded(result.message, retry_after=result.retry_after)
    raise BusinessError.conflict(result.message)


@router.post("/command", response_model=CommandResult)
def run_command(
    request: CommandRequest,
    token: str = Depends(get_catalog_token),
    catalog: CatalogClient = Depends(get_catalog),
    agent: Orchestrator = Depends(get_agent),
):
    """
    Run one catalog command.

    Request: {"session_id": "web_42", "text": "скидка 20% на хлеб на неделю"}
    Response: CommandResult (needs_clarification / needs_confirmation tell the
    client which follow-up endpoint to call)
    """
    context = build_context(request.shop_id, request.shop_name, token, catalog)
    logger.info(f"[Agent API] Command for session {request.session_id} ({len(context.products)} products)")
    return _accepted(agent.handle_message(request.session_id, request.text, context))


@router.post("/select", response_model=CommandResult)
def select_product(
    request: SelectRequest,
    token: str = Depends(get_catalog_token),
    catalog: CatalogClient = Depends(get_catalog),
    agent: Orchestrator = Depends(get_agent),
):
    """Answer a pending clarification with one of the offered product ids."""
    context = build_context(request.shop_id, request.shop_name, token, catalog)
    return _accepted(agent.handle_selection(request.session_id, request.product_id, context))


@router.post("/confirm", response_model=CommandResult)
def confirm_operation(
    request: SessionRequest,
    token: str = Depends(get_catalog_token),
    catalog: CatalogClient = Depends(get_catalog),
    agent: Orchestrator = Depends(get_agent),
):
    """Owner confirms the pending bulk price change or delete-all."""
    context = build_context(request.shop_id, request.shop_name, token, catalog)
    logger.info(f"[Agent API] Confirmation for session {request.session_id}")
    return _accepted(agent.handle_confirmation(request.session_id, context))


@router.post("/cancel", response_model=CommandResult)
def cancel_operation(request: SessionRequest, agent: Orchestrator = Depends(get_agent)):
    """Drop whatever is pending. No catalog call."""
    return _accepted(agent.handle_cancel(request.session_id))


@router.delete("/sessions/{session_id}")
def reset_session(session_id: str, agent: Orchestrator = Depends(get_agent)):
    """Forget history, AiContext and pending state for a session."""
    _accepted(agent.reset_session(session_id))
    return {"ok": True}
