"""
Flows agent API endpoint.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.concurrency import run_in_threadpool

from app.auth import get_current_user
from app.models.flow import FlowAgentRequest, FlowAgentResponse
from app.services.flow_compiler import compile_flow
from app.services.flow_store import FlowStore, SupabaseFlowStore
from app.services.llm import AnthropicTextCompletion, TextCompletion

router = APIRouter()

logger = logging.getLogger(__name__)


def get_text_completion() -> TextCompletion:
    return AnthropicTextCompletion()


def get_flow_store() -> FlowStore:
    try:
        return SupabaseFlowStore()
    except ValueError as exc:
        logger.error(f"Flow store unavailable: {exc}")
        raise HTTPException(status_code=503, detail="Flow storage is not configured")


@router.post("", response_model=FlowAgentResponse)
async def run_flows_agent(
    body: FlowAgentRequest,
    user_id: str = Depends(get_current_user),
    completion: TextCompletion = Depends(get_text_completion),
    store: FlowStore = Depends(get_flow_store),
):
    """
    Build an automation flow from a natural-language request.

    Creates the trigger segment, one email template per step and a draft flow
    for the authenticated user, then returns the build transcript. Errors
    during the build are reported inside the transcript, not as HTTP errors.

    Requires authentication.
    """
    logger.info(f"Flows agent request from user {user_id}: {body.message!r}")

    history = None
    if body.conversation_history:
        history = [turn.model_dump() for turn in body.conversation_history]

    # Compilation makes blocking Anthropic and Supabase calls
    transcript = await run_in_threadpool(
        compile_flow,
        body.message,
        user_id,
        completion,
        store,
        history,
    )
    return FlowAgentResponse(response=transcript)
