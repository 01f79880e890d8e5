"""HTTP routes for agents, conversations and wallets."""

from __future__ import annotations

import json
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from api.rate_limit import sensitive_limit, standard_limit
from api.schemas import (
    AgentListResponse,
    AgentResponse,
    ConversationListResponse,
    ConversationResponse,
    ConversationSummary,
    CreateAgentRequest,
    HealthResponse,
    MessageResponse,
    OwnerRequest,
    RemovedResponse,
    RenameAgentRequest,
    SendMessageRequest,
    SweepRequest,
    WalletResponse,
)
from core.errors import AgentServiceError
from world.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

standard = [Depends(standard_limit)]
sensitive = [Depends(sensitive_limit)]


def get_orchestrator(request: Request) -> Orchestrator:
    return request.app.state.orchestrator


@router.get("/health", response_model=HealthResponse)
async def health(orch: Orchestrator = Depends(get_orchestrator)):
    return HealthResponse(
        status="ok" if orch.running else "starting",
        environment=orch.settings.ENVIRONMENT,
        agents=len(orch.registry),
    )


# -- agents --

@router.post("/agents", response_model=AgentResponse, status_code=201, dependencies=sensitive)
async def create_agent(body: CreateAgentRequest, orch: Orchestrator = Depends(get_orchestrator)):
    agent = await orch.create_agent(body.user_id, body.private_key, body.name)
    return AgentResponse(agent=agent)


@router.get("/agents", response_model=AgentListResponse, dependencies=standard)
async def list_all_agents(orch: Orchestrator = Depends(get_orchestrator)):
    agents = orch.list_all_agents()
    return AgentListResponse(agents=agents, count=len(agents))


@router.get("/users/{user_id}/agents", response_model=AgentListResponse, dependencies=standard)
async def list_user_agents(user_id: str, orch: Orchestrator = Depends(get_orchestrator)):
    agents = orch.list_agents(user_id)
    return AgentListResponse(agents=agents, count=len(agents))


@router.delete("/users/{user_id}/agents", response_model=RemovedResponse, dependencies=sensitive)
async def remove_user_agents(user_id: str, orch: Orchestrator = Depends(get_orchestrator)):
    return RemovedResponse(removed=await orch.remove_all_agents(user_id))


@router.get("/agents/{agent_id}", response_model=AgentResponse, dependencies=standard)
async def get_agent(
    agent_id: str,
    user_id: str = Query(...),
    orch: Orchestrator = Depends(get_orchestrator),
):
    return AgentResponse(agent=orch.get_agent(agent_id, user_id))


@router.patch("/agents/{agent_id}", response_model=AgentResponse, dependencies=standard)
async def rename_agent(
    agent_id: str,
    body: RenameAgentRequest,
    orch: Orchestrator = Depends(get_orchestrator),
):
    return AgentResponse(agent=orch.rename_agent(agent_id, body.user_id, body.name))


@router.delete("/agents/{agent_id}", response_model=RemovedResponse, dependencies=sensitive)
async def remove_agent(
    agent_id: str,
    user_id: str = Query(...),
    orch: Orchestrator = Depends(get_orchestrator),
):
    removed = await orch.remove_agent(agent_id, user_id)
    return RemovedResponse(removed=int(removed))


@router.post(
    "/agents/{agent_id}/initialize", response_model=AgentResponse, dependencies=standard,
)
async def initialize_agent(
    agent_id: str,
    body: OwnerRequest,
    orch: Orchestrator = Depends(get_orchestrator),
):
    return AgentResponse(agent=await orch.initialize_agent(agent_id, body.user_id))


# -- messaging --

@router.post("/agents/{agent_id}/messages", dependencies=standard)
async def send_message(
    agent_id: str,
    body: SendMessageRequest,
    request: Request,
    orch: Orchestrator = Depends(get_orchestrator),
):
    if not body.stream:
        reply = await orch.send_message(agent_id, body.user_id, body.message)
        return MessageResponse(agent_id=agent_id, reply=reply)

    fragments = await orch.stream_message(agent_id, body.user_id, body.message)
    return StreamingResponse(
        _sse_events(fragments, request),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def _sse_data(text: str) -> str:
    return "".join(f"data: {line}\n" for line in text.split("\n")) + "\n"


def _sse_event(event: str, payload: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


async def _sse_events(fragments: AsyncIterator[str], request: Request) -> AsyncIterator[str]:
    try:
        async for fragment in fragments:
            if await request.is_disconnected():
                logger.info("Stream client disconnected (%s)", request.url.path)
                return
            yield _sse_data(fragment)
        yield _sse_event("done", {"success": True})
    except AgentServiceError as e:
        yield _sse_event("error", {"message": e.message, "error": type(e).__name__})
    except Exception:
        logger.exception("Stream failed (%s)", request.url.path)
        yield _sse_event("error", {"message": "An unexpected error occurred", "error": "Error"})
    finally:
        await fragments.aclose()


# -- conversations --

@router.get(
    "/agents/{agent_id}/conversation", response_model=ConversationResponse, dependencies=standard,
)
async def get_conversation(
    agent_id: str,
    user_id: str = Query(...),
    limit: int | None = Query(default=None, ge=1, le=500),
    orch: Orchestrator = Depends(get_orchestrator),
):
    messages = await orch.get_conversation(agent_id, user_id, limit)
    return ConversationResponse(agent_id=agent_id, messages=messages)


@router.delete(
    "/agents/{agent_id}/conversation", response_model=RemovedResponse, dependencies=standard,
)
async def clear_conversation(
    agent_id: str,
    user_id: str = Query(...),
    orch: Orchestrator = Depends(get_orchestrator),
):
    cleared = await orch.clear_conversation(agent_id, user_id)
    return RemovedResponse(removed=int(cleared))


@router.get(
    "/users/{user_id}/conversations",
    response_model=ConversationListResponse,
    dependencies=standard,
)
async def list_conversations(user_id: str, orch: Orchestrator = Depends(get_orchestrator)):
    entries = await orch.list_conversations(user_id)
    return ConversationListResponse(conversations=[
        ConversationSummary(
            conversation_id=e.conversation_id,
            agent_id=e.agent_id,
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
        for e in entries
    ])


# -- administration --

@router.post("/admin/sweep", response_model=RemovedResponse, dependencies=sensitive)
async def sweep(body: SweepRequest, orch: Orchestrator = Depends(get_orchestrator)):
    return RemovedResponse(removed=await orch.sweep(body.max_age_hours))


@router.post("/wallets", response_model=WalletResponse, status_code=201, dependencies=sensitive)
async def create_wallet(orch: Orchestrator = Depends(get_orchestrator)):
    wallet = orch.generate_wallet()
    return WalletResponse(address=wallet["address"], private_key=wallet["private_key"])
