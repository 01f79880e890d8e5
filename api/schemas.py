"""Request and response bodies of the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from core.agent import AgentSummary
from memory.conversation import ConversationMessage


class CreateAgentRequest(BaseModel):
    user_id: str
    private_key: Optional[str] = Field(default=None, repr=False)
    name: Optional[str] = None


class RenameAgentRequest(BaseModel):
    user_id: str
    name: str


class OwnerRequest(BaseModel):
    user_id: str


class SendMessageRequest(BaseModel):
    user_id: str
    message: str
    stream: bool = False


class SweepRequest(BaseModel):
    max_age_hours: Optional[float] = Field(default=None, ge=0)


class AgentResponse(BaseModel):
    success: bool = True
    agent: AgentSummary


class AgentListResponse(BaseModel):
    success: bool = True
    agents: list[AgentSummary]
    count: int


class RemovedResponse(BaseModel):
    success: bool = True
    removed: int


class MessageResponse(BaseModel):
    success: bool = True
    agent_id: str
    reply: str


class ConversationResponse(BaseModel):
    success: bool = True
    agent_id: str
    messages: list[ConversationMessage]


class ConversationSummary(BaseModel):
    conversation_id: str
    agent_id: str
    created_at: datetime
    updated_at: datetime


class ConversationListResponse(BaseModel):
    success: bool = True
    conversations: list[ConversationSummary]


class WalletResponse(BaseModel):
    success: bool = True
    address: str
    private_key: str


class HealthResponse(BaseModel):
    status: str = "ok"
    environment: str
    agents: int
