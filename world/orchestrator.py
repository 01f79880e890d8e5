"""Orchestrator: composition root for the agent service.

Owns the registry, binder, router, janitor and the shared external clients,
and exposes the operations the HTTP layer and the CLI call.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, AsyncIterator

from chain.aptos import AptosClient
from config.settings import Settings
from conversation.engine import MAX_TOOL_ROUNDS, ConversationFactory
from core.agent import AgentSummary
from core.errors import InvalidInput
from memory.conversation import ConversationEntry, ConversationMessage, ConversationStore
from memory.database import init_database
from world.binder import RuntimeBinder
from world.janitor import LivenessJanitor
from world.registry import AgentRegistry
from world.router import MessageRouter

logger = logging.getLogger(__name__)


class Orchestrator:
    """Top-level coordinator wiring the agent service together."""

    def __init__(
        self,
        settings: Settings | None = None,
        chain_client: Any = None,
        conversation_factory: Any = None,
    ):
        self.settings = settings or Settings()
        s = self.settings

        self.conversations = ConversationStore(db_path=s.DB_PATH)
        self.registry = AgentRegistry(self.conversations)
        self.chain_client = chain_client or AptosClient(
            s.node_url, timeout=s.CHAIN_TIMEOUT, retries=s.CHAIN_RETRIES,
        )
        self.conversation_factory = conversation_factory or ConversationFactory(s)
        self.binder = RuntimeBinder(self.chain_client, self.conversation_factory)
        self.router = MessageRouter(
            self.registry,
            self.binder,
            self.conversations,
            context_window=s.CONTEXT_WINDOW,
            # Whole turn: first call plus every tool round.
            reply_timeout=s.LLM_TIMEOUT * (MAX_TOOL_ROUNDS + 1),
        )
        self.janitor = LivenessJanitor(
            self.registry,
            self.conversations,
            max_age=timedelta(hours=s.AGENT_MAX_AGE_HOURS),
            interval=s.JANITOR_INTERVAL,
            retention=(
                timedelta(days=s.CONVERSATION_RETENTION_DAYS)
                if s.CONVERSATION_RETENTION_DAYS > 0 else None
            ),
        )
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Initialize the database and start the liveness loop."""
        await init_database(self.settings.DB_PATH)
        self.janitor.start()
        self._running = True
        logger.info(
            "Orchestrator started (env=%s, node=%s)",
            self.settings.ENVIRONMENT, self.settings.node_url,
        )

    async def stop(self) -> None:
        """Stop background work and close external clients."""
        self._running = False
        await self.janitor.stop()
        for client in (self.conversation_factory, self.chain_client):
            close = getattr(client, "aclose", None)
            if close is not None:
                await close()
        logger.info("Orchestrator stopped (%d agents in memory)", len(self.registry))

    # -- agents --

    async def create_agent(
        self,
        owner_user_id: str,
        secret_material: str | None = None,
        display_name: str | None = None,
    ) -> AgentSummary:
        secret = secret_material or self.settings.fallback_secret()
        if not secret:
            raise InvalidInput("A private key is required to create an agent")
        if not secret_material:
            logger.warning("Using development private key for user %s", owner_user_id)
        agent_id = self.registry.create(owner_user_id, secret, display_name)
        return self.registry.require(agent_id).to_summary()

    def get_agent(self, agent_id: str, owner_user_id: str) -> AgentSummary:
        return self.registry.require(agent_id, owner_user_id).to_summary()

    def list_agents(self, owner_user_id: str) -> list[AgentSummary]:
        return self.registry.list_by_owner(owner_user_id)

    def list_all_agents(self) -> list[AgentSummary]:
        return self.registry.list_all()

    def rename_agent(self, agent_id: str, owner_user_id: str, display_name: str) -> AgentSummary:
        self.registry.require(agent_id, owner_user_id)
        return self.registry.rename(agent_id, display_name)

    async def remove_agent(self, agent_id: str, owner_user_id: str) -> bool:
        self.registry.require(agent_id, owner_user_id)
        return await self.registry.remove(agent_id)

    async def remove_all_agents(self, owner_user_id: str) -> int:
        return await self.registry.remove_all_for_owner(owner_user_id)

    async def initialize_agent(self, agent_id: str, owner_user_id: str) -> AgentSummary:
        """Bind both runtimes now instead of on the first message."""
        record = self.registry.require(agent_id, owner_user_id)
        await self.binder.ensure_conversational_runtime(record)
        return record.to_summary()

    # -- messaging --

    async def send_message(self, agent_id: str, owner_user_id: str, message: str) -> str:
        return await self.router.route(agent_id, owner_user_id, message)

    async def stream_message(
        self,
        agent_id: str,
        owner_user_id: str,
        message: str,
    ) -> AsyncIterator[str]:
        return await self.router.route_stream(agent_id, owner_user_id, message)

    # -- conversations --

    async def get_conversation(
        self,
        agent_id: str,
        owner_user_id: str,
        limit: int | None = None,
    ) -> list[ConversationMessage]:
        self.registry.require(agent_id, owner_user_id)
        entry = await self.conversations.get(owner_user_id, agent_id)
        if entry is None:
            return []
        return await self.conversations.read_recent(entry, limit or self.settings.HISTORY_LIMIT)

    async def clear_conversation(self, agent_id: str, owner_user_id: str) -> bool:
        record = self.registry.require(agent_id, owner_user_id)
        async with record.turn_lock:
            cleared = await self.conversations.delete_for_agent(owner_user_id, agent_id)
        if cleared:
            logger.info("Conversation cleared for agent %s", agent_id)
        return cleared

    async def list_conversations(self, owner_user_id: str) -> list[ConversationEntry]:
        return await self.conversations.list_for_user(owner_user_id)

    # -- administration --

    async def sweep(self, max_age_hours: float | None = None) -> int:
        max_age = None if max_age_hours is None else timedelta(hours=max_age_hours)
        return await self.janitor.sweep(max_age)

    def generate_wallet(self) -> dict[str, str]:
        return AptosClient.generate_wallet()
