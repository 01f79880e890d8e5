"""AgentRegistry: the authoritative map of live agents.

Holds every AgentRecord plus the owner index (user id -> agent ids). Both
maps change together under one lock, so no reader ever sees a record in
one but not the other. The lock is never held across an await.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import TYPE_CHECKING

from core.agent import AgentRecord, AgentSummary
from core.errors import AgentNotFound, InvalidInput
from core.identity import IdentityGenerator

if TYPE_CHECKING:
    from memory.conversation import ConversationStore

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Process-wide registry of agent records, owned by the Orchestrator."""

    def __init__(
        self,
        conversations: ConversationStore,
        identity: IdentityGenerator | None = None,
    ):
        self.conversations = conversations
        self.identity = identity or IdentityGenerator()
        self._agents: dict[str, AgentRecord] = {}
        self._owner_index: dict[str, set[str]] = {}
        # agent_id -> owner for unlinked agents whose conversation is not yet deleted
        self._pending_cascades: dict[str, str] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._agents)

    def create(
        self,
        owner_user_id: str,
        secret_material: str,
        display_name: str | None = None,
    ) -> str:
        """Register a new unbound agent and return its id."""
        if not owner_user_id or not owner_user_id.strip():
            raise InvalidInput("userId is required")
        if not secret_material or not secret_material.strip():
            raise InvalidInput("A private key is required to create an agent")
        if display_name is not None and not display_name.strip():
            raise InvalidInput("Agent name cannot be empty")

        with self._lock:
            agent_id = self.identity.new_agent_id()
            while agent_id in self._agents:
                agent_id = self.identity.new_agent_id()
            record = AgentRecord(
                agent_id=agent_id,
                owner_user_id=owner_user_id,
                display_name=(
                    display_name.strip() if display_name
                    else self.identity.default_display_name(agent_id)
                ),
                secret_material=secret_material.strip(),
            )
            self._agents[agent_id] = record
            self._owner_index.setdefault(owner_user_id, set()).add(agent_id)

        logger.info(
            "Agent created: %s (%s) for user %s",
            record.display_name, agent_id, owner_user_id,
        )
        return agent_id

    def get(self, agent_id: str) -> AgentRecord | None:
        with self._lock:
            return self._agents.get(agent_id)

    def require(self, agent_id: str, owner_user_id: str | None = None) -> AgentRecord:
        """Like get(), but raises AgentNotFound; also checks ownership when given."""
        record = self.get(agent_id)
        if record is None or (
            owner_user_id is not None and record.owner_user_id != owner_user_id
        ):
            raise AgentNotFound(agent_id)
        return record

    def list_by_owner(self, owner_user_id: str) -> list[AgentSummary]:
        with self._lock:
            records = [self._agents[aid] for aid in self._owner_index.get(owner_user_id, ())]
        records.sort(key=lambda r: r.created_at)
        return [r.to_summary() for r in records]

    def list_all(self) -> list[AgentSummary]:
        with self._lock:
            records = list(self._agents.values())
        records.sort(key=lambda r: r.created_at)
        return [r.to_summary() for r in records]

    def owners(self) -> list[str]:
        with self._lock:
            return list(self._owner_index)

    def rename(self, agent_id: str, new_display_name: str) -> AgentSummary:
        if not new_display_name or not new_display_name.strip():
            raise InvalidInput("Agent name cannot be empty")
        with self._lock:
            record = self._agents.get(agent_id)
            if record is None:
                raise AgentNotFound(agent_id)
            old_name = record.display_name
            record.display_name = new_display_name.strip()
            summary = record.to_summary()
        logger.info("Agent renamed: %s -> %s (%s)", old_name, summary.display_name, agent_id)
        return summary

    def touch_activity(self, agent_id: str, now: datetime | None = None) -> None:
        """Mark the agent active. A concurrently removed agent is ignored."""
        with self._lock:
            record = self._agents.get(agent_id)
            if record is not None:
                record.touch(now)

    def snapshot(self) -> list[AgentRecord]:
        """Point-in-time copy of all records, for sweeps."""
        with self._lock:
            return list(self._agents.values())

    def _unlink(self, agent_id: str) -> AgentRecord | None:
        with self._lock:
            record = self._agents.pop(agent_id, None)
            if record is None:
                return None
            owned = self._owner_index.get(record.owner_user_id)
            if owned is not None:
                owned.discard(agent_id)
                if not owned:
                    del self._owner_index[record.owner_user_id]
            record.removed = True
            return record

    async def remove(self, agent_id: str) -> bool:
        """Remove an agent, its owner-index entry and its conversation.

        The record is unlinked first, so new lookups fail immediately; the
        conversation is deleted only after any in-flight turn has finished.
        If that delete fails the runtimes are still dropped and the cascade
        stays pending: calling remove again for the same id retries it.
        """
        record = self._unlink(agent_id)
        if record is None:
            with self._lock:
                owner = self._pending_cascades.get(agent_id)
            if owner is None:
                return False
            await self.conversations.delete_for_agent(owner, agent_id)
            with self._lock:
                self._pending_cascades.pop(agent_id, None)
            logger.info("Pending conversation cascade completed for %s", agent_id)
            return True

        async with record.turn_lock:
            try:
                await self.conversations.delete_for_agent(record.owner_user_id, agent_id)
            except Exception:
                with self._lock:
                    self._pending_cascades[agent_id] = record.owner_user_id
                raise
            finally:
                record.detach_runtimes()

        logger.info("Agent removed: %s (%s)", record.display_name, agent_id)
        return True

    def pending_cascades(self) -> list[str]:
        with self._lock:
            return list(self._pending_cascades)

    async def retry_pending_cascades(self) -> int:
        """Retry conversation deletes left behind by failed removals."""
        retried = 0
        for agent_id in self.pending_cascades():
            if await self.remove(agent_id):
                retried += 1
        return retried

    async def remove_all_for_owner(self, owner_user_id: str) -> int:
        with self._lock:
            agent_ids = list(self._owner_index.get(owner_user_id, ()))
        removed = 0
        for agent_id in agent_ids:
            if await self.remove(agent_id):
                removed += 1
        if removed:
            logger.info("Removed %d agents for user %s", removed, owner_user_id)
        return removed
