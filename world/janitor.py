"""LivenessJanitor: evicts agents that have been idle too long."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from core.agent import utcnow

if TYPE_CHECKING:
    from memory.conversation import ConversationStore
    from world.registry import AgentRegistry

logger = logging.getLogger(__name__)


class LivenessJanitor:
    """Periodic and on-demand liveness sweeps over the registry."""

    def __init__(
        self,
        registry: AgentRegistry,
        conversations: ConversationStore | None = None,
        max_age: timedelta = timedelta(hours=24),
        interval: float = 3600,
        retention: timedelta | None = None,
    ):
        self.registry = registry
        self.conversations = conversations
        self.max_age = max_age
        self.interval = interval
        self.retention = retention
        self._task: asyncio.Task | None = None
        self._running = False

    async def sweep(self, max_age: timedelta | None = None, now: datetime | None = None) -> int:
        """Remove agents whose last activity is strictly older than now - max_age.

        Works from a snapshot; one failed removal does not stop the sweep.
        Conversation deletes left pending by earlier failures are retried first.
        """
        if self.registry.pending_cascades():
            try:
                await self.registry.retry_pending_cascades()
            except Exception:
                logger.exception("Retrying pending conversation cascades failed")
        max_age = self.max_age if max_age is None else max_age
        cutoff = (now or utcnow()) - max_age
        removed = 0
        for record in self.registry.snapshot():
            if record.last_active_at >= cutoff:
                continue
            try:
                if await self.registry.remove(record.agent_id):
                    removed += 1
            except Exception:
                logger.exception("Sweep failed to remove agent %s", record.agent_id)
        if removed:
            logger.info("Liveness sweep removed %d idle agents", removed)
        return removed

    async def prune_conversations(self, now: datetime | None = None) -> int:
        """Drop conversation logs idle beyond the retention period."""
        if self.conversations is None or self.retention is None:
            return 0
        return await self.conversations.delete_older_than((now or utcnow()) - self.retention)

    async def run_forever(self) -> None:
        while self._running:
            await asyncio.sleep(self.interval)
            if not self._running:
                break
            try:
                await self.sweep()
                await self.prune_conversations()
            except Exception:
                logger.exception("Liveness sweep failed")

    def start(self) -> None:
        if self._task is not None or self.interval <= 0:
            return
        self._running = True
        self._task = asyncio.create_task(self.run_forever())
        logger.info("Liveness janitor started (every %ss)", self.interval)

    async def stop(self) -> None:
        self._running = False
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("Liveness janitor stopped")
