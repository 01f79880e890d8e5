"""RuntimeBinder: lazy, single-construction binding of agent runtimes."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from conversation.tools import WalletToolset
from core.agent import AgentRecord

logger = logging.getLogger(__name__)


class ChainClient(Protocol):
    async def bind_signer(self, secret: str) -> Any: ...


class RuntimeFactory(Protocol):
    async def build(self, signer: Any, toolset: Any, memory_key: str) -> Any: ...


class RuntimeBinder:
    """Materializes and caches the blockchain and conversational runtimes.

    Construction for a record is serialized on the record's bind lock and
    re-checked after acquiring it, so concurrent first callers share one
    runtime instance.
    """

    def __init__(
        self,
        chain_client: ChainClient,
        conversation_factory: RuntimeFactory,
        toolset_builder: Callable[[Any], Any] = WalletToolset,
    ):
        self.chain_client = chain_client
        self.conversation_factory = conversation_factory
        self.toolset_builder = toolset_builder

    async def ensure_blockchain_runtime(self, record: AgentRecord) -> Any:
        if record.blockchain_runtime is not None:
            return record.blockchain_runtime
        async with record.bind_lock:
            if record.blockchain_runtime is None:
                signer = await self.chain_client.bind_signer(record.secret_material)
                record.attach_blockchain_runtime(signer)
                logger.info(
                    "Blockchain runtime bound for agent %s (%s)",
                    record.agent_id, getattr(signer, "address", "?"),
                )
            return record.blockchain_runtime

    async def ensure_conversational_runtime(self, record: AgentRecord) -> Any:
        if record.conversational_runtime is not None:
            return record.conversational_runtime
        signer = await self.ensure_blockchain_runtime(record)
        async with record.bind_lock:
            if record.conversational_runtime is None:
                runtime = await self.conversation_factory.build(
                    signer, self.toolset_builder(signer), record.agent_id,
                )
                record.attach_conversational_runtime(runtime)
                logger.info("Conversational runtime bound for agent %s", record.agent_id)
            return record.conversational_runtime
