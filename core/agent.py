from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, PrivateAttr

from core.errors import RuntimeInitError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentSummary(BaseModel):
    """Read projection of an agent. Never carries secret material."""

    agent_id: str
    owner_user_id: str
    display_name: str
    created_at: datetime
    last_active_at: datetime
    initialized: bool = False
    llm_initialized: bool = False
    address: Optional[str] = None


class AgentRecord(BaseModel):
    """A user-owned agent: one signing identity plus one conversational runtime."""

    model_config = {"arbitrary_types_allowed": True}

    agent_id: str
    owner_user_id: str
    display_name: str
    secret_material: str = Field(exclude=True, repr=False)
    blockchain_runtime: Optional[Any] = Field(default=None, exclude=True, repr=False)
    conversational_runtime: Optional[Any] = Field(default=None, exclude=True, repr=False)
    created_at: datetime = Field(default_factory=utcnow)
    last_active_at: datetime = Field(default_factory=utcnow)
    removed: bool = False

    # Serializes runtime construction for this record.
    _bind_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)
    # FIFO per-agent turn lock; also awaited by removal before cascading.
    _turn_lock: asyncio.Lock = PrivateAttr(default_factory=asyncio.Lock)

    @property
    def bind_lock(self) -> asyncio.Lock:
        return self._bind_lock

    @property
    def turn_lock(self) -> asyncio.Lock:
        return self._turn_lock

    def attach_blockchain_runtime(self, runtime: Any) -> None:
        self.blockchain_runtime = runtime

    def attach_conversational_runtime(self, runtime: Any) -> None:
        if self.blockchain_runtime is None:
            raise RuntimeInitError(
                f"Agent {self.agent_id} has no blockchain runtime; bind it first"
            )
        self.conversational_runtime = runtime

    def detach_runtimes(self) -> None:
        # Conversational first so the binding-order invariant holds throughout.
        self.conversational_runtime = None
        self.blockchain_runtime = None

    def touch(self, now: datetime | None = None) -> None:
        now = now or utcnow()
        self.last_active_at = max(now, self.created_at)

    def to_summary(self) -> AgentSummary:
        address = getattr(self.blockchain_runtime, "address", None)
        return AgentSummary(
            agent_id=self.agent_id,
            owner_user_id=self.owner_user_id,
            display_name=self.display_name,
            created_at=self.created_at,
            last_active_at=self.last_active_at,
            initialized=self.blockchain_runtime is not None,
            llm_initialized=self.conversational_runtime is not None,
            address=address,
        )
