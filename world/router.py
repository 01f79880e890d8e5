"""MessageRouter: runs one chat turn against an agent's runtimes.

A turn holds the agent's turn lock from the user append to the assistant
append, so turns to the same agent are recorded in arrival order and a
turn's user/assistant pair is never split. Different agents never wait on
each other.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, AsyncIterator, Awaitable

from core.errors import AgentNotFound, InvalidInput, UpstreamTimeout
from memory.conversation import Role

if TYPE_CHECKING:
    from core.agent import AgentRecord
    from memory.conversation import ConversationStore
    from world.binder import RuntimeBinder
    from world.registry import AgentRegistry

logger = logging.getLogger(__name__)


class MessageRouter:
    """Coordinates registry, binder and conversation log per message."""

    def __init__(
        self,
        registry: AgentRegistry,
        binder: RuntimeBinder,
        conversations: ConversationStore,
        context_window: int = 10,
        reply_timeout: float | None = None,
    ):
        self.registry = registry
        self.binder = binder
        self.conversations = conversations
        self.context_window = context_window
        self.reply_timeout = reply_timeout

    async def route(self, agent_id: str, owner_user_id: str, message: str) -> str:
        """Deliver a message and return the agent's full reply.

        The turn runs in its own task. If the caller goes away the turn
        still completes and is recorded; only the delivery is dropped.
        """
        text = self._validate(message)
        record = self.registry.require(agent_id, owner_user_id)
        turn = asyncio.ensure_future(self._run_turn(record, text))
        turn.add_done_callback(_log_turn_failure)
        return await asyncio.shield(turn)

    async def route_stream(
        self,
        agent_id: str,
        owner_user_id: str,
        message: str,
    ) -> AsyncIterator[str]:
        """Bind eagerly, then return an iterator over reply fragments.

        Binding failures raise here, before any fragment is produced.
        """
        text = self._validate(message)
        record = self.registry.require(agent_id, owner_user_id)
        runtime = await self.binder.ensure_conversational_runtime(record)
        if record.removed:
            # Removed while binding outside the turn lock; drop what was attached.
            record.detach_runtimes()
            raise AgentNotFound(record.agent_id)
        return self._stream_turn(record, runtime, text)

    async def _run_turn(self, record: AgentRecord, text: str) -> str:
        async with record.turn_lock:
            if record.removed:
                raise AgentNotFound(record.agent_id)
            runtime = await self.binder.ensure_conversational_runtime(record)
            if record.removed:
                raise AgentNotFound(record.agent_id)
            self.registry.touch_activity(record.agent_id)

            entry = await self.conversations.get_or_create(record.owner_user_id, record.agent_id)
            await self.conversations.append(entry, Role.USER, text)
            window = await self.conversations.read_recent(entry, self.context_window)

            reply = await self._with_timeout(runtime.reply(window))
            await self.conversations.append(entry, Role.ASSISTANT, reply)

        logger.debug("Turn completed for agent %s (%d chars)", record.agent_id, len(reply))
        return reply

    async def _stream_turn(self, record: AgentRecord, runtime, text: str) -> AsyncIterator[str]:
        async with record.turn_lock:
            if record.removed:
                raise AgentNotFound(record.agent_id)
            self.registry.touch_activity(record.agent_id)

            entry = await self.conversations.get_or_create(record.owner_user_id, record.agent_id)
            await self.conversations.append(entry, Role.USER, text)
            window = await self.conversations.read_recent(entry, self.context_window)

            fragments: list[str] = []
            stream = runtime.reply_streaming(window)
            deadline = self._deadline()
            try:
                while True:
                    try:
                        fragment = await self._next_fragment(stream, deadline)
                    except StopAsyncIteration:
                        break
                    fragments.append(fragment)
                    yield fragment
            finally:
                await stream.aclose()
            # Only a completed stream is recorded.
            await self.conversations.append(entry, Role.ASSISTANT, "".join(fragments))

        logger.debug("Streamed turn completed for agent %s", record.agent_id)

    async def _with_timeout(self, call: Awaitable[str]) -> str:
        if self.reply_timeout is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.reply_timeout)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout("Conversational reply", self.reply_timeout) from e

    def _deadline(self) -> float | None:
        if self.reply_timeout is None:
            return None
        return asyncio.get_running_loop().time() + self.reply_timeout

    async def _next_fragment(self, stream: AsyncIterator[str], deadline: float | None) -> str:
        """Next fragment, bounded by the whole stream's deadline."""
        if deadline is None:
            return await stream.__anext__()
        remaining = max(deadline - asyncio.get_running_loop().time(), 0)
        try:
            return await asyncio.wait_for(stream.__anext__(), timeout=remaining)
        except asyncio.TimeoutError as e:
            raise UpstreamTimeout("Conversational reply", self.reply_timeout) from e

    @staticmethod
    def _validate(message: str) -> str:
        if not isinstance(message, str) or not message.strip():
            raise InvalidInput("Message is required")
        return message


def _log_turn_failure(task: asyncio.Task) -> None:
    # Retrieves the exception so an undelivered failure is not reported as unhandled.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Turn ended with %s: %s", type(exc).__name__, exc)
