"""ConversationEngine: async Claude API runtime for wallet agents.

ConversationFactory builds one ConversationalRuntime per agent. A runtime
turns a stored conversation window into a Claude reply, running the
wallet tool loop against the agent's signer along the way, either as a
single string or as a stream of text fragments.
"""

from __future__ import annotations

import logging
from collections import deque
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

import anthropic

from config.settings import Settings
from conversation.context_builder import build_messages, build_system_prompt
from core.errors import InvalidInput, RuntimeInitError, UpstreamFailure, UpstreamTimeout

if TYPE_CHECKING:
    from conversation.tools import WalletToolset
    from memory.conversation import ConversationMessage

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 3  # prevent infinite tool call loops
SCRATCHPAD_SIZE = 5
ROUND_SEPARATOR = "\n\n"
INCOMPLETE_REPLY = (
    "I couldn't finish that request within the allowed number of wallet "
    "operations. Please try again or break it into smaller steps."
)


@contextmanager
def _upstream_errors(timeout: float):
    """Translate SDK exceptions into the service's error taxonomy."""
    try:
        yield
    except anthropic.APITimeoutError as e:
        raise UpstreamTimeout("Claude API call", timeout) from e
    except anthropic.APIError as e:
        raise UpstreamFailure(f"Claude API call failed: {e}") from e


class ConversationalRuntime:
    """Tool-augmented Claude conversation scoped to one agent's signer."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        settings: Settings,
        signer: Any,
        toolset: WalletToolset,
        memory_key: str,
    ):
        self.client = client
        self.settings = settings
        self.signer = signer
        self.toolset = toolset
        self.memory_key = memory_key
        # Per-thread scratchpad of recent tool results, kept across turns
        self.scratchpad: deque[str] = deque(maxlen=SCRATCHPAD_SIZE)

    async def reply(self, history: list[ConversationMessage]) -> str:
        """Produce a single reply for the given window."""
        system_prompt, messages = self._prepare(history)
        with _upstream_errors(self.settings.LLM_TIMEOUT):
            response = await self.client.messages.create(
                **self._request_kwargs(system_prompt, messages)
            )
            for _round in range(MAX_TOOL_ROUNDS):
                if response.stop_reason != "tool_use":
                    break
                messages = messages + await self._run_tools(response)
                response = await self.client.messages.create(
                    **self._request_kwargs(system_prompt, messages)
                )
        text = self._extract_text(response) or INCOMPLETE_REPLY
        logger.debug("[%s] Claude reply: %d chars", self.memory_key, len(text))
        return text

    async def reply_streaming(self, history: list[ConversationMessage]) -> AsyncIterator[str]:
        """Yield text fragments as they arrive, running tools between rounds."""
        system_prompt, messages = self._prepare(history)
        emitted = False
        with _upstream_errors(self.settings.LLM_TIMEOUT):
            for round_no in range(MAX_TOOL_ROUNDS + 1):
                round_started = False
                async with self.client.messages.stream(
                    **self._request_kwargs(system_prompt, messages)
                ) as stream:
                    async for fragment in stream.text_stream:
                        if not fragment:
                            continue
                        if emitted and not round_started:
                            yield ROUND_SEPARATOR
                        round_started = emitted = True
                        yield fragment
                    final = await stream.get_final_message()
                if final.stop_reason != "tool_use" or round_no == MAX_TOOL_ROUNDS:
                    break
                messages = messages + await self._run_tools(final)
        if not emitted:
            yield INCOMPLETE_REPLY

    def _prepare(self, history: list[ConversationMessage]) -> tuple[str, list[dict]]:
        extra, messages = build_messages(history)
        if not messages:
            raise InvalidInput("Conversation has no user message to reply to")
        if self.scratchpad:
            notes = "\n".join(f"- {entry}" for entry in self.scratchpad)
            extra = f"{extra}\n\nRecent wallet tool results:\n{notes}".strip()
        return build_system_prompt(self.signer.address, extra), messages

    def _request_kwargs(self, system_prompt: str, messages: list[dict]) -> dict[str, Any]:
        return {
            "model": self.settings.MODEL_NAME,
            "max_tokens": self.settings.MAX_REPLY_TOKENS,
            "system": system_prompt,
            "messages": messages,
            "tools": self.toolset.schemas,
            "metadata": {"user_id": self.memory_key},
        }

    async def _run_tools(self, response) -> list[dict]:
        """Execute requested tools; return the assistant + tool_result turns."""
        assistant_content = []
        tool_results = []
        for block in response.content:
            if block.type == "text":
                assistant_content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                tool_input = block.input
                if hasattr(tool_input, "model_dump"):
                    tool_input = tool_input.model_dump()
                tool_input = dict(tool_input) if tool_input else {}
                assistant_content.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": tool_input,
                })
                logger.info("[%s] Tool call: %s", self.memory_key, block.name)
                result = await self.toolset.execute(block.name, tool_input)
                self.scratchpad.append(f"{block.name}: {result}")
                tool_results.append({
                    "type": "tool_result",
                    "tool_use_id": block.id,
                    "content": result,
                })
        return [
            {"role": "assistant", "content": assistant_content},
            {"role": "user", "content": tool_results},
        ]

    @staticmethod
    def _extract_text(response) -> str:
        """Extract text content from a Claude response, ignoring tool_use blocks."""
        parts = [b.text for b in response.content if b.type == "text"]
        return " ".join(parts) if parts else ""


class ConversationFactory:
    """Builds conversational runtimes sharing one Anthropic client."""

    def __init__(self, settings: Settings, client: anthropic.AsyncAnthropic | None = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self.settings.ANTHROPIC_API_KEY:
                raise RuntimeInitError("ANTHROPIC_API_KEY is not configured")
            # Router calls are at-most-once; no SDK-level retries.
            self._client = anthropic.AsyncAnthropic(
                api_key=self.settings.ANTHROPIC_API_KEY,
                max_retries=0,
                timeout=self.settings.LLM_TIMEOUT,
            )
        return self._client

    async def build(
        self,
        signer: Any,
        toolset: WalletToolset,
        memory_key: str,
    ) -> ConversationalRuntime:
        client = self._get_client()
        if self.settings.VERIFY_MODEL_ON_BIND:
            try:
                await client.models.retrieve(self.settings.MODEL_NAME)
            except anthropic.AuthenticationError as e:
                raise RuntimeInitError("LLM credential was rejected") from e
            except anthropic.APIError as e:
                raise RuntimeInitError(f"LLM runtime unavailable: {e}") from e
        logger.info("Conversational runtime built for %s", memory_key)
        return ConversationalRuntime(client, self.settings, signer, toolset, memory_key)

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.close()
            self._client = None
