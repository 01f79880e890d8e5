"""ContextBuilder: constructs the prompt for Claude API calls.

Turns the agent's wallet identity into a system prompt and converts the
stored conversation window into Claude API message format.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from memory.conversation import ConversationMessage

logger = logging.getLogger(__name__)


BASE_PROMPT = """You are a helpful assistant that manages an Aptos blockchain wallet on behalf of its owner.
Your wallet address is {address}.

You can look up balances, verify signatures and make transfers using your tools.
Amounts are in the smallest unit of the asset (1 APT = 100000000 octas).
Never perform a transfer unless the user explicitly asks for one, and always
report the transaction hash afterwards. Be concise."""


def build_system_prompt(address: str, extra: str = "") -> str:
    """Build the system prompt for one agent.

    `extra` carries any system-role entries found in the conversation window.
    """
    prompt = BASE_PROMPT.format(address=address)
    if extra:
        prompt += f"\n\n{extra}"
    return prompt


def build_messages(history: list[ConversationMessage]) -> tuple[str, list[dict[str, str]]]:
    """Convert a conversation window into Claude API messages.

    Returns (system_extra, messages). System entries are folded into the
    system prompt, leading assistant entries are dropped (the API requires a
    user turn first) and consecutive same-role entries are merged so roles
    alternate.
    """
    system_parts: list[str] = []
    messages: list[dict[str, str]] = []

    for msg in history:
        role = msg.role.value if hasattr(msg.role, "value") else str(msg.role)
        if role == "system":
            system_parts.append(msg.content)
            continue
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += f"\n\n{msg.content}"
        else:
            messages.append({"role": role, "content": msg.content})

    if len(messages) < len(history) - len(system_parts):
        logger.debug("Context window normalized to %d messages", len(messages))
    return "\n\n".join(system_parts), messages
