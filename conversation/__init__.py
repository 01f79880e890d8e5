"""Conversation system: Claude runtime, wallet tools, and context building."""

from conversation.context_builder import build_messages, build_system_prompt
from conversation.engine import ConversationalRuntime, ConversationFactory
from conversation.tools import WALLET_TOOLS, WalletToolset

__all__ = [
    "ConversationFactory",
    "ConversationalRuntime",
    "WALLET_TOOLS",
    "WalletToolset",
    "build_messages",
    "build_system_prompt",
]
