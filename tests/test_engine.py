from types import SimpleNamespace

import anthropic
import httpx
import pytest

from conversation.context_builder import build_messages, build_system_prompt
from conversation.engine import (
    INCOMPLETE_REPLY,
    MAX_TOOL_ROUNDS,
    ROUND_SEPARATOR,
    ConversationFactory,
)
from conversation.tools import WalletToolset
from core.errors import InvalidInput, RuntimeInitError, UpstreamFailure, UpstreamTimeout
from fakes import FakeSigner
from memory.conversation import ConversationMessage, Role

REQUEST = httpx.Request("POST", "https://api.anthropic.com/v1/messages")


def text_block(text):
    return SimpleNamespace(type="text", text=text)


def tool_block(name, tool_input, block_id="toolu_1"):
    return SimpleNamespace(type="tool_use", id=block_id, name=name, input=tool_input)


def response(*blocks, stop_reason="end_turn"):
    return SimpleNamespace(content=list(blocks), stop_reason=stop_reason)


class StubStream:
    def __init__(self, fragments, final):
        self.fragments = fragments
        self.final = final

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    @property
    def text_stream(self):
        async def gen():
            for f in self.fragments:
                yield f
        return gen()

    async def get_final_message(self):
        return self.final


class StubMessages:
    def __init__(self, responses=(), streams=()):
        self.responses = list(responses)
        self.streams = list(streams)
        self.calls = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        result = self.responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def stream(self, **kwargs):
        self.calls.append(kwargs)
        return StubStream(*self.streams.pop(0))


class StubModels:
    def __init__(self, error=None):
        self.error = error
        self.retrieved = []

    async def retrieve(self, model_id):
        self.retrieved.append(model_id)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(id=model_id)


class StubClient:
    def __init__(self, responses=(), streams=(), model_error=None):
        self.messages = StubMessages(responses, streams)
        self.models = StubModels(model_error)


def history(*pairs):
    return [ConversationMessage(role=role, content=content) for role, content in pairs]


async def build(settings, client, memory_key="agent-1"):
    signer = FakeSigner("secret1")
    factory = ConversationFactory(settings, client=client)
    return await factory.build(signer, WalletToolset(signer), memory_key)


class TestFactory:
    async def test_missing_credential(self, settings):
        settings.ANTHROPIC_API_KEY = ""
        factory = ConversationFactory(settings)
        signer = FakeSigner("secret1")
        with pytest.raises(RuntimeInitError, match="ANTHROPIC_API_KEY"):
            await factory.build(signer, WalletToolset(signer), "agent-1")

    async def test_verifies_model(self, settings):
        client = StubClient()
        await build(settings, client)
        assert client.models.retrieved == [settings.MODEL_NAME]

    async def test_verification_can_be_disabled(self, settings):
        settings.VERIFY_MODEL_ON_BIND = False
        client = StubClient()
        await build(settings, client)
        assert client.models.retrieved == []

    async def test_rejected_credential(self, settings):
        error = anthropic.AuthenticationError(
            "invalid x-api-key",
            response=httpx.Response(401, request=REQUEST),
            body=None,
        )
        with pytest.raises(RuntimeInitError, match="rejected"):
            await build(settings, StubClient(model_error=error))

    async def test_unreachable_upstream(self, settings):
        error = anthropic.APIConnectionError(request=REQUEST)
        with pytest.raises(RuntimeInitError):
            await build(settings, StubClient(model_error=error))


class TestReply:
    async def test_plain_reply(self, settings):
        client = StubClient(responses=[response(text_block("Hi there"))])
        runtime = await build(settings, client)

        reply = await runtime.reply(history((Role.USER, "hello")))
        assert reply == "Hi there"

        call = client.messages.calls[0]
        assert call["model"] == settings.MODEL_NAME
        assert call["max_tokens"] == settings.MAX_REPLY_TOKENS
        assert call["metadata"] == {"user_id": "agent-1"}
        assert call["messages"] == [{"role": "user", "content": "hello"}]
        assert runtime.signer.address in call["system"]
        assert {t["name"] for t in call["tools"]} == {
            "get_wallet_address", "get_balance", "get_asset_balance",
            "transfer", "verify_signature",
        }

    async def test_tool_round(self, settings):
        client = StubClient(responses=[
            response(
                text_block("Let me check."),
                tool_block("get_balance", {}),
                stop_reason="tool_use",
            ),
            response(text_block("You have 1 APT.")),
        ])
        runtime = await build(settings, client)

        reply = await runtime.reply(history((Role.USER, "What is my balance?")))
        assert reply == "You have 1 APT."

        followup = client.messages.calls[1]["messages"]
        assert followup[1]["role"] == "assistant"
        assert followup[1]["content"][1]["name"] == "get_balance"
        tool_result = followup[2]["content"][0]
        assert tool_result["type"] == "tool_result"
        assert tool_result["tool_use_id"] == "toolu_1"
        assert '"balance": 100000000' in tool_result["content"]

    async def test_tool_results_survive_across_turns(self, settings):
        client = StubClient(responses=[
            response(tool_block("get_balance", {}), stop_reason="tool_use"),
            response(text_block("Done.")),
            response(text_block("Again.")),
        ])
        runtime = await build(settings, client)

        await runtime.reply(history((Role.USER, "balance?")))
        await runtime.reply(history((Role.USER, "and now?")))
        assert "Recent wallet tool results" in client.messages.calls[2]["system"]
        assert "get_balance" in client.messages.calls[2]["system"]

    async def test_tool_rounds_are_bounded(self, settings):
        looping = response(tool_block("get_wallet_address", {}), stop_reason="tool_use")
        client = StubClient(responses=[looping] * (MAX_TOOL_ROUNDS + 5))
        runtime = await build(settings, client)

        assert await runtime.reply(history((Role.USER, "loop"))) == INCOMPLETE_REPLY
        assert len(client.messages.calls) == MAX_TOOL_ROUNDS + 1

    async def test_timeout_maps_to_upstream_timeout(self, settings):
        client = StubClient(responses=[anthropic.APITimeoutError(request=REQUEST)])
        runtime = await build(settings, client)
        with pytest.raises(UpstreamTimeout):
            await runtime.reply(history((Role.USER, "hello")))

    async def test_api_error_maps_to_upstream_failure(self, settings):
        client = StubClient(responses=[anthropic.APIConnectionError(request=REQUEST)])
        runtime = await build(settings, client)
        with pytest.raises(UpstreamFailure) as exc:
            await runtime.reply(history((Role.USER, "hello")))
        assert not isinstance(exc.value, UpstreamTimeout)

    async def test_needs_a_user_message(self, settings):
        runtime = await build(settings, StubClient())
        with pytest.raises(InvalidInput):
            await runtime.reply(history((Role.ASSISTANT, "orphan")))


class TestStreaming:
    async def test_streams_across_tool_rounds(self, settings):
        client = StubClient(streams=[
            (["Checking"], response(tool_block("get_balance", {}), stop_reason="tool_use")),
            (["You have", " 1 APT."], response(text_block("You have 1 APT."))),
        ])
        runtime = await build(settings, client)

        fragments = [f async for f in runtime.reply_streaming(history((Role.USER, "balance?")))]
        assert fragments == ["Checking", ROUND_SEPARATOR, "You have", " 1 APT."]
        assert len(client.messages.calls) == 2
        assert client.messages.calls[1]["messages"][-1]["content"][0]["type"] == "tool_result"

    async def test_silent_tool_round_adds_no_separator(self, settings):
        client = StubClient(streams=[
            ([], response(tool_block("get_balance", {}), stop_reason="tool_use")),
            (["You have 1 APT."], response(text_block("You have 1 APT."))),
        ])
        runtime = await build(settings, client)

        fragments = [f async for f in runtime.reply_streaming(history((Role.USER, "balance?")))]
        assert fragments == ["You have 1 APT."]

    async def test_bounded_stream_falls_back_to_notice(self, settings):
        looping = ([], response(tool_block("get_wallet_address", {}), stop_reason="tool_use"))
        client = StubClient(streams=[looping] * (MAX_TOOL_ROUNDS + 5))
        runtime = await build(settings, client)

        fragments = [f async for f in runtime.reply_streaming(history((Role.USER, "loop")))]
        assert fragments == [INCOMPLETE_REPLY]
        assert len(client.messages.calls) == MAX_TOOL_ROUNDS + 1


class TestTools:
    async def test_unknown_tool(self):
        toolset = WalletToolset(FakeSigner("secret1"))
        assert (await toolset.execute("rm_rf", {})).startswith("Error: unknown tool")

    async def test_failures_become_text(self):
        toolset = WalletToolset(FakeSigner("secret1"))
        result = await toolset.execute("transfer", {"to_address": "0x2", "amount": 10**12})
        assert result == "Error: insufficient balance"

    async def test_bad_arguments_become_text(self):
        toolset = WalletToolset(FakeSigner("secret1"))
        result = await toolset.execute("get_asset_balance", {})
        assert result.startswith("Error: invalid arguments")

    async def test_transfer(self):
        signer = FakeSigner("secret1")
        result = await WalletToolset(signer).execute("transfer", {"to_address": "0x2", "amount": 5})
        assert '"hash": "0xfeed"' in result
        assert signer.transfers == [("0x2", 5, None)]


class TestContextBuilder:
    def test_system_prompt_carries_address(self):
        prompt = build_system_prompt("0xabc", "be terse")
        assert "0xabc" in prompt
        assert prompt.endswith("be terse")

    def test_normalizes_window(self):
        extra, messages = build_messages(history(
            (Role.ASSISTANT, "leftover"),
            (Role.SYSTEM, "be terse"),
            (Role.USER, "a"),
            (Role.USER, "b"),
            (Role.ASSISTANT, "c"),
        ))
        assert extra == "be terse"
        assert messages == [
            {"role": "user", "content": "a\n\nb"},
            {"role": "assistant", "content": "c"},
        ]
