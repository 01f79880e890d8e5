"""In-test stand-ins for the blockchain and conversational collaborators."""

from __future__ import annotations

import asyncio
import hashlib

from core.errors import InvalidSecret, TransferFailed, UpstreamFailure


class FakeSigner:
    def __init__(self, secret: str):
        self.secret = secret
        self.address = "0x" + hashlib.sha256(secret.encode()).hexdigest()
        self.transfers: list[tuple] = []

    async def query_native_balance(self, address=None):
        return 100_000_000

    async def query_asset_balance(self, asset_id, address=None):
        return 42

    async def transfer(self, to_address, amount, asset_id=None):
        if amount > 1_000_000_000:
            raise TransferFailed("insufficient balance")
        self.transfers.append((to_address, amount, asset_id))
        return "0xfeed"

    async def verify_signature(self, address, message, signature, public_key=None):
        return signature == "good"


class FakeChainClient:
    """Counts bind calls; secrets starting with "bad" are rejected."""

    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.bind_calls = 0
        self.closed = False

    async def bind_signer(self, secret: str) -> FakeSigner:
        self.bind_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if secret.startswith("bad"):
            raise InvalidSecret()
        return FakeSigner(secret)

    async def aclose(self):
        self.closed = True


class FakeRuntime:
    """Echoes the last user message; replies can be slowed down or made to fail."""

    def __init__(
        self,
        memory_key: str,
        reply_delay: float = 0.0,
        reply_fail: Exception | None = None,
        fail_after: int | None = None,
    ):
        self.memory_key = memory_key
        self.reply_delay = reply_delay
        self.reply_fail = reply_fail
        self.fail_after = fail_after
        self.calls: list[list[tuple[str, str]]] = []

    def _record(self, history) -> str:
        self.calls.append([(m.role.value, m.content) for m in history])
        return history[-1].content

    async def reply(self, history) -> str:
        last = self._record(history)
        if self.reply_delay:
            await asyncio.sleep(self.reply_delay)
        if self.reply_fail is not None:
            raise self.reply_fail
        return f"echo: {last}"

    async def reply_streaming(self, history):
        last = self._record(history)
        for i, fragment in enumerate(["echo", ": ", last]):
            if self.fail_after is not None and i == self.fail_after:
                raise UpstreamFailure("stream broke")
            if self.reply_delay:
                await asyncio.sleep(self.reply_delay)
            yield fragment


class FakeConversationFactory:
    """Counts build calls.

    `delay` and `fail` apply to `build`; `runtime_options` (`reply_delay`,
    `reply_fail`, `fail_after`) are handed to every runtime it builds.
    """

    def __init__(self, delay: float = 0.0, fail: Exception | None = None, **runtime_options):
        self.delay = delay
        self.fail = fail
        self.runtime_options = runtime_options
        self.build_calls = 0
        self.builds: list[tuple] = []
        self.closed = False

    async def build(self, signer, toolset, memory_key) -> FakeRuntime:
        self.build_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        self.builds.append((signer, toolset, memory_key))
        return FakeRuntime(memory_key, **self.runtime_options)

    async def aclose(self):
        self.closed = True
