"""Wallet tools exposed to the conversational runtime."""

from __future__ import annotations

import json
import logging
from typing import Any

from core.errors import AgentServiceError

logger = logging.getLogger(__name__)


WALLET_TOOLS = [
    {
        "name": "get_wallet_address",
        "description": "Return the Aptos address of this agent's wallet.",
        "input_schema": {"type": "object", "properties": {}},
    },
    {
        "name": "get_balance",
        "description": (
            "Get the native APT balance (in octas) of an address. "
            "Defaults to this agent's own wallet."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "address": {
                    "type": "string",
                    "description": "Aptos address to query; omit for the agent's own wallet",
                },
            },
        },
    },
    {
        "name": "get_asset_balance",
        "description": (
            "Get the balance of a coin type (e.g. 0x1::aptos_coin::AptosCoin) "
            "or a fungible asset metadata address."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "asset_id": {
                    "type": "string",
                    "description": "Coin type or fungible asset metadata address",
                },
                "address": {
                    "type": "string",
                    "description": "Aptos address to query; omit for the agent's own wallet",
                },
            },
            "required": ["asset_id"],
        },
    },
    {
        "name": "transfer",
        "description": (
            "Transfer tokens from this agent's wallet. Amount is in the "
            "asset's smallest unit (octas for APT). Only use when the user "
            "explicitly asks for a transfer."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "to_address": {"type": "string", "description": "Recipient address"},
                "amount": {"type": "integer", "description": "Amount in smallest units"},
                "asset_id": {
                    "type": "string",
                    "description": "Coin type or fungible asset address; omit for APT",
                },
            },
            "required": ["to_address", "amount"],
        },
    },
    {
        "name": "verify_signature",
        "description": "Check that a message signature was produced by the owner of an address.",
        "input_schema": {
            "type": "object",
            "properties": {
                "address": {"type": "string"},
                "message": {"type": "string"},
                "signature": {"type": "string", "description": "Hex-encoded Ed25519 signature"},
                "public_key": {
                    "type": "string",
                    "description": "Hex-encoded public key, required for foreign addresses",
                },
            },
            "required": ["address", "message", "signature"],
        },
    },
]


class WalletToolset:
    """Binds the wallet tool schemas to one agent's signer."""

    def __init__(self, signer: Any):
        self.signer = signer

    @property
    def schemas(self) -> list[dict]:
        return WALLET_TOOLS

    @property
    def names(self) -> set[str]:
        return {tool["name"] for tool in WALLET_TOOLS}

    async def execute(self, name: str, arguments: dict[str, Any] | None) -> str:
        """Run a tool and return its result as text for the model.

        Failures are returned as error text so the turn can continue.
        """
        arguments = dict(arguments or {})
        handler = getattr(self, f"_tool_{name}", None)
        if handler is None or name not in self.names:
            return f"Error: unknown tool {name!r}"
        try:
            result = await handler(**arguments)
        except AgentServiceError as e:
            logger.info("Tool %s failed: %s", name, e.message)
            return f"Error: {e.message}"
        except (TypeError, ValueError) as e:
            return f"Error: invalid arguments for {name}: {e}"
        return json.dumps(result)

    async def _tool_get_wallet_address(self) -> dict:
        return {"address": self.signer.address}

    async def _tool_get_balance(self, address: str | None = None) -> dict:
        balance = await self.signer.query_native_balance(address)
        return {"address": address or self.signer.address, "balance": balance}

    async def _tool_get_asset_balance(self, asset_id: str, address: str | None = None) -> dict:
        balance = await self.signer.query_asset_balance(asset_id, address)
        return {
            "address": address or self.signer.address,
            "asset_id": asset_id,
            "balance": balance,
        }

    async def _tool_transfer(
        self,
        to_address: str,
        amount: int,
        asset_id: str | None = None,
    ) -> dict:
        tx_hash = await self.signer.transfer(to_address, int(amount), asset_id)
        return {"status": "confirmed", "hash": tx_hash}

    async def _tool_verify_signature(
        self,
        address: str,
        message: str,
        signature: str,
        public_key: str | None = None,
    ) -> dict:
        valid = await self.signer.verify_signature(address, message, signature, public_key)
        return {"valid": valid}
