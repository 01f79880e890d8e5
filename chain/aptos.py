"""Aptos blockchain runtime: signer handles over the node REST API.

One AptosClient (and its httpx connection pool) is shared by the whole
process; each agent binds its own SignerHandle from its private key.
Transactions are encoded by the node (`/transactions/encode_submission`)
and signed locally with Ed25519, so no BCS codec is needed here.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from typing import Any

import httpx
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)

from core.errors import (
    InvalidInput,
    InvalidSecret,
    RuntimeInitError,
    TransferFailed,
    UpstreamFailure,
    UpstreamTimeout,
)

logger = logging.getLogger(__name__)

APT_COIN = "0x1::aptos_coin::AptosCoin"
FA_METADATA = "0x1::fungible_asset::Metadata"
AIP80_PREFIX = "ed25519-priv-"
# Single-signer Ed25519 authentication key scheme byte
ED25519_SCHEME = b"\x00"

DEFAULT_MAX_GAS_AMOUNT = 200_000
DEFAULT_EXPIRATION_SECS = 600


def parse_private_key(secret: str) -> Ed25519PrivateKey:
    """Accept 0x-hex, bare hex, or AIP-80 `ed25519-priv-0x...` keys."""
    text = (secret or "").strip()
    if text.startswith(AIP80_PREFIX):
        text = text[len(AIP80_PREFIX):]
    if text.lower().startswith("0x"):
        text = text[2:]
    try:
        raw = bytes.fromhex(text)
    except ValueError:
        raise InvalidSecret() from None
    if len(raw) != 32:
        raise InvalidSecret()
    return Ed25519PrivateKey.from_private_bytes(raw)


def normalize_address(address: str) -> str:
    """Canonical long form: 0x followed by 64 lowercase hex chars."""
    text = (address or "").strip().lower()
    if text.startswith("0x"):
        text = text[2:]
    if not text or len(text) > 64:
        raise InvalidInput(f"Invalid Aptos address: {address!r}")
    try:
        int(text, 16)
    except ValueError:
        raise InvalidInput(f"Invalid Aptos address: {address!r}") from None
    return "0x" + text.rjust(64, "0")


def address_from_public_key(public_key: bytes) -> str:
    return "0x" + hashlib.sha3_256(public_key + ED25519_SCHEME).hexdigest()


def is_coin_type(asset_id: str) -> bool:
    return len(asset_id.split("::")) == 3


def transfer_payload(to_address: str, amount: int, asset_id: str | None = None) -> dict:
    if asset_id is None or asset_id == APT_COIN:
        function, type_args, args = "0x1::aptos_account::transfer", [], [to_address, str(amount)]
    elif is_coin_type(asset_id):
        function, type_args, args = (
            "0x1::aptos_account::transfer_coins", [asset_id], [to_address, str(amount)],
        )
    else:
        function, type_args, args = (
            "0x1::primary_fungible_store::transfer",
            [FA_METADATA],
            [normalize_address(asset_id), to_address, str(amount)],
        )
    return {
        "type": "entry_function_payload",
        "function": function,
        "type_arguments": type_args,
        "arguments": args,
    }


class SignerHandle:
    """A signer bound to one address, backed by the shared AptosClient."""

    def __init__(self, client: AptosClient, private_key: Ed25519PrivateKey):
        self._client = client
        self._private_key = private_key
        self._public_key = private_key.public_key().public_bytes(
            Encoding.Raw, PublicFormat.Raw,
        )
        self.address = address_from_public_key(self._public_key)

    @property
    def public_key_hex(self) -> str:
        return "0x" + self._public_key.hex()

    def describe(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "public_key": self.public_key_hex,
            "node_url": self._client.node_url,
        }

    def sign_bytes(self, data: bytes) -> bytes:
        return self._private_key.sign(data)

    def sign_message(self, message: str) -> str:
        return "0x" + self.sign_bytes(message.encode("utf-8")).hex()

    async def query_native_balance(self, address: str | None = None) -> int:
        return await self.query_asset_balance(APT_COIN, address)

    async def query_asset_balance(self, asset_id: str, address: str | None = None) -> int:
        owner = normalize_address(address) if address else self.address
        if is_coin_type(asset_id):
            result = await self._client.view("0x1::coin::balance", [asset_id], [owner])
        else:
            result = await self._client.view(
                "0x1::primary_fungible_store::balance",
                [FA_METADATA],
                [owner, normalize_address(asset_id)],
            )
        return int(result[0])

    async def transfer(self, to_address: str, amount: int, asset_id: str | None = None) -> str:
        """Sign, submit and wait for a transfer. Returns the transaction hash."""
        if amount <= 0:
            raise InvalidInput("Transfer amount must be positive")
        payload = transfer_payload(normalize_address(to_address), amount, asset_id)
        try:
            tx_hash = await self._client.submit_entry_function(self, payload)
            txn = await self._client.wait_for_transaction(tx_hash)
        except UpstreamTimeout:
            raise
        except UpstreamFailure as e:
            raise TransferFailed(f"Transfer failed: {e.message}") from e
        if not txn.get("success", False):
            raise TransferFailed(
                f"Transaction {tx_hash} failed: {txn.get('vm_status', 'unknown status')}"
            )
        logger.info("Transfer %s from %s confirmed", tx_hash, self.address)
        return tx_hash

    async def verify_signature(
        self,
        address: str,
        message: str,
        signature: str,
        public_key: str | None = None,
    ) -> bool:
        """Check `signature` over `message` was made by the key controlling `address`.

        Without an explicit public key only this signer's own address can be
        verified.
        """
        target = normalize_address(address)
        if public_key is None:
            if target != self.address:
                return False
            key_bytes = self._public_key
        else:
            try:
                key_bytes = bytes.fromhex(_strip_0x(public_key))
            except ValueError:
                return False

        try:
            sig_bytes = bytes.fromhex(_strip_0x(signature))
            Ed25519PublicKey.from_public_bytes(key_bytes).verify(
                sig_bytes, message.encode("utf-8"),
            )
        except (ValueError, InvalidSignature):
            return False

        account = await self._client.get_account(target)
        if account is None:
            # Not on chain yet: the address is still the original auth key.
            expected = target
        else:
            expected = normalize_address(account["authentication_key"])
        return address_from_public_key(key_bytes) == expected


def _strip_0x(value: str) -> str:
    value = value.strip()
    return value[2:] if value.lower().startswith("0x") else value


class AptosClient:
    """Shared connection to one Aptos fullnode."""

    def __init__(
        self,
        node_url: str,
        timeout: float = 15.0,
        retries: int = 2,
        transport: httpx.AsyncBaseTransport | None = None,
        poll_interval: float = 0.5,
        max_gas_amount: int = DEFAULT_MAX_GAS_AMOUNT,
    ):
        self.node_url = node_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.max_gas_amount = max_gas_amount
        self._http = httpx.AsyncClient(
            base_url=self.node_url,
            timeout=timeout,
            transport=transport or httpx.AsyncHTTPTransport(retries=retries),
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def bind_signer(self, secret: str) -> SignerHandle:
        """Build a signer from `secret` and confirm the node is reachable."""
        signer = SignerHandle(self, parse_private_key(secret))
        try:
            await self.get_account(signer.address)
        except UpstreamFailure as e:
            raise RuntimeInitError(f"Aptos node unavailable: {e.message}") from e
        logger.debug("Signer bound for %s", signer.address)
        return signer

    @staticmethod
    def generate_wallet() -> dict[str, str]:
        key = Ed25519PrivateKey.generate()
        private_bytes = key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
        public_bytes = key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return {
            "address": address_from_public_key(public_bytes),
            "private_key": "0x" + private_bytes.hex(),
        }

    async def get_account(self, address: str) -> dict | None:
        """Account info, or None if the account does not exist on chain."""
        response = await self._request("GET", f"/accounts/{address}")
        if response.status_code == 404:
            return None
        return self._json(response)

    async def view(self, function: str, type_arguments: list[str], arguments: list[str]) -> list:
        response = await self._request("POST", "/view", json={
            "function": function,
            "type_arguments": type_arguments,
            "arguments": arguments,
        })
        return self._json(response)

    async def estimate_gas_price(self) -> int:
        response = await self._request("GET", "/estimate_gas_price")
        return int(self._json(response)["gas_estimate"])

    async def submit_entry_function(self, signer: SignerHandle, payload: dict) -> str:
        account = await self.get_account(signer.address)
        if account is None:
            raise TransferFailed(f"Account {signer.address} does not exist on chain")
        txn: dict[str, Any] = {
            "sender": signer.address,
            "sequence_number": str(account["sequence_number"]),
            "max_gas_amount": str(self.max_gas_amount),
            "gas_unit_price": str(await self.estimate_gas_price()),
            "expiration_timestamp_secs": str(int(time.time()) + DEFAULT_EXPIRATION_SECS),
            "payload": payload,
        }
        encoded = self._json(
            await self._request("POST", "/transactions/encode_submission", json=txn)
        )
        txn["signature"] = {
            "type": "ed25519_signature",
            "public_key": signer.public_key_hex,
            "signature": "0x" + signer.sign_bytes(bytes.fromhex(_strip_0x(encoded))).hex(),
        }
        submitted = self._json(await self._request("POST", "/transactions", json=txn))
        logger.debug("Submitted %s for %s", submitted["hash"], signer.address)
        return submitted["hash"]

    async def wait_for_transaction(self, tx_hash: str, timeout: float | None = None) -> dict:
        """Poll until the transaction leaves the mempool."""
        timeout = timeout if timeout is not None else self.timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            response = await self._request("GET", f"/transactions/by_hash/{tx_hash}")
            if response.status_code != 404:
                txn = self._json(response)
                if txn.get("type") != "pending_transaction":
                    return txn
            if loop.time() >= deadline:
                raise UpstreamTimeout(f"Waiting for transaction {tx_hash}", timeout)
            await asyncio.sleep(self.poll_interval)

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return await self._http.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamTimeout(f"Aptos node {method} {path}", self.timeout) from e
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Aptos node request failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        if response.status_code >= 400:
            try:
                detail = response.json().get("message", response.text)
            except ValueError:
                detail = response.text
            raise UpstreamFailure(f"Aptos node returned {response.status_code}: {detail}")
        return response.json()
