"""Blockchain runtime: Aptos node client and per-agent signers."""

from chain.aptos import AptosClient, SignerHandle, normalize_address, parse_private_key

__all__ = [
    "AptosClient",
    "SignerHandle",
    "normalize_address",
    "parse_private_key",
]
