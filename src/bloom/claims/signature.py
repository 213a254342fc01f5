"""Signed claim vouchers for the on-chain claim contract.

The contract recomputes ``keccak256(abi.encodePacked(user, amount, claimType,
nonce, deadline, chainId, contract))`` and checks it was signed (EIP-191) by
the configured signer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncWeb3, Web3
from web3.providers import AsyncHTTPProvider

from bloom.config import Settings
from bloom.errors import GatewayUnavailable

CLAIM_CONTRACT_ABI = [
    {
        "name": "getNonce",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "user", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class ClaimType(IntEnum):
    DAILY_BONUS = 0
    GAME_REWARD = 1


@dataclass(frozen=True)
class ClaimSignature:
    signature: str
    amount: int
    claim_type: ClaimType
    nonce: int
    deadline: int
    contract_address: str


class NonceSource(Protocol):
    async def get_nonce(self, user_address: str) -> int: ...


class ContractNonceSource:
    """Reads the per-user nonce from the claim contract."""

    def __init__(self, rpc_url: str, contract_address: str) -> None:
        w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address), abi=CLAIM_CONTRACT_ABI,
        )

    async def get_nonce(self, user_address: str) -> int:
        return int(await self._contract.functions.getNonce(AsyncWeb3.to_checksum_address(user_address)).call())


def claim_message_hash(
    *,
    user_address: str,
    amount: int,
    claim_type: ClaimType,
    nonce: int,
    deadline: int,
    chain_id: int,
    contract_address: str,
) -> bytes:
    return bytes(Web3.solidity_keccak(
        ["address", "uint256", "uint8", "uint256", "uint256", "uint256", "address"],
        [
            Web3.to_checksum_address(user_address),
            amount,
            int(claim_type),
            nonce,
            deadline,
            chain_id,
            Web3.to_checksum_address(contract_address),
        ],
    ))


def sign_claim(private_key: str, message_hash: bytes) -> str:
    signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key=private_key)
    return "0x" + bytes(signed.signature).hex()


def recover_signer(message_hash: bytes, signature: str) -> str:
    return Account.recover_message(encode_defunct(primitive=message_hash), signature=signature)


async def issue_claim_signature(
    settings: Settings,
    nonce_source: NonceSource,
    *,
    user_address: str,
    claim_type: ClaimType,
    amount: int,
    now: float | None = None,
) -> ClaimSignature:
    """Build and sign a claim voucher valid for ``claim_signature_ttl_seconds``."""
    if not (settings.claim_contract_address and settings.claim_signer_private_key):
        raise GatewayUnavailable("Claim contract is not configured", error_code="not_configured")

    nonce = await nonce_source.get_nonce(user_address)
    deadline = int(now if now is not None else time.time()) + settings.claim_signature_ttl_seconds
    message_hash = claim_message_hash(
        user_address=user_address,
        amount=amount,
        claim_type=claim_type,
        nonce=nonce,
        deadline=deadline,
        chain_id=settings.chain_id,
        contract_address=settings.claim_contract_address,
    )
    return ClaimSignature(
        signature=sign_claim(settings.claim_signer_private_key, message_hash),
        amount=amount,
        claim_type=claim_type,
        nonce=nonce,
        deadline=deadline,
        contract_address=settings.claim_contract_address,
    )
