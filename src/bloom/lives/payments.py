"""On-chain payment verification for play pass purchases.

A payment is accepted when the transaction receipt succeeded, has enough
confirmations, and carries an ERC-20 ``Transfer`` log from the expected token
contract to the merchant wallet for at least the price.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Protocol

from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.providers import AsyncHTTPProvider

logger = logging.getLogger(__name__)

TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


@dataclass(frozen=True)
class PaymentVerification:
    verified: bool
    error_code: str | None = None
    error: str | None = None
    tx_hash: str | None = None
    sender: str | None = None
    amount: int = 0
    confirmations: int = 0

    @property
    def pending(self) -> bool:
        return self.error_code == "pending"


class PaymentVerifier(Protocol):
    async def verify(
        self,
        transaction_id: str,
        *,
        recipient: str,
        token_address: str,
        min_amount: int,
    ) -> PaymentVerification: ...


def _topic_address(topic: bytes | str) -> str:
    raw = topic.hex() if isinstance(topic, (bytes, bytearray)) else topic
    raw = raw.removeprefix("0x")
    return "0x" + raw[-40:].lower()


def _hex(value: bytes | str) -> str:
    raw = value.hex() if isinstance(value, (bytes, bytearray)) else value
    return raw if raw.startswith("0x") else "0x" + raw


class Web3PaymentVerifier:
    """Reads receipts through an ``AsyncWeb3`` HTTP provider."""

    def __init__(self, rpc_url: str, *, min_confirmations: int = 1) -> None:
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._min_confirmations = min_confirmations

    async def verify(
        self,
        transaction_id: str,
        *,
        recipient: str,
        token_address: str,
        min_amount: int,
    ) -> PaymentVerification:
        if not TX_HASH_RE.match(transaction_id):
            return PaymentVerification(False, "invalid_tx", "Invalid transaction ID format")
        if not AsyncWeb3.is_address(recipient):
            return PaymentVerification(False, "wrong_recipient", "Invalid recipient address configuration")

        try:
            receipt = await self._w3.eth.get_transaction_receipt(transaction_id)  # type: ignore[arg-type]
            current_block = await self._w3.eth.block_number
        except TransactionNotFound:
            return PaymentVerification(False, "pending", "Transaction not found or still pending", tx_hash=transaction_id)
        except (Web3Exception, OSError) as e:
            logger.warning("Payment verification RPC error for %s: %s", transaction_id, e)
            return PaymentVerification(False, "network_error", "Failed to verify payment on blockchain", tx_hash=transaction_id)

        if receipt["status"] != 1:
            return PaymentVerification(False, "invalid_tx", "Transaction failed on chain", tx_hash=transaction_id)

        confirmations = current_block - receipt["blockNumber"]
        if confirmations < self._min_confirmations:
            return PaymentVerification(
                False,
                "pending",
                f"Transaction needs {self._min_confirmations} confirmations, has {confirmations}",
                tx_hash=transaction_id,
                confirmations=confirmations,
            )

        recipient_lower = recipient.lower()
        best_amount = 0
        sender: str | None = None
        for log in receipt["logs"]:
            if str(log["address"]).lower() != token_address.lower():
                continue
            topics = log["topics"]
            if len(topics) != 3 or _hex(topics[0]).lower() != TRANSFER_TOPIC:
                continue
            if _topic_address(topics[2]) != recipient_lower:
                continue
            data = _hex(log["data"])
            if data == "0x":
                continue
            value = int(data, 16)
            if sender is None or value > best_amount:
                best_amount = value
                sender = _topic_address(topics[1])

        if sender is not None and best_amount >= min_amount:
            return PaymentVerification(
                True, tx_hash=transaction_id, sender=sender, amount=best_amount, confirmations=confirmations,
            )
        if sender is not None:
            return PaymentVerification(
                False, "insufficient_amount", "Insufficient payment amount",
                tx_hash=transaction_id, sender=sender, amount=best_amount, confirmations=confirmations,
            )
        return PaymentVerification(
            False, "wrong_recipient", "No valid token transfer found to the expected recipient",
            tx_hash=transaction_id, confirmations=confirmations,
        )
