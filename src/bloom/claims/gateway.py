"""Token distribution gateway.

A transfer happens in two steps. ``prepare`` builds and signs the ERC-20
transfer without sending it, so its hash is known up front; ``broadcast``
sends that exact signed transaction and waits for the receipt. Sending the
same signed transaction again can never pay twice, which makes
``broadcast`` safe to repeat after a timeout.

Outcomes are split into definitive results (confirmed, or a failure that can
never succeed as-is) and transient ones, after which the claim must stay
pending because the transfer may or may not have reached the chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception
from web3.providers import AsyncHTTPProvider

from bloom.config import get_settings

logger = logging.getLogger(__name__)

TRANSIENT_ERROR_CODES = frozenset({"not_configured", "network_error", "timeout"})

# Node replies meaning this signed transaction was already accepted
_ALREADY_SENT_MARKERS = ("already known", "known transaction", "nonce too low")

ERC20_ABI = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "to", "type": "address"}, {"name": "amount", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


@dataclass(frozen=True)
class TransferResult:
    success: bool
    tx_hash: str | None = None
    block_number: int | None = None
    error: str | None = None
    error_code: str | None = None

    @property
    def transient(self) -> bool:
        return not self.success and self.error_code in TRANSIENT_ERROR_CODES


@dataclass(frozen=True)
class PreparedTransfer:
    """A signed transfer; ``raw_transaction`` is 0x-prefixed hex."""

    tx_hash: str
    raw_transaction: str


class TransferRejected(Exception):
    """The gateway would not sign the transfer. Nothing reached the chain."""

    def __init__(self, result: TransferResult) -> None:
        super().__init__(result.error or result.error_code or "Transfer rejected")
        self.result = result


class TokenDistributionGateway(Protocol):
    token_address: str

    def is_ready(self) -> bool: ...

    async def prepare(self, recipient: str, amount: int) -> PreparedTransfer: ...

    async def broadcast(self, transfer: PreparedTransfer) -> TransferResult: ...


_NOT_CONFIGURED = TransferResult(False, error="Token distribution not configured", error_code="not_configured")


class DisabledGateway:
    """Stand-in when no distributor wallet is configured."""

    def __init__(self, token_address: str = "") -> None:
        self.token_address = token_address

    def is_ready(self) -> bool:
        return False

    async def prepare(self, recipient: str, amount: int) -> PreparedTransfer:
        raise TransferRejected(_NOT_CONFIGURED)

    async def broadcast(self, transfer: PreparedTransfer) -> TransferResult:
        return _NOT_CONFIGURED


def _already_sent(exc: Exception) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _ALREADY_SENT_MARKERS)


class Web3TokenGateway:
    """Signs and sends ERC-20 transfers with the distributor key via AsyncWeb3."""

    def __init__(
        self,
        rpc_url: str,
        *,
        token_address: str,
        private_key: str,
        chain_id: int,
        receipt_timeout: float = 15.0,
    ) -> None:
        self.token_address = AsyncWeb3.to_checksum_address(token_address)
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout
        self._contract = self._w3.eth.contract(address=self.token_address, abi=ERC20_ABI)

    def is_ready(self) -> bool:
        return True

    async def prepare(self, recipient: str, amount: int) -> PreparedTransfer:
        if not AsyncWeb3.is_address(recipient):
            raise TransferRejected(TransferResult(False, error="Invalid recipient address", error_code="invalid_address"))
        if amount <= 0:
            raise TransferRejected(TransferResult(False, error="Invalid amount", error_code="invalid_amount"))
        to = AsyncWeb3.to_checksum_address(recipient)
        sender = self._account.address

        try:
            balance = await self._contract.functions.balanceOf(sender).call()
            if balance < amount:
                logger.error("Insufficient distributor balance: have %s, need %s", balance, amount)
                raise TransferRejected(TransferResult(
                    False, error="Insufficient distributor balance", error_code="insufficient_balance",
                ))
            tx = await self._contract.functions.transfer(to, amount).build_transaction({
                "from": sender,
                "nonce": await self._w3.eth.get_transaction_count(sender, "pending"),
                "chainId": self._chain_id,
            })
        except ContractLogicError as e:
            raise TransferRejected(TransferResult(False, error=f"Transfer reverted: {e}", error_code="transfer_failed")) from e
        except (Web3Exception, OSError) as e:
            logger.warning("Token transfer RPC error: %s", e)
            raise TransferRejected(TransferResult(
                False, error="Network error preparing transfer", error_code="network_error",
            )) from e

        signed = self._account.sign_transaction(tx)
        return PreparedTransfer(
            tx_hash="0x" + bytes(signed.hash).hex(),
            raw_transaction="0x" + bytes(signed.raw_transaction).hex(),
        )

    async def broadcast(self, transfer: PreparedTransfer) -> TransferResult:
        tx_hash = transfer.tx_hash
        try:
            await self._w3.eth.send_raw_transaction(bytes.fromhex(transfer.raw_transaction.removeprefix("0x")))
        except (Web3Exception, ValueError, OSError) as e:
            if not _already_sent(e):
                logger.warning("Broadcast failed for %s: %s", tx_hash, e)
                return TransferResult(False, tx_hash=tx_hash, error="Network error during broadcast", error_code="network_error")
            logger.info("Transfer %s already known to the node, awaiting receipt", tx_hash)

        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self._receipt_timeout)  # type: ignore[arg-type]
        except TimeExhausted:
            return TransferResult(False, tx_hash=tx_hash, error="Transfer not mined in time", error_code="timeout")
        except (Web3Exception, OSError) as e:
            logger.warning("Receipt lookup failed for %s: %s", tx_hash, e)
            return TransferResult(False, tx_hash=tx_hash, error="Network error awaiting receipt", error_code="network_error")

        if receipt["status"] != 1:
            return TransferResult(
                False, tx_hash=tx_hash, block_number=receipt["blockNumber"],
                error="Transfer reverted on chain", error_code="transfer_failed",
            )
        return TransferResult(True, tx_hash=tx_hash, block_number=receipt["blockNumber"])


@lru_cache
def _build_gateway(
    rpc_url: str, token_address: str, private_key: str, chain_id: int, receipt_timeout: float,
) -> TokenDistributionGateway:
    if not (rpc_url and token_address and private_key):
        return DisabledGateway(token_address)
    return Web3TokenGateway(
        rpc_url,
        token_address=token_address,
        private_key=private_key,
        chain_id=chain_id,
        receipt_timeout=receipt_timeout,
    )


def get_token_gateway() -> TokenDistributionGateway:
    """FastAPI dependency returning the configured gateway."""
    settings = get_settings()
    return _build_gateway(
        settings.chain_rpc_url,
        settings.token_address,
        settings.distributor_private_key,
        settings.chain_id,
        settings.gateway_receipt_timeout_seconds,
    )
