"""On-chain payment verification against canned receipts."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from web3.exceptions import TransactionNotFound

from bloom.lives.payments import TRANSFER_TOPIC, Web3PaymentVerifier

TX = "0x" + "ab" * 32
TOKEN = "0x" + "11" * 20
MERCHANT = "0x" + "22" * 20
PAYER = "0x" + "33" * 20


def topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:]


def transfer_log(amount: int, to: str = MERCHANT, token: str = TOKEN) -> dict:
    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, topic(PAYER), topic(to)],
        "data": hex(amount),
    }


class FakeEth:
    def __init__(self, receipt: dict | None, block: int) -> None:
        self._receipt = receipt
        self._block = block

    async def get_transaction_receipt(self, tx_hash: str) -> dict:
        if self._receipt is None:
            raise TransactionNotFound(f"Transaction {tx_hash} not found")
        return self._receipt

    async def _block_number(self) -> int:
        return self._block

    @property
    def block_number(self):
        return self._block_number()


def make_verifier(receipt: dict | None, block: int = 110, min_confirmations: int = 3) -> Web3PaymentVerifier:
    verifier = Web3PaymentVerifier("http://localhost:8545", min_confirmations=min_confirmations)
    verifier._w3 = SimpleNamespace(eth=FakeEth(receipt, block))
    return verifier


def receipt(*logs: dict, status: int = 1, block: int = 100) -> dict:
    return {"status": status, "blockNumber": block, "logs": list(logs)}


async def verify(verifier: Web3PaymentVerifier, min_amount: int = 1000):
    return await verifier.verify(TX, recipient=MERCHANT, token_address=TOKEN, min_amount=min_amount)


@pytest.mark.asyncio
async def test_valid_payment():
    result = await verify(make_verifier(receipt(transfer_log(1500))))
    assert result.verified
    assert result.amount == 1500
    assert result.sender == PAYER
    assert result.confirmations == 10


@pytest.mark.asyncio
async def test_not_mined_is_pending():
    result = await verify(make_verifier(None))
    assert not result.verified
    assert result.pending


@pytest.mark.asyncio
async def test_too_few_confirmations():
    result = await verify(make_verifier(receipt(transfer_log(1500)), block=101))
    assert result.pending
    assert result.confirmations == 1


@pytest.mark.asyncio
async def test_reverted_transaction():
    result = await verify(make_verifier(receipt(transfer_log(1500), status=0)))
    assert result.error_code == "invalid_tx"


@pytest.mark.asyncio
async def test_underpaid():
    result = await verify(make_verifier(receipt(transfer_log(999))))
    assert result.error_code == "insufficient_amount"
    assert result.amount == 999


@pytest.mark.asyncio
async def test_transfer_to_someone_else():
    result = await verify(make_verifier(receipt(transfer_log(5000, to=PAYER))))
    assert result.error_code == "wrong_recipient"


@pytest.mark.asyncio
async def test_other_token_ignored():
    result = await verify(make_verifier(receipt(transfer_log(5000, token="0x" + "44" * 20))))
    assert result.error_code == "wrong_recipient"
