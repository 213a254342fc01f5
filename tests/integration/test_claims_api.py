"""Claim ledger, retries and claim vouchers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from eth_account import Account
from httpx import AsyncClient
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from bloom.claims import ledger
from bloom.claims.gateway import DisabledGateway, TransferResult, get_token_gateway
from bloom.claims.router import get_nonce_source
from bloom.claims.signature import ClaimType, claim_message_hash, recover_signer
from bloom.db.models import ClaimTransaction, DailyBonusClaim, GameScore
from bloom.errors import ClaimAlreadySettled
from bloom.periods import day_string
from tests.conftest import (
    OTHER_WALLET,
    SIGNED_TX,
    TOKEN_ADDRESS,
    TX_HASH,
    FakeGateway,
    bearer,
    make_user,
    reload_settings,
)

SIGNER_KEY = "0x" + "22" * 32
DAILY = 200 * 10**18
MULTIPLIER = 10**15


async def open_pending(
    db, user, key: str = "daily_bonus:test", amount: int = 10**18, claim_type: str = ledger.CLAIM_DAILY_BONUS,
):
    claim = ledger.open_claim(
        db,
        user_id=user.id,
        claim_type=claim_type,
        amount=amount,
        token_address=TOKEN_ADDRESS,
        claim_key=key,
    )
    await db.commit()
    return claim


class TestLedger:
    @pytest.mark.asyncio
    async def test_settles_once(self, db_session, user):
        claim = await open_pending(db_session, user)
        settled = await ledger.settle(db_session, claim.id, confirmed=True, tx_hash=TX_HASH, block_number=7)
        assert settled.status == "confirmed"
        assert settled.confirmed_at is not None

        with pytest.raises(ClaimAlreadySettled):
            await ledger.settle(db_session, claim.id, confirmed=False, error="late failure")
        assert (await ledger.get_claim(db_session, claim.id)).status == "confirmed"

    @pytest.mark.asyncio
    async def test_claim_key_is_unique(self, db_session, user):
        await open_pending(db_session, user, key="game_reward:1")
        with pytest.raises(IntegrityError):
            await open_pending(db_session, user, key="game_reward:1")

    @pytest.mark.asyncio
    async def test_only_one_transfer_attaches(self, db_session, user):
        claim = await open_pending(db_session, user)
        assert await ledger.attach_transfer(db_session, claim.id, TX_HASH, SIGNED_TX) is True
        assert await ledger.attach_transfer(db_session, claim.id, "0x" + "99" * 32, "0xdead") is False

        stored = await ledger.get_claim(db_session, claim.id)
        assert stored.tx_hash == TX_HASH
        assert stored.signed_transaction == SIGNED_TX

    @pytest.mark.asyncio
    async def test_rejects_non_positive_amount(self, db_session, user):
        with pytest.raises(ValueError):
            ledger.open_claim(
                db_session, user_id=user.id, claim_type=ledger.CLAIM_GAME_REWARD,
                amount=0, token_address=TOKEN_ADDRESS, claim_key="game_reward:0",
            )


class TestClaimsEndpoints:
    @pytest.mark.asyncio
    async def test_list_claims(self, authed_client: AsyncClient, db_session, user):
        await open_pending(db_session, user, key="a")
        await open_pending(db_session, user, key="b")
        data = (await authed_client.get("/api/v1/claims")).json()["data"]
        assert data["total"] == 2
        assert {c["status"] for c in data["claims"]} == {"pending"}
        assert isinstance(data["claims"][0]["createdAt"], int)

    @pytest.mark.asyncio
    async def test_retry_pending_claim(self, authed_client: AsyncClient, db_session, user, gateway: FakeGateway):
        claim = await open_pending(db_session, user)

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "confirmed"
        assert data["txHash"] == TX_HASH
        assert data["attempts"] == 1

        again = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert again.status_code == 200
        assert again.json()["data"]["status"] == "confirmed"
        assert len(gateway.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_while_unconfigured(self, app, authed_client: AsyncClient, db_session, user):
        app.dependency_overrides[get_token_gateway] = lambda: DisabledGateway(TOKEN_ADDRESS)
        claim = await open_pending(db_session, user)

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert body["errorCode"] == "not_configured"

    @pytest.mark.asyncio
    async def test_timed_out_transfer_is_rebroadcast_not_paid_twice(
        self, authed_client: AsyncClient, db_session, gateway: FakeGateway, monkeypatch,
    ):
        monkeypatch.setenv("BLOOM_GATEWAY_TIMEOUT_SECONDS", "0.05")
        monkeypatch.setenv("BLOOM_GATEWAY_RECEIPT_TIMEOUT_SECONDS", "0.01")
        reload_settings()
        gateway.delay = 0.2

        first = await authed_client.post("/api/v1/claim/daily-bonus")
        assert first.json()["status"] == "pending"
        assert first.json()["errorCode"] == "timeout"
        claim_id = first.json()["data"]["claimId"]

        stored = await ledger.get_claim(db_session, claim_id)
        assert stored.tx_hash == TX_HASH
        assert stored.signed_transaction == SIGNED_TX

        gateway.delay = 0.0
        retried = await authed_client.post(f"/api/v1/claims/{claim_id}/retry")
        assert retried.status_code == 200
        assert retried.json()["data"]["status"] == "confirmed"
        assert retried.json()["data"]["attempts"] == 2

        # One signed transfer, sent twice
        assert len(gateway.calls) == 1
        assert gateway.broadcasts == [TX_HASH, TX_HASH]

    @pytest.mark.asyncio
    async def test_network_error_keeps_the_signed_transfer(
        self, authed_client: AsyncClient, db_session, user, gateway: FakeGateway,
    ):
        gateway.result = TransferResult(False, tx_hash=TX_HASH, error="Connection refused", error_code="network_error")
        claim = await open_pending(db_session, user)

        first = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert first.json()["status"] == "pending"
        assert first.json()["data"]["txHash"] == TX_HASH

        gateway.result = TransferResult(True, tx_hash=TX_HASH, block_number=99)
        second = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert second.json()["data"]["status"] == "confirmed"
        assert second.json()["data"]["blockNumber"] == 99
        assert len(gateway.calls) == 1
        assert len(gateway.broadcasts) == 2

    @pytest.mark.asyncio
    async def test_transfer_without_stored_signature_is_not_resent(
        self, authed_client: AsyncClient, db_session, user, gateway: FakeGateway,
    ):
        claim = await open_pending(db_session, user)
        claim.tx_hash = TX_HASH
        await db_session.commit()

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.json()["status"] == "pending"
        assert response.json()["errorCode"] == "awaiting_receipt"
        assert gateway.calls == []
        assert gateway.broadcasts == []

    @pytest.mark.asyncio
    async def test_reverted_transfer_is_reported_as_failed(
        self, authed_client: AsyncClient, db_session, user, gateway: FakeGateway,
    ):
        gateway.result = TransferResult(False, tx_hash=TX_HASH, error="Transfer reverted", error_code="transfer_failed")
        claim = await open_pending(db_session, user)

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "failed"
        assert data["errorMessage"] == "Transfer reverted"

    @pytest.mark.asyncio
    async def test_retry_failed_claim(self, authed_client: AsyncClient, db_session, user):
        claim = await open_pending(db_session, user)
        await ledger.settle(db_session, claim.id, confirmed=False, error="reverted")

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.status_code == 409
        assert response.json()["errorCode"] == "claim_already_settled"

    @pytest.mark.asyncio
    async def test_cannot_retry_someone_elses_claim(self, authed_client: AsyncClient, db_session):
        other = await make_user(db_session, OTHER_WALLET)
        claim = await open_pending(db_session, other)

        response = await authed_client.post(f"/api/v1/claims/{claim.id}/retry")
        assert response.status_code == 404
        assert response.json()["errorCode"] == "claim_not_found"


class FixedNonce:
    async def get_nonce(self, user_address: str) -> int:
        return 3


class UnreachableNonce:
    async def get_nonce(self, user_address: str) -> int:
        raise OSError("connection refused")


async def add_score(db, user, score: int = 500) -> GameScore:
    t0 = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    row = GameScore(
        user_id=user.id,
        game_type="card_match",
        score=score,
        game_started_at=t0,
        game_ended_at=t0 + timedelta(seconds=90),
        leaderboard_period="2026-03",
        is_validated=True,
    )
    db.add(row)
    await db.commit()
    return row


class TestClaimSignature:
    @pytest.fixture
    def configured(self, app, monkeypatch):
        monkeypatch.setenv("BLOOM_CLAIM_CONTRACT_ADDRESS", "0x" + "ab" * 20)
        monkeypatch.setenv("BLOOM_CLAIM_SIGNER_PRIVATE_KEY", SIGNER_KEY)
        reload_settings()
        app.dependency_overrides[get_nonce_source] = lambda: FixedNonce()
        return app

    @pytest.mark.asyncio
    async def test_not_configured(self, authed_client: AsyncClient):
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 503
        assert response.json()["errorCode"] == "not_configured"

    @pytest.mark.asyncio
    async def test_daily_bonus_voucher_opens_a_claim(self, configured, authed_client: AsyncClient, db_session):
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["nonce"] == 3
        assert data["claimType"] == 0
        assert data["amount"] == str(DAILY)
        assert data["streakDay"] == 1
        assert data["signature"].startswith("0x")
        assert len(data["signature"]) == 132

        claim = await ledger.get_claim(db_session, data["claimId"])
        assert claim.delivery == "voucher"
        assert claim.status == "pending"
        assert claim.amount == str(DAILY)
        daily = await db_session.scalar(select(func.count(DailyBonusClaim.id)))
        assert daily == 1

    @pytest.mark.asyncio
    async def test_second_daily_voucher_is_refused(self, configured, authed_client: AsyncClient, db_session):
        await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "already_claimed_today"
        assert await db_session.scalar(select(func.count(ClaimTransaction.id))) == 1

    @pytest.mark.asyncio
    async def test_voucher_blocks_the_transfer_claim(self, configured, authed_client: AsyncClient, gateway):
        await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        response = await authed_client.post("/api/v1/claim/daily-bonus")
        assert response.status_code == 400
        assert response.json()["errorCode"] == "already_claimed_today"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_daily_bonus_voucher_after_claim(self, configured, authed_client: AsyncClient):
        await authed_client.post("/api/v1/claim/daily-bonus")
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "already_claimed_today"

    @pytest.mark.asyncio
    async def test_seventh_day_voucher_carries_the_jackpot(
        self, configured, authed_client: AsyncClient, db_session, user,
    ):
        user.streak_count = 6
        user.last_streak_claim_date = day_string(datetime.now(timezone.utc) - timedelta(days=1))
        await db_session.commit()

        data = (await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})).json()["data"]
        assert data["streakDay"] == 7
        assert data["amount"] == str(DAILY * 10)

    @pytest.mark.asyncio
    async def test_unreachable_contract_consumes_nothing(self, configured, authed_client: AsyncClient, db_session):
        configured.dependency_overrides[get_nonce_source] = lambda: UnreachableNonce()
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 503
        assert response.json()["errorCode"] == "network_error"
        assert await db_session.scalar(select(func.count(DailyBonusClaim.id))) == 0

        configured.dependency_overrides[get_nonce_source] = lambda: FixedNonce()
        response = await authed_client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_game_reward_voucher_by_score_id(self, configured, authed_client: AsyncClient, db_session, user):
        score = await add_score(db_session, user, 500)

        response = await authed_client.post(
            "/api/v1/claim/signature", json={"claimType": "game_reward", "scoreId": score.id},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["claimType"] == 1
        assert data["amount"] == str(500 * MULTIPLIER)

        again = await authed_client.post(
            "/api/v1/claim/signature", json={"claimType": "game_reward", "scoreId": score.id},
        )
        assert again.status_code == 400
        assert again.json()["errorCode"] == "reward_already_claimed"

    @pytest.mark.asyncio
    async def test_game_reward_voucher_refused_after_transfer(
        self, configured, authed_client: AsyncClient, db_session, user,
    ):
        score = await add_score(db_session, user, 500)
        await open_pending(db_session, user, key=ledger.game_reward_key(score.id))

        response = await authed_client.post(
            "/api/v1/claim/signature", json={"claimType": "game_reward", "scoreId": score.id},
        )
        assert response.status_code == 400
        assert response.json()["errorCode"] == "reward_already_claimed"

    @pytest.mark.asyncio
    async def test_game_reward_needs_owned_score(self, configured, authed_client: AsyncClient, db_session):
        other = await make_user(db_session, OTHER_WALLET)
        score = await add_score(db_session, other, 500)

        missing = await authed_client.post("/api/v1/claim/signature", json={"claimType": "game_reward"})
        assert missing.status_code == 400
        assert missing.json()["errorCode"] == "invalid_score"

        foreign = await authed_client.post(
            "/api/v1/claim/signature", json={"claimType": "game_reward", "scoreId": score.id},
        )
        assert foreign.status_code == 400
        assert foreign.json()["errorCode"] == "invalid_score"

    @pytest.mark.asyncio
    async def test_voucher_recovers_to_signer(self, configured, client: AsyncClient, db_session):
        user = await make_user(db_session, OTHER_WALLET)
        data = (await client.post(
            "/api/v1/claim/signature", json={"claimType": "daily_bonus"}, headers=bearer(user),
        )).json()["data"]
        digest = claim_message_hash(
            user_address=OTHER_WALLET,
            amount=int(data["amount"]),
            claim_type=ClaimType.DAILY_BONUS,
            nonce=data["nonce"],
            deadline=data["deadline"],
            chain_id=480,
            contract_address=data["contractAddress"],
        )
        assert recover_signer(digest, data["signature"]) == Account.from_key(SIGNER_KEY).address


class TestClaimRecord:
    @pytest.fixture
    def configured(self, app, monkeypatch):
        monkeypatch.setenv("BLOOM_CLAIM_CONTRACT_ADDRESS", "0x" + "ab" * 20)
        monkeypatch.setenv("BLOOM_CLAIM_SIGNER_PRIVATE_KEY", SIGNER_KEY)
        reload_settings()
        app.dependency_overrides[get_nonce_source] = lambda: FixedNonce()
        return app

    async def voucher(self, client: AsyncClient) -> int:
        response = await client.post("/api/v1/claim/signature", json={"claimType": "daily_bonus"})
        return response.json()["data"]["claimId"]

    @pytest.mark.asyncio
    async def test_records_redemption(self, configured, authed_client: AsyncClient):
        claim_id = await self.voucher(authed_client)

        response = await authed_client.post("/api/v1/claim/record", json={"claimId": claim_id, "txHash": TX_HASH})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "confirmed"
        assert data["txHash"] == TX_HASH
        assert data["delivery"] == "voucher"

        again = await authed_client.post("/api/v1/claim/record", json={"claimId": claim_id, "txHash": TX_HASH})
        assert again.status_code == 200

        other_hash = "0x" + "34" * 32
        conflict = await authed_client.post("/api/v1/claim/record", json={"claimId": claim_id, "txHash": other_hash})
        assert conflict.status_code == 409
        assert conflict.json()["errorCode"] == "claim_already_settled"

    @pytest.mark.asyncio
    async def test_transfer_claims_are_not_recorded(self, authed_client: AsyncClient, db_session, user):
        claim = await open_pending(db_session, user)
        response = await authed_client.post("/api/v1/claim/record", json={"claimId": claim.id, "txHash": TX_HASH})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "not_a_voucher_claim"

    @pytest.mark.asyncio
    async def test_hash_used_by_another_claim(self, configured, authed_client: AsyncClient, db_session, user):
        paid = await open_pending(db_session, user, key="game_reward:99", claim_type=ledger.CLAIM_GAME_REWARD)
        await ledger.settle(db_session, paid.id, confirmed=True, tx_hash=TX_HASH)
        claim_id = await self.voucher(authed_client)

        response = await authed_client.post("/api/v1/claim/record", json={"claimId": claim_id, "txHash": TX_HASH})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "duplicate_transaction"

    @pytest.mark.asyncio
    async def test_rejects_malformed_hash(self, authed_client: AsyncClient):
        response = await authed_client.post("/api/v1/claim/record", json={"claimId": 1, "txHash": "0x1234"})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "invalid_request"

    @pytest.mark.asyncio
    async def test_voucher_claims_cannot_be_retried(self, configured, authed_client: AsyncClient, gateway):
        claim_id = await self.voucher(authed_client)
        response = await authed_client.post(f"/api/v1/claims/{claim_id}/retry")
        assert response.status_code == 409
        assert response.json()["errorCode"] == "claim_not_retryable"
        assert gateway.calls == []
