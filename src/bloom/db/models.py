"""ORM models for the play economy.

Token amounts are stored as decimal strings of the smallest unit (wei) and
converted to ``int`` at the service boundary.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from bloom.db.base import Base, BigIntPK, UTCDateTime, utcnow


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class User(Base):
    """Maps to the 'users' table."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(42), unique=True, nullable=False)
    username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    verification_level: Mapped[str] = mapped_column(String(16), default="device", nullable=False)
    streak_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_streak_claim_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    last_login_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Session(Base):
    """Maps to the 'sessions' table. Rows are written by the sign-in flow."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class SiweNonce(Base):
    """Maps to the 'siwe_nonces' table."""

    __tablename__ = "siwe_nonces"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    nonce: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    wallet_address: Mapped[str | None] = mapped_column(String(42), nullable=True)
    used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Lives / attempts
# ---------------------------------------------------------------------------


class ResourceState(Base):
    """Per-user lives, attempts, cooldown and play pass state."""

    __tablename__ = "barn_game_attempts"
    __table_args__ = (
        CheckConstraint("lives >= 0", name="ck_barn_game_attempts_lives_non_negative"),
        CheckConstraint("attempts_remaining >= 0", name="ck_barn_game_attempts_attempts_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False,
    )
    lives: Mapped[int] = mapped_column(Integer, nullable=False)
    lives_last_regenerated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    attempts_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    free_game_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_active_game: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_played_date: Mapped[str | None] = mapped_column(String(10), nullable=True)
    coins_won_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    matches_found_today: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cooldown_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    cooldown_ends_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    play_pass_purchased_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    play_pass_expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class PaymentReference(Base):
    """Short-lived reference a client pays against."""

    __tablename__ = "payment_references"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    reference_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    item_type: Mapped[str] = mapped_column(String(32), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    transaction_id: Mapped[str | None] = mapped_column(String(66), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class BarnGamePurchase(Base):
    """A verified play pass purchase."""

    __tablename__ = "barn_game_purchases"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    payment_reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(66), unique=True, nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(8), nullable=False)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    play_pass_expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Scores
# ---------------------------------------------------------------------------


class GameScore(Base):
    """An accepted game result. Rows are never updated."""

    __tablename__ = "game_scores"
    __table_args__ = (
        UniqueConstraint("user_id", "session_id", name="uq_game_scores_user_session"),
        Index("ix_game_scores_period_type", "leaderboard_period", "game_type"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    game_type: Mapped[str] = mapped_column(String(32), nullable=False)
    score: Mapped[int] = mapped_column(Integer, nullable=False)
    monthly_profit: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    time_taken: Mapped[int | None] = mapped_column(Integer, nullable=True)
    moves: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validation_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    game_started_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    game_ended_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    leaderboard_period: Mapped[str] = mapped_column(String(7), nullable=False)
    is_validated: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------


class ClaimTransaction(Base):
    """Token claim ledger row: pending -> confirmed | failed.

    ``delivery`` is ``transfer`` when the server sends the tokens and
    ``voucher`` when the player redeems a signed voucher on the claim contract.
    ``signed_transaction`` holds a server transfer signed before broadcast.
    """

    __tablename__ = "claim_transactions"
    __table_args__ = (
        CheckConstraint("status IN ('pending', 'confirmed', 'failed')", name="ck_claim_transactions_status"),
        Index("ix_claim_transactions_user_type", "user_id", "claim_type"),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    claim_type: Mapped[str] = mapped_column(String(20), nullable=False)
    claim_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    token_address: Mapped[str] = mapped_column(String(42), nullable=False)
    delivery: Mapped[str] = mapped_column(String(16), default="transfer", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending", nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    signed_transaction: Mapped[str | None] = mapped_column(Text, nullable=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)


class DailyBonusClaim(Base):
    """One row per user per calendar day a daily bonus was claimed."""

    __tablename__ = "daily_bonus_claims"
    __table_args__ = (UniqueConstraint("user_id", "claim_date", name="uq_daily_bonus_claims_user_date"),)

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    claim_date: Mapped[str] = mapped_column(String(10), nullable=False)
    streak_day: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[str] = mapped_column(String(78), nullable=False)
    transaction_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("claim_transactions.id", ondelete="SET NULL"), nullable=True,
    )
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
