"""Shared test fixtures.

Each test gets its own SQLite database file and a fake token gateway; Redis is
not started, so rate limiting and the Redis leaderboard cache stay disabled.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.jwt import create_access_token, reset_keys
from bloom.auth.service import get_or_create_user
from bloom.claims.gateway import PreparedTransfer, TransferRejected, TransferResult, get_token_gateway
from bloom.config import get_settings
from bloom.database import close_db, create_all, get_session_factory, init_db
from bloom.db.models import User
from bloom.main import create_app

WALLET = "0x" + "a1" * 20
OTHER_WALLET = "0x" + "b2" * 20
TOKEN_ADDRESS = "0x" + "ee" * 20
TX_HASH = "0x" + "12" * 32
SIGNED_TX = "0x" + "f0" * 110


class FakeGateway:
    """Token gateway double.

    ``calls`` records every transfer it signed and ``broadcasts`` every send,
    so tests can tell a rebroadcast from a second payment. ``rejection`` makes
    ``prepare`` refuse the transfer.
    """

    def __init__(
        self,
        result: TransferResult | None = None,
        *,
        rejection: TransferResult | None = None,
        ready: bool = True,
        delay: float = 0.0,
    ) -> None:
        self.token_address = TOKEN_ADDRESS
        self.result = result or TransferResult(True, tx_hash=TX_HASH, block_number=1234)
        self.rejection = rejection
        self.ready = ready
        self.delay = delay
        self.calls: list[tuple[str, int]] = []
        self.broadcasts: list[str] = []

    def is_ready(self) -> bool:
        return self.ready

    async def prepare(self, recipient: str, amount: int) -> PreparedTransfer:
        if self.rejection is not None:
            raise TransferRejected(self.rejection)
        self.calls.append((recipient, amount))
        return PreparedTransfer(tx_hash=TX_HASH, raw_transaction=SIGNED_TX)

    async def broadcast(self, transfer: PreparedTransfer) -> TransferResult:
        self.broadcasts.append(transfer.tx_hash)
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.result


def reload_settings() -> None:
    get_settings.cache_clear()
    reset_keys()


@pytest.fixture(autouse=True)
def _test_env(tmp_path, monkeypatch):
    """Point settings at a throwaway database and a known JWT secret."""
    monkeypatch.setenv("BLOOM_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'bloom.db'}")
    monkeypatch.setenv("BLOOM_JWT_SECRET", "test-secret")
    monkeypatch.setenv("BLOOM_JWT_ALGORITHM", "HS256")
    monkeypatch.setenv("BLOOM_LOG_FORMAT", "console")
    monkeypatch.setenv("BLOOM_TOKEN_ADDRESS", TOKEN_ADDRESS)
    reload_settings()
    yield
    reload_settings()


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    await init_db(get_settings().database_url)
    await create_all()
    yield
    await close_db()


@pytest_asyncio.fixture
async def db_session(database) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for setup and assertions."""
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def app(database, gateway) -> FastAPI:
    application = create_app()
    application.dependency_overrides[get_token_gateway] = lambda: gateway
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def make_user(db: AsyncSession, wallet: str = WALLET) -> User:
    user, _ = await get_or_create_user(db, wallet)
    await db.commit()
    return user


def bearer(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.wallet_address)}"}


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    return await make_user(db_session)


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient, user: User) -> AsyncClient:
    """Client authenticated as ``user``."""
    client.headers.update(bearer(user))
    return client
