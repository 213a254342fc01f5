"""Bearer authentication and logout."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
import pytest
from httpx import AsyncClient

from bloom.auth.jwt import create_access_token, verify_token
from bloom.auth.service import hash_token
from bloom.db.models import Session
from tests.conftest import bearer


class TestBearer:
    @pytest.mark.asyncio
    async def test_garbage_token(self, client: AsyncClient):
        response = await client.get("/api/v1/lives/status", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401
        body = response.json()
        assert body["status"] == "error"
        assert body["errorCode"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_expired_token(self, client: AsyncClient, user):
        past = datetime.now(timezone.utc) - timedelta(days=30)
        token = jwt.encode(
            {"sub": str(user.id), "address": user.wallet_address, "iat": past, "exp": past + timedelta(hours=1),
             "iss": "bloom.game", "type": "access"},
            "test-secret",
            algorithm="HS256",
        )
        response = await client.get("/api/v1/lives/status", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert response.json()["error"] == "Token has expired"

    @pytest.mark.asyncio
    async def test_inactive_user(self, client: AsyncClient, db_session, user):
        user.is_active = False
        await db_session.commit()
        response = await client.get("/api/v1/lives/status", headers=bearer(user))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_token_claims(self, user):
        payload = verify_token(create_access_token(user.id, user.wallet_address.upper()))
        assert payload["sub"] == str(user.id)
        assert payload["address"] == user.wallet_address
        assert payload["iss"] == "bloom.game"


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_revokes_session(self, client: AsyncClient, db_session, user):
        token = create_access_token(user.id, user.wallet_address)
        db_session.add(Session(
            user_id=user.id,
            token_hash=hash_token(token),
            expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        ))
        await db_session.commit()
        headers = {"Authorization": f"Bearer {token}"}

        assert (await client.get("/api/v1/lives/status", headers=headers)).status_code == 200

        response = await client.post("/api/v1/auth/logout", headers=headers)
        assert response.status_code == 200
        assert response.json()["data"] == {"loggedOut": True}

        after = await client.get("/api/v1/lives/status", headers=headers)
        assert after.status_code == 401
        assert after.json()["error"] == "Session has been revoked"

    @pytest.mark.asyncio
    async def test_logout_without_token(self, client: AsyncClient):
        response = await client.post("/api/v1/auth/logout")
        assert response.status_code == 200
        assert response.json()["status"] == "success"
