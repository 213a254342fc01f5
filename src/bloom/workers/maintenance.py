"""Maintenance arq worker: periodic sweeps that never run on the request path.

Run with: arq bloom.workers.maintenance.WorkerSettings

Schedule:
- Auth artifacts (SIWE nonces, sessions): every 10 minutes
- Payment references: every 5 minutes
- Stale pending claims report: every 15 minutes
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy import update

from bloom.auth.service import prune_auth_artifacts
from bloom.claims import ledger
from bloom.config import get_settings
from bloom.database import close_db, get_session_factory, init_db
from bloom.db.models import PaymentReference
from bloom.middleware.logging import setup_logging

logger = logging.getLogger(__name__)


async def prune_auth(ctx: dict) -> dict[str, int]:
    """Delete stale SIWE nonces and dead sessions."""
    settings = get_settings()
    async with get_session_factory()() as db:
        nonces, sessions = await prune_auth_artifacts(
            db,
            nonce_retention=timedelta(minutes=settings.siwe_nonce_retention_minutes),
            session_retention=timedelta(days=settings.session_retention_days),
        )
    if nonces or sessions:
        logger.info("Pruned %d nonces and %d sessions", nonces, sessions)
    return {"nonces": nonces, "sessions": sessions}


async def expire_payment_references(ctx: dict, now: datetime | None = None) -> int:
    """Mark pending payment references past their TTL as expired."""
    now = now or datetime.now(timezone.utc)
    async with get_session_factory()() as db:
        result = await db.execute(
            update(PaymentReference)
            .where(PaymentReference.status == "pending", PaymentReference.expires_at < now)
            .values(status="expired")
        )
        await db.commit()
    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d payment references", expired)
    return expired


async def report_stale_claims(ctx: dict, now: datetime | None = None) -> list[int]:
    """Log pending claims nobody has touched recently so they can be reconciled."""
    settings = get_settings()
    async with get_session_factory()() as db:
        stale = await ledger.find_stale_pending(
            db, timedelta(minutes=settings.stale_claim_minutes), now=now
        )
    for claim in stale:
        logger.warning(
            "Stale pending claim id=%d user_id=%d type=%s delivery=%s tx_hash=%s attempts=%d",
            claim.id,
            claim.user_id,
            claim.claim_type,
            claim.delivery,
            claim.tx_hash,
            claim.attempts,
        )
    return [claim.id for claim in stale]


async def startup(ctx: dict) -> None:
    settings = get_settings()
    setup_logging(settings)
    await init_db(settings.database_url)
    logger.info("Maintenance worker started")


async def shutdown(ctx: dict) -> None:
    await close_db()
    logger.info("Maintenance worker shut down")


class WorkerSettings:
    """arq worker settings for maintenance sweeps."""

    functions = [prune_auth, expire_payment_references, report_stale_claims]
    cron_jobs = [
        cron(prune_auth, minute=set(range(0, 60, 10))),
        cron(expire_payment_references, minute=set(range(0, 60, 5))),
        cron(report_stale_claims, minute={0, 15, 30, 45}),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
    max_jobs = 4
    job_timeout = 120
