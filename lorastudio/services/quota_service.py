"""Quota enforcement for daily generations and lifetime models.

Checks are pre-execution reads.  Each check takes a PostgreSQL
transaction-scoped advisory lock keyed on ``(user_id, kind)`` so that two
checks for the same user and kind never interleave; the lock lasts until
the caller's transaction ends.

Model creation happens in the same transaction as its check, so the model
limit is exact on PostgreSQL.  The generation check's transaction is
closed before the synthesis wait, so concurrent generation requests can
overshoot the daily limit by at most ``(N - 1) * max_images_per_request``
for N in-flight requests of one user.  A request admitted below the limit
always completes its whole batch.
"""

import logging
import zlib
from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Optional

from sqlalchemy import func, select, text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.db.models import Generation, TrainedModel
from lorastudio.errors import DataStoreUnavailable, ModelLimitReached, QuotaExceeded
from lorastudio.services.entitlements import Entitlement, PlanTier, resolve_entitlement

logger = logging.getLogger(__name__)


def start_of_utc_day(now: Optional[datetime] = None) -> datetime:
    """Midnight UTC of the day containing ``now``."""
    now = now or datetime.now(timezone.utc)
    return datetime.combine(now.astimezone(timezone.utc).date(), time.min, tzinfo=timezone.utc)


@dataclass
class QuotaSummary:
    """Usage and limits for a user."""

    plan: PlanTier
    models_created: int
    models_limit: Optional[int]
    daily_generations: int
    daily_generations_limit: int


class QuotaService:
    """Pre-execution quota checks for generation and training requests."""

    async def _acquire_advisory_lock(self, db: AsyncSession, user_id: int, kind: str) -> None:
        """Serialise checks of one kind for one user (PostgreSQL only)."""
        bind = db.get_bind()
        dialect_name = str(getattr(getattr(bind, "dialect", None), "name", ""))
        if "postgresql" not in dialect_name:
            return
        lock_id = zlib.crc32(f"quota:{user_id}:{kind}".encode()) & 0x7FFFFFFF
        await db.execute(text("SELECT pg_advisory_xact_lock(:id)"), {"id": lock_id})

    async def count_generations_today(self, db: AsyncSession, user_id: int) -> int:
        """Number of generations created since midnight UTC."""
        result = await db.execute(
            select(func.count(Generation.id)).where(
                Generation.user_id == user_id,
                Generation.created_at >= start_of_utc_day(),
            )
        )
        return result.scalar() or 0

    async def count_models(self, db: AsyncSession, user_id: int) -> int:
        """Number of models ever created by the user, whatever their status."""
        result = await db.execute(
            select(func.count(TrainedModel.id)).where(TrainedModel.user_id == user_id)
        )
        return result.scalar() or 0

    async def check_generation_quota(self, db: AsyncSession, user_id: int) -> Entitlement:
        """
        Fail with QuotaExceeded if the user already reached today's limit.

        Returns:
            The resolved entitlement, for callers that need the limits
        """
        try:
            await self._acquire_advisory_lock(db, user_id, "generation")
            entitlement = await resolve_entitlement(db, user_id)
            used = await self.count_generations_today(db, user_id)
        except DBAPIError as e:
            raise DataStoreUnavailable() from e

        if used >= entitlement.daily_generation_limit:
            logger.info(
                f"Generation quota reached: user={user_id} "
                f"{used}/{entitlement.daily_generation_limit}"
            )
            raise QuotaExceeded(
                used=used,
                limit=entitlement.daily_generation_limit,
                plan=entitlement.tier.value,
            )
        return entitlement

    async def check_model_quota(self, db: AsyncSession, user_id: int) -> Entitlement:
        """Fail with ModelLimitReached if the user cannot create another model."""
        try:
            await self._acquire_advisory_lock(db, user_id, "model")
            entitlement = await resolve_entitlement(db, user_id)
            if entitlement.model_limit is None:
                return entitlement
            created = await self.count_models(db, user_id)
        except DBAPIError as e:
            raise DataStoreUnavailable() from e

        if created >= entitlement.model_limit:
            logger.info(
                f"Model quota reached: user={user_id} {created}/{entitlement.model_limit}"
            )
            raise ModelLimitReached(
                used=created,
                limit=entitlement.model_limit,
                plan=entitlement.tier.value,
            )
        return entitlement

    async def quota_summary(self, db: AsyncSession, user_id: int) -> QuotaSummary:
        """Current usage against the user's limits."""
        entitlement = await resolve_entitlement(db, user_id)
        return QuotaSummary(
            plan=entitlement.tier,
            models_created=await self.count_models(db, user_id),
            models_limit=entitlement.model_limit,
            daily_generations=await self.count_generations_today(db, user_id),
            daily_generations_limit=entitlement.daily_generation_limit,
        )


# Singleton instance
quota_service = QuotaService()
