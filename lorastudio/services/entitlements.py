"""Entitlement resolution from stored payment records.

The tier of a user is derived in exactly one place: the newest payment
record whose status is ``active`` makes the user Premium, otherwise the
user is on the Free tier.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.config import get_settings
from lorastudio.db.models import PaymentRecord, PaymentStatus
from lorastudio.errors import DataStoreUnavailable

logger = logging.getLogger(__name__)


class PlanTier(str, enum.Enum):
    FREE = "Free"
    PREMIUM = "Premium"


@dataclass(frozen=True)
class Entitlement:
    """Plan tier and numeric limits of a user.

    ``model_limit`` is ``None`` when the number of models is unbounded.
    """

    tier: PlanTier
    daily_generation_limit: int
    model_limit: Optional[int]


def entitlement_from_records(records: Iterable[PaymentRecord]) -> Entitlement:
    """
    Compute the entitlement from payment records sorted newest first.

    Only the first record with status ``active`` matters; its presence
    means Premium.
    """
    settings = get_settings()
    active = next((r for r in records if r.status == PaymentStatus.ACTIVE), None)

    if active is not None:
        return Entitlement(
            tier=PlanTier.PREMIUM,
            daily_generation_limit=settings.premium_daily_generation_limit,
            model_limit=None,
        )
    return Entitlement(
        tier=PlanTier.FREE,
        daily_generation_limit=settings.free_daily_generation_limit,
        model_limit=settings.free_model_limit,
    )


async def resolve_entitlement(db: AsyncSession, user_id: int) -> Entitlement:
    """Load the newest active payment record of a user and derive the entitlement."""
    query = (
        select(PaymentRecord)
        .where(
            PaymentRecord.user_id == user_id,
            PaymentRecord.status == PaymentStatus.ACTIVE,
        )
        .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
        .limit(1)
    )
    try:
        result = await db.execute(query)
    except DBAPIError as e:
        logger.error(f"Entitlement lookup failed for user {user_id}: {e}")
        raise DataStoreUnavailable() from e

    return entitlement_from_records(result.scalars().all())
