"""Current user and quota routes."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.auth.security import require_user
from lorastudio.db.models import User
from lorastudio.db.session import get_db
from lorastudio.schemas.schemas import QuotaResponse, UserResponse
from lorastudio.services.quota_service import quota_service

router = APIRouter(prefix="/v1/me", tags=["Account"])


async def _quota(db: AsyncSession, user: User) -> QuotaResponse:
    summary = await quota_service.quota_summary(db, user.id)
    return QuotaResponse(
        plan=summary.plan.value,
        models_created=summary.models_created,
        models_limit=summary.models_limit,
        daily_generations=summary.daily_generations,
        daily_generations_limit=summary.daily_generations_limit,
    )


@router.get(
    "",
    response_model=UserResponse,
    summary="Get current user",
    description="Return the authenticated user (created on first access) with quota information.",
)
async def get_me(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
):
    response = UserResponse.model_validate(user)
    response.quota = await _quota(db, user)
    return response


@router.get(
    "/quota",
    response_model=QuotaResponse,
    summary="Get quota summary",
    description="Usage against the daily generation and model limits of the current plan.",
)
async def get_quota(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
):
    return await _quota(db, user)
