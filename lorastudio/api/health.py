"""Health check and system info routes."""

from fastapi import APIRouter
import redis.asyncio as redis
from sqlalchemy import text

from lorastudio.config import get_settings
from lorastudio.schemas.schemas import HealthResponse
from lorastudio.services.generation_service import ASPECT_RATIOS

router = APIRouter(tags=["System"])

settings = get_settings()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health status of the service and its dependencies.",
)
async def health_check():
    """
    Health check endpoint.

    Returns the status of:
    - API server
    - Database connection
    - Redis connection
    """
    # Check Redis
    redis_status = "ok"
    try:
        client = redis.from_url(settings.redis_url)
        try:
            await client.ping()
        finally:
            await client.aclose()
    except Exception:
        redis_status = "error"

    # Check database
    db_status = "ok"
    try:
        from lorastudio.db.session import engine

        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        db_status = "error"

    overall_status = "healthy"
    if any(s == "error" for s in [redis_status, db_status]):
        overall_status = "degraded"

    return HealthResponse(
        status=overall_status,
        version=settings.app_version,
        database=db_status,
        redis=redis_status,
    )


@router.get(
    "/v1/info",
    summary="Service information",
    description="Get general information about the service.",
)
async def service_info():
    """Get service information and plan limits."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "aspect_ratios": {name: {"width": w, "height": h} for name, (w, h) in ASPECT_RATIOS.items()},
        "max_images_per_request": settings.max_images_per_request,
        "min_training_photos": settings.min_training_photos,
        "plans": {
            "Free": {
                "daily_generations": settings.free_daily_generation_limit,
                "models": settings.free_model_limit,
            },
            "Premium": {
                "daily_generations": settings.premium_daily_generation_limit,
                "models": None,
            },
        },
        "documentation": "/docs",
    }
