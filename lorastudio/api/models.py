"""Model training API routes."""

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.api.dependencies import get_training_service
from lorastudio.auth.security import require_user
from lorastudio.db.models import User
from lorastudio.db.session import get_db
from lorastudio.middleware.rate_limit import rate_limit_expensive
from lorastudio.schemas.schemas import (
    ModelListResponse,
    ModelResponse,
    ModelStatusResponse,
    TrainingCreateRequest,
    TrainingSnapshotResponse,
)
from lorastudio.services.training_service import TrainingService

router = APIRouter(prefix="/v1/models", tags=["Models"])


@router.post(
    "",
    response_model=ModelResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start training a model",
    description="Submit a training job from at least 5 reference photos.",
)
@rate_limit_expensive()
async def start_training(
    request: Request,
    body: TrainingCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: TrainingService = Depends(get_training_service),
):
    """
    Start training a new model.

    - **model_name**: Display name of the model
    - **trigger_word**: Token that invokes the trained subject in prompts
    - **photo_urls**: URLs of the uploaded reference photos (5 or more)
    """
    model = await service.start_training(
        db,
        user_id=user.id,
        trigger_word=body.trigger_word,
        model_name=body.model_name,
        photo_urls=body.photo_urls,
    )
    return ModelResponse.model_validate(model)


@router.get(
    "",
    response_model=ModelListResponse,
    summary="List models",
    description="All models of the authenticated user, newest first.",
)
async def list_models(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: TrainingService = Depends(get_training_service),
):
    models = await service.list_models(db, user.id)
    return ModelListResponse(models=[ModelResponse.model_validate(m) for m in models])


@router.get(
    "/{model_id}",
    response_model=ModelResponse,
    summary="Get a model",
)
async def get_model(
    model_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: TrainingService = Depends(get_training_service),
):
    model = await service.get_model(db, model_id, user.id)
    return ModelResponse.model_validate(model)


@router.post(
    "/{model_id}/refresh",
    response_model=ModelStatusResponse,
    summary="Refresh training status",
    description="Poll the training service and record any status change.",
)
async def refresh_model_status(
    model_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: TrainingService = Depends(get_training_service),
):
    result = await service.refresh_status(db, model_id, user.id)
    return ModelStatusResponse(
        model=ModelResponse.model_validate(result.model),
        training=TrainingSnapshotResponse(
            status=result.training.status,
            progress=result.training.progress,
            error=result.training.error,
        ),
        changed=result.changed,
    )
