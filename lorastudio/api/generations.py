"""Image generation API routes."""

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.api.dependencies import get_generation_service
from lorastudio.auth.security import require_user
from lorastudio.db.models import User
from lorastudio.db.session import get_db
from lorastudio.middleware.rate_limit import rate_limit_expensive
from lorastudio.schemas.schemas import (
    GenerationCreateRequest,
    GenerationCreateResponse,
    GenerationListResponse,
    GenerationResponse,
)
from lorastudio.services.generation_service import GenerationOptions, GenerationService

router = APIRouter(prefix="/v1/generations", tags=["Generations"])


@router.post(
    "",
    response_model=GenerationCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Generate images",
    description="Run one synthesis job with a ready model and store the resulting images.",
)
@rate_limit_expensive()
async def create_generation(
    request: Request,
    body: GenerationCreateRequest,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: GenerationService = Depends(get_generation_service),
):
    """
    Generate images.

    - **model_id**: A model in Ready state
    - **prompt**: What to generate
    - **enhance_prompt**: Rewrite the prompt with more visual detail first
    - **image_count**: Number of images (1-4)
    - **guidance_scale**: Prompt adherence (1-20)
    - **aspect_ratio**: 1:1, 4:3, 3:4, 16:9 or 9:16

    The response may hold fewer images than requested when some could not
    be stored.
    """
    generations = await service.generate(
        db,
        user_id=user.id,
        model_id=body.model_id,
        prompt=body.prompt,
        options=GenerationOptions(
            enhance_prompt=body.enhance_prompt,
            image_count=body.image_count,
            guidance_scale=body.guidance_scale,
            aspect_ratio=body.aspect_ratio,
        ),
    )
    return GenerationCreateResponse(
        images=[GenerationResponse.model_validate(g) for g in generations],
        requested=body.image_count,
    )


@router.get(
    "",
    response_model=GenerationListResponse,
    summary="List generations",
    description="Get a paginated gallery of the user's images.",
)
async def list_generations(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: GenerationService = Depends(get_generation_service),
):
    rows, total = await service.list_generations(db, user.id, page, page_size)

    images = []
    for generation, trigger_word in rows:
        item = GenerationResponse.model_validate(generation)
        item.trigger_word = trigger_word
        images.append(item)

    total_pages = (total + page_size - 1) // page_size

    return GenerationListResponse(
        images=images,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.delete(
    "/{generation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a generation",
)
async def delete_generation(
    generation_id: int,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(require_user),
    service: GenerationService = Depends(get_generation_service),
):
    """Delete one of the user's images."""
    await service.delete_generation(db, user.id, generation_id)
