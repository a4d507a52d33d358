"""Image generation orchestration.

A request is validated against the quota and the model state, the prompt
is optionally enhanced, one synthesis job is run to completion and every
returned image is stored on its own.  Losing some images is reported as a
shorter result, not as an error; only a batch with nothing stored fails.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from pydantic import HttpUrl, TypeAdapter, ValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lorastudio.clients.prompt_enhancer import PromptEnhancer, get_prompt_enhancer
from lorastudio.clients.replicate import ReplicateClient, get_replicate_client
from lorastudio.config import get_settings
from lorastudio.db.models import Generation, ModelStatus, TrainedModel
from lorastudio.db.session import async_session_maker
from lorastudio.errors import (
    GenerationNotFound,
    InvalidRequest,
    ModelNotReady,
    PersistenceFailed,
    SynthesisJobFailed,
)
from lorastudio.services.audit_service import AuditAction, audit_service
from lorastudio.services.quota_service import quota_service
from lorastudio.services.training_service import training_service

logger = logging.getLogger(__name__)

NEGATIVE_PROMPT = "blurry, distorted, low quality, unrealistic, pixelated"
REFERENCE_SIZE = 512


def _normalize(width_ratio: int, height_ratio: int) -> tuple[int, int]:
    """Scale a ratio so that its longer side is REFERENCE_SIZE."""
    if width_ratio >= height_ratio:
        return REFERENCE_SIZE, REFERENCE_SIZE * height_ratio // width_ratio
    return REFERENCE_SIZE * width_ratio // height_ratio, REFERENCE_SIZE


ASPECT_RATIOS: dict[str, tuple[int, int]] = {
    name: _normalize(w, h)
    for name, (w, h) in {
        "1:1": (1, 1),
        "4:3": (4, 3),
        "3:4": (3, 4),
        "16:9": (16, 9),
        "9:16": (9, 16),
    }.items()
}

_asset_url = TypeAdapter(HttpUrl)


def is_valid_asset_url(value: Any) -> bool:
    """True for absolute http(s) URLs."""
    try:
        _asset_url.validate_python(value)
    except ValidationError:
        return False
    return True


def apply_trigger_word(prompt: str, trigger_word: Optional[str]) -> str:
    """Prefix the model's trigger word unless the prompt already contains it."""
    if not trigger_word or trigger_word.lower() in prompt.lower():
        return prompt
    return f"{trigger_word}, {prompt}"


@dataclass
class GenerationOptions:
    """Per-request synthesis options."""

    enhance_prompt: bool = False
    image_count: int = 1
    guidance_scale: float = 7.5
    aspect_ratio: str = "1:1"

    def dimensions(self) -> tuple[int, int]:
        try:
            return ASPECT_RATIOS[self.aspect_ratio]
        except KeyError:
            raise InvalidRequest(
                f"Unsupported aspect ratio: {self.aspect_ratio}",
                supported=list(ASPECT_RATIOS),
            ) from None


@dataclass
class _Batch:
    """Everything the synthesis and persistence phase needs."""

    user_id: int
    model_id: int
    version: str
    prompt: str
    enhanced_prompt: Optional[str]
    effective_prompt: str
    options: GenerationOptions
    width: int
    height: int
    failures: list[dict] = field(default_factory=list)


class GenerationService:
    """Service for generating, listing and deleting images."""

    def __init__(
        self,
        client_factory: Callable[[], ReplicateClient] = get_replicate_client,
        enhancer_factory: Callable[[], PromptEnhancer] = get_prompt_enhancer,
        session_factory: async_sessionmaker[AsyncSession] = async_session_maker,
    ):
        self._client_factory = client_factory
        self._enhancer_factory = enhancer_factory
        self._session_factory = session_factory
        self._in_flight: set[asyncio.Task] = set()

    async def generate(
        self,
        db: AsyncSession,
        user_id: int,
        model_id: int,
        prompt: str,
        options: Optional[GenerationOptions] = None,
    ) -> list[Generation]:
        """
        Generate images with a trained model.

        Args:
            db: Database session used for validation
            user_id: Requesting user
            model_id: Model to generate with (must be Ready)
            prompt: User prompt, stored unchanged
            options: Synthesis options

        Returns:
            The stored generations, possibly fewer than requested

        Raises:
            QuotaExceeded, ModelNotFound, ModelNotReady, SynthesisJobFailed,
            PersistenceFailed
        """
        settings = get_settings()
        options = options or GenerationOptions()
        prompt = prompt.strip()
        if not prompt:
            raise InvalidRequest("Prompt is required")
        if not 1 <= options.image_count <= settings.max_images_per_request:
            raise InvalidRequest(
                f"image_count must be between 1 and {settings.max_images_per_request}"
            )
        width, height = options.dimensions()

        await quota_service.check_generation_quota(db, user_id)

        model = await training_service.get_model(db, model_id, user_id)
        if model.status != ModelStatus.READY or not model.version_ref:
            raise ModelNotReady(f"Model {model_id} is {model.status.value}")
        version, trigger_word = model.version_ref, model.trigger_word

        # Release the quota lock before the long synthesis wait
        await db.commit()

        enhanced_prompt = None
        if options.enhance_prompt:
            enhanced_prompt = await self._enhance(prompt)

        batch = _Batch(
            user_id=user_id,
            model_id=model_id,
            version=version,
            prompt=prompt,
            enhanced_prompt=enhanced_prompt,
            effective_prompt=apply_trigger_word(enhanced_prompt or prompt, trigger_word),
            options=options,
            width=width,
            height=height,
        )

        # The batch keeps running if the caller goes away
        task = asyncio.ensure_future(self._run_batch(batch))
        self._in_flight.add(task)
        task.add_done_callback(self._batch_done)
        return await asyncio.shield(task)

    def _batch_done(self, task: asyncio.Task):
        self._in_flight.discard(task)
        # Marks the exception retrieved when the caller is gone
        if not task.cancelled() and task.exception() is not None:
            logger.debug(f"Generation batch ended with {task.exception()!r}")

    async def _enhance(self, prompt: str) -> Optional[str]:
        """Enhanced prompt, or None when enhancement is unavailable."""
        try:
            return await self._enhancer_factory().enhance(prompt)
        except Exception as e:
            logger.warning(f"Prompt enhancement failed, using original prompt: {e}")
            return None

    async def _run_batch(self, batch: _Batch) -> list[Generation]:
        client = self._client_factory()
        inputs = {
            "prompt": batch.effective_prompt,
            "negative_prompt": NEGATIVE_PROMPT,
            "num_outputs": batch.options.image_count,
            "guidance_scale": batch.options.guidance_scale,
            "width": batch.width,
            "height": batch.height,
        }

        try:
            job_id = await client.submit_prediction(batch.version, inputs)
            result = await client.wait_prediction(job_id)
        except SynthesisJobFailed as e:
            logger.error(f"Synthesis failed for model {batch.model_id}: {e}")
            await self._write_audit(
                batch, AuditAction.IMAGE_GENERATION_FAILED, [], reason=e.message
            )
            raise

        persisted = []
        for url in result.outputs:
            generation = await self._persist_asset(batch, url)
            if generation is not None:
                persisted.append(generation)

        if not persisted:
            await self._write_audit(
                batch, AuditAction.IMAGE_GENERATION_FAILED, [], reason="persistence_failed"
            )
            raise PersistenceFailed(
                failed_assets=len(batch.failures), job_id=result.id
            )

        await self._write_audit(batch, AuditAction.IMAGE_GENERATION, persisted)
        if batch.failures:
            logger.warning(
                f"Stored {len(persisted)}/{len(result.outputs)} images for model {batch.model_id}"
            )
        return persisted

    async def _persist_asset(self, batch: _Batch, url: Any) -> Optional[Generation]:
        """Store one image in its own transaction; record the failure otherwise."""
        if not is_valid_asset_url(url):
            batch.failures.append({"url": str(url), "reason": "malformed_url"})
            return None

        async with self._session_factory() as db:
            generation = Generation(
                user_id=batch.user_id,
                model_id=batch.model_id,
                prompt=batch.prompt,
                enhanced_prompt=batch.enhanced_prompt,
                image_url=str(url),
            )
            db.add(generation)
            try:
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(f"Failed to store image {url}: {e}")
                batch.failures.append({"url": str(url), "reason": "storage_error"})
                return None
        return generation

    async def _write_audit(
        self,
        batch: _Batch,
        action: str,
        persisted: list[Generation],
        reason: Optional[str] = None,
    ):
        details = {
            "model_id": batch.model_id,
            "prompt": batch.prompt,
            "enhanced_prompt": batch.enhanced_prompt,
            "image_count": batch.options.image_count,
            "generated_images": [g.id for g in persisted],
        }
        if batch.failures:
            details["failed_assets"] = batch.failures
        if reason:
            details["reason"] = reason

        async with self._session_factory() as db:
            await audit_service.record(db, action, user_id=batch.user_id, details=details)
            await db.commit()

    async def list_generations(
        self,
        db: AsyncSession,
        user_id: int,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[tuple[Generation, str]], int]:
        """
        List a user's generations, newest first.

        Returns:
            Tuple of ([(generation, trigger_word)], total_count)
        """
        total = (
            await db.execute(
                select(func.count(Generation.id)).where(Generation.user_id == user_id)
            )
        ).scalar() or 0

        result = await db.execute(
            select(Generation, TrainedModel.trigger_word)
            .join(TrainedModel, TrainedModel.id == Generation.model_id)
            .where(Generation.user_id == user_id)
            .order_by(Generation.created_at.desc(), Generation.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return [(row[0], row[1]) for row in result.all()], total

    async def delete_generation(
        self,
        db: AsyncSession,
        user_id: int,
        generation_id: int,
    ):
        """Delete one of the user's images; foreign images are reported as missing."""
        result = await db.execute(
            select(Generation).where(
                Generation.id == generation_id,
                Generation.user_id == user_id,
            )
        )
        generation = result.scalar_one_or_none()
        if generation is None:
            raise GenerationNotFound(f"Image {generation_id} not found")

        image_url = generation.image_url
        await db.execute(
            delete(Generation).where(
                Generation.id == generation_id,
                Generation.user_id == user_id,
            )
        )
        await audit_service.record(
            db,
            AuditAction.IMAGE_DELETED,
            user_id=user_id,
            details={"image_id": generation_id, "image_url": image_url},
        )
        await db.commit()


# Singleton instance
generation_service = GenerationService()
