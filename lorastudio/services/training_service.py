"""Model training lifecycle: job submission and status tracking.

A model moves ``Processing -> Ready`` or ``Processing -> Failed`` and
never leaves a terminal state, whatever the training service reports
later.  Status is only ever written here.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lorastudio.clients.replicate import (
    CANCELED,
    FAILED,
    SUCCEEDED,
    ReplicateClient,
    TrainingSnapshot,
    get_replicate_client,
)
from lorastudio.config import get_settings
from lorastudio.db.models import ModelStatus, TrainedModel
from lorastudio.errors import (
    InsufficientPhotos,
    InvalidRequest,
    ModelNotFound,
    TrainingServiceError,
)
from lorastudio.services.audit_service import AuditAction, audit_service
from lorastudio.services.quota_service import quota_service

logger = logging.getLogger(__name__)

# Fixed trainer hyperparameters
TRAINING_PARAMETERS = {
    "train_batch_size": 1,
    "num_train_epochs": 4000,
    "learning_rate": 1e-4,
    "resolution": 512,
    "mixed_precision": "fp16",
}


def map_training_status(external_status: str) -> ModelStatus:
    """Map a training service status onto the model state machine."""
    if external_status == SUCCEEDED:
        return ModelStatus.READY
    if external_status in (FAILED, CANCELED):
        return ModelStatus.FAILED
    return ModelStatus.PROCESSING


def next_status(current: ModelStatus, external_status: str) -> ModelStatus:
    """Status after observing ``external_status``; terminal states are sticky."""
    if current.is_terminal:
        return current
    return map_training_status(external_status)


@dataclass
class RefreshResult:
    """Outcome of a status refresh."""

    model: TrainedModel
    training: TrainingSnapshot
    changed: bool


class TrainingService:
    """Service for starting trainings and tracking their status."""

    def __init__(self, client_factory: Callable[[], ReplicateClient] = get_replicate_client):
        self._client_factory = client_factory

    @property
    def client(self) -> ReplicateClient:
        return self._client_factory()

    async def start_training(
        self,
        db: AsyncSession,
        user_id: int,
        trigger_word: str,
        model_name: str,
        photo_urls: list[str],
    ) -> TrainedModel:
        """
        Submit a training job and record the new model.

        Args:
            db: Database session
            user_id: Owning user
            trigger_word: Token substituted into prompts for this model
            model_name: Display name
            photo_urls: Reference photo URLs (at least 5)

        Returns:
            The created model, in Processing state

        Raises:
            InsufficientPhotos, ModelLimitReached, TrainingServiceError
        """
        settings = get_settings()
        if not trigger_word.strip() or not model_name.strip():
            raise InvalidRequest("Trigger word and model name are required")

        photos = [url for url in photo_urls if url and url.strip()]
        if len(photos) < settings.min_training_photos:
            raise InsufficientPhotos(
                f"At least {settings.min_training_photos} photos are required for training",
                provided=len(photos),
            )

        # Holds the per-user lock until commit, so the count stays exact
        await quota_service.check_model_quota(db, user_id)

        try:
            training_ref = await self.client.submit_training(
                photos, trigger_word, dict(TRAINING_PARAMETERS)
            )
        except TrainingServiceError:
            await db.rollback()
            raise

        model = TrainedModel(
            user_id=user_id,
            name=model_name.strip(),
            training_ref=training_ref,
            trigger_word=trigger_word.strip(),
            status=ModelStatus.PROCESSING,
            parameters=dict(TRAINING_PARAMETERS),
        )
        db.add(model)
        await db.flush()

        await audit_service.record(
            db,
            AuditAction.MODEL_TRAINING_STARTED,
            user_id=user_id,
            details={
                "model_id": model.id,
                "training_ref": training_ref,
                "trigger_word": model.trigger_word,
            },
        )
        await db.commit()

        logger.info(f"Training {training_ref} started for model {model.id} (user {user_id})")
        return model

    async def get_model(
        self,
        db: AsyncSession,
        model_id: int,
        user_id: int,
    ) -> TrainedModel:
        """Load a model owned by ``user_id``; foreign models are reported as missing."""
        result = await db.execute(
            select(TrainedModel).where(
                TrainedModel.id == model_id,
                TrainedModel.user_id == user_id,
            )
        )
        model = result.scalar_one_or_none()
        if model is None:
            raise ModelNotFound(f"Model {model_id} not found")
        return model

    async def list_models(self, db: AsyncSession, user_id: int) -> list[TrainedModel]:
        """All models of a user, newest first."""
        result = await db.execute(
            select(TrainedModel)
            .where(TrainedModel.user_id == user_id)
            .order_by(TrainedModel.created_at.desc(), TrainedModel.id.desc())
        )
        return list(result.scalars().all())

    async def refresh_status(
        self,
        db: AsyncSession,
        model_id: int,
        user_id: int,
    ) -> RefreshResult:
        """
        Poll the training service and persist a status transition if any.

        Repeated calls without an upstream change write nothing.  The
        update is conditional on the previously read status, so concurrent
        refreshes record a transition once.
        """
        model = await self.get_model(db, model_id, user_id)
        training = await self.client.get_training(model.training_ref)

        old_status = model.status
        new_status = next_status(old_status, training.status)
        if new_status == ModelStatus.READY and not training.version:
            # Ready needs a version to generate with; wait for a later poll
            logger.warning(
                f"Training {model.training_ref} succeeded without a model version, "
                f"model {model.id} stays {old_status.value}"
            )
            new_status = old_status
        if new_status == old_status:
            return RefreshResult(model=model, training=training, changed=False)

        values = {"status": new_status}
        if new_status == ModelStatus.READY:
            values["version_ref"] = training.version
        elif new_status == ModelStatus.FAILED:
            values["error_message"] = training.error or f"Training {training.status}"

        result = await db.execute(
            update(TrainedModel)
            .where(TrainedModel.id == model.id, TrainedModel.status == old_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Someone else recorded the transition first
            await db.rollback()
            await db.refresh(model)
            return RefreshResult(model=model, training=training, changed=False)

        await audit_service.record(
            db,
            AuditAction.MODEL_STATUS_CHANGED,
            user_id=user_id,
            details={
                "model_id": model.id,
                "training_ref": model.training_ref,
                "old_status": old_status.value,
                "new_status": new_status.value,
            },
        )
        await db.commit()
        await db.refresh(model)

        logger.info(
            f"Model {model.id} status changed: {old_status.value} -> {new_status.value}"
        )
        return RefreshResult(model=model, training=training, changed=True)

    async def refresh_processing_models(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> int:
        """
        Refresh every model still in Processing.

        Each model is refreshed in its own session; a training service
        error for one model is logged and the others are still refreshed.

        Returns:
            Number of models whose status changed
        """
        async with session_factory() as db:
            result = await db.execute(
                select(TrainedModel.id, TrainedModel.user_id).where(
                    TrainedModel.status == ModelStatus.PROCESSING
                )
            )
            pending = list(result.all())

        changed = 0
        for model_id, user_id in pending:
            async with session_factory() as db:
                try:
                    outcome = await self.refresh_status(db, model_id, user_id)
                except TrainingServiceError as e:
                    logger.error(f"Failed to refresh model {model_id}: {e}")
                    continue
                if outcome.changed:
                    changed += 1

        logger.info(f"Refreshed {len(pending)} processing models, {changed} changed")
        return changed


# Singleton instance
training_service = TrainingService()
