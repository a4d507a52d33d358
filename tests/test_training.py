"""Tests for the model training lifecycle."""

import pytest
from sqlalchemy import func, select

from lorastudio.db.models import AuditLog, ModelStatus, TrainedModel
from lorastudio.errors import (
    InsufficientPhotos,
    ModelLimitReached,
    ModelNotFound,
    TrainingServiceError,
)
from lorastudio.services.audit_service import AuditAction
from lorastudio.services.training_service import map_training_status, next_status

PHOTOS = [f"https://uploads.example.com/photo-{i}.jpg" for i in range(5)]


async def count_audits(db, action):
    result = await db.execute(select(func.count(AuditLog.id)).where(AuditLog.action == action))
    return result.scalar()


@pytest.mark.parametrize(
    "external, expected",
    [
        ("starting", ModelStatus.PROCESSING),
        ("processing", ModelStatus.PROCESSING),
        ("succeeded", ModelStatus.READY),
        ("failed", ModelStatus.FAILED),
        ("canceled", ModelStatus.FAILED),
    ],
)
def test_map_training_status(external, expected):
    assert map_training_status(external) == expected


def test_terminal_states_are_sticky():
    assert next_status(ModelStatus.READY, "failed") == ModelStatus.READY
    assert next_status(ModelStatus.FAILED, "succeeded") == ModelStatus.FAILED
    assert next_status(ModelStatus.PROCESSING, "succeeded") == ModelStatus.READY


@pytest.mark.asyncio
async def test_start_training_records_processing_model(db_session, user, training_svc, fake_client):
    model = await training_svc.start_training(
        db_session, user.id, "sks person", "Me", PHOTOS
    )

    assert model.status == ModelStatus.PROCESSING
    assert model.training_ref == "trn_1"
    assert model.version_ref is None
    assert model.parameters["learning_rate"] == 1e-4
    assert fake_client.submitted_trainings[0]["images"] == PHOTOS
    assert fake_client.submitted_trainings[0]["trigger_word"] == "sks person"
    assert await count_audits(db_session, AuditAction.MODEL_TRAINING_STARTED) == 1


@pytest.mark.asyncio
async def test_start_training_needs_five_photos(db_session, user, training_svc, fake_client):
    with pytest.raises(InsufficientPhotos) as exc_info:
        await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS[:4])

    assert exc_info.value.details["provided"] == 4
    assert fake_client.submitted_trainings == []


@pytest.mark.asyncio
async def test_blank_photo_urls_are_not_counted(db_session, user, training_svc):
    with pytest.raises(InsufficientPhotos):
        await training_svc.start_training(
            db_session, user.id, "sks", "Me", PHOTOS[:4] + ["  "]
        )


@pytest.mark.asyncio
async def test_start_training_respects_model_limit(
    db_session, user, training_svc, fake_client, make_model
):
    for _ in range(5):
        await make_model(user)

    with pytest.raises(ModelLimitReached):
        await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)
    assert fake_client.submitted_trainings == []


@pytest.mark.asyncio
async def test_training_service_error_creates_nothing(db_session, user, training_svc, fake_client):
    fake_client.training_error = TrainingServiceError("upstream down")

    with pytest.raises(TrainingServiceError):
        await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)

    count = (await db_session.execute(select(func.count(TrainedModel.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
async def test_refresh_success_sets_version_once(db_session, user, training_svc, fake_client):
    model = await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)
    fake_client.set_training(model.training_ref, "succeeded", version="owner/me:abc123")

    first = await training_svc.refresh_status(db_session, model.id, user.id)
    second = await training_svc.refresh_status(db_session, model.id, user.id)

    assert first.changed is True
    assert first.model.status == ModelStatus.READY
    assert first.model.version_ref == "owner/me:abc123"
    assert second.changed is False
    assert await count_audits(db_session, AuditAction.MODEL_STATUS_CHANGED) == 1


@pytest.mark.asyncio
async def test_success_without_version_waits_for_version(
    db_session, user, training_svc, fake_client
):
    model = await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)
    fake_client.set_training(model.training_ref, "succeeded", version=None)

    first = await training_svc.refresh_status(db_session, model.id, user.id)

    assert first.changed is False
    assert first.model.status == ModelStatus.PROCESSING
    assert first.model.version_ref is None
    assert await count_audits(db_session, AuditAction.MODEL_STATUS_CHANGED) == 0

    fake_client.set_training(model.training_ref, "succeeded", version="owner/me:v1")
    second = await training_svc.refresh_status(db_session, model.id, user.id)

    assert second.changed is True
    assert second.model.status == ModelStatus.READY
    assert second.model.version_ref == "owner/me:v1"


@pytest.mark.asyncio
async def test_refresh_failure_keeps_error(db_session, user, training_svc, fake_client):
    model = await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)
    fake_client.set_training(model.training_ref, "failed", error="CUDA out of memory")

    result = await training_svc.refresh_status(db_session, model.id, user.id)

    assert result.model.status == ModelStatus.FAILED
    assert result.model.error_message == "CUDA out of memory"


@pytest.mark.asyncio
async def test_refresh_while_processing_writes_nothing(db_session, user, training_svc, fake_client):
    model = await training_svc.start_training(db_session, user.id, "sks", "Me", PHOTOS)
    fake_client.set_training(model.training_ref, "processing")

    result = await training_svc.refresh_status(db_session, model.id, user.id)

    assert result.changed is False
    assert result.model.status == ModelStatus.PROCESSING
    assert await count_audits(db_session, AuditAction.MODEL_STATUS_CHANGED) == 0


@pytest.mark.asyncio
async def test_ready_model_never_regresses(db_session, user, training_svc, fake_client, make_model):
    model = await make_model(user, training_ref="trn_done")
    fake_client.set_training("trn_done", "failed", error="late failure")

    result = await training_svc.refresh_status(db_session, model.id, user.id)

    assert result.changed is False
    assert result.model.status == ModelStatus.READY
    assert result.model.error_message is None


@pytest.mark.asyncio
async def test_foreign_model_is_not_found(db_session, user, other_user, training_svc, make_model):
    model = await make_model(other_user)

    with pytest.raises(ModelNotFound):
        await training_svc.get_model(db_session, model.id, user.id)
    with pytest.raises(ModelNotFound):
        await training_svc.refresh_status(db_session, model.id, user.id)


@pytest.mark.asyncio
async def test_list_models_is_scoped_to_user(db_session, user, other_user, training_svc, make_model):
    await make_model(user)
    await make_model(other_user)

    models = await training_svc.list_models(db_session, user.id)
    assert [m.user_id for m in models] == [user.id]


@pytest.mark.asyncio
async def test_refresh_processing_models(
    db_session, session_factory, user, training_svc, fake_client, make_model
):
    done = await make_model(user, status=ModelStatus.PROCESSING, version_ref=None, training_ref="trn_a")
    await make_model(user, status=ModelStatus.PROCESSING, version_ref=None, training_ref="trn_b")
    fake_client.set_training("trn_a", "succeeded", version="owner/me:v1")
    fake_client.set_training("trn_b", "processing")

    changed = await training_svc.refresh_processing_models(session_factory)

    assert changed == 1
    refreshed = await training_svc.get_model(db_session, done.id, user.id)
    await db_session.refresh(refreshed)
    assert refreshed.status == ModelStatus.READY
