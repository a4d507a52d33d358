"""Pytest configuration and fixtures."""

import asyncio
import hashlib
import hmac
import os
import time
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

# Settings are read at import time, so the environment is prepared first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_PRICE_ID_MONTHLY"] = "price_monthly_test"
os.environ["STRIPE_PRICE_ID_YEARLY"] = "price_yearly_test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from lorastudio.api.dependencies import (
    get_billing_service,
    get_generation_service,
    get_training_service,
)
from lorastudio.clients.replicate import (
    SUCCEEDED,
    PredictionResult,
    TrainingSnapshot,
)
from lorastudio.config import Settings
from lorastudio.db.models import (
    Generation,
    ModelStatus,
    PaymentRecord,
    PaymentStatus,
    TrainedModel,
    User,
)
from lorastudio.db.session import Base, get_db
from lorastudio.main import app
from lorastudio.services.billing_service import BillingService
from lorastudio.services.generation_service import GenerationService
from lorastudio.services.training_service import TRAINING_PARAMETERS, TrainingService

WEBHOOK_SECRET = "whsec_test_secret"


# ============== Fakes for external services ==============


class FakeReplicateClient:
    """In-memory stand-in for ReplicateClient."""

    def __init__(self):
        self.trainings: dict[str, TrainingSnapshot] = {}
        self.submitted_trainings: list[dict] = []
        self.submitted_predictions: list[dict] = []
        self.outputs: Optional[list] = None
        self.training_error: Optional[Exception] = None
        self.prediction_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def submit_training(self, images, trigger_word, hyperparameters):
        if self.training_error:
            raise self.training_error
        training_id = f"trn_{len(self.submitted_trainings) + 1}"
        self.submitted_trainings.append(
            {"images": images, "trigger_word": trigger_word, "parameters": hyperparameters}
        )
        self.trainings[training_id] = TrainingSnapshot(id=training_id, status="starting")
        return training_id

    async def get_training(self, training_id):
        if self.training_error:
            raise self.training_error
        return self.trainings[training_id]

    def set_training(self, training_id, status, version=None, error=None):
        self.trainings[training_id] = TrainingSnapshot(
            id=training_id, status=status, version=version, error=error
        )

    async def submit_prediction(self, version, inputs):
        prediction_id = f"pred_{len(self.submitted_predictions) + 1}"
        self.submitted_predictions.append({"id": prediction_id, "version": version, "input": inputs})
        return prediction_id

    async def wait_prediction(self, prediction_id, timeout=None, poll_interval=None):
        if self.gate is not None:
            await self.gate.wait()
        if self.prediction_error:
            raise self.prediction_error

        outputs = self.outputs
        if outputs is None:
            [submitted] = [p for p in self.submitted_predictions if p["id"] == prediction_id]
            count = submitted["input"]["num_outputs"]
            outputs = [f"https://cdn.example.com/{prediction_id}/{i}.png" for i in range(count)]
        return PredictionResult(id=prediction_id, status=SUCCEEDED, outputs=list(outputs))


class FakePromptEnhancer:
    """Returns a fixed enhancement or raises the configured error."""

    def __init__(self):
        self.error: Optional[Exception] = None
        self.calls: list[str] = []

    async def enhance(self, prompt):
        self.calls.append(prompt)
        if self.error:
            raise self.error
        return f"{prompt}, golden hour lighting, 85mm portrait"


# ============== Database ==============


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create a fresh SQLite database per test."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ============== Services ==============


@pytest.fixture
def fake_client() -> FakeReplicateClient:
    return FakeReplicateClient()


@pytest.fixture
def fake_enhancer() -> FakePromptEnhancer:
    return FakePromptEnhancer()


@pytest.fixture
def training_svc(fake_client) -> TrainingService:
    return TrainingService(client_factory=lambda: fake_client)


@pytest.fixture
def generation_svc(fake_client, fake_enhancer, session_factory) -> GenerationService:
    return GenerationService(
        client_factory=lambda: fake_client,
        enhancer_factory=lambda: fake_enhancer,
        session_factory=session_factory,
    )


@pytest.fixture
def billing_settings() -> Settings:
    return Settings(
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=WEBHOOK_SECRET,
        stripe_price_id_monthly="price_monthly_test",
        stripe_price_id_yearly="price_yearly_test",
        app_url="https://studio.example.com",
    )


@pytest.fixture
def billing_svc(billing_settings) -> BillingService:
    return BillingService(settings=billing_settings)


@pytest.fixture
def sign_payload():
    """Build a Stripe-Signature header for a payload."""

    def _sign(payload: str, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp if timestamp is not None else int(time.time())
        signed = f"{timestamp}.{payload}".encode()
        digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    return _sign


# ============== Data ==============


@pytest_asyncio.fixture
async def user(db_session: AsyncSession) -> User:
    """Create a test user."""
    user = User(subject="user_2abc", email="ada@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest_asyncio.fixture
async def other_user(db_session: AsyncSession) -> User:
    user = User(subject="user_9xyz", email="grace@example.com")
    db_session.add(user)
    await db_session.commit()
    return user


@pytest.fixture
def make_model(db_session: AsyncSession):
    """Insert a model directly, bypassing the training service."""

    async def _make(
        owner: User,
        status: ModelStatus = ModelStatus.READY,
        version_ref: Optional[str] = "owner/model:ver1",
        trigger_word: str = "sks person",
        training_ref: str = "trn_seed",
    ) -> TrainedModel:
        model = TrainedModel(
            user_id=owner.id,
            name="Portrait model",
            training_ref=training_ref,
            version_ref=version_ref,
            trigger_word=trigger_word,
            status=status,
            parameters=dict(TRAINING_PARAMETERS),
        )
        db_session.add(model)
        await db_session.commit()
        return model

    return _make


@pytest.fixture
def make_generations(db_session: AsyncSession):
    """Insert ``count`` stored images for a user."""

    async def _make(
        owner: User,
        model: TrainedModel,
        count: int,
        created_at: Optional[datetime] = None,
    ) -> None:
        created_at = created_at or datetime.now(timezone.utc)
        for i in range(count):
            db_session.add(
                Generation(
                    user_id=owner.id,
                    model_id=model.id,
                    prompt=f"seed prompt {i}",
                    image_url=f"https://cdn.example.com/seed/{i}.png",
                    created_at=created_at,
                )
            )
        await db_session.commit()

    return _make


@pytest.fixture
def make_payment(db_session: AsyncSession):
    async def _make(
        owner: User,
        status: str = PaymentStatus.ACTIVE,
        charge_ref: str = "cs_test_seed",
        customer: Optional[str] = "cus_seed",
        subscription: Optional[str] = "sub_seed",
    ) -> PaymentRecord:
        record = PaymentRecord(
            user_id=owner.id,
            charge_ref=charge_ref,
            processor_customer_id=customer,
            processor_subscription_id=subscription,
            status=status,
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _make


# ============== HTTP ==============


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    training_svc: TrainingService,
    generation_svc: GenerationService,
    billing_svc: BillingService,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_training_service] = lambda: training_svc
    app.dependency_overrides[get_generation_service] = lambda: generation_svc
    app.dependency_overrides[get_billing_service] = lambda: billing_svc

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user: User) -> dict:
    """Identity headers as forwarded by the gateway."""
    return {"X-User-Id": user.subject, "X-User-Email": user.email}
