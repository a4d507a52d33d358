"""Pydantic schemas for request/response validation."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

AspectRatio = Literal["1:1", "4:3", "3:4", "16:9", "9:16"]


# ============== User Schemas ==============


class QuotaResponse(BaseModel):
    """Current usage against the plan limits."""

    plan: Literal["Free", "Premium"]
    models_created: int
    models_limit: Optional[int] = Field(None, description="None means unlimited")
    daily_generations: int
    daily_generations_limit: int


class UserResponse(BaseModel):
    """The authenticated user with quota information."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    subject: str
    email: str
    created_at: datetime
    quota: Optional[QuotaResponse] = None


# ============== Model Schemas ==============


class TrainingCreateRequest(BaseModel):
    """Request to train a new model."""

    model_name: str = Field(..., min_length=1, max_length=100)
    trigger_word: str = Field(..., min_length=1, max_length=100)
    photo_urls: list[str] = Field(..., max_length=100, description="Reference photo URLs")

    @field_validator("model_name", "trigger_word", mode="before")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip() if isinstance(v, str) else v


class ModelResponse(BaseModel):
    """A trained model."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    trigger_word: str
    status: str
    training_ref: str
    parameters: dict = {}
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @field_validator("status", mode="before")
    @classmethod
    def status_value(cls, v) -> str:
        return getattr(v, "value", v)


class TrainingSnapshotResponse(BaseModel):
    """Training job state as reported by the training service."""

    status: str
    progress: Optional[float] = None
    error: Optional[str] = None


class ModelStatusResponse(BaseModel):
    """Result of a status refresh."""

    model: ModelResponse
    training: TrainingSnapshotResponse
    changed: bool


class ModelListResponse(BaseModel):
    models: list[ModelResponse]


# ============== Generation Schemas ==============


class GenerationCreateRequest(BaseModel):
    """Request to generate images with a trained model."""

    model_config = ConfigDict(protected_namespaces=())

    model_id: int
    prompt: str = Field(..., min_length=1, max_length=2000)
    enhance_prompt: bool = False
    image_count: int = Field(1, ge=1, le=4)
    guidance_scale: float = Field(7.5, ge=1.0, le=20.0)
    aspect_ratio: AspectRatio = "1:1"


class GenerationResponse(BaseModel):
    """One stored image."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: int
    model_id: int
    prompt: str
    enhanced_prompt: Optional[str] = None
    image_url: str
    created_at: datetime
    trigger_word: Optional[str] = None


class GenerationCreateResponse(BaseModel):
    """Images stored for a generation request."""

    images: list[GenerationResponse]
    requested: int


class GenerationListResponse(BaseModel):
    """Paginated list of generations."""

    images: list[GenerationResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


# ============== Billing Schemas ==============


class CheckoutRequest(BaseModel):
    plan: Literal["monthly", "yearly"]


class CheckoutResponse(BaseModel):
    url: str


class WebhookResponse(BaseModel):
    received: bool = True
    status: str


# ============== Health & Misc Schemas ==============


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str


class ErrorBody(BaseModel):
    code: str
    message: str
    retriable: bool
    details: Optional[dict] = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    error: ErrorBody
