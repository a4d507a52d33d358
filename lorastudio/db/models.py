"""Database models for the lorastudio service."""

import enum
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Index,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lorastudio.db.session import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelStatus(str, enum.Enum):
    """Lifecycle of a trained model."""

    PROCESSING = "Processing"
    READY = "Ready"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ModelStatus.READY, ModelStatus.FAILED)


class PaymentStatus:
    """Payment record statuses the service relies on.

    Any other processor-defined status (past_due, unpaid, ...) is stored as-is.
    """

    ACTIVE = "active"
    CANCELED = "canceled"


class User(Base):
    """An end user, created lazily on first authenticated access."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject: Mapped[str] = mapped_column(String(255), unique=True, index=True)  # Identity provider id
    email: Mapped[str] = mapped_column(String(320), default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # Relationships
    models: Mapped[list["TrainedModel"]] = relationship("TrainedModel", back_populates="user")


class TrainedModel(Base):
    """A personalised image model produced by an external training job."""

    __tablename__ = "models"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    name: Mapped[str] = mapped_column(String(100))
    training_ref: Mapped[str] = mapped_column(String(100), index=True)  # External training job id
    version_ref: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True
    )  # Synthesis version, set once training succeeds
    trigger_word: Mapped[str] = mapped_column(String(100))
    status: Mapped[ModelStatus] = mapped_column(
        Enum(
            ModelStatus,
            name="modelstatus",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=ModelStatus.PROCESSING,
        index=True,
    )
    parameters: Mapped[dict] = mapped_column(JSON, default=dict)  # Training hyperparameters
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="models")
    generations: Mapped[list["Generation"]] = relationship("Generation", back_populates="model")


class Generation(Base):
    """One persisted image produced by a synthesis job."""

    __tablename__ = "generations"
    __table_args__ = (Index("ix_generations_user_created", "user_id", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    model_id: Mapped[int] = mapped_column(Integer, ForeignKey("models.id"), index=True)
    prompt: Mapped[str] = mapped_column(Text)
    enhanced_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    image_url: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), index=True
    )

    # Relationships
    model: Mapped["TrainedModel"] = relationship("TrainedModel", back_populates="generations")


class PaymentRecord(Base):
    """A checkout/subscription as reported by the payment processor."""

    __tablename__ = "payment_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), index=True)
    charge_ref: Mapped[str] = mapped_column(String(255), unique=True, index=True)  # Checkout session id
    processor_customer_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    processor_subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(String(50), default=PaymentStatus.ACTIVE, index=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, server_default=func.now()
    )


class AuditLog(Base):
    """Append-only audit trail of state changes."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=True, index=True
    )
    action: Mapped[str] = mapped_column(String(50), index=True)  # e.g. "image_generation"
    details: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
