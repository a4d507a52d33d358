"""Append-only audit log writer."""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.db.models import AuditLog

logger = logging.getLogger(__name__)


class AuditAction:
    """Action tags written to the audit log."""

    USER_CREATED = "user_created"
    MODEL_TRAINING_STARTED = "model_training_started"
    MODEL_STATUS_CHANGED = "model_status_changed"
    IMAGE_GENERATION = "image_generation"
    IMAGE_GENERATION_FAILED = "image_generation_failed"
    IMAGE_DELETED = "image_deleted"
    PAYMENT_SUCCESSFUL = "payment_successful"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_INITIATED = "subscription_initiated"


class AuditService:
    """Writes audit entries inside the caller's transaction.

    Entries are never updated or deleted, so concurrent writers need no
    coordination; ordering is by ``created_at`` only.
    """

    async def record(
        self,
        db: AsyncSession,
        action: str,
        user_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Add an audit entry and flush it.

        Args:
            db: Database session (commit is left to the caller)
            action: One of the ``AuditAction`` tags
            user_id: Owning user, if any
            details: JSON-serialisable detail map

        Returns:
            The pending AuditLog row
        """
        entry = AuditLog(action=action, user_id=user_id, details=details or {})
        db.add(entry)
        await db.flush()
        logger.debug(f"Audit {action} user={user_id}")
        return entry


# Singleton instance
audit_service = AuditService()
