"""Lazy user provisioning from identity-provider subjects."""

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.db.models import User
from lorastudio.services.audit_service import AuditAction, audit_service

logger = logging.getLogger(__name__)


class UserService:
    """Maps verified identity subjects to internal users."""

    async def get_by_subject(self, db: AsyncSession, subject: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.subject == subject))
        return result.scalar_one_or_none()

    async def get_or_create_user(
        self,
        db: AsyncSession,
        subject: str,
        email: Optional[str] = None,
    ) -> User:
        """
        Return the user for ``subject``, creating it on first access.

        The email is the only mutable field and is refreshed whenever the
        identity provider supplies a different one.
        """
        user = await self.get_by_subject(db, subject)
        if user is not None:
            if email and user.email != email:
                user.email = email
                await db.commit()
            return user

        user = User(subject=subject, email=email or "")
        db.add(user)
        try:
            await db.flush()
            await audit_service.record(
                db, AuditAction.USER_CREATED, user_id=user.id, details={"subject": subject}
            )
            await db.commit()
        except IntegrityError:
            # Another request created the same subject first
            await db.rollback()
            user = await self.get_by_subject(db, subject)
            if user is None:
                raise
            return user

        logger.info(f"Created user {user.id} for subject {subject}")
        return user


# Singleton instance
user_service = UserService()
