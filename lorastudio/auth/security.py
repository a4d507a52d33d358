"""Resolution of the authenticated user.

Session verification happens upstream: the identity gateway in front of
this service verifies the session and forwards the identity-provider
subject in ``X-User-Id`` (and the email in ``X-User-Email``).  This module
only maps that subject to an internal user, creating it on first access.
"""

import re
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lorastudio.db.models import User
from lorastudio.db.session import get_db
from lorastudio.services.user_service import user_service

_SUBJECT_RE = re.compile(r"^[A-Za-z0-9_|:.@-]{1,255}$")


class AuthenticatedUser:
    """Dependency returning the internal user for the verified subject."""

    async def __call__(
        self,
        request: Request,
        x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
        x_user_email: Optional[str] = Header(None, alias="X-User-Email"),
        db: AsyncSession = Depends(get_db),
    ) -> User:
        if not x_user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Unauthorized",
            )

        subject = x_user_id.strip()
        if not _SUBJECT_RE.match(subject):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid user identity",
            )

        user = await user_service.get_or_create_user(db, subject, x_user_email)

        # Store in request state for the rate limiter
        request.state.user = user
        return user


require_user = AuthenticatedUser()
