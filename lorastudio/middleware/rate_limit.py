"""Rate limiting middleware using SlowAPI."""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from lorastudio.config import get_settings

settings = get_settings()


def get_user_or_ip(request: Request) -> str:
    """
    Get rate limit key from the authenticated user or IP address.

    Uses the identity subject forwarded by the gateway, falls back to IP address.
    """
    if hasattr(request.state, "user") and request.state.user:
        return f"user:{request.state.user.id}"

    subject = request.headers.get("X-User-Id")
    if subject:
        return f"subject:{subject}"

    return f"ip:{get_remote_address(request)}"


# Create limiter with Redis storage
limiter = Limiter(
    key_func=get_user_or_ip,
    storage_uri=settings.redis_url,
    strategy="fixed-window",
    enabled=settings.rate_limit_enabled,
)


def rate_limit_expensive():
    """Rate limit for endpoints that start external jobs."""
    return limiter.limit(
        f"{settings.rate_limit_per_minute}/minute;{settings.rate_limit_per_hour}/hour",
        key_func=get_user_or_ip,
    )
