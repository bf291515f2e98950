"""
Rate limiting for sensitive admin operations using the ``limits`` library.

The limiter is an explicit object owned by the application (``app.state``)
rather than a module global, so tests and workers each get their own storage.
"""

import math
import time

import structlog
from fastapi import Depends, HTTPException, Request, status
from limits import RateLimitItem, parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

from .auth.core import UserInfo, get_current_user
from .settings import Settings

logger = structlog.get_logger(__name__)


class SensitiveOperationLimiter:
    """Moving-window limiter keyed by admin id and endpoint path."""

    def __init__(
        self, limit: str = "5/15 minutes", storage_url: str = "memory://", enabled: bool = True
    ):
        self.item: RateLimitItem = parse(limit)
        self.storage = storage_from_string(storage_url)
        self.strategy = MovingWindowRateLimiter(self.storage)
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings: Settings) -> "SensitiveOperationLimiter":
        return cls(
            limit=settings.rate_limit.sensitive_operations,
            storage_url=settings.rate_limit.storage_url,
            enabled=settings.rate_limit.enabled,
        )

    def hit(self, admin_id: str, path: str) -> bool:
        """Count one request; False once the admin has exhausted the window."""
        if not self.enabled:
            return True
        return self.strategy.hit(self.item, admin_id, path)

    def retry_after(self, admin_id: str, path: str) -> int:
        stats = self.strategy.get_window_stats(self.item, admin_id, path)
        return max(1, math.ceil(stats.reset_time - time.time()))

    def reset(self) -> None:
        self.storage.reset()


async def limit_sensitive_operation(
    request: Request, user: UserInfo = Depends(get_current_user)
) -> UserInfo:
    """FastAPI dependency enforcing the sensitive-operation limit for the caller."""
    limiter: SensitiveOperationLimiter | None = getattr(
        request.app.state, "sensitive_limiter", None
    )
    if limiter is None:
        return user

    path = request.url.path
    if not limiter.hit(user.user_id, path):
        retry_after = limiter.retry_after(user.user_id, path)
        logger.warning(
            "rate_limit.sensitive_operation.exceeded",
            user_id=user.user_id,
            path=path,
            retry_after=retry_after,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many sensitive operations. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    return user


__all__ = ["SensitiveOperationLimiter", "limit_sensitive_operation"]
