import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..core.cache import CacheManager
from ..core.exceptions import ViolationRateLimited

logger = logging.getLogger(__name__)


class ViolationRateLimiter(ABC):
    """Hook consulted before a client-reported violation is written"""

    @abstractmethod
    async def admit(self, session_id: str) -> None:
        """Raise ViolationRateLimited to refuse the event"""


class UnlimitedViolations(ViolationRateLimiter):
    async def admit(self, session_id: str) -> None:
        return None


class RedisViolationRateLimiter(ViolationRateLimiter):
    """Fixed one-minute window per session, backed by the shared cache.

    An unreachable cache admits the event: losing a violation report is worse
    than accepting a burst.
    """

    window_seconds = 60

    def __init__(self, cache: CacheManager, per_minute: int):
        self.cache = cache
        self.per_minute = per_minute

    async def admit(self, session_id: str) -> None:
        count = await self.cache.aincr_window(f"violations_rate:{session_id}", self.window_seconds)
        if count is None:
            return
        if count > self.per_minute:
            logger.warning(f"Violation reports throttled for session {session_id} ({count}/min)")
            raise ViolationRateLimited(retry_after=self.window_seconds)


def build_violation_rate_limiter(cache: CacheManager, per_minute: Optional[int]) -> ViolationRateLimiter:
    if per_minute and per_minute > 0:
        return RedisViolationRateLimiter(cache, per_minute)
    return UnlimitedViolations()
