"""Shared rate-limit pause state for Bitbucket API calls."""

import asyncio
import threading
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone

import structlog

from gitpulse.config import settings

logger = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimitState:
    """Point in time until which every API call pauses.

    One instance is owned by a client and shared with whatever orchestrates
    that client. The pause only ever moves forward.
    """

    def __init__(
        self,
        max_wait_seconds: float | None = None,
        heartbeat_seconds: float | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_wait_seconds = max_wait_seconds or settings.rate_limit_max_wait_seconds
        self.heartbeat_seconds = heartbeat_seconds or settings.rate_limit_heartbeat_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._reset_at: datetime | None = None

    @property
    def reset_at(self) -> datetime | None:
        with self._lock:
            return self._reset_at

    def is_rate_limited(self) -> bool:
        return self.wait_time() is not None

    def wait_time(self) -> timedelta | None:
        """Time left until the pause ends, or None when not paused."""
        with self._lock:
            if self._reset_at is None:
                return None
            remaining = self._reset_at - self._clock()
            return remaining if remaining > timedelta(0) else None

    def set_limit(self, delay_seconds: float) -> datetime | None:
        """Pause all calls for ``delay_seconds`` unless a longer pause is active."""
        with self._lock:
            reset_at = self._clock() + timedelta(seconds=max(delay_seconds, 0))
            if self._reset_at is None or reset_at > self._reset_at:
                self._reset_at = reset_at
                logger.warning(
                    "Bitbucket rate limit pause set",
                    reset_at=reset_at.isoformat(),
                    delay_seconds=delay_seconds,
                )
            return self._reset_at

    def clear(self) -> None:
        with self._lock:
            self._reset_at = None

    async def wait(self) -> None:
        """Sleep until the pause ends, logging a heartbeat on every chunk."""
        while (remaining := self.wait_time()) is not None:
            chunk = min(remaining.total_seconds(), self.max_wait_seconds, self.heartbeat_seconds)
            logger.info(
                "Waiting for Bitbucket rate limit to reset",
                remaining_seconds=round(remaining.total_seconds(), 1),
            )
            await self._sleep(chunk)
