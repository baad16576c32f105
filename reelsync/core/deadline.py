from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, TypeVar

from reelsync.errors import DeadlineExceeded

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Deadline:
    """Absolute monotonic deadline threaded through one invocation."""

    expires_at: float

    @classmethod
    def after(cls, seconds: float) -> "Deadline":
        return cls(expires_at=time.monotonic() + seconds)

    def remaining(self) -> float:
        return max(self.expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def bound(self, timeout: float | None) -> float:
        """Return ``timeout`` clipped to the time left before the deadline."""
        remaining = self.remaining()
        if timeout is None:
            return remaining
        return min(timeout, remaining)

    async def run(self, awaitable: Awaitable[T], *, timeout: float | None = None) -> T:
        limit = self.bound(timeout)
        if limit <= 0:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise DeadlineExceeded("invocation deadline elapsed")
        try:
            return await asyncio.wait_for(awaitable, timeout=limit)
        except asyncio.TimeoutError as exc:
            if self.expired:
                raise DeadlineExceeded("invocation deadline elapsed") from exc
            raise


__all__ = ["Deadline"]
