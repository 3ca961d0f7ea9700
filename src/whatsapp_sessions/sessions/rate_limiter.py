"""Per-tenant request admission with a fixed window per tenant."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 15 * 60
DEFAULT_MAX_REQUESTS = 10


@dataclass
class RateLimitEntry:
    tenant_id: int
    count: int
    reset_at: float


class RateLimiter:
    """Counts requests per tenant inside a window that opens on first use.

    The first request of a tenant (or the first one after its window
    expired) opens a new window.  Requests beyond ``max_requests`` inside the
    window are refused without touching the entry.  Expired entries are purged
    by :meth:`sweep`.
    """

    def __init__(
        self,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        max_requests: int = DEFAULT_MAX_REQUESTS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._entries: dict[int, RateLimitEntry] = {}

    def admit(self, tenant_id: int) -> bool:
        """Return ``True`` and count the request if *tenant_id* is under its cap."""
        now = self._clock()
        entry = self._entries.get(tenant_id)

        if entry is None or now > entry.reset_at:
            self._entries[tenant_id] = RateLimitEntry(
                tenant_id=tenant_id, count=1, reset_at=now + self.window_seconds
            )
            return True

        if entry.count >= self.max_requests:
            logger.warning("Rate limit reached for tenant %s", tenant_id)
            return False

        entry.count += 1
        return True

    def is_limited(self, tenant_id: int) -> bool:
        """Whether the next :meth:`admit` for *tenant_id* would be refused."""
        entry = self._entries.get(tenant_id)
        if entry is None or self._clock() > entry.reset_at:
            return False
        return entry.count >= self.max_requests

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Purged %d expired rate-limit windows", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)
