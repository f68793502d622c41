"""Per-client request limiting.

One instance per application, handed to request handlers as a dependency
rather than living as module state.
"""
from datetime import datetime, timedelta
from typing import Dict, Tuple

from app.core.errors import RateLimitExceeded
from app.core.settings import RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_S

class RateLimiter:
    """Fixed window counter keyed by client id."""

    def __init__(self, max_requests: int = RATE_LIMIT_MAX_REQUESTS, window_s: int = RATE_LIMIT_WINDOW_S):
        self.max_requests = max_requests
        self.window = timedelta(seconds=window_s)
        self._counts: Dict[str, Tuple[datetime, int]] = {}

    def is_allowed(self, client_id: str, now: datetime) -> bool:
        started, count = self._counts.get(client_id, (now, 0))
        if now - started >= self.window:
            started, count = now, 0
        if count >= self.max_requests:
            return False
        self._counts[client_id] = (started, count + 1)
        return True

    def check(self, client_id: str, now: datetime) -> None:
        if not self.is_allowed(client_id, now):
            raise RateLimitExceeded(f"Too many requests from {client_id}")

    def reset(self) -> None:
        self._counts.clear()
