"""In-memory failed-login throttle keyed by client address."""

import time
from collections import defaultdict, deque
from typing import Callable, Optional

MAX_TRACKED_KEYS = 10_000


class RateLimiter:
    """Sliding window limiter: at most ``max_attempts`` within ``window_seconds``."""

    def __init__(self, max_attempts: int = 5, window_seconds: int = 300,
                 clock: Optional[Callable[[], float]] = None):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock or time.monotonic
        self._attempts: dict[str, deque[float]] = defaultdict(deque)

    def _prune(self, key: str, now: float) -> deque:
        attempts = self._attempts[key]
        cutoff = now - self.window_seconds
        while attempts and attempts[0] <= cutoff:
            attempts.popleft()
        return attempts

    def is_rate_limited(self, key: str) -> bool:
        """True once the key has used up its attempts for the current window."""
        return len(self._prune(key, self._clock())) >= self.max_attempts

    def record_attempt(self, key: str) -> None:
        now = self._clock()
        self._prune(key, now).append(now)
        if len(self._attempts) > MAX_TRACKED_KEYS:
            self._drop_idle(now)

    def remaining_attempts(self, key: str) -> int:
        return max(0, self.max_attempts - len(self._prune(key, self._clock())))

    def retry_after(self, key: str) -> int:
        """Seconds until the oldest attempt in the window expires; 0 when not limited."""
        now = self._clock()
        attempts = self._prune(key, now)
        if len(attempts) < self.max_attempts:
            return 0
        return max(1, int(attempts[0] + self.window_seconds - now) + 1)

    def reset(self, key: str) -> None:
        self._attempts.pop(key, None)

    def _drop_idle(self, now: float) -> None:
        for key in list(self._attempts):
            if not self._prune(key, now):
                del self._attempts[key]
