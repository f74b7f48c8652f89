"""
Rate Limiting and Brute Force Protection
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from .config import SecurityConfig
from .models import RateLimitRecord, RateLimitResult
from .utils import Validator, utcnow

logger = logging.getLogger(__name__)


class RateLimiter:
    """
    Fixed-window attempt limiter keyed by identity.

    A record is created on the first attempt of a window and replaced,
    not accumulated, once the window has elapsed. All reads and writes
    happen under one lock, so two concurrent attempts for the same
    identity can never both take the last slot.
    """

    def __init__(self, max_attempts: int, window: timedelta,
                 clock: Callable[[], datetime] = utcnow):
        self.max_attempts = max_attempts
        self.window = window
        self._clock = clock
        self._records: Dict[str, RateLimitRecord] = {}
        self._lock = threading.Lock()

    def check_attempt(self, identity: str) -> RateLimitResult:
        """
        Count an attempt against the identity's allowance.

        Returns:
            RateLimitResult, unpacks as (allowed, remaining)
        """
        identity = Validator.validate_identity(identity)
        now = self._clock()

        with self._lock:
            record = self._records.get(identity)

            if record is None or now > record.reset_at:
                # Create new or replace elapsed window
                record = RateLimitRecord(identity=identity, count=1, reset_at=now + self.window)
                self._records[identity] = record
                return RateLimitResult(True, self.max_attempts - 1, record.reset_at)

            if record.count >= self.max_attempts:
                record.rejected += 1
                rejected = record.rejected
                reset_at = record.reset_at
            else:
                record.count += 1
                return RateLimitResult(True, self.max_attempts - record.count, record.reset_at)

        logger.warning(f"Rate limit exceeded for {identity} ({rejected} rejected this window)")
        return RateLimitResult(False, 0, reset_at, rejected)

    def reset(self, identity: str) -> None:
        """Reset rate limit (e.g., after successful verification)"""
        identity = Validator.validate_identity(identity)
        with self._lock:
            self._records.pop(identity, None)

    def get_record(self, identity: str) -> Optional[RateLimitRecord]:
        with self._lock:
            record = self._records.get(identity)
            if record is None:
                return None
            return RateLimitRecord(record.identity, record.count, record.reset_at, record.rejected)

    def sweep_expired(self) -> int:
        """
        Drop records whose window has elapsed.

        Returns:
            Number of records removed

        Note: Run periodically as maintenance task
        """
        now = self._clock()
        with self._lock:
            expired = [key for key, record in self._records.items() if now > record.reset_at]
            for key in expired:
                del self._records[key]
        return len(expired)


class TwoFactorRateLimiter(RateLimiter):
    """Verification-attempt limiter, 5 attempts per 15 minutes by default"""

    def __init__(self, config: Optional[SecurityConfig] = None,
                 clock: Callable[[], datetime] = utcnow):
        config = config or SecurityConfig()
        super().__init__(config.MAX_2FA_ATTEMPTS, config.TWO_FACTOR_WINDOW, clock)
