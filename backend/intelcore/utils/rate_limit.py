"""
Rate limiting for external signal fetches.

Each (source, keyword) pair may be fetched at most once per the source's
declared update frequency. The check and the reservation happen under one
lock so two concurrent callers cannot both pass for the same key.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from intelcore.utils.datetime import utc_now
from intelcore.log_config import logger


UPDATE_FREQUENCY_INTERVALS: Dict[str, timedelta] = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}


@dataclass(frozen=True)
class FetchReservation:
    """Token handed out by a successful reservation; needed to commit or release it."""
    key: str
    reserved_at: datetime
    previous: Optional[datetime]


class FetchRateLimiter:
    """
    Per-key "last fetched" map with an atomic check-and-reserve.

    A reservation stamps the key immediately. If the fetch later fails the
    caller releases the reservation, restoring the previous timestamp so the
    key can be retried straight away.
    """

    def __init__(self, enabled: bool = True, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the limiter.

        Args:
            enabled: When False every reservation succeeds
            clock: Callable returning the current naive UTC time (injectable for tests)
        """
        self.enabled = enabled
        self._clock = clock or utc_now
        self._lock = threading.Lock()
        self._last_fetched: Dict[str, datetime] = {}

    @staticmethod
    def make_key(source_name: str, keyword: str) -> str:
        return f"{source_name}:{keyword}"

    def try_reserve(self, key: str, interval: timedelta) -> Optional[FetchReservation]:
        """
        Reserve a fetch slot for the key if its interval has elapsed.

        Args:
            key: Rate limit key (see make_key)
            interval: Minimum time between fetches

        Returns:
            FetchReservation on success, None when rate limited
        """
        now = self._clock()
        with self._lock:
            previous = self._last_fetched.get(key)
            if self.enabled and previous is not None and now - previous < interval:
                remaining = interval - (now - previous)
                logger.info(f"Rate limited {key}: next fetch allowed in {remaining.total_seconds():.0f}s")
                return None
            self._last_fetched[key] = now
            return FetchReservation(key=key, reserved_at=now, previous=previous)

    def commit(self, reservation: FetchReservation) -> None:
        """Stamp the key with the time the fetch completed."""
        with self._lock:
            if self._last_fetched.get(reservation.key) == reservation.reserved_at:
                self._last_fetched[reservation.key] = self._clock()

    def release(self, reservation: FetchReservation) -> None:
        """Undo a reservation after a failed fetch."""
        with self._lock:
            # Another reservation may have replaced ours in the meantime
            if self._last_fetched.get(reservation.key) != reservation.reserved_at:
                return
            if reservation.previous is None:
                self._last_fetched.pop(reservation.key, None)
            else:
                self._last_fetched[reservation.key] = reservation.previous
        logger.debug(f"Rate limit reservation released for {reservation.key}")

    def last_fetched(self, key: str) -> Optional[datetime]:
        with self._lock:
            return self._last_fetched.get(key)

    def reset(self, key: str) -> None:
        """Reset rate limit for a specific key."""
        with self._lock:
            self._last_fetched.pop(key, None)
        logger.debug(f"Rate limit reset for {key}")

    def reset_all(self) -> None:
        """Reset all rate limits."""
        with self._lock:
            self._last_fetched.clear()
        logger.debug("All rate limits reset")
