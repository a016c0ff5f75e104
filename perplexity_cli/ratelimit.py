"""Client-side request pacing."""

import threading
import time
from typing import Optional

from .models import RequestCancelled


class RateLimiter:
    """
    Enforces a minimum interval between requests.

    The next slot is reserved while holding the lock, and the wait happens
    after the lock is released, so concurrent callers queue behind each other
    and can still observe their own cancellation.
    """

    def __init__(self, requests_per_minute: float = 0):
        self.requests_per_minute = requests_per_minute
        self.interval = 60.0 / requests_per_minute if requests_per_minute > 0 else 0.0

        self._last_slot: Optional[float] = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        """False when pacing is disabled (unlimited requests)."""
        return self.interval > 0

    def _reserve(self) -> float:
        """Reserve the next slot and return how long to wait for it."""
        with self._lock:
            now = time.monotonic()
            wait = 0.0
            if self._last_slot is not None:
                elapsed = now - self._last_slot
                if elapsed < self.interval:
                    wait = self.interval - elapsed
            self._last_slot = now + wait
            return wait

    def wait(self, cancel: Optional[threading.Event] = None) -> None:
        """
        Block until the caller may send its next request.

        Raises:
            RequestCancelled: If ``cancel`` is set before or during the wait
        """
        if not self.enabled:
            return

        if cancel is not None and cancel.is_set():
            raise RequestCancelled()

        wait = self._reserve()
        if wait <= 0:
            return

        if cancel is None:
            time.sleep(wait)
        elif cancel.wait(wait):
            raise RequestCancelled()
