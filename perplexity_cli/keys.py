"""API key rotation across a configured set of keys."""

import threading
from dataclasses import dataclass
from typing import Optional, List, Sequence, Dict, Any

from .models import NoAvailableKeysError

# 401 unauthorized, 403 forbidden, 429 rate limited.
# 402 payment required does not rotate.
ROTATABLE_STATUS_CODES = (401, 403, 429)

# Matched case-insensitively against the API error message
CREDIT_EXHAUSTED_PATTERNS = (
    "insufficient credit",
    "credit exhausted",
    "credit limit",
    "out of credit",
    "no credit",
    "balance exhausted",
    "insufficient balance",
    "quota exceeded",
    "quota limit",
    "rate limit exceeded",
    "account blocked",
    "key blocked",
    "api key blocked",
)


@dataclass(frozen=True)
class Rotation:
    """Result of a key rotation. Indices are 0-based."""

    from_index: int
    to_index: int
    key: str


def should_rotate_key(status_code: Optional[int], message: str) -> bool:
    """Detect if an API error means the current key should be swapped out."""
    if status_code in ROTATABLE_STATUS_CODES:
        return True

    lowered = (message or "").lower()
    return any(pattern in lowered for pattern in CREDIT_EXHAUSTED_PATTERNS)


class KeyRing:
    """
    Ordered set of API keys with a current position.

    A rotation cycle starts at the first ``rotate()`` after a success. When the
    next position would land back on the cycle start, every key has been tried
    and ``rotate()`` raises ``NoAvailableKeysError``.
    """

    def __init__(self, keys: Sequence[str], index: int = 0):
        self._keys: List[str] = list(keys)
        if self._keys and not 0 <= index < len(self._keys):
            raise ValueError(f"key index {index} out of range for {len(self._keys)} keys")

        self._index = index if self._keys else 0
        self._start_index: Optional[int] = None
        self._lock = threading.RLock()

    @property
    def keys(self) -> List[str]:
        return list(self._keys)

    @property
    def count(self) -> int:
        return len(self._keys)

    @property
    def index(self) -> int:
        with self._lock:
            return self._index

    @property
    def current(self) -> str:
        """The active key, or an empty string when no key is configured."""
        with self._lock:
            if not self._keys:
                return ""
            return self._keys[self._index]

    @property
    def cycle_active(self) -> bool:
        """True while a failure run is being tracked."""
        with self._lock:
            return self._start_index is not None

    def __len__(self) -> int:
        return len(self._keys)

    def rotate(self) -> Rotation:
        """
        Move to the next key, wrapping around.

        Returns:
            The previous and new positions together with the new key

        Raises:
            NoAvailableKeysError: If there is nothing to rotate to, or every
                key has been tried since the last success
        """
        with self._lock:
            if len(self._keys) <= 1:
                raise NoAvailableKeysError()

            if self._start_index is None:
                self._start_index = self._index

            next_index = (self._index + 1) % len(self._keys)

            if next_index == self._start_index:
                self._start_index = None
                raise NoAvailableKeysError()

            previous = self._index
            self._index = next_index
            return Rotation(previous, next_index, self._keys[next_index])

    def reset_cycle(self) -> None:
        """Forget the current failure run (call after a successful request)."""
        with self._lock:
            self._start_index = None

    def get_stats(self) -> Dict[str, Any]:
        """Position information for display, without exposing key values."""
        with self._lock:
            return {
                "count": len(self._keys),
                "position": self._index + 1 if self._keys else 0,
                "cycle_active": self._start_index is not None,
            }
