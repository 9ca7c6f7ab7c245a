"""Process-local cache of identifiers that are known to be blocked.

The cache lets the limiter reject an identifier without a Redis round trip
while its last rejection is still in force. It is an optimization, never a
source of truth: a miss always falls through to Redis.
"""

from dataclasses import dataclass

from distlimit.core.utils import now_ms


@dataclass(frozen=True)
class BlockStatus:
    """Result of an ephemeral cache lookup."""

    blocked: bool
    reset: int


class EphemeralCache:
    """In-memory map from identifier to a block-until timestamp (unix ms).

    Entries expire lazily: an entry whose reset has passed is reported as not
    blocked but stays in the map until overwritten or popped. There is no
    eviction thread.

    Example:
        >>> cache = EphemeralCache()
        >>> cache.block_until("@ratelimit:user-1", now_ms() + 1000)
        >>> cache.is_blocked("@ratelimit:user-1").blocked
        True
    """

    def __init__(self, data: dict[str, int] | None = None) -> None:
        self._data: dict[str, int] = data if data is not None else {}

    def is_blocked(self, identifier: str) -> BlockStatus:
        reset = self._data.get(identifier)
        if reset is None:
            return BlockStatus(blocked=False, reset=0)
        if now_ms() < reset:
            return BlockStatus(blocked=True, reset=reset)
        return BlockStatus(blocked=False, reset=0)

    def block_until(self, identifier: str, reset: int) -> None:
        # Stored as-is; rounding up would block past the real reset.
        self._data[identifier] = reset

    def set(self, key: str, value: int) -> None:
        self._data[key] = value

    def get(self, key: str) -> int | None:
        return self._data.get(key)

    def incr(self, key: str) -> int:
        value = self._data.get(key, 0) + 1
        self._data[key] = value
        return value

    def pop(self, key: str) -> None:
        self._data.pop(key, None)

    def empty(self) -> None:
        self._data.clear()

    def size(self) -> int:
        return len(self._data)
