"""Bounded, TTL-evicted maps for process-wide coordination state."""

import logging
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Iterator

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class ExpiringDict:
    """Insertion-ordered map where entries expire after ttl_seconds.

    When max_entries is exceeded the oldest entry is evicted, so memory stays
    bounded under load even if sweep() is never called.
    """

    ttl_seconds: float
    max_entries: int = 10_000
    label: str = "entries"
    clock: Callable[[], float] = time.monotonic

    _data: OrderedDict = field(default_factory=OrderedDict, init=False, repr=False)

    def _expired(self, expires_at: float) -> bool:
        return self.clock() >= expires_at

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._data[key] = (self.clock() + ttl, value)
        self._data.move_to_end(key)
        while len(self._data) > self.max_entries:
            evicted, _ = self._data.popitem(last=False)
            logger.warning("%s full (%d), evicted oldest key %s", self.label, self.max_entries, evicted)

    def add(self, key: Hashable, value: Any = True) -> bool:
        """Insert only if absent (or expired). Returns False when the key was live."""
        if key in self:
            return False
        self.set(key, value)
        return True

    def get(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.get(key, _MISSING)
        if entry is _MISSING:
            return default
        expires_at, value = entry
        if self._expired(expires_at):
            del self._data[key]
            return default
        return value

    def pop(self, key: Hashable, default: Any = None) -> Any:
        entry = self._data.pop(key, _MISSING)
        if entry is _MISSING:
            return default
        expires_at, value = entry
        return default if self._expired(expires_at) else value

    def touch(self, key: Hashable) -> None:
        """Restart the TTL of a live entry."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            self.set(key, value)

    def sweep(self) -> int:
        """Drop every expired entry. Returns how many were removed."""
        expired = [k for k, (expires_at, _) in self._data.items() if self._expired(expires_at)]
        for key in expired:
            del self._data[key]
        if expired:
            logger.debug(f"Swept {len(expired)} expired {self.label}")
        return len(expired)

    def __contains__(self, key: Hashable) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator:
        return iter(list(self._data))

    def clear(self) -> None:
        self._data.clear()
