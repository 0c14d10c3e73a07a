"""Per-phone turn serialization, burst coalescing and redelivery dedup.

One TurnCoordinator owns every piece of shared coordination state: the
per-key task chains, debounce buffers, drain locks and seen message ids.
Nothing here is module-level, so tests build isolated coordinators.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from dealerflow.ttl import ExpiringDict

logger = logging.getLogger(__name__)

DEBOUNCE_SECONDS = 5.0
MAX_WAIT_SECONDS = 15.0
DEDUP_TTL_SECONDS = 60.0
BUFFER_TTL_SECONDS = 60.0
LOCK_TTL_SECONDS = 60.0
MAX_ENTRIES = 10_000
SWEEP_INTERVAL_SECONDS = 10.0
LOCK_POLL_SECONDS = 0.05


class TurnOutcome(Enum):
    DUPLICATE = "duplicate"
    COALESCED = "coalesced"
    PROCESSED = "processed"
    SKIPPED = "skipped"


@dataclass
class TurnBatch:
    """Messages from one burst, merged into a single turn."""

    key: str
    texts: list = field(default_factory=list)
    message_ids: list = field(default_factory=list)
    started_at: float = 0.0
    last_at: float = 0.0

    @property
    def text(self) -> str:
        return "\n".join(self.texts)

    @property
    def count(self) -> int:
        return len(self.texts)


@dataclass
class SubmitResult:
    outcome: TurnOutcome
    batch: Optional[TurnBatch] = None
    result: Any = None


TurnHandler = Callable[[TurnBatch], Awaitable[Any]]


class TurnCoordinator:
    def __init__(
        self,
        handler: Optional[TurnHandler] = None,
        *,
        debounce_seconds: float = DEBOUNCE_SECONDS,
        max_wait_seconds: float = MAX_WAIT_SECONDS,
        dedup_ttl_seconds: float = DEDUP_TTL_SECONDS,
        buffer_ttl_seconds: float = BUFFER_TTL_SECONDS,
        lock_ttl_seconds: float = LOCK_TTL_SECONDS,
        max_entries: int = MAX_ENTRIES,
        sweep_interval_seconds: float = SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.handler = handler
        self.debounce_seconds = debounce_seconds
        self.max_wait_seconds = max(max_wait_seconds, debounce_seconds)
        self.sweep_interval_seconds = sweep_interval_seconds
        self.clock = clock

        self._seen = ExpiringDict(dedup_ttl_seconds, max_entries, label="seen message ids", clock=clock)
        self._buffers = ExpiringDict(buffer_ttl_seconds, max_entries, label="turn buffers", clock=clock)
        self._locks = ExpiringDict(lock_ttl_seconds, max_entries, label="drain locks", clock=clock)
        # Only keys with work in flight; each entry is removed when its chain drains.
        self._tails: dict[str, asyncio.Task] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self._closed = False

    # --- lifecycle ---

    def start(self) -> None:
        """Start the periodic sweep. Must be called from a running event loop."""
        if self._sweeper is None and self.sweep_interval_seconds > 0:
            self._sweeper = asyncio.create_task(self._sweep_forever())

    async def close(self) -> None:
        """Stop accepting work, let in-flight chains finish, then drop all state."""
        self._closed = True
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        pending = list(self._tails.values())
        if pending:
            await asyncio.wait(pending)
        self._tails.clear()
        self._seen.clear()
        self._buffers.clear()
        self._locks.clear()

    async def __aenter__(self) -> "TurnCoordinator":
        self.start()
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    @property
    def closed(self) -> bool:
        return self._closed

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def sweep(self) -> int:
        return self._seen.sweep() + self._buffers.sweep() + self._locks.sweep()

    def stats(self) -> dict:
        return {
            "seen": len(self._seen),
            "buffers": len(self._buffers),
            "locks": len(self._locks),
            "chains": len(self._tails),
        }

    # --- FIFO chains ---

    async def enqueue(self, key: str, task_factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run task_factory() after every earlier task for key has finished.

        A failure of an earlier task is logged and does not block this one.
        This task's own failure is raised to the caller.
        """
        if self._closed:
            raise RuntimeError("TurnCoordinator is closed")
        previous = self._tails.get(key)

        async def run():
            if previous is not None:
                await asyncio.wait({previous})
                if not previous.cancelled() and previous.exception() is not None:
                    logger.warning("Previous turn for %s failed: %s", key, previous.exception())
            return await task_factory()

        task = asyncio.create_task(run())
        self._tails[key] = task
        try:
            return await task
        finally:
            if self._tails.get(key) is task:
                del self._tails[key]

    # --- dedup ---

    def mark_seen(self, message_id: str) -> bool:
        """Record a provider message id. False if it was already seen within the TTL."""
        return self._seen.add(message_id)

    # --- debounce buffers ---

    def buffer(self, key: str, text: str, message_id: Optional[str] = None) -> Optional[TurnBatch]:
        """Append text to the key's buffer.

        Returns the new batch when this message started a burst, None when it
        joined an open one. The caller that gets a batch owns it: it is
        processed even if the buffer entry expires or is evicted meanwhile.
        """
        now = self.clock()
        batch = self._buffers.get(key)
        if batch is None:
            batch = TurnBatch(key, [text], [message_id] if message_id else [], now, now)
            self._buffers.set(key, batch)
            return batch
        batch.texts.append(text)
        if message_id:
            batch.message_ids.append(message_id)
        batch.last_at = now
        self._buffers.touch(key)
        return None

    def drain(self, key: str, batch: Optional[TurnBatch] = None) -> Optional[TurnBatch]:
        """Take the buffered batch for key, or None if there is nothing buffered.

        With batch given, that batch is returned, and removed from the buffers
        only if it is still the open one for key.
        """
        current = self._buffers.get(key)
        if batch is None:
            batch = current
        if batch is not None and batch is current:
            self._buffers.pop(key)
        if batch is None or not batch.texts:
            return None
        return batch

    async def _wait_for_quiet(self, batch: TurnBatch) -> None:
        """Sleep until the burst has been quiet for debounce_seconds or max_wait_seconds has passed."""
        while True:
            wake_at = min(batch.last_at + self.debounce_seconds, batch.started_at + self.max_wait_seconds)
            remaining = wake_at - self.clock()
            if remaining <= 0:
                return
            await asyncio.sleep(remaining)

    # --- drain locks ---

    def acquire(self, key: str) -> bool:
        return self._locks.add(key)

    def release(self, key: str) -> None:
        self._locks.pop(key)

    async def _wait_for_lock(self, key: str) -> None:
        """Poll until the drain lock for key is ours. A stale lock expires after its TTL."""
        while not self.acquire(key):
            logger.debug(f"Drain lock busy for {key}, waiting")
            await asyncio.sleep(LOCK_POLL_SECONDS)

    # --- the whole pipeline ---

    async def submit(self, key: str, text: str, message_id: Optional[str] = None) -> SubmitResult:
        """Dedup, buffer and, for the first message of a burst, process the merged turn."""
        if self._closed:
            raise RuntimeError("TurnCoordinator is closed")
        if self.handler is None:
            raise RuntimeError("TurnCoordinator has no handler")
        if message_id and not self.mark_seen(message_id):
            logger.info(f"Duplicate message {message_id} for {key}, dropped")
            return SubmitResult(TurnOutcome.DUPLICATE)
        batch = self.buffer(key, text, message_id)
        if batch is None:
            logger.debug(f"Message for {key} coalesced into open burst")
            return SubmitResult(TurnOutcome.COALESCED)
        return await self.enqueue(key, lambda: self._process(key, batch))

    async def _process(self, key: str, batch: TurnBatch) -> SubmitResult:
        await self._wait_for_quiet(batch)
        await self._wait_for_lock(key)
        try:
            batch = self.drain(key, batch)
            if batch is None:
                return SubmitResult(TurnOutcome.SKIPPED)
            if batch.count > 1:
                logger.info(f"Coalesced {batch.count} messages for {key}")
            result = await self.handler(batch)
            return SubmitResult(TurnOutcome.PROCESSED, batch, result)
        finally:
            self.release(key)
