import asyncio

import pytest
from dealerflow.coordinator import TurnCoordinator, TurnOutcome


class RecordingHandler:
    def __init__(self, fail: bool = False):
        self.batches = []
        self.fail = fail

    async def __call__(self, batch):
        self.batches.append(batch)
        if self.fail:
            raise RuntimeError("handler failed")
        return batch.text


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def coordinator(handler):
    return TurnCoordinator(handler, debounce_seconds=0.02, max_wait_seconds=0.2, sweep_interval_seconds=0)


def job(log, name, delay=0.0, error=None):
    async def run():
        await asyncio.sleep(delay)
        if error:
            raise error
        log.append(name)
        return name
    return run


# --- FIFO chains ---

class TestEnqueue:
    @pytest.mark.asyncio
    async def test_same_key_runs_in_submission_order(self, coordinator):
        log = []
        results = await asyncio.gather(
            coordinator.enqueue("p1", job(log, 1, delay=0.03)),
            coordinator.enqueue("p1", job(log, 2, delay=0.01)),
            coordinator.enqueue("p1", job(log, 3)),
        )
        assert log == [1, 2, 3]
        assert results == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_different_keys_do_not_wait_for_each_other(self, coordinator):
        log = []
        await asyncio.gather(
            coordinator.enqueue("p1", job(log, "slow", delay=0.05)),
            coordinator.enqueue("p2", job(log, "fast")),
        )
        assert log == ["fast", "slow"]

    @pytest.mark.asyncio
    async def test_failure_does_not_block_next_task(self, coordinator):
        log = []
        results = await asyncio.gather(
            coordinator.enqueue("p1", job(log, 1, error=ValueError("boom"))),
            coordinator.enqueue("p1", job(log, 2)),
            return_exceptions=True,
        )
        assert isinstance(results[0], ValueError)
        assert results[1] == 2
        assert log == [2]

    @pytest.mark.asyncio
    async def test_chain_is_cleaned_up(self, coordinator):
        await coordinator.enqueue("p1", job([], 1))
        assert coordinator.stats()["chains"] == 0


# --- submit pipeline ---

class TestSubmit:
    @pytest.mark.asyncio
    async def test_single_message_is_processed(self, coordinator, handler):
        result = await coordinator.submit("p1", "quero um suv", "m1")
        assert result.outcome == TurnOutcome.PROCESSED
        assert result.result == "quero um suv"
        assert result.batch.message_ids == ["m1"]

    @pytest.mark.asyncio
    async def test_duplicate_message_id_processed_once(self, coordinator, handler):
        first = await coordinator.submit("p1", "oi", "m1")
        second = await coordinator.submit("p1", "oi", "m1")
        assert first.outcome == TurnOutcome.PROCESSED
        assert second.outcome == TurnOutcome.DUPLICATE
        assert len(handler.batches) == 1

    @pytest.mark.asyncio
    async def test_burst_is_coalesced_into_one_turn(self, coordinator, handler):
        first, second = await asyncio.gather(
            coordinator.submit("p1", "quero um suv", "m1"),
            coordinator.submit("p1", "ate 80 mil", "m2"),
        )
        assert first.outcome == TurnOutcome.PROCESSED
        assert second.outcome == TurnOutcome.COALESCED
        assert len(handler.batches) == 1
        assert handler.batches[0].text == "quero um suv\nate 80 mil"
        assert handler.batches[0].count == 2

    @pytest.mark.asyncio
    async def test_lock_released_when_handler_fails(self):
        handler = RecordingHandler(fail=True)
        coordinator = TurnCoordinator(handler, debounce_seconds=0.01, sweep_interval_seconds=0)
        with pytest.raises(RuntimeError, match="handler failed"):
            await coordinator.submit("p1", "oi")
        assert coordinator.stats()["locks"] == 0
        handler.fail = False
        result = await coordinator.submit("p1", "oi de novo")
        assert result.outcome == TurnOutcome.PROCESSED

    @pytest.mark.asyncio
    async def test_busy_lock_delays_trigger(self, coordinator, handler):
        assert coordinator.acquire("p1")
        asyncio.get_running_loop().call_later(0.05, coordinator.release, "p1")
        result = await coordinator.submit("p1", "oi")
        assert result.outcome == TurnOutcome.PROCESSED
        assert [b.text for b in handler.batches] == ["oi"]

    @pytest.mark.asyncio
    async def test_message_behind_slow_turn_outlives_buffer_ttl(self):
        seen = []

        async def slow_handler(batch):
            seen.append(batch.text)
            if batch.text == "first":
                await asyncio.sleep(0.3)
            return batch.text

        coordinator = TurnCoordinator(
            slow_handler, debounce_seconds=0.01, buffer_ttl_seconds=0.1, sweep_interval_seconds=0,
        )
        first_task = asyncio.create_task(coordinator.submit("p1", "first", "m1"))
        await asyncio.sleep(0.05)
        second = await coordinator.submit("p1", "second", "m2")
        first = await first_task

        assert first.outcome == TurnOutcome.PROCESSED
        assert second.outcome == TurnOutcome.PROCESSED
        assert seen == ["first", "second"]

    @pytest.mark.asyncio
    async def test_evicted_buffer_is_still_processed(self, handler):
        coordinator = TurnCoordinator(handler, debounce_seconds=0.02, max_entries=1, sweep_interval_seconds=0)
        first, second = await asyncio.gather(
            coordinator.submit("p1", "quero um suv"),
            coordinator.submit("p2", "quero um sedan"),
        )
        assert first.outcome == TurnOutcome.PROCESSED
        assert second.outcome == TurnOutcome.PROCESSED
        assert sorted(b.text for b in handler.batches) == ["quero um sedan", "quero um suv"]

    def test_drain_leaves_newer_burst_alone(self, clock):
        coordinator = TurnCoordinator(buffer_ttl_seconds=10, clock=clock, sweep_interval_seconds=0)
        stale = coordinator.buffer("p1", "first")
        clock.advance(11)
        fresh = coordinator.buffer("p1", "second")
        assert fresh is not None and fresh is not stale

        assert coordinator.drain("p1", stale).texts == ["first"]
        assert coordinator.drain("p1").texts == ["second"]

    @pytest.mark.asyncio
    async def test_without_handler(self):
        coordinator = TurnCoordinator(sweep_interval_seconds=0)
        with pytest.raises(RuntimeError):
            await coordinator.submit("p1", "oi")


# --- lifecycle ---

class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self, handler):
        async with TurnCoordinator(handler, debounce_seconds=0.01, sweep_interval_seconds=0.01) as coordinator:
            await coordinator.submit("p1", "oi", "m1")
            assert coordinator.stats()["seen"] == 1
        assert coordinator.closed
        assert coordinator.stats() == {"seen": 0, "buffers": 0, "locks": 0, "chains": 0}
        with pytest.raises(RuntimeError):
            await coordinator.submit("p1", "oi", "m2")

    @pytest.mark.asyncio
    async def test_separate_coordinators_share_nothing(self, handler):
        a = TurnCoordinator(handler, debounce_seconds=0.01, sweep_interval_seconds=0)
        b = TurnCoordinator(handler, debounce_seconds=0.01, sweep_interval_seconds=0)
        assert a.mark_seen("m1")
        assert b.mark_seen("m1")

    def test_sweep_drops_expired_ids(self, clock):
        coordinator = TurnCoordinator(dedup_ttl_seconds=60, clock=clock, sweep_interval_seconds=0)
        coordinator.mark_seen("m1")
        clock.advance(61)
        assert coordinator.sweep() == 1
        assert coordinator.mark_seen("m1")
