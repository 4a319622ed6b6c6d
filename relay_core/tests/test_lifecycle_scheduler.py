import asyncio

import pytest

from relay_core.domain.exceptions import EvictionActionError
from relay_core.scheduler.lifecycle import ModelLifecycleScheduler


DELAY = 0.05


class FakeUnloader:
    def __init__(self, fail=False, gate=None):
        self.calls = []
        self.fail = fail
        self.gate = gate

    async def __call__(self, model_id):
        self.calls.append(model_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise EvictionActionError(model_id, "unload refused")


def test_acquire_twice_release_once_keeps_model():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        assert scheduler.active_count("m1") == 1
        assert scheduler.has_pending_eviction("m1") is False
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == []
        await scheduler.aclose()

    asyncio.run(scenario())


def test_reacquire_cancels_timer_and_release_rearms():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        assert scheduler.has_pending_eviction("m1") is True

        await scheduler.acquire("m1")
        assert scheduler.has_pending_eviction("m1") is False
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == []

        await scheduler.release("m1")
        assert scheduler.has_pending_eviction("m1") is True
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m1"]
        assert scheduler.tracked_models() == []

    asyncio.run(scenario())


def test_failed_unload_keeps_entry_without_rearming():
    async def scenario():
        unloader = FakeUnloader(fail=True)
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m1"]
        assert scheduler.tracked_models() == ["m1"]
        assert scheduler.has_pending_eviction("m1") is False

        # 不自动重试
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m1"]

        unloader.fail = False
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        assert unloader.calls == ["m1"]
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m1", "m1"]
        assert scheduler.tracked_models() == []

    asyncio.run(scenario())


def test_unexpected_unload_exception_is_contained():
    async def scenario():
        async def broken(model_id):
            raise ValueError("boom")

        scheduler = ModelLifecycleScheduler(broken, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        await asyncio.sleep(DELAY * 4)
        assert scheduler.tracked_models() == ["m1"]

    asyncio.run(scenario())


def test_stale_timer_generation_does_not_evict():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=60)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        stale = scheduler._entries["m1"].generation
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        # 旧定时器在取消前已经触发的情况
        await scheduler._fire("m1", stale)
        assert unloader.calls == []
        await scheduler.aclose()

    asyncio.run(scenario())


def test_fire_rechecks_active_count():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=60)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        entry = scheduler._entries["m1"]
        generation = entry.generation
        # 模拟计数已增加但定时器尚未被取消
        entry.active_requests = 1
        await scheduler._fire("m1", generation)
        assert unloader.calls == []
        entry.active_requests = 0
        await scheduler.aclose()

    asyncio.run(scenario())


def test_release_without_acquire_raises():
    async def scenario():
        scheduler = ModelLifecycleScheduler(FakeUnloader(), eviction_delay=DELAY)
        with pytest.raises(RuntimeError):
            await scheduler.release("m1")
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        with pytest.raises(RuntimeError):
            await scheduler.release("m1")
        assert scheduler.active_count("m1") == 0
        await scheduler.aclose()

    asyncio.run(scenario())


def test_hold_releases_on_error():
    async def scenario():
        scheduler = ModelLifecycleScheduler(FakeUnloader(), eviction_delay=60)
        with pytest.raises(ValueError):
            async with scheduler.hold("m1"):
                assert scheduler.active_count("m1") == 1
                raise ValueError("stream failed")
        assert scheduler.active_count("m1") == 0
        assert scheduler.has_pending_eviction("m1") is True
        await scheduler.aclose()

    asyncio.run(scenario())


def test_hold_releases_on_cancel():
    async def scenario():
        scheduler = ModelLifecycleScheduler(FakeUnloader(), eviction_delay=60)
        entered = asyncio.Event()

        async def worker():
            async with scheduler.hold("m1"):
                entered.set()
                await asyncio.sleep(10)

        task = asyncio.create_task(worker())
        await entered.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert scheduler.active_count("m1") == 0
        assert scheduler.has_pending_eviction("m1") is True
        await scheduler.aclose()

    asyncio.run(scenario())


def test_acquire_waits_for_inflight_unload():
    async def scenario():
        gate = asyncio.Event()
        unloader = FakeUnloader(gate=gate)
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.release("m1")
        await asyncio.sleep(DELAY * 3)
        assert unloader.calls == ["m1"]

        waiter = asyncio.create_task(scheduler.acquire("m1"))
        await asyncio.sleep(DELAY)
        assert not waiter.done()

        gate.set()
        assert await waiter == 1
        assert scheduler.active_count("m1") == 1
        await scheduler.release("m1")
        await scheduler.aclose()

    asyncio.run(scenario())


def test_concurrent_requests_never_go_negative():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)

        async def request(i):
            async with scheduler.hold("m1"):
                assert scheduler.active_count("m1") >= 1
                await asyncio.sleep(0.001 * (i % 5))

        await asyncio.gather(*(request(i) for i in range(50)))
        assert scheduler.active_count("m1") == 0
        assert unloader.calls == []
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m1"]

    asyncio.run(scenario())


def test_models_are_tracked_independently():
    async def scenario():
        unloader = FakeUnloader()
        scheduler = ModelLifecycleScheduler(unloader, eviction_delay=DELAY)
        await scheduler.acquire("m1")
        await scheduler.acquire("m2")
        await scheduler.release("m2")
        await asyncio.sleep(DELAY * 4)
        assert unloader.calls == ["m2"]
        assert scheduler.tracked_models() == ["m1"]
        await scheduler.release("m1")
        await scheduler.aclose()
        assert unloader.calls == ["m2"]

    asyncio.run(scenario())
