"""Tests for provider_lock.py."""

from __future__ import annotations

import asyncio

import pytest

from provider_lock import ProviderLock, with_provider_lock


class Tracker:
    """Counts concurrently running bodies and remembers the peak."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0
        self.events: list[str] = []

    def body(self, name: str, *, fail: bool = False, delay: float = 0.01):
        async def _run():
            self.active += 1
            self.peak = max(self.peak, self.active)
            self.events.append(f"start:{name}")
            try:
                await asyncio.sleep(delay)
                if fail:
                    raise RuntimeError(f"{name} failed")
                return name
            finally:
                self.events.append(f"end:{name}")
                self.active -= 1

        return _run


@pytest.mark.asyncio
async def test_same_provider_calls_never_overlap(provider_lock):
    t = Tracker()
    results = await asyncio.gather(
        with_provider_lock("x", t.body("a"), lock=provider_lock),
        with_provider_lock("x", t.body("b"), lock=provider_lock),
    )
    assert results == ["a", "b"]
    assert t.peak == 1
    assert t.events == ["start:a", "end:a", "start:b", "end:b"]


@pytest.mark.asyncio
async def test_failure_still_releases_before_next_caller(provider_lock):
    t = Tracker()
    results = await asyncio.gather(
        with_provider_lock("x", t.body("a", fail=True), lock=provider_lock),
        with_provider_lock("x", t.body("b"), lock=provider_lock),
        return_exceptions=True,
    )
    assert isinstance(results[0], RuntimeError)
    assert results[1] == "b"
    assert t.peak == 1
    assert t.events == ["start:a", "end:a", "start:b", "end:b"]
    assert not provider_lock.is_locked("x")


@pytest.mark.asyncio
async def test_waiters_run_in_arrival_order(provider_lock):
    t = Tracker()
    await asyncio.gather(*(
        with_provider_lock("x", t.body(name, delay=0), lock=provider_lock)
        for name in ("a", "b", "c", "d")
    ))
    starts = [e for e in t.events if e.startswith("start:")]
    assert starts == ["start:a", "start:b", "start:c", "start:d"]


@pytest.mark.asyncio
async def test_different_providers_run_concurrently(provider_lock):
    other_started = asyncio.Event()

    async def first():
        # Deadlocks (and times out) if "y" had to wait for "x".
        await asyncio.wait_for(other_started.wait(), timeout=1)
        return "x"

    async def second():
        other_started.set()
        return "y"

    results = await asyncio.gather(
        with_provider_lock("x", first, lock=provider_lock),
        with_provider_lock("y", second, lock=provider_lock),
    )
    assert results == ["x", "y"]


@pytest.mark.asyncio
async def test_bookkeeping_is_cleared(provider_lock):
    t = Tracker()
    await asyncio.gather(*(
        with_provider_lock("x", t.body(str(i)), lock=provider_lock) for i in range(3)
    ))
    assert provider_lock.waiting("x") == 0
    assert not provider_lock.is_locked("x")
    assert provider_lock._locks == {}


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_block_others(provider_lock):
    await provider_lock.acquire("x")
    waiter = asyncio.create_task(provider_lock.acquire("x"))
    await asyncio.sleep(0)
    assert provider_lock.waiting("x") == 2

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert provider_lock.waiting("x") == 1

    provider_lock.release("x")
    assert not provider_lock.is_locked("x")
    async with provider_lock.hold("x"):
        assert provider_lock.is_locked("x")


@pytest.mark.asyncio
async def test_run_passes_arguments(provider_lock):
    async def add(a, b, *, c=0):
        return a + b + c

    assert await provider_lock.run("x", add, 1, 2, c=3) == 6
