"""Unit tests for in-process keyed locks."""

import asyncio

import pytest

from competency.engines.assessment.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialized():
    locks = KeyedLock()
    order = []

    async def worker(name: str):
        async with locks.hold("session-1"):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (
        ["a-in", "a-out", "b-in", "b-out"],
        ["b-in", "b-out", "a-in", "a-out"],
    )


@pytest.mark.asyncio
async def test_different_keys_run_concurrently():
    locks = KeyedLock()
    entered = asyncio.Event()
    release = asyncio.Event()

    async def first():
        async with locks.hold("a"):
            entered.set()
            await release.wait()

    task = asyncio.create_task(first())
    await entered.wait()

    assert locks.is_locked("a") is True
    async with locks.hold("b"):
        assert locks.is_locked("b") is True

    release.set()
    await task


@pytest.mark.asyncio
async def test_entries_are_dropped_when_released():
    locks = KeyedLock()
    async with locks.hold("a"):
        assert len(locks) == 1
    assert len(locks) == 0
    assert locks.is_locked("a") is False


@pytest.mark.asyncio
async def test_entry_released_on_error():
    locks = KeyedLock()
    with pytest.raises(RuntimeError):
        async with locks.hold("a"):
            raise RuntimeError("boom")
    assert len(locks) == 0

