from __future__ import annotations

import asyncio

from core.rwlock import AsyncRWLock


def test_readers_share_the_lock():
    async def scenario():
        lock = AsyncRWLock()
        inside = []

        async def reader(i):
            async with lock.read():
                inside.append(i)
                await asyncio.sleep(0.01)
                peak = lock.readers
                return peak

        peaks = await asyncio.gather(*(reader(i) for i in range(5)))
        return max(peaks), lock.readers

    peak, after = asyncio.run(scenario())
    assert peak == 5
    assert after == 0


def test_writer_is_exclusive_and_blocks_new_readers():
    async def scenario():
        lock = AsyncRWLock()
        events = []

        async def reader(tag, delay):
            await asyncio.sleep(delay)
            async with lock.read():
                events.append(f"{tag}-in")
                await asyncio.sleep(0.02)
                events.append(f"{tag}-out")

        async def writer():
            await asyncio.sleep(0.005)
            async with lock.write():
                assert lock.readers == 0
                assert lock.locked_for_write
                events.append("w-in")
                await asyncio.sleep(0.02)
                events.append("w-out")

        await asyncio.gather(reader("r1", 0), writer(), reader("r2", 0.01))
        return events

    events = asyncio.run(scenario())
    # r1 holds the lock first; the queued writer goes before the later reader
    assert events == ["r1-in", "r1-out", "w-in", "w-out", "r2-in", "r2-out"]


def test_lock_released_on_error():
    async def scenario():
        lock = AsyncRWLock()
        try:
            async with lock.write():
                raise RuntimeError("boom")
        except RuntimeError:
            pass
        async with lock.read():
            return lock.locked_for_write

    assert asyncio.run(scenario()) is False
