import asyncio

import pytest

from whale_grid.utils.utils_locks import AsyncRWLock


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = AsyncRWLock()
    peak = {"value": 0}

    async def reader():
        async with lock.read():
            peak["value"] = max(peak["value"], lock.readers)
            await asyncio.sleep(0.01)

    await asyncio.gather(*(reader() for _ in range(3)))

    assert peak["value"] == 3
    assert lock.readers == 0


@pytest.mark.asyncio
async def test_writer_excludes_readers():
    lock = AsyncRWLock()
    events = []

    async def writer():
        async with lock.write():
            events.append("write-start")
            await asyncio.sleep(0.02)
            events.append("write-end")

    async def reader():
        await asyncio.sleep(0.005)
        async with lock.read():
            events.append("read")

    await asyncio.gather(writer(), reader())

    assert events == ["write-start", "write-end", "read"]
    assert not lock.writer_active


@pytest.mark.asyncio
async def test_cancelled_writer_does_not_block_readers():
    lock = AsyncRWLock()
    await lock.acquire_read()

    waiting_writer = asyncio.create_task(lock.acquire_write())
    await asyncio.sleep(0.01)
    waiting_writer.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiting_writer

    await asyncio.wait_for(lock.acquire_read(), timeout=0.5)
    assert lock.readers == 2
    await lock.release_read()
    await lock.release_read()
