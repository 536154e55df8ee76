from __future__ import annotations

import asyncio

import pytest

from app.errors import IdSpaceExhausted, NotFound
from app.record_store import MAX_KEY, AsyncRWLock, IdGenerator, Record, RecordStore


@pytest.mark.asyncio
async def test_list_is_idempotent_without_mutation():
    store = RecordStore()
    await store.create("a")
    await store.create("b")
    assert set(await store.list()) == set(await store.list())


@pytest.mark.asyncio
async def test_create_keys_strictly_increase():
    store = RecordStore()
    keys = [(await store.create(str(i))).key for i in range(10)]
    assert keys == sorted(keys)
    assert len(set(keys)) == 10
    assert keys[0] == 1


@pytest.mark.asyncio
async def test_keys_not_reused_after_delete():
    store = RecordStore()
    first = await store.create("a")
    await store.delete(first.key)
    second = await store.create("b")
    assert second.key > first.key


@pytest.mark.asyncio
async def test_update_preserves_key():
    store = RecordStore()
    rec = await store.create("a")
    updated = await store.update(rec.key, "z")
    assert updated == Record(key=rec.key, value="z")
    assert await store.list() == [Record(key=rec.key, value="z")]


@pytest.mark.asyncio
async def test_delete_removes_exactly_one():
    store = RecordStore()
    a = await store.create("a")
    b = await store.create("b")
    await store.delete(a.key)
    assert await store.list() == [b]


@pytest.mark.asyncio
async def test_missing_key_raises_not_found():
    store = RecordStore()
    with pytest.raises(NotFound):
        await store.update(999999, "x")
    with pytest.raises(NotFound):
        await store.delete(999999)


@pytest.mark.asyncio
async def test_concurrent_creates_have_no_duplicate_keys():
    store = RecordStore()
    records = await asyncio.gather(*(store.create(f"v{i}") for i in range(100)))
    keys = {r.key for r in records}
    assert len(keys) == 100
    assert {r.key for r in await store.list()} == keys


@pytest.mark.asyncio
async def test_create_fails_when_id_space_is_used_up():
    store = RecordStore(ids=IdGenerator(start=MAX_KEY - 1))
    assert (await store.create("last")).key == MAX_KEY
    with pytest.raises(IdSpaceExhausted):
        await store.create("one too many")


@pytest.mark.asyncio
async def test_readers_share_the_lock():
    lock = AsyncRWLock()
    second_entered = asyncio.Event()

    async def first():
        async with lock.read():
            await asyncio.wait_for(second_entered.wait(), timeout=1)

    async def second():
        async with lock.read():
            second_entered.set()

    await asyncio.gather(first(), second())


@pytest.mark.asyncio
async def test_writer_waits_for_reader():
    lock = AsyncRWLock()
    order = []

    async def reader():
        async with lock.read():
            order.append("read-in")
            await asyncio.sleep(0.02)
            order.append("read-out")

    async def writer():
        await asyncio.sleep(0)
        async with lock.write():
            order.append("write")

    await asyncio.gather(reader(), writer())
    assert order == ["read-in", "read-out", "write"]


@pytest.mark.asyncio
async def test_waiting_writer_goes_before_later_readers():
    lock = AsyncRWLock()
    order = []

    async def early_reader():
        async with lock.read():
            order.append("r1")
            await asyncio.sleep(0.02)

    async def writer():
        await asyncio.sleep(0)
        async with lock.write():
            order.append("w")

    async def late_reader():
        await asyncio.sleep(0.005)
        async with lock.read():
            order.append("r2")

    await asyncio.gather(early_reader(), writer(), late_reader())
    assert order == ["r1", "w", "r2"]


@pytest.mark.asyncio
@pytest.mark.parametrize("mode", ["read", "write"])
async def test_cancelled_release_does_not_wedge_lock(mode):
    lock = AsyncRWLock()
    entered = asyncio.Event()
    leave = asyncio.Event()

    async def holder():
        async with getattr(lock, mode)():
            entered.set()
            await leave.wait()

    task = asyncio.create_task(holder())
    await entered.wait()

    # Keep the condition busy so the holder blocks while waking waiters.
    await lock._cond.acquire()
    leave.set()
    for _ in range(3):
        await asyncio.sleep(0)
    task.cancel()
    lock._cond.release()
    with pytest.raises(asyncio.CancelledError):
        await task

    async def writer():
        async with lock.write():
            return True

    assert await asyncio.wait_for(writer(), timeout=1)
