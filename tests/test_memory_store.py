"""
Tests for the in-memory store: generations, create-only maps, ordered map
reads and generation-checked deletes.
"""

import asyncio

import pytest

from tsblock.errors import GenerationError
from tsblock.interfaces import KeyMapStore, MapWrite, MapWriteMode, StoreKey
from tsblock.memory_store import MemoryStore


KEY = StoreKey("test", "TimeSeries", "AAPL")
OTHER = StoreKey("test", "TimeSeriesidx", "AAPL")


@pytest.mark.asyncio
async def test_missing_record_reads():
    store = MemoryStore()
    assert await store.get(KEY) is None
    assert await store.get_many([KEY, OTHER]) == [None, None]
    assert await store.map_size(KEY, "tsSeries") is None
    assert await store.map_keys(KEY, "tsSeries") is None
    assert await store.map_key_by_index(KEY, "tsSeries", 0) is None
    assert await store.delete(KEY) is False
    assert await store.touch(KEY) is False


@pytest.mark.asyncio
async def test_every_mutation_bumps_generation():
    store = MemoryStore()
    await store.put(KEY, {"a": 1})
    assert (await store.get(KEY)).generation == 1

    await store.map_operate(KEY, [MapWrite("m", {1: 1.0})])
    assert (await store.get(KEY)).generation == 2

    assert await store.touch(KEY) is True
    record = await store.get(KEY)
    assert record.generation == 3
    assert record.bins == {"a": 1, "m": {1: 1.0}}


@pytest.mark.asyncio
async def test_map_operate_returns_sizes_and_honours_create_only():
    store = MemoryStore()
    sizes = await store.map_operate(KEY, [
        MapWrite("tsSeries", {10: 1.0, 20: 2.0}),
        MapWrite("Metadata", {"StartTime": 10}, MapWriteMode.CREATE_ONLY),
    ])
    assert sizes == {"tsSeries": 2, "Metadata": 1}

    sizes = await store.map_operate(KEY, [
        MapWrite("tsSeries", {20: 5.0, 30: 3.0}),
        MapWrite("Metadata", {"StartTime": 20, "maxTSEntries": 3}, MapWriteMode.CREATE_ONLY),
    ])
    assert sizes == {"tsSeries": 3, "Metadata": 2}

    record = await store.get(KEY)
    assert record.bins["tsSeries"] == {10: 1.0, 20: 5.0, 30: 3.0}
    assert record.bins["Metadata"] == {"StartTime": 10, "maxTSEntries": 3}


@pytest.mark.asyncio
async def test_ordered_map_reads():
    store = MemoryStore()
    await store.map_operate(KEY, [MapWrite("tsIndex", {30: {}, 10: {}, 20: {}})])

    assert await store.map_keys(KEY, "tsIndex") == [10, 20, 30]
    assert await store.map_keys(KEY, "tsIndex", low=15) == [20, 30]
    assert await store.map_keys(KEY, "tsIndex", low=10, high=30) == [10, 20]
    assert await store.map_key_by_index(KEY, "tsIndex", 0) == 10
    assert await store.map_key_by_index(KEY, "tsIndex", -1) == 30
    assert await store.map_key_by_index(KEY, "tsIndex", 3) is None
    assert await store.map_size(KEY, "tsIndex") == 3
    assert await store.map_size(KEY, "other") is None


@pytest.mark.asyncio
async def test_reads_are_snapshots():
    store = MemoryStore()
    await store.map_operate(KEY, [MapWrite("tsSeries", {1: 1.0})])
    record = await store.get(KEY)
    record.bins["tsSeries"][2] = 2.0

    assert await store.map_size(KEY, "tsSeries") == 1


@pytest.mark.asyncio
async def test_get_selected_bins():
    store = MemoryStore()
    await store.put(KEY, {"tsSeries": {1: 1.0}, "Metadata": {"StartTime": 1}})

    record = await store.get(KEY, ["tsSeries", "missing"])
    assert record.bins == {"tsSeries": {1: 1.0}}
    records = await store.get_many([OTHER, KEY], ["Metadata"])
    assert records[0] is None
    assert records[1].bins == {"Metadata": {"StartTime": 1}}


@pytest.mark.asyncio
async def test_generation_checked_delete():
    store = MemoryStore()
    await store.put(KEY, {"a": 1})
    generation = (await store.get(KEY)).generation
    await store.touch(KEY)

    with pytest.raises(GenerationError) as excinfo:
        await store.delete(KEY, expected_generation=generation)
    assert excinfo.value.expected == generation
    assert excinfo.value.actual == generation + 1
    assert await store.get(KEY) is not None

    assert await store.delete(KEY, expected_generation=generation + 1) is True
    assert await store.get(KEY) is None


@pytest.mark.asyncio
async def test_recreated_record_never_reuses_a_generation():
    store = MemoryStore()
    await store.put(KEY, {"a": 1})
    await store.touch(KEY)
    stale = (await store.get(KEY)).generation
    assert stale == 2

    assert await store.delete(KEY, expected_generation=stale) is True
    await store.map_operate(KEY, [MapWrite("tsSeries", {1: 1.0})])
    await store.touch(KEY)

    assert (await store.get(KEY)).generation == 4
    with pytest.raises(GenerationError) as excinfo:
        await store.delete(KEY, expected_generation=stale)
    assert excinfo.value.actual == 4
    assert (await store.get(KEY)).bins == {"tsSeries": {1: 1.0}}


@pytest.mark.asyncio
async def test_touch_is_optional_for_stores():
    class ReadOnlyStore(KeyMapStore):
        async def get(self, key, bins=None):
            return None

        async def get_many(self, keys, bins=None):
            return [None] * len(keys)

        async def put(self, key, bins):
            pass

        async def delete(self, key, expected_generation=None):
            return False

        async def map_operate(self, key, writes):
            return {}

        async def map_size(self, key, bin_name):
            return None

        async def map_keys(self, key, bin_name, low=None, high=None):
            return None

        async def map_key_by_index(self, key, bin_name, index):
            return None

    with pytest.raises(NotImplementedError, match="ReadOnlyStore does not support touch"):
        await ReadOnlyStore().touch(KEY)


@pytest.mark.asyncio
async def test_concurrent_map_writes_are_not_lost():
    store = MemoryStore(latency=0.001)

    async def writer(offset):
        for i in range(20):
            await store.map_operate(KEY, [MapWrite("tsSeries", {offset + i: float(i)})])

    await asyncio.gather(*(writer(offset) for offset in (0, 100, 200)))

    assert await store.map_size(KEY, "tsSeries") == 60
    assert (await store.get(KEY)).generation == 60


@pytest.mark.asyncio
async def test_record_counts_by_collection():
    store = MemoryStore()
    await store.put(KEY, {"a": 1})
    await store.put(OTHER, {"a": 1})

    assert store.record_count() == 2
    assert store.record_count("TimeSeries") == 1
    assert store.record_count("TimeSeriesidx") == 1
    assert store.record_count("Other") == 0
