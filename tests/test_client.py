"""
Tests for the client facade: construction from config, series information
and the concurrency of independent series.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

import tsblock
from tsblock.client import TimeSeriesClient, create_store
from tsblock.config import TSBlockConfig
from tsblock.errors import InvalidArgumentError
from tsblock.memory_store import MemoryStore
from tsblock.models import DataPoint, MIN_TIMESTAMP, MAX_TIMESTAMP, SeriesInfo

from conftest import BASE_TIME, SERIES, make_points, ts, write_series


@pytest.mark.asyncio
async def test_series_info_of_an_empty_series(make_client):
    client = make_client()
    info = await client.series_info(SERIES)

    assert info == SeriesInfo(SERIES, None, None, 0)
    assert await client.start_time_for_series(SERIES) is None
    assert await client.end_time_for_series(SERIES) is None


@pytest.mark.asyncio
async def test_series_info_with_only_a_current_block(make_client):
    client = make_client(max_entries=10)
    await write_series(client, SERIES, 4)

    info = await client.series_info(SERIES)
    assert info == SeriesInfo(SERIES, ts(0), ts(3), 4)


@pytest.mark.asyncio
async def test_series_info_across_blocks(make_client):
    client = make_client(max_entries=10)
    await write_series(client, SERIES, 25)

    info = await client.series_info(SERIES)
    assert info == SeriesInfo(SERIES, ts(0), ts(24), 25)


@pytest.mark.asyncio
async def test_end_time_falls_back_to_index(make_client):
    client = make_client(max_entries=10)
    await write_series(client, SERIES, 20)

    assert await client.current_block_size(SERIES) == 0
    assert await client.end_time_for_series(SERIES) == ts(19)


@pytest.mark.asyncio
async def test_datetime_arguments(make_client):
    client = make_client(max_entries=10)
    await write_series(client, SERIES, 30)
    base = datetime(2021, 1, 1, tzinfo=timezone.utc)

    points = await client.get_points(SERIES, base + timedelta(seconds=5), base + timedelta(seconds=14))
    assert len(points) == 10
    assert (await client.get_point(SERIES, base)).timestamp == BASE_TIME
    assert await client.run_query(SERIES, "count", base, datetime(2021, 1, 1, 0, 0, 29)) == 30.0


@pytest.mark.asyncio
async def test_put_accepts_datetime_points(make_client):
    client = make_client()
    moment = datetime(2021, 1, 1, 0, 0, 7, tzinfo=timezone.utc)
    await client.put(SERIES, DataPoint.of(moment, 1.5))

    assert await client.get_point(SERIES, moment) == DataPoint(ts(7), 1.5)


@pytest.mark.asyncio
async def test_unknown_operation(make_client):
    client = make_client()
    with pytest.raises(InvalidArgumentError):
        await client.run_query(SERIES, "median", ts(0), ts(1))


@pytest.mark.asyncio
async def test_series_are_independent(make_client):
    client = make_client(max_entries=5)
    await client.put("A", make_points(0, 12))
    await client.put("B", make_points(100, 3))

    assert await client.historic_block_count("A") == 2
    assert await client.historic_block_count("B") == 0
    assert len(await client.get_points("A", MIN_TIMESTAMP, MAX_TIMESTAMP)) == 12
    assert len(await client.get_points("B", MIN_TIMESTAMP, MAX_TIMESTAMP)) == 3


@pytest.mark.asyncio
async def test_concurrent_writers_on_separate_series():
    store = MemoryStore(latency=0.0005)
    client = TimeSeriesClient(store=store, config=TSBlockConfig(), max_entries_per_block=8)
    names = [f"S{i}" for i in range(5)]

    async def feed(name):
        for point in make_points(0, 50):
            await client.put(name, point)

    await asyncio.gather(*(feed(name) for name in names))

    for name in names:
        points = await client.get_points(name, MIN_TIMESTAMP, MAX_TIMESTAMP)
        assert [p.timestamp for p in points] == [ts(i) for i in range(50)]
        assert await client.historic_block_count(name) == 6


@pytest.mark.asyncio
async def test_get_stats(make_client):
    client = make_client(max_entries=5)
    await write_series(client, SERIES, 12)

    stats = await client.get_stats()
    assert stats["points_written"] == 12
    assert stats["max_entries_per_block"] == 5
    assert stats["archival_retry_count"] == 5
    assert stats["store"] == "MemoryStore"
    assert stats["archivals_started"] == 2
    assert stats["archivals_reconciled"] == 2
    assert stats["historic_blocks_written"] == 2


@pytest.mark.asyncio
async def test_async_context_manager(config):
    async with TimeSeriesClient(config=config, max_entries_per_block=3) as client:
        await client.put(SERIES, make_points(0, 4))
        assert await client.data_point_count(SERIES) == 4


def test_defaults_come_from_config(config):
    client = TimeSeriesClient(config=config)

    assert isinstance(client.store, MemoryStore)
    assert client.namespace == "test"
    assert client.collection == "TimeSeries"
    assert client.index_collection == "TimeSeriesidx"
    assert client.max_entries_per_block == 1000
    assert client.archival_retry_count == 5


def test_overrides(config):
    client = TimeSeriesClient(config=config, namespace="prod", collection="Ticks",
                              max_entries_per_block=50, archival_retry_count=0)

    assert client.writer.current_key("X").namespace == "prod"
    assert client.index.index_collection == "Ticksidx"
    assert client.archiver.retry_count == 0
    assert client.writer.max_entries == 50


def test_index_collection_follows_configured_collection(config):
    config.store.collection = "Quotes"
    client = TimeSeriesClient(config=config)

    assert client.collection == "Quotes"
    assert client.index_collection == "Quotesidx"
    assert client.index.key_for_series("X").collection == "Quotesidx"


@pytest.mark.parametrize("kwargs", [
    {"max_entries_per_block": 0},
    {"max_entries_per_block": -5},
    {"archival_retry_count": -1},
])
def test_invalid_overrides(config, kwargs):
    with pytest.raises(InvalidArgumentError):
        TimeSeriesClient(config=config, **kwargs)


def test_create_store(config):
    assert isinstance(create_store(config), MemoryStore)

    config.store.backend = "redis"
    from tsblock.redis_store import RedisStore
    store = create_store(config)
    assert isinstance(store, RedisStore)
    assert store.url == "redis://localhost:6379/0"

    config.store.backend = "cassandra"
    with pytest.raises(InvalidArgumentError):
        create_store(config)


def test_package_exports():
    assert tsblock.TimeSeriesClient is TimeSeriesClient
    assert tsblock.CURRENT is not None
    for name in tsblock.__all__:
        assert hasattr(tsblock, name)
