"""
Shared fixtures: a fresh in-memory store per test and a client factory
bound to it.
"""

import asyncio
import os
import random

import pytest

from tsblock.client import TimeSeriesClient
from tsblock.config import TSBlockConfig, reset_config
from tsblock.interfaces import ArchivalObserver, MapWrite, MapWriteMode
from tsblock.memory_store import MemoryStore
from tsblock.models import DataPoint, TIME_SERIES_BIN_NAME


# 2021-01-01 00:00:00 UTC
BASE_TIME = 1_609_459_200_000
MILLIS_IN_SECOND = 1000
SERIES = "TestSeries"


def ts(offset_seconds: int) -> int:
    """Test timestamp `offset_seconds` after BASE_TIME."""
    return BASE_TIME + offset_seconds * MILLIS_IN_SECOND


def make_points(start_offset: int, count: int, interval_seconds: int = 1, seed: int = 7):
    rng = random.Random(seed + start_offset)
    return [DataPoint(ts(start_offset + i * interval_seconds), rng.random()) for i in range(count)]


async def write_series(client: TimeSeriesClient, series: str, count: int, interval_seconds: int = 1):
    """Write points one at a time, as a live feed would."""
    points = make_points(0, count, interval_seconds)
    for point in points:
        await client.put(series, point)
    return points


class JitteredStore(MemoryStore):
    """MemoryStore that yields to the event loop a seeded random number of times per call."""

    def __init__(self, seed: int, max_yields: int = 3):
        super().__init__()
        self.rng = random.Random(seed)
        self.max_yields = max_yields

    async def _round_trip(self):
        for _ in range(self.rng.randint(1, self.max_yields)):
            await asyncio.sleep(0)


class TouchingObserver(ArchivalObserver):
    """Bumps the current block generation on the first `times` reconcile attempts."""

    def __init__(self, client_ref, times: int):
        self.client_ref = client_ref
        self.remaining = times
        self.calls = 0

    async def before_reconcile(self, series_name: str, attempt: int):
        self.calls += 1
        if self.remaining > 0:
            self.remaining -= 1
            client = self.client_ref()
            await client.store.touch(client.writer.current_key(series_name))


class ConcurrentWriteObserver(ArchivalObserver):
    """Lands a write on the current block between copy and delete, once per archival, `times` times."""

    def __init__(self, client_ref, times: int, interval_seconds: int = 1):
        self.client_ref = client_ref
        self.remaining = times
        self.interval_seconds = interval_seconds
        self.injected = []

    async def before_reconcile(self, series_name: str, attempt: int):
        if self.remaining <= 0 or attempt > 1:
            return
        self.remaining -= 1
        client = self.client_ref()
        last = await client.end_time_for_series(series_name)
        point = DataPoint(last + self.interval_seconds * MILLIS_IN_SECOND, -1.0)
        # Straight into the store so the injected write cannot trigger an archival of its own
        await client.store.map_operate(client.writer.current_key(series_name), [
            MapWrite(TIME_SERIES_BIN_NAME, {point.timestamp: point.value}, MapWriteMode.UPDATE),
        ])
        self.injected.append(point)


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    """Keep TSBLOCK_* variables from leaking into config loading."""
    for name in list(os.environ):
        if name.startswith("TSBLOCK_") and name != "TSBLOCK_TEST_REDIS_URL":
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return TSBlockConfig()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def make_client(store, config):
    """Factory: make_client(max_entries=..., retry_count=..., observer_factory=...)."""

    def factory(max_entries: int = 1000, retry_count: int = 5, observer_factory=None):
        holder = {}
        observer = observer_factory(lambda: holder["client"]) if observer_factory else None
        client = TimeSeriesClient(
            store=store,
            config=config,
            max_entries_per_block=max_entries,
            archival_retry_count=retry_count,
            archival_observer=observer,
        )
        holder["client"] = client
        return client

    return factory
