"""
TimeSeriesClient: the public entry point.
Wires the store, index, archiver, writer and query resolver together from
configuration, with per-argument overrides.
"""

from typing import List, Optional, Sequence, Union

import pyarrow as pa

from .archival import Archiver
from .block_index import BlockIndex
from .block_writer import BlockWriter
from .config import TSBlockConfig, get_config
from .errors import InvalidArgumentError
from .interfaces import ArchivalObserver, KeyMapStore
from .logger import TSBlockLogger, get_logger
from .memory_store import MemoryStore
from .models import (
    BlockId,
    DataPoint,
    QueryOperation,
    SeriesInfo,
    Timestamp,
    TIME_SERIES_BIN_NAME,
    to_epoch_millis,
)
from .query import QueryResolver


def create_store(config: TSBlockConfig) -> KeyMapStore:
    """Build the backing store named by config.store.backend."""
    backend = config.store.backend.lower()
    if backend == "memory":
        return MemoryStore()
    if backend == "redis":
        from .redis_store import RedisStore
        return RedisStore(
            host=config.store.host,
            port=config.store.port,
            db=config.store.db,
            password=config.store.password,
        )
    raise InvalidArgumentError(f"Unknown store backend: {config.store.backend}")


class TimeSeriesClient:
    """
    Time series stored as fixed-capacity blocks in a key/map store.

    Writes go to the current block of a series; full blocks are archived
    into historic blocks registered in a per-series index. Reads resolve the
    blocks covering a range through the index and merge them.
    """

    def __init__(self, store: KeyMapStore = None, namespace: str = None, collection: str = None,
                 max_entries_per_block: int = None, archival_retry_count: int = None,
                 config: TSBlockConfig = None, config_path: str = None,
                 archival_observer: Optional[ArchivalObserver] = None):
        """
        Initialize the client with configuration support.

        Args:
            store: Backing store (built from config.store if None)
            namespace: Override store namespace
            collection: Override collection holding the blocks
            max_entries_per_block: Override block capacity
            archival_retry_count: Override archival retry budget
            config: Pre-loaded config object (takes precedence over config_path)
            config_path: Path to custom config file
            archival_observer: Hook called before each archival reconcile step
        """
        if config is not None:
            self.config = config
        else:
            self.config = get_config(config_path)

        TSBlockLogger.setup(
            log_dir=self.config.logging.log_dir,
            log_level=self.config.logging.level,
            console_output=self.config.logging.console_output,
        )
        self.logger = get_logger("TimeSeriesClient")
        self.debug = self.config.debug.enabled
        if self.debug:
            TSBlockLogger.set_level("DEBUG")

        self.namespace = namespace or self.config.store.namespace
        self.collection = collection or self.config.store.collection
        self.index_collection = self.config.index_collection(self.collection)
        self.max_entries_per_block = (max_entries_per_block if max_entries_per_block is not None
                                      else self.config.blocks.max_entries_per_block)
        self.archival_retry_count = (archival_retry_count if archival_retry_count is not None
                                     else self.config.blocks.archival_retry_count)

        if not isinstance(self.max_entries_per_block, int) or self.max_entries_per_block <= 0:
            raise InvalidArgumentError(
                f"max_entries_per_block must be a positive integer, got {self.max_entries_per_block!r}")
        if not isinstance(self.archival_retry_count, int) or self.archival_retry_count < 0:
            raise InvalidArgumentError(
                f"archival_retry_count must be a non-negative integer, got {self.archival_retry_count!r}")

        self.store = store if store is not None else create_store(self.config)
        self.index = BlockIndex(self.store, self.namespace, self.index_collection)
        self.archiver = Archiver(
            self.store, self.index, self.namespace, self.collection,
            max_entries=self.max_entries_per_block,
            retry_count=self.archival_retry_count,
            observer=archival_observer,
        )
        self.writer = BlockWriter(
            self.store, self.archiver, self.namespace, self.collection,
            max_entries=self.max_entries_per_block,
            time_column=self.config.schema.time_column,
            value_column=self.config.schema.value_column,
        )
        self.resolver = QueryResolver(self.store, self.index, self.namespace, self.collection)

        self.logger.info(
            f"Initialized client: namespace={self.namespace}, collection={self.collection}, "
            f"max_entries_per_block={self.max_entries_per_block}, "
            f"archival_retry_count={self.archival_retry_count}, store={type(self.store).__name__}")

    @staticmethod
    def _check_series(series_name: str):
        if not isinstance(series_name, str) or not series_name:
            raise InvalidArgumentError(f"Series name must be a non-empty string, got {series_name!r}")

    # Write path

    async def put(self, series_name: str, data: Union[DataPoint, Sequence[DataPoint]]):
        """Save one data point or a sequence of them."""
        if isinstance(data, DataPoint):
            await self.put_point(series_name, data)
        else:
            await self.put_points(series_name, data)

    async def put_point(self, series_name: str, point: DataPoint):
        self._check_series(series_name)
        await self.writer.put_point(series_name, point)

    async def put_points(self, series_name: str, points: Sequence[DataPoint]):
        self._check_series(series_name)
        await self.writer.put_points(series_name, list(points))

    async def put_record_batch(self, series_name: str, data: Union[pa.RecordBatch, pa.Table]) -> int:
        """Ingest an Arrow batch using the configured time/value columns. Returns rows written."""
        self._check_series(series_name)
        return await self.writer.put_record_batch(series_name, data)

    # Read path

    async def get_points(self, series_name: str, start: Timestamp, end: Timestamp) -> List[DataPoint]:
        """All points between start and end inclusive, ascending and de-duplicated."""
        self._check_series(series_name)
        return await self.resolver.get_points(series_name, to_epoch_millis(start), to_epoch_millis(end))

    async def get_point(self, series_name: str, timestamp: Timestamp) -> Optional[DataPoint]:
        """The point at timestamp, None if not found."""
        self._check_series(series_name)
        return await self.resolver.get_point(series_name, to_epoch_millis(timestamp))

    async def get_points_table(self, series_name: str, start: Timestamp, end: Timestamp) -> pa.Table:
        self._check_series(series_name)
        return await self.resolver.get_points_table(series_name, to_epoch_millis(start), to_epoch_millis(end))

    async def run_query(self, series_name: str, operation: Union[QueryOperation, str],
                        start: Timestamp, end: Timestamp) -> float:
        """Aggregate over [start, end]: max, min, avg, count or vol."""
        self._check_series(series_name)
        operation = QueryOperation.from_name(operation)
        return await self.resolver.run_query(series_name, operation, to_epoch_millis(start), to_epoch_millis(end))

    async def resolve_blocks(self, series_name: str, start: Timestamp, end: Timestamp) -> List[BlockId]:
        self._check_series(series_name)
        return await self.index.resolve_blocks(series_name, to_epoch_millis(start), to_epoch_millis(end))

    # Series information

    async def start_time_for_series(self, series_name: str) -> Optional[int]:
        """Earliest timestamp of the series, None if it has no data."""
        start_time = await self.index.first_start_time(series_name)
        if start_time is not None:
            return start_time
        first = await self.store.map_key_by_index(self.writer.current_key(series_name), TIME_SERIES_BIN_NAME, 0)
        return int(first) if first is not None else None

    async def end_time_for_series(self, series_name: str) -> Optional[int]:
        """Latest timestamp of the series, None if it has no data."""
        last = await self.store.map_key_by_index(self.writer.current_key(series_name), TIME_SERIES_BIN_NAME, -1)
        if last is not None:
            return int(last)
        last_entry = await self.index.last_entry(series_name)
        return last_entry.end_time if last_entry is not None else None

    async def data_point_count(self, series_name: str) -> int:
        """Stored point count. Over-counts while an unreconciled archival leaves duplicates."""
        count = sum(entry.entry_count for entry in await self.index.entries(series_name))
        current_size = await self.store.map_size(self.writer.current_key(series_name), TIME_SERIES_BIN_NAME)
        return count + (current_size or 0)

    async def series_info(self, series_name: str) -> SeriesInfo:
        self._check_series(series_name)
        return SeriesInfo(
            series_name=series_name,
            start_time=await self.start_time_for_series(series_name),
            end_time=await self.end_time_for_series(series_name),
            data_point_count=await self.data_point_count(series_name),
        )

    async def current_block_size(self, series_name: str) -> int:
        """Entries currently held in the live block (0 if absent)."""
        size = await self.store.map_size(self.writer.current_key(series_name), TIME_SERIES_BIN_NAME)
        return size or 0

    async def historic_block_count(self, series_name: str) -> int:
        return len(await self.index.start_times(series_name))

    async def get_stats(self) -> dict:
        """Counters for this client instance."""
        stats = {
            "points_written": self.writer.points_written,
            "max_entries_per_block": self.max_entries_per_block,
            "archival_retry_count": self.archival_retry_count,
            "store": type(self.store).__name__,
        }
        stats.update(self.archiver.stats.to_dict())
        return stats

    async def cleanup(self):
        """Release the store connection."""
        await self.store.close()
        self.logger.info("Cleanup complete")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.cleanup()

