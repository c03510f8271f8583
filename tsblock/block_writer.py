"""
Write path: inserts into the current block of a series and hands full
blocks to the archiver.
"""

from typing import Dict, List, Sequence, Union

import pyarrow as pa
import pyarrow.compute as pc

from .archival import Archiver
from .errors import InvalidArgumentError
from .interfaces import KeyMapStore, MapWrite, MapWriteMode, StoreKey
from .logger import get_logger
from .models import (
    CURRENT,
    BlockId,
    DataPoint,
    MAX_ENTRIES_FIELD_NAME,
    METADATA_BIN_NAME,
    START_TIME_FIELD_NAME,
    TIME_SERIES_BIN_NAME,
    TIME_SERIES_NAME_FIELD_NAME,
)


class BlockWriter:
    """Fills current blocks and triggers archival when they reach capacity."""

    def __init__(self, store: KeyMapStore, archiver: Archiver, namespace: str, collection: str,
                 max_entries: int, time_column: str = "timestamp", value_column: str = "value"):
        if not isinstance(max_entries, int) or max_entries <= 0:
            raise InvalidArgumentError(f"max_entries must be a positive integer, got {max_entries!r}")
        self.store = store
        self.archiver = archiver
        self.namespace = namespace
        self.collection = collection
        self.max_entries = max_entries
        self.time_column = time_column
        self.value_column = value_column
        self.points_written = 0
        self.logger = get_logger("BlockWriter")

    def current_key(self, series_name: str) -> StoreKey:
        return StoreKey(self.namespace, self.collection, BlockId(series_name, CURRENT).store_key_name())

    def _metadata_write(self, series_name: str, start_time: int) -> MapWrite:
        # Create-only so concurrent first writers cannot move the recorded start time
        return MapWrite(METADATA_BIN_NAME, {
            TIME_SERIES_NAME_FIELD_NAME: series_name,
            START_TIME_FIELD_NAME: start_time,
            MAX_ENTRIES_FIELD_NAME: self.max_entries,
        }, MapWriteMode.CREATE_ONLY)

    async def _write_run(self, series_name: str, points: Sequence[DataPoint]) -> int:
        """Insert points plus metadata in one atomic operation. Returns resulting entry count."""
        entries: Dict[int, float] = {p.timestamp: p.value for p in points}
        sizes = await self.store.map_operate(self.current_key(series_name), [
            MapWrite(TIME_SERIES_BIN_NAME, entries, MapWriteMode.UPDATE),
            self._metadata_write(series_name, points[0].timestamp),
        ])
        self.points_written += len(points)
        return sizes[TIME_SERIES_BIN_NAME]

    async def put_point(self, series_name: str, point: DataPoint):
        """Insert one point; archive synchronously if the block is now full."""
        entry_count = await self._write_run(series_name, [point])
        if entry_count >= self.max_entries:
            await self.archiver.archive(series_name)

    async def put_points(self, series_name: str, points: Sequence[DataPoint]):
        """
        Insert points in runs that fit the room left in the current block,
        archiving each time a run fills it.
        """
        if not points:
            return

        existing = await self.store.map_size(self.current_key(series_name), TIME_SERIES_BIN_NAME) or 0
        loaded = 0

        while loaded < len(points):
            room = self.max_entries - existing
            if room <= 0:
                # Left over capacity by an earlier exhausted archival
                outcome = await self.archiver.archive(series_name)
                if outcome.reconciled:
                    existing = 0
                    continue
                self.logger.warning(
                    f"{series_name}: current block still over capacity, "
                    f"writing {len(points) - loaded} points into it")
                await self._write_run(series_name, points[loaded:])
                return

            run = points[loaded:loaded + room]
            existing = await self._write_run(series_name, run)
            loaded += len(run)

            if existing >= self.max_entries:
                outcome = await self.archiver.archive(series_name)
                if outcome.reconciled:
                    existing = 0
                else:
                    existing = await self.store.map_size(self.current_key(series_name), TIME_SERIES_BIN_NAME) or 0

    def points_from_arrow(self, data: Union[pa.RecordBatch, pa.Table]) -> List[DataPoint]:
        """Convert the configured time/value columns of an Arrow batch into data points."""
        names = data.schema.names
        for column in (self.time_column, self.value_column):
            if column not in names:
                raise InvalidArgumentError(f"Arrow data has no '{column}' column (columns: {names})")

        time_col = data.column(self.time_column)
        if pa.types.is_timestamp(time_col.type):
            time_col = time_col.cast(pa.timestamp('ms', tz=time_col.type.tz), safe=False).cast(pa.int64())
        elif not pa.types.is_integer(time_col.type):
            raise InvalidArgumentError(
                f"Column '{self.time_column}' must be a timestamp or integer column, got {time_col.type}")
        value_col = pc.cast(data.column(self.value_column), pa.float64())

        return [DataPoint(ts, value) for ts, value in zip(time_col.to_pylist(), value_col.to_pylist())
                if ts is not None and value is not None]

    async def put_record_batch(self, series_name: str, data: Union[pa.RecordBatch, pa.Table]) -> int:
        """Ingest an Arrow batch. Rows with a null timestamp or value are skipped."""
        points = self.points_from_arrow(data)
        skipped = data.num_rows - len(points)
        if skipped:
            self.logger.warning(f"{series_name}: skipped {skipped} rows with null timestamp or value")
        await self.put_points(series_name, points)
        return len(points)
