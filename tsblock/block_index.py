"""
Per-series index of archived block boundaries.

Each series has one index record holding an ordered map of
start time -> {EndTime, EntryCount}. It is the single source of truth for
which historic blocks exist.
"""

from typing import List, Optional

from .interfaces import KeyMapStore, MapWrite, MapWriteMode, StoreKey
from .logger import get_logger
from .models import (
    CURRENT,
    BlockId,
    IndexEntry,
    END_TIME_FIELD_NAME,
    ENTRY_COUNT_FIELD_NAME,
    METADATA_BIN_NAME,
    TIME_SERIES_INDEX_BIN_NAME,
    TIME_SERIES_NAME_FIELD_NAME,
)


class BlockIndex:
    """Maintains and searches the block start-time index of each series."""

    def __init__(self, store: KeyMapStore, namespace: str, index_collection: str):
        self.store = store
        self.namespace = namespace
        self.index_collection = index_collection
        self.logger = get_logger("BlockIndex")

    def key_for_series(self, series_name: str) -> StoreKey:
        return StoreKey(self.namespace, self.index_collection, series_name)

    async def add_entry(self, series_name: str, start_time: int, end_time: int, entry_count: int) -> IndexEntry:
        """Register an archived block. Re-registering the same start time overwrites it."""
        entry = IndexEntry(series_name, start_time, end_time, entry_count)
        await self.store.map_operate(self.key_for_series(series_name), [
            MapWrite(METADATA_BIN_NAME, {TIME_SERIES_NAME_FIELD_NAME: series_name}, MapWriteMode.CREATE_ONLY),
            MapWrite(TIME_SERIES_INDEX_BIN_NAME, {start_time: entry.to_map_value()}, MapWriteMode.UPDATE),
        ])
        self.logger.debug(f"Indexed block {series_name}-{start_time}: end={end_time}, entries={entry_count}")
        return entry

    async def start_times(self, series_name: str) -> List[int]:
        """Ordered start times of every historic block. Empty if none."""
        keys = await self.store.map_keys(self.key_for_series(series_name), TIME_SERIES_INDEX_BIN_NAME)
        return [int(k) for k in keys] if keys else []

    async def entries(self, series_name: str) -> List[IndexEntry]:
        record = await self.store.get(self.key_for_series(series_name), [TIME_SERIES_INDEX_BIN_NAME])
        if record is None:
            return []
        index_map = record.bins.get(TIME_SERIES_INDEX_BIN_NAME) or {}
        return [
            IndexEntry(series_name, int(start), int(info[END_TIME_FIELD_NAME]), int(info[ENTRY_COUNT_FIELD_NAME]))
            for start, info in sorted(index_map.items())
        ]

    async def first_start_time(self, series_name: str) -> Optional[int]:
        start = await self.store.map_key_by_index(self.key_for_series(series_name), TIME_SERIES_INDEX_BIN_NAME, 0)
        return int(start) if start is not None else None

    async def last_entry(self, series_name: str) -> Optional[IndexEntry]:
        entries = await self.entries(series_name)
        return entries[-1] if entries else None

    async def resolve_blocks(self, series_name: str, start: int, end: int) -> List[BlockId]:
        """
        Blocks that may hold points in [start, end], oldest first.

        The block starting before `start` is included since it can still
        contain qualifying points. When the range reaches the most recent
        historic block the current block is appended, since it may hold newer
        points (or may be absent, which readers treat as empty).
        """
        if end < start:
            return []

        start_times = await self.start_times(series_name)
        if not start_times:
            return [BlockId(series_name, CURRENT)]

        last_position = len(start_times) - 1

        first = 0
        while first < last_position and start_times[first] < start:
            first += 1
        if start_times[first] > start:
            first = max(0, first - 1)

        last = last_position
        while last >= 0 and start_times[last] > end:
            last -= 1
        if last < first:
            return []

        block_ids = [BlockId(series_name, t) for t in start_times[first:last + 1]]
        if last == last_position:
            block_ids.append(BlockId(series_name, CURRENT))
        return block_ids
