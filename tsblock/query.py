"""
Read path: resolves the blocks covering a time range, fetches them in one
batched read, merges and de-duplicates their points, and runs aggregates.
"""

import math
from typing import List, Optional, Sequence, Union

import pyarrow as pa
import pyarrow.compute as pc

from .block_index import BlockIndex
from .interfaces import KeyMapStore, StoreKey
from .logger import get_logger
from .models import (
    NO_DATA,
    Block,
    BlockId,
    DataPoint,
    QueryOperation,
    TIME_SERIES_BIN_NAME,
)


POINT_SCHEMA = pa.schema([
    ('timestamp', pa.int64()),
    ('value', pa.float64()),
])


def merge_blocks(blocks: Sequence[Optional[Block]], start: int, end: int) -> List[DataPoint]:
    """
    Merge blocks (oldest first) into one ascending list with one point per timestamp.

    A timestamp present in more than one block (left behind by an unreconciled
    archival) is emitted once, from the first block it is seen in. Blocks can
    overlap when writers race, so the result is sorted rather than concatenated.
    """
    merged = {}
    for block in blocks:
        if block is None:
            continue
        for ts, value in block.entries.items():
            if start <= ts <= end and ts not in merged:
                merged[ts] = value
    return [DataPoint(ts, merged[ts]) for ts in sorted(merged)]


def points_to_table(points: Sequence[DataPoint]) -> pa.Table:
    return pa.Table.from_arrays([
        pa.array([p.timestamp for p in points], type=pa.int64()),
        pa.array([p.value for p in points], type=pa.float64()),
    ], schema=POINT_SCHEMA)


def aggregate(points: Union[Sequence[DataPoint], pa.Table], operation: QueryOperation) -> float:
    """Reduce a point set to a single float. Empty input gives NaN, except COUNT which gives 0."""
    table = points if isinstance(points, pa.Table) else points_to_table(points)
    values = table.column('value')

    if operation is QueryOperation.COUNT:
        return float(table.num_rows)
    if table.num_rows == 0:
        return NO_DATA

    if operation is QueryOperation.MAX:
        result = pc.max(values)
    elif operation is QueryOperation.MIN:
        result = pc.min(values)
    elif operation is QueryOperation.AVG:
        result = pc.mean(values)
    elif operation is QueryOperation.VOL:
        # Population standard deviation
        result = pc.stddev(values, ddof=0)
    else:
        return NO_DATA

    value = result.as_py()
    return float(value) if value is not None else math.nan


class QueryResolver:
    """Answers point and aggregate queries for a series."""

    def __init__(self, store: KeyMapStore, index: BlockIndex, namespace: str, collection: str):
        self.store = store
        self.index = index
        self.namespace = namespace
        self.collection = collection
        self.logger = get_logger("QueryResolver")

    def key_for_block(self, block_id: BlockId) -> StoreKey:
        return StoreKey(self.namespace, self.collection, block_id.store_key_name())

    async def fetch_blocks(self, block_ids: List[BlockId]) -> List[Optional[Block]]:
        if not block_ids:
            return []
        records = await self.store.get_many([self.key_for_block(b) for b in block_ids], [TIME_SERIES_BIN_NAME])
        return [Block.from_record(block_id, record) if record is not None else None
                for block_id, record in zip(block_ids, records)]

    async def get_points(self, series_name: str, start: int, end: int) -> List[DataPoint]:
        """All points in [start, end], ascending, one per timestamp."""
        block_ids = await self.index.resolve_blocks(series_name, start, end)
        blocks = await self.fetch_blocks(block_ids)
        points = merge_blocks(blocks, start, end)
        self.logger.debug(
            f"{series_name}: [{start}, {end}] -> {len(block_ids)} blocks, {len(points)} points")
        return points

    async def get_point(self, series_name: str, timestamp: int) -> Optional[DataPoint]:
        """The point at exactly `timestamp`, or None if there is not exactly one."""
        points = await self.get_points(series_name, timestamp, timestamp)
        if len(points) == 1:
            return points[0]
        if len(points) > 1:
            self.logger.warning(f"{series_name}: {len(points)} points found for timestamp {timestamp}")
        return None

    async def get_points_table(self, series_name: str, start: int, end: int) -> pa.Table:
        return points_to_table(await self.get_points(series_name, start, end))

    async def run_query(self, series_name: str, operation: QueryOperation, start: int, end: int) -> float:
        table = await self.get_points_table(series_name, start, end)
        return aggregate(table, operation)
