"""
tsblock: time series on a key/sorted-map store.

A series is one mutable "current" block plus immutable historic blocks:
- Writes fill the current block (bounded capacity)
- Full blocks are archived into historic blocks and registered in a
  per-series index of block start times
- Reads resolve the blocks covering a range, merge them and de-duplicate

Data flows: current block -> historic block + index entry, with the current
block deleted only if unchanged since it was copied.
"""

from .client import TimeSeriesClient, create_store
from .errors import (
    TSBlockError,
    StoreError,
    StoreConnectionError,
    GenerationError,
    InvalidArgumentError,
)
from .interfaces import KeyMapStore, ArchivalObserver, StoreKey, StoreRecord, MapWrite, MapWriteMode
from .memory_store import MemoryStore
from .models import (
    CURRENT,
    MIN_TIMESTAMP,
    MAX_TIMESTAMP,
    BlockId,
    Block,
    DataPoint,
    IndexEntry,
    SeriesInfo,
    QueryOperation,
    ArchivalState,
    ArchivalOutcome,
)

__all__ = [
    'TimeSeriesClient',
    'create_store',
    'TSBlockError',
    'StoreError',
    'StoreConnectionError',
    'GenerationError',
    'InvalidArgumentError',
    'KeyMapStore',
    'ArchivalObserver',
    'StoreKey',
    'StoreRecord',
    'MapWrite',
    'MapWriteMode',
    'MemoryStore',
    'CURRENT',
    'MIN_TIMESTAMP',
    'MAX_TIMESTAMP',
    'BlockId',
    'Block',
    'DataPoint',
    'IndexEntry',
    'SeriesInfo',
    'QueryOperation',
    'ArchivalState',
    'ArchivalOutcome',
]
