"""
Value types shared by the write path, the index and the query resolver.

Store records are loosely typed bin maps; everything past the store boundary
works with the typed objects defined here.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Union

from .errors import InvalidArgumentError


# Bin and field names used in store records
TIME_SERIES_BIN_NAME = "tsSeries"
TIME_SERIES_INDEX_BIN_NAME = "tsIndex"
METADATA_BIN_NAME = "Metadata"
TIME_SERIES_NAME_FIELD_NAME = "TimeSeriesName"
START_TIME_FIELD_NAME = "StartTime"
END_TIME_FIELD_NAME = "EndTime"
ENTRY_COUNT_FIELD_NAME = "EntryCount"
MAX_ENTRIES_FIELD_NAME = "maxTSEntries"

TIME_SERIES_INDEX_SET_SUFFIX = "idx"

DEFAULT_TIME_SERIES_SET = "TimeSeries"
DEFAULT_MAX_ENTRIES_PER_BLOCK = 1000
DEFAULT_ARCHIVAL_RETRY_COUNT = 5

# Open bounds for "whole series" queries
MIN_TIMESTAMP = -(2 ** 63)
MAX_TIMESTAMP = 2 ** 63 - 1


class _CurrentBlock:
    """Sentinel start time for the live, still-filling block of a series."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "CURRENT"

    def __reduce__(self):
        return (_CurrentBlock, ())


CURRENT = _CurrentBlock()

Timestamp = Union[int, datetime]


def to_epoch_millis(value: Timestamp) -> int:
    """Convert an int or datetime timestamp to integer milliseconds since the epoch."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(round(value.timestamp() * 1000))
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidArgumentError(f"Timestamp must be an int or datetime, got {type(value).__name__}")
    return value


@dataclass(frozen=True)
class DataPoint:
    """A single (timestamp, value) observation."""
    timestamp: int
    value: float

    @classmethod
    def of(cls, timestamp: Timestamp, value: float) -> "DataPoint":
        return cls(to_epoch_millis(timestamp), float(value))

    def as_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.timestamp / 1000, tz=timezone.utc)


@dataclass(frozen=True)
class BlockId:
    """Identity of a block: the series plus its start time, or CURRENT."""
    series_name: str
    start_time: Union[int, _CurrentBlock]

    @property
    def is_current(self) -> bool:
        return self.start_time is CURRENT

    def store_key_name(self) -> str:
        if self.is_current:
            return self.series_name
        return f"{self.series_name}-{self.start_time}"


@dataclass
class Block:
    """
    One physical storage unit for a contiguous time range of one series.

    Entries are kept in ascending timestamp order. Historic blocks carry an
    end time and entry count in their metadata; current blocks do not.
    """
    block_id: BlockId
    entries: Dict[int, float] = field(default_factory=dict)
    metadata: Dict[str, object] = field(default_factory=dict)
    generation: int = 0

    @classmethod
    def from_record(cls, block_id: BlockId, record) -> "Block":
        raw_entries = record.bins.get(TIME_SERIES_BIN_NAME) or {}
        entries = {int(ts): float(v) for ts, v in sorted(raw_entries.items())}
        metadata = dict(record.bins.get(METADATA_BIN_NAME) or {})
        return cls(block_id=block_id, entries=entries, metadata=metadata, generation=record.generation)

    @property
    def series_name(self) -> str:
        return self.block_id.series_name

    @property
    def is_current(self) -> bool:
        return self.block_id.is_current

    @property
    def entry_count(self) -> int:
        return len(self.entries)

    @property
    def start_time(self) -> Optional[int]:
        return self.metadata.get(START_TIME_FIELD_NAME)

    @property
    def end_time(self) -> Optional[int]:
        return self.metadata.get(END_TIME_FIELD_NAME)

    @property
    def max_entries(self) -> Optional[int]:
        return self.metadata.get(MAX_ENTRIES_FIELD_NAME)

    @property
    def last_timestamp(self) -> Optional[int]:
        if not self.entries:
            return None
        return max(self.entries)

    def points_in_range(self, start: int, end: int) -> List[DataPoint]:
        return [DataPoint(ts, v) for ts, v in self.entries.items() if start <= ts <= end]


@dataclass(frozen=True)
class IndexEntry:
    """Boundaries of one archived block."""
    series_name: str
    start_time: int
    end_time: int
    entry_count: int

    def to_map_value(self) -> Dict[str, int]:
        return {END_TIME_FIELD_NAME: self.end_time, ENTRY_COUNT_FIELD_NAME: self.entry_count}


@dataclass(frozen=True)
class SeriesInfo:
    """Summary of a single series."""
    series_name: str
    start_time: Optional[int]
    end_time: Optional[int]
    data_point_count: int

    def __str__(self) -> str:
        def fmt(ts):
            if ts is None:
                return "-"
            return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        return (f"Name : {self.series_name} Start Date : {fmt(self.start_time)} "
                f"End Date : {fmt(self.end_time)} Data point count : {self.data_point_count}")


class QueryOperation(Enum):
    """Aggregates that can be run against a time range."""
    MAX = ("max", "maximum value of series")
    MIN = ("min", "minimum value of series")
    AVG = ("avg", "average value of series")
    COUNT = ("count", "number of values in the series")
    VOL = ("vol", "volatility of values in series")

    def __init__(self, short_name: str, description: str):
        self.short_name = short_name
        self.description = description

    @classmethod
    def from_name(cls, name: Union[str, "QueryOperation"]) -> "QueryOperation":
        if isinstance(name, QueryOperation):
            return name
        for op in cls:
            if op.short_name == str(name).lower() or op.name == str(name).upper():
                return op
        raise InvalidArgumentError(f"Unknown query operation: {name}")


class ArchivalState(Enum):
    FULL = "full"
    COPIED = "copied"
    INDEXED = "indexed"
    RECONCILED = "reconciled"


@dataclass
class ArchivalOutcome:
    """Result of one archival run for a series."""
    series_name: str
    reconciled: bool
    attempts: int
    state: ArchivalState
    start_time: Optional[int] = None
    entry_count: int = 0


NO_DATA = math.nan
