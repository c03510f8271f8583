"""
Backing store and archival callback interfaces.
The core only depends on these; concrete stores live in their own modules.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class StoreKey:
    """Address of a record: namespace, collection (set) and user key."""
    namespace: str
    collection: str
    key: str

    def __str__(self) -> str:
        return f"{self.namespace}:{self.collection}:{self.key}"


@dataclass
class StoreRecord:
    """A record as read from the store: named bins plus its generation."""
    bins: Dict[str, Any] = field(default_factory=dict)
    generation: int = 0


class MapWriteMode(Enum):
    UPDATE = "update"
    # Existing map keys are left untouched and no error is raised
    CREATE_ONLY = "create_only"


@dataclass
class MapWrite:
    """Insert `items` into the ordered map held in bin `bin_name`."""
    bin_name: str
    items: Dict[Any, Any]
    mode: MapWriteMode = MapWriteMode.UPDATE


class KeyMapStore(ABC):
    """
    Key/sorted-map store with per-key atomicity and generation checks.
    Every mutation increments the record generation. Generations never repeat
    for a key: a record re-created after a delete continues from the last
    generation the key had, so a stale expected_generation can never match.
    """

    @abstractmethod
    async def get(self, key: StoreKey, bins: Optional[List[str]] = None) -> Optional[StoreRecord]:
        """Read a record (optionally only some bins). None if absent."""
        pass

    @abstractmethod
    async def get_many(self, keys: List[StoreKey], bins: Optional[List[str]] = None) -> List[Optional[StoreRecord]]:
        """Batched read. Results are positional; missing records are None."""
        pass

    @abstractmethod
    async def put(self, key: StoreKey, bins: Dict[str, Any]) -> None:
        """Write the given bins, creating the record if needed."""
        pass

    @abstractmethod
    async def delete(self, key: StoreKey, expected_generation: Optional[int] = None) -> bool:
        """
        Delete a record. Returns False if it did not exist.
        Raises GenerationError if expected_generation is given and does not match.
        """
        pass

    @abstractmethod
    async def map_operate(self, key: StoreKey, writes: List[MapWrite]) -> Dict[str, int]:
        """
        Apply all map writes atomically to one record, creating it if needed.
        Returns the resulting size of every map bin written.
        """
        pass

    @abstractmethod
    async def map_size(self, key: StoreKey, bin_name: str) -> Optional[int]:
        """Size of the map in bin_name, None if the record or bin is absent."""
        pass

    @abstractmethod
    async def map_keys(self, key: StoreKey, bin_name: str, low: Any = None, high: Any = None) -> Optional[List[Any]]:
        """Ordered map keys in [low, high); None bounds are open. None if absent."""
        pass

    @abstractmethod
    async def map_key_by_index(self, key: StoreKey, bin_name: str, index: int) -> Optional[Any]:
        """Map key at ordinal position index (negative counts from the end)."""
        pass

    async def touch(self, key: StoreKey) -> bool:
        """
        Increment the generation without changing data. False if absent.

        Not used by the write or read path; audit runs and tests use it to force
        generation conflicts. Stores that cannot do it keep this default.
        """
        raise NotImplementedError(f"{type(self).__name__} does not support touch")

    async def close(self):
        """Release connections. Default implementation does nothing."""
        pass


class ArchivalObserver:
    """Notified during archival, before the current block is reconciled."""

    async def before_reconcile(self, series_name: str, attempt: int):
        """
        Called after the historic copy and index entry are written and
        before the generation-checked delete of the current block.
        Default implementation does nothing.
        """
        pass
