"""
In-process key/map store.
Holds records in a dict; each call yields to the event loop once to stand in
for a network round trip and then applies without further suspension, so
every operation is atomic per key.
"""

import asyncio
import copy
from bisect import bisect_left
from typing import Any, Dict, List, Optional

from .errors import GenerationError
from .interfaces import KeyMapStore, MapWrite, MapWriteMode, StoreKey, StoreRecord
from .logger import get_logger


class _Entry:
    __slots__ = ("bins", "generation")

    def __init__(self, generation: int = 0):
        self.bins: Dict[str, Any] = {}
        self.generation = generation


class MemoryStore(KeyMapStore):
    """Dict-backed store with generation tracking."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency
        self._records: Dict[StoreKey, _Entry] = {}
        # Last generation of deleted keys, so a re-created record never reuses one
        self._tombstones: Dict[StoreKey, int] = {}
        self.logger = get_logger("MemoryStore")

    async def _round_trip(self):
        await asyncio.sleep(self.latency)

    def _snapshot(self, entry: _Entry, bins: Optional[List[str]]) -> StoreRecord:
        names = bins if bins is not None else list(entry.bins)
        selected = {}
        for name in names:
            if name in entry.bins:
                value = entry.bins[name]
                if isinstance(value, dict):
                    value = dict(sorted(value.items()))
                selected[name] = copy.deepcopy(value)
        return StoreRecord(bins=selected, generation=entry.generation)

    def _entry_for_write(self, key: StoreKey) -> _Entry:
        entry = self._records.get(key)
        if entry is None:
            entry = _Entry(self._tombstones.pop(key, 0))
            self._records[key] = entry
        return entry

    def _sorted_keys(self, key: StoreKey, bin_name: str) -> Optional[List[Any]]:
        entry = self._records.get(key)
        if entry is None or not isinstance(entry.bins.get(bin_name), dict):
            return None
        return sorted(entry.bins[bin_name])

    async def get(self, key: StoreKey, bins: Optional[List[str]] = None) -> Optional[StoreRecord]:
        await self._round_trip()
        entry = self._records.get(key)
        if entry is None:
            return None
        return self._snapshot(entry, bins)

    async def get_many(self, keys: List[StoreKey], bins: Optional[List[str]] = None) -> List[Optional[StoreRecord]]:
        await self._round_trip()
        results = []
        for key in keys:
            entry = self._records.get(key)
            results.append(self._snapshot(entry, bins) if entry is not None else None)
        return results

    async def put(self, key: StoreKey, bins: Dict[str, Any]) -> None:
        await self._round_trip()
        entry = self._entry_for_write(key)
        for name, value in bins.items():
            entry.bins[name] = copy.deepcopy(value)
        entry.generation += 1

    async def delete(self, key: StoreKey, expected_generation: Optional[int] = None) -> bool:
        await self._round_trip()
        entry = self._records.get(key)
        if entry is None:
            return False
        if expected_generation is not None and entry.generation != expected_generation:
            raise GenerationError(key, expected_generation, entry.generation)
        del self._records[key]
        self._tombstones[key] = entry.generation
        return True

    async def map_operate(self, key: StoreKey, writes: List[MapWrite]) -> Dict[str, int]:
        await self._round_trip()
        entry = self._entry_for_write(key)
        sizes = {}
        for write in writes:
            target = entry.bins.get(write.bin_name)
            if not isinstance(target, dict):
                target = {}
                entry.bins[write.bin_name] = target
            for map_key, value in write.items.items():
                if write.mode is MapWriteMode.CREATE_ONLY and map_key in target:
                    continue
                target[map_key] = copy.deepcopy(value)
            sizes[write.bin_name] = len(target)
        entry.generation += 1
        return sizes

    async def map_size(self, key: StoreKey, bin_name: str) -> Optional[int]:
        await self._round_trip()
        entry = self._records.get(key)
        if entry is None or not isinstance(entry.bins.get(bin_name), dict):
            return None
        return len(entry.bins[bin_name])

    async def map_keys(self, key: StoreKey, bin_name: str, low: Any = None, high: Any = None) -> Optional[List[Any]]:
        await self._round_trip()
        keys = self._sorted_keys(key, bin_name)
        if keys is None:
            return None
        lo = 0 if low is None else bisect_left(keys, low)
        hi = len(keys) if high is None else bisect_left(keys, high)
        return keys[lo:hi]

    async def map_key_by_index(self, key: StoreKey, bin_name: str, index: int) -> Optional[Any]:
        await self._round_trip()
        keys = self._sorted_keys(key, bin_name)
        if not keys:
            return None
        try:
            return keys[index]
        except IndexError:
            return None

    async def touch(self, key: StoreKey) -> bool:
        await self._round_trip()
        entry = self._records.get(key)
        if entry is None:
            return False
        entry.generation += 1
        return True

    def record_count(self, collection: Optional[str] = None) -> int:
        """Number of records held, optionally restricted to one collection."""
        if collection is None:
            return len(self._records)
        return sum(1 for key in self._records if key.collection == collection)

    async def close(self):
        self.logger.debug(f"Closing memory store holding {len(self._records)} records")
