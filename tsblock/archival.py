"""
Archival of full current blocks into historic blocks.

Archiving never loses data: the current block is only deleted after it has
been merged into its historic block and indexed, and only if it has not changed since it was read
(generation check). A concurrent write between the read and the delete makes
the delete fail and the whole copy is retried, up to a fixed budget. If the
budget runs out the current block stays in place holding both the archived
points and the newer ones; readers de-duplicate until a later archival
succeeds.
"""

from typing import Optional, Tuple

from .block_index import BlockIndex
from .errors import GenerationError
from .interfaces import ArchivalObserver, KeyMapStore, MapWrite, MapWriteMode, StoreKey
from .logger import get_logger
from .models import (
    CURRENT,
    ArchivalOutcome,
    ArchivalState,
    Block,
    BlockId,
    DEFAULT_ARCHIVAL_RETRY_COUNT,
    END_TIME_FIELD_NAME,
    ENTRY_COUNT_FIELD_NAME,
    MAX_ENTRIES_FIELD_NAME,
    METADATA_BIN_NAME,
    START_TIME_FIELD_NAME,
    TIME_SERIES_BIN_NAME,
    TIME_SERIES_NAME_FIELD_NAME,
)


class ArchivalStats:
    """Counters kept across archival runs."""

    def __init__(self):
        self.started = 0
        self.reconciled = 0
        self.exhausted = 0
        self.generation_conflicts = 0
        self.blocks_copied = 0

    def to_dict(self) -> dict:
        return {
            "archivals_started": self.started,
            "archivals_reconciled": self.reconciled,
            "archivals_exhausted": self.exhausted,
            "generation_conflicts": self.generation_conflicts,
            "historic_blocks_written": self.blocks_copied,
        }


class Archiver:
    """Runs the FULL -> COPIED -> INDEXED -> RECONCILED protocol for one series at a time."""

    def __init__(self, store: KeyMapStore, index: BlockIndex, namespace: str, collection: str,
                 max_entries: int, retry_count: int = DEFAULT_ARCHIVAL_RETRY_COUNT,
                 observer: Optional[ArchivalObserver] = None):
        self.store = store
        self.index = index
        self.namespace = namespace
        self.collection = collection
        self.max_entries = max_entries
        self.retry_count = retry_count
        self.observer = observer
        self.stats = ArchivalStats()
        self.logger = get_logger("Archiver")

    def key_for_block(self, block_id: BlockId) -> StoreKey:
        return StoreKey(self.namespace, self.collection, block_id.store_key_name())

    async def _merge_into_historic(self, historic_id: BlockId, current: Block) -> Tuple[int, int]:
        """
        Merge the current block's entries into the historic block for historic_id.

        Two archivers racing on the same start time both land their entries in
        the same historic map instead of the later one replacing the earlier
        one. Returns the merged entry count and end time.
        """
        historic_key = self.key_for_block(historic_id)
        sizes = await self.store.map_operate(historic_key, [
            MapWrite(TIME_SERIES_BIN_NAME, dict(current.entries), MapWriteMode.UPDATE),
            MapWrite(METADATA_BIN_NAME, {
                TIME_SERIES_NAME_FIELD_NAME: historic_id.series_name,
                START_TIME_FIELD_NAME: historic_id.start_time,
                MAX_ENTRIES_FIELD_NAME: current.max_entries or self.max_entries,
            }, MapWriteMode.CREATE_ONLY),
        ])
        entry_count = sizes[TIME_SERIES_BIN_NAME]
        end_time = await self.store.map_key_by_index(historic_key, TIME_SERIES_BIN_NAME, -1)
        await self.store.map_operate(historic_key, [
            MapWrite(METADATA_BIN_NAME, {END_TIME_FIELD_NAME: end_time, ENTRY_COUNT_FIELD_NAME: entry_count}),
        ])
        return entry_count, end_time

    async def archive(self, series_name: str) -> ArchivalOutcome:
        """Archive the current block of series_name. Never raises on generation conflicts."""
        current_id = BlockId(series_name, CURRENT)
        current_key = self.key_for_block(current_id)
        outcome = ArchivalOutcome(series_name=series_name, reconciled=False, attempts=0, state=ArchivalState.FULL)
        self.stats.started += 1

        max_attempts = self.retry_count + 1
        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            outcome.state = ArchivalState.FULL

            record = await self.store.get(current_key)
            if record is None:
                self.logger.debug(f"{series_name}: current block already archived by another writer")
                outcome.reconciled = True
                break

            current = Block.from_record(current_id, record)
            if current.entry_count < self.max_entries:
                # Someone else archived it and a new block has started filling
                self.logger.debug(f"{series_name}: current block not full ({current.entry_count} entries)")
                outcome.reconciled = True
                break

            start_time = current.start_time
            if start_time is None:
                start_time = min(current.entries)
            historic_id = BlockId(series_name, start_time)

            entry_count, end_time = await self._merge_into_historic(historic_id, current)
            outcome.state = ArchivalState.COPIED
            outcome.start_time = start_time
            outcome.entry_count = entry_count
            self.stats.blocks_copied += 1

            await self.index.add_entry(series_name, start_time, end_time, entry_count)
            outcome.state = ArchivalState.INDEXED

            if self.observer is not None:
                await self.observer.before_reconcile(series_name, attempt)

            try:
                await self.store.delete(current_key, expected_generation=current.generation)
            except GenerationError as e:
                self.stats.generation_conflicts += 1
                self.logger.warning(
                    f"{series_name}: current block changed during archival "
                    f"(attempt {attempt}/{max_attempts}): {e}")
                continue

            outcome.state = ArchivalState.RECONCILED
            outcome.reconciled = True
            self.logger.debug(
                f"{series_name}: archived {current.entry_count} entries as block {historic_id.store_key_name()}")
            break

        if outcome.reconciled:
            self.stats.reconciled += 1
        else:
            self.stats.exhausted += 1
            self.logger.warning(
                f"{series_name}: archival retries exhausted after {outcome.attempts} attempts - "
                f"current block left in place, duplicates resolved on read")
        return outcome
