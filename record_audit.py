#!/usr/bin/env python3
"""
Record Audit - Track Sequential Records Through Block Archival
=============================================================

Writes sequentially numbered records into several series from concurrent
tasks while a seeded race injector bumps current block generations between
the archival copy and delete. Then reads every series back and checks that
no record went missing and that reads never return a timestamp twice.

Usage:
    python3 record_audit.py
    python3 record_audit.py --records 20000 --series 8 --race-rate 0.3 --seed 42
    python3 record_audit.py --backend redis
"""

import argparse
import asyncio
import random
import time
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Set

import pyarrow as pa

from tsblock.client import TimeSeriesClient
from tsblock.config import get_config
from tsblock.interfaces import ArchivalObserver
from tsblock.logger import get_logger
from tsblock.models import MIN_TIMESTAMP, MAX_TIMESTAMP


class RaceInjector(ArchivalObserver):
    """Touches the current block before reconcile with probability `rate`, forcing a retry."""

    def __init__(self, rng: random.Random, rate: float):
        self.rng = rng
        self.rate = rate
        self.client = None
        self.injected = 0

    async def before_reconcile(self, series_name: str, attempt: int):
        if self.client is None or self.rng.random() >= self.rate:
            return
        if await self.client.store.touch(self.client.writer.current_key(series_name)):
            self.injected += 1


class RecordAuditor:
    def __init__(self, timestamp_base: datetime):
        self.timestamp_base = timestamp_base
        self.logger = get_logger("RecordAuditor")
        self.sent_records: Dict[str, Set[int]] = {}

    def create_sequential_batch(self, series_name: str, start_id: int, batch_size: int) -> pa.RecordBatch:
        """Create a batch where record N is stamped base + N seconds and carries value N."""
        record_ids = list(range(start_id, start_id + batch_size))
        self.sent_records.setdefault(series_name, set()).update(record_ids)

        return pa.RecordBatch.from_pydict({
            'record_id': record_ids,
            'timestamp': pa.array([self.timestamp_base + timedelta(seconds=i) for i in record_ids],
                                  type=pa.timestamp('ms', tz='UTC')),
            'value': [float(i) for i in record_ids],
        })

    def record_id(self, timestamp: int) -> int:
        base = int(self.timestamp_base.timestamp() * 1000)
        return (timestamp - base) // 1000

    async def audit_series(self, client: TimeSeriesClient, series_name: str) -> Dict:
        """Compare what was sent with what is stored and what reads return."""
        block_ids = await client.resolve_blocks(series_name, MIN_TIMESTAMP, MAX_TIMESTAMP)
        blocks = await client.resolver.fetch_blocks(block_ids)
        stored = Counter(ts for block in blocks if block is not None for ts in block.entries)

        points = await client.get_points(series_name, MIN_TIMESTAMP, MAX_TIMESTAMP)
        returned = Counter(p.timestamp for p in points)
        found = {self.record_id(ts) for ts in returned}
        wrong_values = [p for p in points if p.value != float(self.record_id(p.timestamp))]

        sent = self.sent_records.get(series_name, set())
        return {
            'sent_count': len(sent),
            'found_count': len(found),
            'missing_records': sorted(sent - found),
            'read_duplicates': sorted(self.record_id(ts) for ts, n in returned.items() if n > 1),
            'stored_duplicates': sorted(self.record_id(ts) for ts, n in stored.items() if n > 1),
            'wrong_values': len(wrong_values),
            'blocks': len([b for b in blocks if b is not None]),
        }

    def print_audit_report(self, results: Dict[str, Dict], stats: Dict):
        """Print comprehensive audit report."""
        print("\n" + "=" * 80)
        print("📊 RECORD AUDIT REPORT")
        print("=" * 80)

        total_sent = sum(r['sent_count'] for r in results.values())
        total_found = sum(r['found_count'] for r in results.values())
        missing = sum(len(r['missing_records']) for r in results.values())
        read_dups = sum(len(r['read_duplicates']) for r in results.values())
        stored_dups = sum(len(r['stored_duplicates']) for r in results.values())
        wrong = sum(r['wrong_values'] for r in results.values())

        print(f"📤 Records sent: {total_sent:,}")
        print(f"📥 Records found: {total_found:,}")
        print(f"❌ Missing records: {missing:,}")
        print(f"🔄 Duplicated in reads: {read_dups:,}")
        print(f"🗃️  Stored in two blocks (folded on read): {stored_dups:,}")

        for series_name, r in results.items():
            if r['missing_records']:
                print(f"⚠️  DATA LOSS in {series_name}: first missing IDs {r['missing_records'][:20]}")
            if r['read_duplicates']:
                print(f"⚠️  DUPLICATION in {series_name}: {r['read_duplicates'][:20]}")

        print(f"\n📈 SERIES BREAKDOWN:")
        for series_name, r in results.items():
            print(f"   {series_name}: {r['found_count']:,}/{r['sent_count']:,} records in {r['blocks']} blocks")

        print(f"\n📊 ARCHIVAL STATISTICS:")
        for key in ('archivals_started', 'archivals_reconciled', 'archivals_exhausted',
                    'generation_conflicts', 'historic_blocks_written'):
            print(f"   {key}: {stats[key]:,}")

        if missing == 0 and read_dups == 0 and wrong == 0:
            print(f"\n✅ AUDIT PASSED: All {total_sent:,} records accounted for!")
        else:
            print(f"\n❌ AUDIT FAILED: Data integrity issues detected!")
        return missing == 0 and read_dups == 0 and wrong == 0


async def feed_series(client: TimeSeriesClient, auditor: RecordAuditor, series_name: str,
                      total_records: int, batch_size: int, rng: random.Random):
    """Write one series, mixing single-point puts with Arrow batches."""
    start_id = 0
    while start_id < total_records:
        size = min(batch_size, total_records - start_id)
        batch = auditor.create_sequential_batch(series_name, start_id, size)
        if rng.random() < 0.5:
            await client.put_record_batch(series_name, batch)
        else:
            for point in client.writer.points_from_arrow(batch):
                await client.put(series_name, point)
        start_id += size


async def run_audit_test(args) -> bool:
    """Run the record audit."""
    rng = random.Random(args.seed)
    injector = RaceInjector(rng, args.race_rate)

    config = get_config(args.config)
    if args.backend:
        config.store.backend = args.backend

    auditor = RecordAuditor(datetime.now(timezone.utc).replace(microsecond=0) - timedelta(days=30))
    series_names = [f"AUDIT_{i}" for i in range(args.series)]

    print(f"🚀 STARTING RECORD AUDIT")
    print(f"📊 Target: {args.records:,} sequential records x {args.series} series")
    print(f"🧱 Block capacity: {args.block_size}, race rate: {args.race_rate}, seed: {args.seed}")

    # Fresh namespace so earlier runs against a persistent store do not show up
    namespace = f"audit-{int(time.time())}"
    async with TimeSeriesClient(config=config, namespace=namespace, max_entries_per_block=args.block_size,
                                archival_observer=injector) as client:
        injector.client = client

        print(f"\n📥 INGESTION PHASE")
        print("-" * 40)
        start_time = time.time()
        await asyncio.gather(*(
            feed_series(client, auditor, name, args.records, args.batch_size, random.Random(rng.random()))
            for name in series_names
        ))
        elapsed = time.time() - start_time
        total = args.records * args.series
        rate = total / elapsed if elapsed > 0 else 0
        print(f"   Ingested: {total:,} records in {elapsed:.1f}s ({rate:.0f} records/sec)")
        print(f"   Races injected: {injector.injected:,}")

        print(f"\n🔍 AUDITING SERIES CONTENTS")
        print("-" * 40)
        results = {}
        for name in series_names:
            results[name] = await auditor.audit_series(client, name)
            auditor.logger.info(f"{name}: {results[name]['found_count']} records found")

        return auditor.print_audit_report(results, await client.get_stats())


def parse_args(argv: List[str] = None):
    parser = argparse.ArgumentParser(description="Audit sequential records through block archival")
    parser.add_argument("--records", type=int, default=5000, help="Records per series")
    parser.add_argument("--series", type=int, default=4, help="Number of series written concurrently")
    parser.add_argument("--block-size", type=int, default=100, help="Entries per block")
    parser.add_argument("--batch-size", type=int, default=250, help="Records per write batch")
    parser.add_argument("--race-rate", type=float, default=0.25,
                        help="Probability of forcing a generation conflict on each reconcile")
    parser.add_argument("--seed", type=int, default=1234, help="Seed for the race injector")
    parser.add_argument("--backend", choices=["memory", "redis"], default=None)
    parser.add_argument("--config", default=None, help="Path to a JSON config override")
    return parser.parse_args(argv)


if __name__ == "__main__":
    passed = asyncio.run(run_audit_test(parse_args()))
    raise SystemExit(0 if passed else 1)
