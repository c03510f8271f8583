"""
Redis implementation of KeyMapStore.

Each record is one Redis string holding a JSON document:

    {"generation": 3, "bins": {"tsSeries": {"map": [[ts, value], ...]},
                               "Metadata": {"map": [["StartTime", 0], ...]}}}

Maps are stored as ordered key/value pairs so integer keys survive the JSON
round trip. Every mutation is a WATCH/MULTI/EXEC transaction retried on
WatchError up to a fixed limit, which gives per-key atomicity; generation
checks run inside the same transaction. The generation is mirrored in a
side key "<key>:gen" that survives deletes, so generations never repeat for
a key.
"""

import json
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError, WatchError

from .errors import GenerationError, StoreConnectionError, StoreError
from .interfaces import KeyMapStore, MapWrite, MapWriteMode, StoreKey, StoreRecord
from .logger import get_logger


@contextmanager
def _translate_errors(operation: str):
    try:
        yield
    except (RedisConnectionError, RedisTimeoutError) as e:
        raise StoreConnectionError(f"Redis {operation} failed: {e}") from e
    except RedisError as e:
        raise StoreError(f"Redis {operation} failed: {e}") from e


def encode_document(generation: int, bins: Dict[str, Any]) -> bytes:
    encoded = {}
    for name, value in bins.items():
        if isinstance(value, dict):
            encoded[name] = {"map": [[k, v] for k, v in sorted(value.items())]}
        else:
            encoded[name] = {"value": value}
    return json.dumps({"generation": generation, "bins": encoded}).encode("utf-8")


def decode_document(raw: Optional[bytes]) -> Optional[Tuple[int, Dict[str, Any]]]:
    if raw is None:
        return None
    doc = json.loads(raw)
    bins = {}
    for name, value in doc["bins"].items():
        if "map" in value:
            bins[name] = {k: v for k, v in value["map"]}
        else:
            bins[name] = value["value"]
    return doc["generation"], bins


class RedisStore(KeyMapStore):
    """KeyMapStore backed by a Redis server."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_connections: int = 50,
        url: Optional[str] = None,
        max_transaction_retries: int = 50,
    ):
        """
        Args:
            host: Redis server host
            port: Redis server port
            db: Redis database number
            password: Optional authentication password
            max_connections: Maximum number of connections in the pool
            url: Full redis:// URL; takes precedence over host/port/db
            max_transaction_retries: WatchError retries before a mutation gives up
        """
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.max_connections = max_connections
        self.url = url or f"redis://{host}:{port}/{db}"
        self.max_transaction_retries = max_transaction_retries
        self._client: Optional[Redis] = None
        self.logger = get_logger("RedisStore")

    async def connect(self) -> Redis:
        """
        Establish connection to Redis.

        Raises:
            StoreConnectionError: If connection fails
        """
        if self._client is not None:
            return self._client

        client = aioredis.from_url(
            self.url,
            password=self.password,
            max_connections=self.max_connections,
        )
        with _translate_errors("connect"):
            await client.ping()
        self._client = client
        self.logger.info(f"Connected to Redis at {self.url}")
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            self.logger.info("Redis connection closed")

    @staticmethod
    def redis_key(key: StoreKey) -> str:
        return f"{key.namespace}:{key.collection}:{key.key}"

    @staticmethod
    def _select(bins: Dict[str, Any], names: Optional[List[str]]) -> Dict[str, Any]:
        if names is None:
            return bins
        return {name: bins[name] for name in names if name in bins}

    async def _read(self, key: StoreKey) -> Optional[Tuple[int, Dict[str, Any]]]:
        client = await self.connect()
        with _translate_errors("get"):
            raw = await client.get(self.redis_key(key))
        return decode_document(raw)

    @staticmethod
    def generation_key(redis_key: str) -> str:
        """Key holding the last generation of a record; it outlives deletes of the record."""
        return f"{redis_key}:gen"

    async def _transact(self, key: StoreKey, mutate: Callable):
        """
        Run mutate(generation, bins) -> (new_bins_or_None, result) under WATCH.

        bins is None for an absent record and generation is then the last one the
        key had before it was deleted (0 if never written), so a re-created
        record continues the sequence. A None result deletes the record but
        keeps its generation key.
        """
        client = await self.connect()
        redis_key = self.redis_key(key)
        gen_key = self.generation_key(redis_key)
        with _translate_errors("transaction"):
            async with client.pipeline(transaction=True) as pipe:
                for _ in range(self.max_transaction_retries):
                    try:
                        await pipe.watch(redis_key, gen_key)
                        raw, raw_generation = await pipe.mget([redis_key, gen_key])
                        document = decode_document(raw)
                        if document is not None:
                            generation, bins = document
                        else:
                            generation, bins = int(raw_generation or 0), None
                        new_bins, result = mutate(generation, bins)
                        pipe.multi()
                        if new_bins is None:
                            pipe.delete(redis_key)
                        else:
                            pipe.set(redis_key, encode_document(generation + 1, new_bins))
                            pipe.set(gen_key, generation + 1)
                        await pipe.execute()
                        return result
                    except WatchError:
                        self.logger.debug(f"Concurrent update on {redis_key}, retrying transaction")
                        continue
        raise StoreError(
            f"Gave up on {redis_key} after {self.max_transaction_retries} conflicting transactions")

    async def get(self, key: StoreKey, bins: Optional[List[str]] = None) -> Optional[StoreRecord]:
        document = await self._read(key)
        if document is None:
            return None
        generation, stored = document
        return StoreRecord(bins=self._select(stored, bins), generation=generation)

    async def get_many(self, keys: List[StoreKey], bins: Optional[List[str]] = None) -> List[Optional[StoreRecord]]:
        if not keys:
            return []
        client = await self.connect()
        with _translate_errors("mget"):
            raws = await client.mget([self.redis_key(k) for k in keys])
        records = []
        for raw in raws:
            document = decode_document(raw)
            if document is None:
                records.append(None)
            else:
                records.append(StoreRecord(bins=self._select(document[1], bins), generation=document[0]))
        return records

    async def put(self, key: StoreKey, bins: Dict[str, Any]) -> None:
        def mutate(generation, stored):
            stored = stored if stored is not None else {}
            stored.update(bins)
            return stored, None
        await self._transact(key, mutate)

    async def delete(self, key: StoreKey, expected_generation: Optional[int] = None) -> bool:
        def mutate(generation, stored):
            if stored is None:
                # Nothing to delete; re-writing nothing would create the key
                raise _Absent()
            if expected_generation is not None and generation != expected_generation:
                raise GenerationError(key, expected_generation, generation)
            return None, True
        try:
            return await self._transact(key, mutate)
        except _Absent:
            return False

    async def map_operate(self, key: StoreKey, writes: List[MapWrite]) -> Dict[str, int]:
        def mutate(generation, stored):
            stored = stored if stored is not None else {}
            sizes = {}
            for write in writes:
                target = stored.get(write.bin_name)
                if not isinstance(target, dict):
                    target = {}
                    stored[write.bin_name] = target
                for map_key, value in write.items.items():
                    if write.mode is MapWriteMode.CREATE_ONLY and map_key in target:
                        continue
                    target[map_key] = value
                sizes[write.bin_name] = len(target)
            return stored, sizes
        return await self._transact(key, mutate)

    async def map_size(self, key: StoreKey, bin_name: str) -> Optional[int]:
        document = await self._read(key)
        if document is None or not isinstance(document[1].get(bin_name), dict):
            return None
        return len(document[1][bin_name])

    async def map_keys(self, key: StoreKey, bin_name: str, low: Any = None, high: Any = None) -> Optional[List[Any]]:
        document = await self._read(key)
        if document is None or not isinstance(document[1].get(bin_name), dict):
            return None
        return [k for k in sorted(document[1][bin_name])
                if (low is None or k >= low) and (high is None or k < high)]

    async def map_key_by_index(self, key: StoreKey, bin_name: str, index: int) -> Optional[Any]:
        keys = await self.map_keys(key, bin_name)
        if not keys:
            return None
        try:
            return keys[index]
        except IndexError:
            return None

    async def touch(self, key: StoreKey) -> bool:
        def mutate(generation, stored):
            if stored is None:
                raise _Absent()
            return stored, True
        try:
            return await self._transact(key, mutate)
        except _Absent:
            return False


class _Absent(Exception):
    """Aborts a transaction on a missing record."""
    pass
