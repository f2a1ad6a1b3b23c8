"""
Cache-aside store for market snapshots and listing lookups.

Provides:
- CacheEntry: a payload with creation/expiry timestamps
- InMemoryCache: process-local store with TTL (tests, local runs)
- DatabaseCache: persistent store backed by the data_cache table

Both stores share one contract:
- get(key) returns None for missing AND expired entries (expiry is
  checked at read time, purging is optional)
- put(key, ...) is an idempotent upsert, last writer wins
- invalidate(key) removes an entry

A store failure never propagates: reads degrade to a miss and writes to a
no-op, and the failure is logged and counted.

Usage:
    cache = DatabaseCache(get_session_factory())
    await cache.put("market_90210", snapshot.model_dump(mode="json"), ttl_seconds=86400)
    entry = await cache.get("market_90210")
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from marketdata.core.api_errors import CacheUnavailable
from marketdata.core.models import CachedPayload

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class CacheEntry:
    """A single cache entry. payload None is the explicit "not found" marker."""
    key: str
    payload: Optional[Dict[str, Any]]
    created_at: datetime
    expires_at: datetime
    kind: str = "market"
    is_synthetic: bool = False

    @property
    def is_not_found(self) -> bool:
        return self.payload is None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if entry has expired."""
        return (now or utcnow()) >= self.expires_at

    def time_remaining(self, now: Optional[datetime] = None) -> float:
        """Seconds left before expiration."""
        return max(0.0, (self.expires_at - (now or utcnow())).total_seconds())


class BaseCache(ABC):
    """Common statistics and TTL handling for cache stores."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self._stats = {
            "hits": 0,
            "misses": 0,
            "sets": 0,
            "errors": 0,
            "evictions": 0,
        }

    def _expiry(self, ttl_seconds: float):
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        created_at = self.clock()
        return created_at, created_at + timedelta(seconds=ttl_seconds)

    @abstractmethod
    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key, or None if absent or expired."""
        pass

    @abstractmethod
    async def put(
        self,
        key: str,
        payload: Optional[Dict[str, Any]],
        ttl_seconds: float,
        kind: str = "market",
        is_synthetic: bool = False,
    ) -> bool:
        """Insert or replace the entry for key. Returns False if the write failed."""
        pass

    @abstractmethod
    async def invalidate(self, key: str) -> bool:
        """Remove key. Returns True if an entry was removed."""
        pass

    @abstractmethod
    async def purge_expired(self) -> int:
        """Physically remove expired entries and return how many were removed."""
        pass

    async def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        total_requests = self._stats["hits"] + self._stats["misses"]
        hit_rate = (
            self._stats["hits"] / total_requests
            if total_requests > 0 else 0
        )
        return {
            **self._stats,
            "hit_rate": f"{hit_rate:.2%}",
        }


class InMemoryCache(BaseCache):
    """
    Simple in-memory cache with TTL support.

    Safe for concurrent async callers. Does not survive the process.
    """

    def __init__(self, max_size: int = 1000, clock: Clock = utcnow):
        """
        Initialize the cache.

        Args:
            max_size: Maximum number of entries
            clock: Source of the current (naive UTC) time
        """
        super().__init__(clock=clock)
        self.max_size = max_size
        self._cache: Dict[str, CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._cache.get(key)

            if entry is None:
                self._stats["misses"] += 1
                return None

            if entry.is_expired(self.clock()):
                del self._cache[key]
                self._stats["misses"] += 1
                return None

            self._stats["hits"] += 1
            return entry

    async def put(
        self,
        key: str,
        payload: Optional[Dict[str, Any]],
        ttl_seconds: float,
        kind: str = "market",
        is_synthetic: bool = False,
    ) -> bool:
        created_at, expires_at = self._expiry(ttl_seconds)

        async with self._lock:
            # Evict oldest entry if at max size
            if len(self._cache) >= self.max_size and key not in self._cache:
                self._evict_oldest()

            self._cache[key] = CacheEntry(
                key=key,
                payload=payload,
                created_at=created_at,
                expires_at=expires_at,
                kind=kind,
                is_synthetic=is_synthetic,
            )
            self._stats["sets"] += 1
            return True

    async def invalidate(self, key: str) -> bool:
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def purge_expired(self) -> int:
        async with self._lock:
            now = self.clock()
            expired_keys = [
                key for key, entry in self._cache.items()
                if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._cache[key]

            if expired_keys:
                logger.debug(f"Cache cleanup: removed {len(expired_keys)} expired entries")
            return len(expired_keys)

    async def clear(self) -> int:
        """Clear all entries. Returns the number of entries cleared."""
        async with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    async def get_stats(self) -> Dict[str, Any]:
        stats = await super().get_stats()
        async with self._lock:
            stats["size"] = len(self._cache)
        stats["max_size"] = self.max_size
        return stats

    def _evict_oldest(self) -> None:
        """Evict the oldest entry from the cache."""
        if not self._cache:
            return

        oldest_key = min(
            self._cache.keys(),
            key=lambda k: self._cache[k].created_at
        )
        del self._cache[oldest_key]
        self._stats["evictions"] += 1


class DatabaseCache(BaseCache):
    """
    Persistent cache backed by the data_cache table.

    Writes use the dialect's native upsert so concurrent writers of the same
    key serialize in the database (last writer wins).
    """

    def __init__(self, session_factory, clock: Clock = utcnow):
        """
        Args:
            session_factory: Callable returning a SQLAlchemy Session
            clock: Source of the current (naive UTC) time
        """
        super().__init__(clock=clock)
        self.session_factory = session_factory

    @contextmanager
    def _session_scope(self, operation: str, key: str):
        """Session that commits on success and maps driver errors to CacheUnavailable."""
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise CacheUnavailable(str(e), operation=operation, key=key) from e
        finally:
            session.close()

    def _report(self, error: CacheUnavailable, fallback: str) -> None:
        self._stats["errors"] += 1
        logger.warning(f"{error}; {fallback}")

    async def get(self, key: str) -> Optional[CacheEntry]:
        now = self.clock()
        try:
            with self._session_scope("read", key) as session:
                row = (
                    session.query(CachedPayload)
                    .filter(
                        CachedPayload.cache_key == key,
                        CachedPayload.expires_at > now,
                    )
                    .first()
                )
                entry = None
                if row is not None:
                    entry = CacheEntry(
                        key=row.cache_key,
                        payload=row.payload,
                        created_at=row.cached_at,
                        expires_at=row.expires_at,
                        kind=row.kind,
                        is_synthetic=bool(row.is_synthetic),
                    )
        except CacheUnavailable as e:
            self._report(e, "treating as cache miss")
            self._stats["misses"] += 1
            return None

        if entry is None:
            self._stats["misses"] += 1
            return None

        self._stats["hits"] += 1
        return entry

    async def put(
        self,
        key: str,
        payload: Optional[Dict[str, Any]],
        ttl_seconds: float,
        kind: str = "market",
        is_synthetic: bool = False,
    ) -> bool:
        created_at, expires_at = self._expiry(ttl_seconds)
        values = {
            "cache_key": key,
            "kind": kind,
            "payload": payload,
            "is_synthetic": is_synthetic,
            "cached_at": created_at,
            "expires_at": expires_at,
        }

        try:
            with self._session_scope("write", key) as session:
                self._upsert(session, values)
        except CacheUnavailable as e:
            self._report(e, "response served without caching")
            return False

        self._stats["sets"] += 1
        logger.debug(f"Cached {key} ({ttl_seconds / 3600:.1f}h, synthetic={is_synthetic})")
        return True

    def _upsert(self, session, values: Dict[str, Any]) -> None:
        dialect = session.get_bind().dialect.name

        if dialect == "postgresql":
            stmt = pg_insert(CachedPayload.__table__).values(**values)
        elif dialect == "sqlite":
            stmt = sqlite_insert(CachedPayload.__table__).values(**values)
        else:
            session.merge(CachedPayload(**values))
            return

        update_dict = {col: stmt.excluded[col] for col in values if col != "cache_key"}
        stmt = stmt.on_conflict_do_update(
            index_elements=["cache_key"],
            set_=update_dict,
        )
        session.execute(stmt)

    async def invalidate(self, key: str) -> bool:
        try:
            with self._session_scope("delete", key) as session:
                deleted = (
                    session.query(CachedPayload)
                    .filter(CachedPayload.cache_key == key)
                    .delete(synchronize_session=False)
                )
        except CacheUnavailable as e:
            self._report(e, "entry left to expire")
            return False
        return deleted > 0

    async def purge_expired(self) -> int:
        now = self.clock()
        try:
            with self._session_scope("purge", "*") as session:
                deleted = (
                    session.query(CachedPayload)
                    .filter(CachedPayload.expires_at <= now)
                    .delete(synchronize_session=False)
                )
        except CacheUnavailable as e:
            self._report(e, "expired entries left in place")
            return 0

        if deleted:
            logger.info(f"Purged {deleted} expired cache entries")
        return deleted
