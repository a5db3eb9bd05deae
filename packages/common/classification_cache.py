"""
Classification Cache - content-addressed reuse of reasoning-service results

Keyed by sha256(vendor fingerprint || rounded amount || kind), NOT by
transaction id, so identical-looking transactions across owners and tax
years share one entry:

- First time seeing a key → reasoning-service call → cache the result
- Next time (any owner) → cache hit → free & instant

Entries never expire; they are derived facts, not user data, so a race
between two writers is resolved last-writer-wins.

Two backends behind one interface:
- InMemoryClassificationCache: process-local dict (tests, USE_MOCK_DATA)
- SqlClassificationCache: classification_cache table, shared by API and worker
"""
import asyncio
import hashlib
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from packages.common.database import DatabaseSessionManager
from packages.common.models import ClassificationCacheRecord
from packages.domain.categorization.schemas import CategorizationSource, ClassificationResult

logger = structlog.get_logger()


def rounded_amount(amount: Decimal) -> int:
    """Absolute amount rounded half-up to whole dollars"""
    return int(abs(Decimal(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cache_key(vendor_normalized: Optional[str], amount: Decimal, kind: str) -> str:
    """Deterministic lookup hash for a transaction's classification inputs"""
    key = f"{vendor_normalized or ''}||{rounded_amount(amount)}||{kind}"
    return hashlib.sha256(key.encode()).hexdigest()


class ClassificationCache(ABC):
    """Concurrent-safe fingerprint → ClassificationResult store"""

    def __init__(self):
        self.hits = 0
        self.misses = 0

    @abstractmethod
    async def get(self, lookup_hash: str) -> Optional[ClassificationResult]:
        ...

    @abstractmethod
    async def put(
        self,
        lookup_hash: str,
        vendor_normalized: Optional[str],
        kind: str,
        result: ClassificationResult,
    ) -> None:
        ...

    @abstractmethod
    async def size(self) -> int:
        ...

    def _record_lookup(self, lookup_hash: str, found: bool):
        if found:
            self.hits += 1
            logger.debug("cache_hit", lookup_hash=lookup_hash[:12])
        else:
            self.misses += 1
            logger.debug("cache_miss", lookup_hash=lookup_hash[:12])

    async def get_cache_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics for monitoring.

        Returns:
            Dictionary with entry count, hit/miss counters and hit rate
        """
        lookups = self.hits + self.misses
        hit_rate = (self.hits / lookups) * 100 if lookups else 0
        stats = {
            "entries": await self.size(),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate_pct": round(hit_rate, 2),
        }
        logger.info("cache_stats_retrieved", **stats)
        return stats


class InMemoryClassificationCache(ClassificationCache):
    """Process-local cache; one lock makes read/insert safe across tasks"""

    def __init__(self):
        super().__init__()
        self._entries: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, lookup_hash: str) -> Optional[ClassificationResult]:
        async with self._lock:
            entry = self._entries.get(lookup_hash)
            if entry:
                entry["times_seen"] += 1
                entry["last_seen"] = datetime.utcnow()
        self._record_lookup(lookup_hash, entry is not None)
        if entry is None:
            return None
        return entry["result"].model_copy(update={"source": CategorizationSource.CACHE})

    async def put(self, lookup_hash, vendor_normalized, kind, result):
        async with self._lock:
            existing = self._entries.get(lookup_hash)
            self._entries[lookup_hash] = {
                "vendor_normalized": vendor_normalized,
                "kind": kind,
                "result": result,
                "times_seen": existing["times_seen"] if existing else 1,
                "last_seen": datetime.utcnow(),
            }
        logger.info("cache_created" if existing is None else "cache_updated",
                    vendor=vendor_normalized,
                    kind=kind,
                    category=result.category)

    async def size(self) -> int:
        return len(self._entries)


class SqlClassificationCache(ClassificationCache):
    """
    Cache backed by the classification_cache table.

    Each call opens its own short session so the cache can be shared by
    concurrent classification tasks.
    """

    def __init__(self, sessions: DatabaseSessionManager):
        super().__init__()
        self._sessions = sessions

    async def get(self, lookup_hash: str) -> Optional[ClassificationResult]:
        async with self._sessions.session() as db:
            row = await db.get(ClassificationCacheRecord, lookup_hash)
            if row is not None:
                row.times_seen = (row.times_seen or 0) + 1
                row.last_seen = datetime.utcnow()
                payload = dict(row.result)
            else:
                payload = None

        self._record_lookup(lookup_hash, payload is not None)
        if payload is None:
            return None
        payload["source"] = CategorizationSource.CACHE.value
        return ClassificationResult.model_validate(payload)

    async def put(self, lookup_hash, vendor_normalized, kind, result):
        payload = result.model_dump(mode="json")
        now = datetime.utcnow()
        try:
            async with self._sessions.session() as db:
                row = await db.get(ClassificationCacheRecord, lookup_hash)
                if row is None:
                    db.add(ClassificationCacheRecord(
                        lookup_hash=lookup_hash,
                        vendor_normalized=vendor_normalized or "",
                        kind=kind,
                        result=payload,
                        times_seen=1,
                        created_at=now,
                        last_seen=now,
                    ))
                    event = "cache_created"
                else:
                    row.result = payload
                    row.last_seen = now
                    event = "cache_updated"
        except IntegrityError:
            # Another writer inserted the same key first; overwrite it
            async with self._sessions.session() as db:
                row = await db.get(ClassificationCacheRecord, lookup_hash)
                if row is not None:
                    row.result = payload
                    row.last_seen = now
            event = "cache_updated"

        logger.info(event,
                    vendor=vendor_normalized,
                    kind=kind,
                    category=result.category)

    async def size(self) -> int:
        async with self._sessions.session() as db:
            result = await db.execute(select(func.count()).select_from(ClassificationCacheRecord))
            return int(result.scalar_one())
