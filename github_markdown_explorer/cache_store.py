"""Two-tier persistent cache with TTL expiry and conditional-request metadata.

Small records live in SQLite rows (fast tier), large ones in JSON files
(bulk tier). A metadata index in the same SQLite file tracks size, TTL,
tier and ETag/Last-Modified for every key regardless of where its data
lives. Any storage failure degrades to a miss or a no-op.
"""

import hashlib
import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, Protocol

from . import db
from .models import CacheRecord, ReadingHistoryEntry

logger = logging.getLogger(__name__)

FAST_TIER_MAX_BYTES = 100 * 1024
DEFAULT_TTL_SECONDS = 6 * 60 * 60
HISTORY_LIMIT = 50

_STORAGE_ERRORS = (sqlite3.Error, OSError, ValueError, TypeError, KeyError, AttributeError)


class StorageTier(Protocol):
    name: str

    def read(self, key: str) -> str | None: ...

    def write(self, key: str, serialized: str) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_matching(self, pattern: str) -> int: ...

    def count(self) -> int: ...


class FastTier:
    """Records stored as rows in the SQLite cache database."""

    name = "fast"

    def __init__(self, db_path: Path):
        self.db_path = db_path

    def read(self, key: str) -> str | None:
        return db.get_entry(self.db_path, key)

    def write(self, key: str, serialized: str) -> None:
        db.put_entry(self.db_path, key, serialized)

    def delete(self, key: str) -> None:
        db.delete_entry(self.db_path, key)

    def delete_matching(self, pattern: str) -> int:
        return db.delete_entries_matching(self.db_path, pattern)

    def count(self) -> int:
        return db.count_entries(self.db_path)


class BulkTier:
    """One JSON file per record, named by a digest of the key."""

    name = "bulk"

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode()).hexdigest()[:32]
        return self.cache_dir / f"{digest}.json"

    def read(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        with open(path, encoding="utf-8") as f:
            wrapper = json.load(f)
        if wrapper.get("key") != key:
            return None
        return wrapper["record"]

    def write(self, key: str, serialized: str) -> None:
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        with open(self._path(key), "w", encoding="utf-8") as f:
            json.dump({"key": key, "record": serialized}, f)

    def delete(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def delete_matching(self, pattern: str) -> int:
        if not self.cache_dir.exists():
            return 0
        removed = 0
        for path in self.cache_dir.glob("*.json"):
            try:
                with open(path, encoding="utf-8") as f:
                    key = json.load(f).get("key", "")
            except (json.JSONDecodeError, OSError, UnicodeDecodeError, AttributeError):
                key = ""
            if pattern in key:
                path.unlink(missing_ok=True)
                removed += 1
        return removed

    def count(self) -> int:
        if not self.cache_dir.exists():
            return 0
        return sum(1 for _ in self.cache_dir.glob("*.json"))


class CacheStore:
    """Persistent key/value cache used by the API client.

    Methods are synchronous and block the event loop for the duration of a
    local SQLite query or small file read; the client calls them directly
    from its coroutines.
    """

    def __init__(
        self,
        cache_dir: Path,
        default_ttl_seconds: int = DEFAULT_TTL_SECONDS,
        clock=time.time,
    ):
        self.cache_dir = Path(cache_dir)
        self.db_path = self.cache_dir / "cache.db"
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self.fast = FastTier(self.db_path)
        self.bulk = BulkTier(self.cache_dir / "bulk")
        self._tiers: dict[str, StorageTier] = {self.fast.name: self.fast, self.bulk.name: self.bulk}
        self.available = True
        try:
            db.init_db(self.db_path)
        except _STORAGE_ERRORS as e:
            logger.warning("Cache unavailable at %s: %s", self.cache_dir, e)
            self.available = False

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def select_tier(self, size_bytes: int) -> StorageTier:
        return self.fast if size_bytes < FAST_TIER_MAX_BYTES else self.bulk

    def get(self, key: str) -> Any | None:
        """Return cached data, or None when absent or expired.

        Expired entries are evicted on this access.
        """
        if not self.available:
            return None
        try:
            metadata = db.get_metadata(self.db_path, key)
            if metadata is None:
                return None
            if self._now_ms() > metadata["stored_at_ms"] + metadata["ttl_ms"]:
                self._evict(key)
                return None
            serialized = self._tiers[metadata["tier"]].read(key)
            if serialized is None:
                return None
            record = CacheRecord.from_dict(json.loads(serialized))
            if record.is_expired(self._now_ms()):
                self._evict(key)
                return None
            return record.data
        except _STORAGE_ERRORS as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return None

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float | None = None,
        etag: str | None = None,
        last_modified: str | None = None,
    ) -> None:
        """Store ``value`` under ``key``; the tier is chosen by serialized size.

        Validators passed here replace any stored for the key.
        """
        if not self.available:
            return
        ttl_ms = int((ttl_seconds if ttl_seconds is not None else self.default_ttl_seconds) * 1000)
        record = CacheRecord(
            data=value,
            stored_at_ms=self._now_ms(),
            ttl_ms=ttl_ms,
            etag=etag or None,
            last_modified=last_modified or None,
        )
        try:
            serialized = json.dumps(record.to_dict())
            size_bytes = len(serialized.encode("utf-8"))
            tier = self.select_tier(size_bytes)
            tier.write(key, serialized)
            for other in self._tiers.values():
                if other is not tier:
                    other.delete(key)
            db.put_metadata(
                self.db_path,
                {
                    "key": key,
                    "stored_at_ms": record.stored_at_ms,
                    "ttl_ms": ttl_ms,
                    "size_bytes": size_bytes,
                    "tier": tier.name,
                    "etag": record.etag,
                    "last_modified": record.last_modified,
                },
            )
        except _STORAGE_ERRORS as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def invalidate(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern`` from both tiers."""
        if not self.available:
            return 0
        try:
            keys = db.delete_metadata_matching(self.db_path, pattern)
            self.fast.delete_matching(pattern)
            self.bulk.delete_matching(pattern)
        except _STORAGE_ERRORS as e:
            logger.warning("Cache invalidate failed for %r: %s", pattern, e)
            return 0
        logger.debug("Invalidated %d cache entries matching %r", len(keys), pattern)
        return len(keys)

    def get_conditional_headers(self, key: str) -> dict[str, str]:
        if not self.available:
            return {}
        try:
            metadata = db.get_metadata(self.db_path, key)
        except _STORAGE_ERRORS as e:
            logger.warning("Cache metadata read failed for %s: %s", key, e)
            return {}
        headers = {}
        if metadata and metadata.get("etag"):
            headers["If-None-Match"] = metadata["etag"]
        if metadata and metadata.get("last_modified"):
            headers["If-Modified-Since"] = metadata["last_modified"]
        return headers

    def update_conditional_metadata(
        self, key: str, etag: str | None = None, last_modified: str | None = None
    ) -> None:
        if not self.available or not (etag or last_modified):
            return
        try:
            db.update_validators(self.db_path, key, etag, last_modified)
        except _STORAGE_ERRORS as e:
            logger.warning("Cache metadata write failed for %s: %s", key, e)

    def get_reading_history(self) -> list[ReadingHistoryEntry]:
        """Reading history, most recent first."""
        if not self.available:
            return []
        try:
            rows = db.get_history(self.db_path, HISTORY_LIMIT)
        except _STORAGE_ERRORS as e:
            logger.warning("Reading history unavailable: %s", e)
            return []
        return [ReadingHistoryEntry(**row) for row in rows]

    def add_to_history(self, entry: ReadingHistoryEntry) -> None:
        """Insert at the front, replacing any entry for the same (owner, repo, path)."""
        if not self.available:
            return
        try:
            db.push_history(
                self.db_path,
                {
                    "owner": entry.owner,
                    "repo": entry.repo,
                    "path": entry.path,
                    "ref": entry.ref,
                    "title": entry.title,
                    "timestamp_ms": entry.timestamp_ms,
                },
                HISTORY_LIMIT,
            )
        except _STORAGE_ERRORS as e:
            logger.warning("Failed to add to history: %s", e)

    def stats(self) -> dict[str, int]:
        if not self.available:
            return {"fast": 0, "bulk": 0, "total": 0}
        try:
            fast, bulk = self.fast.count(), self.bulk.count()
        except _STORAGE_ERRORS as e:
            logger.warning("Cache stats unavailable: %s", e)
            return {"fast": 0, "bulk": 0, "total": 0}
        return {"fast": fast, "bulk": bulk, "total": fast + bulk}

    def _evict(self, key: str) -> None:
        db.delete_metadata(self.db_path, key)
        for tier in self._tiers.values():
            tier.delete(key)
