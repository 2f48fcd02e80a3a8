"""
Database layer for Redis operations with in-memory fallback for development.
Handles paste insert-if-absent, reads, view counting, deletion and expiry sweeps.
"""
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import ValidationError
from redis import Redis
from redis.exceptions import ConnectionError, WatchError

from pastebox.config import settings
from pastebox.codec import encode_metadata, decode_metadata
from pastebox.errors import MetadataDecodeError, StoreUnavailable
from pastebox.models import Counters, PasteRecord, SystemInfo, UploaderInfo

logger = logging.getLogger(__name__)

PASTE_PREFIX = "paste:"
EXPIRY_INDEX = "pastes:expiry"


def _to_bytes(value: Any) -> bytes:
    """Mirror how Redis stores field values."""
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8")
    return str(value).encode("utf-8")


class InMemoryStore:
    """Simple in-memory store for development/testing (when Redis unavailable)."""

    def __init__(self):
        self.store: Dict[str, Dict[bytes, bytes]] = {}
        self.ttl_timestamps: Dict[str, float] = {}
        self.sorted_sets: Dict[str, Dict[bytes, float]] = {}
        # Re-entrant so a pipeline can run queued commands while holding it
        self._lock = threading.RLock()

    def _expire_if_due(self, key: str):
        if key in self.ttl_timestamps:
            now = datetime.now(timezone.utc).timestamp() * 1000
            if now > self.ttl_timestamps[key]:
                self.store.pop(key, None)
                del self.ttl_timestamps[key]

    def _snapshot(self, key: str) -> Optional[Dict[bytes, bytes]]:
        with self._lock:
            self._expire_if_due(key)
            entry = self.store.get(key)
            return dict(entry) if entry is not None else None

    def pipeline(self, transaction: bool = True) -> "InMemoryPipeline":
        """Start a MULTI/EXEC-style batch."""
        return InMemoryPipeline(self)

    def hset(self, key: str, field: Optional[str] = None, value: Any = None, mapping: Optional[Dict[str, Any]] = None):
        """Store hash fields."""
        items = dict(mapping or {})
        if field is not None:
            items[field] = value
        with self._lock:
            entry = self.store.setdefault(key, {})
            for name, item in items.items():
                entry[_to_bytes(name)] = _to_bytes(item)
        return len(items)

    def hexists(self, key: str, field: str) -> bool:
        """Check whether a hash field exists."""
        return _to_bytes(field) in self.hgetall(key)

    def hget(self, key: str, field: str) -> Optional[bytes]:
        """Retrieve a single hash field."""
        return self.hgetall(key).get(_to_bytes(field))

    def hgetall(self, key: str) -> Dict[bytes, bytes]:
        """Retrieve hash data."""
        return self._snapshot(key) or {}

    def expire(self, key: str, seconds: int):
        """Set expiry time in seconds."""
        expire_time = (datetime.now(timezone.utc).timestamp() + seconds) * 1000
        with self._lock:
            self.ttl_timestamps[key] = expire_time

    def delete(self, *keys: str) -> int:
        """Delete keys."""
        removed = 0
        with self._lock:
            for key in keys:
                if self.store.pop(key, None) is not None or self.sorted_sets.pop(key, None) is not None:
                    removed += 1
                self.ttl_timestamps.pop(key, None)
        return removed

    def zadd(self, key: str, mapping: Dict[str, float]):
        """Add members to a sorted set."""
        with self._lock:
            members = self.sorted_sets.setdefault(key, {})
            for member, score in mapping.items():
                members[_to_bytes(member)] = float(score)
        return len(mapping)

    def zrem(self, key: str, *members: Any) -> int:
        """Remove members from a sorted set."""
        with self._lock:
            entries = self.sorted_sets.get(key, {})
            return sum(1 for member in members if entries.pop(_to_bytes(member), None) is not None)

    def zrangebyscore(self, key: str, min: Any, max: Any) -> List[bytes]:
        """Members within [min, max], lowest score first. A "(" prefix makes a bound exclusive."""

        def bound(value: Any):
            text = str(value)
            if text.startswith("("):
                return float(text[1:]), True
            return float(text), False

        (low, low_open), (high, high_open) = bound(min), bound(max)
        with self._lock:
            entries = sorted(self.sorted_sets.get(key, {}).items(), key=lambda kv: kv[1])
        return [
            member
            for member, score in entries
            if (score > low if low_open else score >= low) and (score < high if high_open else score <= high)
        ]

    def ping(self):
        """Health check."""
        return True


class InMemoryPipeline:
    """
    MULTI/EXEC with optional WATCH over an InMemoryStore.

    After watch() commands run immediately; after multi() (or with no watch)
    they are queued and applied together by execute(), which raises
    WatchError if a watched key changed in between.
    """

    def __init__(self, store: InMemoryStore):
        self.store = store
        self._watched: Dict[str, Optional[Dict[bytes, bytes]]] = {}
        self._queue: List[tuple] = []
        self._immediate = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.reset()

    def reset(self):
        self._watched = {}
        self._queue = []
        self._immediate = False

    def watch(self, *keys: str):
        for key in keys:
            self._watched[key] = self.store._snapshot(key)
        self._immediate = True

    def multi(self):
        self._immediate = False

    def _command(self, name: str, *args: Any, **kwargs: Any):
        if self._immediate:
            return getattr(self.store, name)(*args, **kwargs)
        self._queue.append((name, args, kwargs))
        return self

    def hexists(self, key: str, field: str):
        return self._command("hexists", key, field)

    def hset(self, key: str, field: Optional[str] = None, value: Any = None, mapping: Optional[Dict[str, Any]] = None):
        return self._command("hset", key, field, value, mapping=mapping)

    def expire(self, key: str, seconds: int):
        return self._command("expire", key, seconds)

    def delete(self, *keys: str):
        return self._command("delete", *keys)

    def zadd(self, key: str, mapping: Dict[str, float]):
        return self._command("zadd", key, mapping)

    def zrem(self, key: str, *members: Any):
        return self._command("zrem", key, *members)

    def execute(self) -> List[Any]:
        with self.store._lock:
            try:
                for key, snapshot in self._watched.items():
                    if self.store._snapshot(key) != snapshot:
                        raise WatchError("Watched variable changed.")
                return [getattr(self.store, name)(*args, **kwargs) for name, args, kwargs in self._queue]
            finally:
                self.reset()


class PasteDatabase:
    """Wrapper for Redis operations on pastes."""

    def __init__(self):
        """Initialize Redis connection, fallback to in-memory store."""
        self.using_fallback = False
        try:
            logger.info(f"Attempting to connect to Redis: {settings.REDIS_URL[:30]}...")
            # Content is binary, so responses stay as bytes
            self.redis = Redis.from_url(
                settings.REDIS_URL,
                decode_responses=False
            )
            # Test connection
            self.redis.ping()
            logger.info("✓ Redis connected successfully")
        except ConnectionError as e:
            logger.error(f"❌ ConnectionError connecting to Redis: {type(e).__name__}: {str(e)}")
            logger.warning("Using in-memory fallback for development. Data will NOT persist across restarts.")
            self.redis = InMemoryStore()
            self.using_fallback = True
        except Exception as e:
            logger.error(f"❌ Unexpected error connecting to Redis: {type(e).__name__}: {str(e)}")
            logger.warning("Using in-memory fallback for development. Data will NOT persist across restarts.")
            self.redis = InMemoryStore()
            self.using_fallback = True

    @staticmethod
    def _key(paste_id: str) -> str:
        return f"{PASTE_PREFIX}{paste_id}"

    def is_healthy(self) -> bool:
        """Check if database connection is alive."""
        try:
            self.redis.ping()
            return True
        except Exception as e:
            logger.error(f"Health check failed: {e}")
        return False

    def save_paste(
        self,
        paste_id: str,
        content: bytes,
        uploader: UploaderInfo,
        counters: Counters,
        system: SystemInfo,
        created_at: int,
        expires_at: int,
    ) -> bool:
        """
        Insert a paste unless its id is already taken.

        Args:
            paste_id: Unique paste identifier
            content: Raw content bytes
            uploader: Uploader metadata
            counters: Initial counters
            system: System metadata (mime, delete token, dimensions)
            created_at: Creation time (Unix seconds)
            expires_at: Expiry time (Unix seconds)

        Returns:
            True if inserted, False if the id already exists

        Raises:
            StoreUnavailable: If the store operation fails
        """
        key = self._key(paste_id)
        try:
            # WATCH the key so a concurrent claim aborts EXEC; the hash and
            # its expiry index entry are written together or not at all
            with self.redis.pipeline() as pipe:
                pipe.watch(key)
                if pipe.hexists(key, "id"):
                    logger.warning(f"Paste {paste_id} already exists")
                    return False
                pipe.multi()
                pipe.hset(key, mapping={
                    "id": paste_id,
                    "content": content,
                    "uploader_info": encode_metadata(uploader),
                    "counters": encode_metadata(counters),
                    "system_info": encode_metadata(system),
                    "created_at": created_at,
                    "expires_at": expires_at,
                })
                pipe.zadd(EXPIRY_INDEX, {paste_id: expires_at})
                pipe.execute()
        except WatchError:
            logger.warning(f"Paste {paste_id} was claimed concurrently")
            return False
        except Exception as e:
            logger.error(f"Error saving paste {paste_id}: {e}")
            raise StoreUnavailable() from e

        logger.info(f"Paste {paste_id} saved successfully")
        return True

    def get_paste(self, paste_id: str) -> Optional[PasteRecord]:
        """
        Fetch a paste from database.

        Args:
            paste_id: Unique paste identifier

        Returns:
            PasteRecord or None if not found (expiry is decided by the caller)

        Raises:
            StoreUnavailable: If the store operation fails
            MetadataDecodeError: If a stored envelope is malformed
        """
        try:
            data = self.redis.hgetall(self._key(paste_id))
        except Exception as e:
            logger.error(f"Error fetching paste {paste_id}: {e}")
            raise StoreUnavailable() from e

        # A hash without system_info is a stray view write on a deleted paste
        if not data or b"system_info" not in data:
            logger.info(f"Paste {paste_id} not found")
            return None

        last_access = data.get(b"last_access_at")
        try:
            return PasteRecord(
                id=paste_id,
                content=data.get(b"content", b""),
                uploader=decode_metadata(UploaderInfo, data.get(b"uploader_info")),
                counters=decode_metadata(Counters, data.get(b"counters")),
                system=decode_metadata(SystemInfo, data.get(b"system_info")),
                created_at=int(data.get(b"created_at", 0)),
                expires_at=int(data.get(b"expires_at", 0)),
                last_access_at=int(last_access) if last_access else None,
            )
        except (ValueError, TypeError, ValidationError) as e:
            logger.error(f"Paste {paste_id} has unreadable fields: {e}")
            raise MetadataDecodeError() from e

    def get_system_info(self, paste_id: str) -> Optional[SystemInfo]:
        """Fetch only the system metadata of a paste, or None if unknown."""
        try:
            raw = self.redis.hget(self._key(paste_id), "system_info")
        except Exception as e:
            logger.error(f"Error fetching system info for {paste_id}: {e}")
            raise StoreUnavailable() from e

        if raw is None:
            return None
        return decode_metadata(SystemInfo, raw)

    def record_view(self, paste_id: str, now: int) -> bool:
        """
        Increment the view counter and stamp last access.

        Read-modify-write: concurrent readers may lose increments.

        Args:
            paste_id: Unique paste identifier
            now: Access time (Unix seconds)

        Returns:
            True if updated, False otherwise
        """
        try:
            key = self._key(paste_id)
            raw = self.redis.hget(key, "counters")
            if raw is None:
                logger.info(f"Paste {paste_id} vanished before its view was recorded")
                return False
            counters = decode_metadata(Counters, raw)
            counters.views += 1
            self.redis.hset(key, mapping={
                "counters": encode_metadata(counters),
                "last_access_at": now,
            })
            logger.info(f"View count incremented for paste {paste_id}")
            return True
        except Exception as e:
            logger.error(f"Error incrementing views for {paste_id}: {e}")
            return False

    def delete_paste(self, paste_id: str) -> bool:
        """
        Delete a paste from database.

        Args:
            paste_id: Unique paste identifier

        Returns:
            True if a record was removed

        Raises:
            StoreUnavailable: If the store operation fails
        """
        try:
            removed = self.redis.delete(self._key(paste_id))
            self.redis.zrem(EXPIRY_INDEX, paste_id)
        except Exception as e:
            logger.error(f"Error deleting paste {paste_id}: {e}")
            raise StoreUnavailable() from e

        logger.info(f"Paste {paste_id} deleted")
        return bool(removed)

    def delete_expired(self, now: int) -> int:
        """
        Remove every paste whose expiry has passed.

        Args:
            now: Current time (Unix seconds)

        Returns:
            Number of pastes removed (0 on failure)
        """
        try:
            # Scores are inclusive; expires_at == now is still live
            expired = self.redis.zrangebyscore(EXPIRY_INDEX, "-inf", f"({now}")
            if not expired:
                return 0
            ids = [member.decode("utf-8") for member in expired]
            self.redis.delete(*[self._key(paste_id) for paste_id in ids])
            self.redis.zrem(EXPIRY_INDEX, *ids)
            logger.info(f"Swept {len(ids)} expired pastes")
            return len(ids)
        except Exception as e:
            logger.error(f"Error sweeping expired pastes: {e}")
            return 0


# Global database instance
db = PasteDatabase()
