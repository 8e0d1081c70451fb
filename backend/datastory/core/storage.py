"""
Storage abstraction layer for datasets and their generated artifacts.

Records are plain JSON-compatible dicts grouped into collections
("datasets", "insights", "charts", "reports"). Backends:
- In-memory (development, tests)
- Redis (production)

Configure via the STORAGE_BACKEND environment variable.
"""
import json
import uuid
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from datastory.core.config import get_settings

logger = logging.getLogger(__name__)

DATASETS = "datasets"
INSIGHTS = "insights"
CHARTS = "charts"
REPORTS = "reports"


def new_id() -> str:
    return uuid.uuid4().hex


def _matches(record: Dict[str, Any], filters: Dict[str, Any]) -> bool:
    return all(record.get(k) == v for k, v in filters.items())


class RecordStore(ABC):
    """Abstract base class for record stores."""

    @abstractmethod
    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a record, assigning `id` and `created_at` when absent."""
        pass

    @abstractmethod
    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Get a record by id. Returns None if not found."""
        pass

    @abstractmethod
    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        """Records whose fields equal every filter, in insertion order."""
        pass

    @abstractmethod
    def delete(self, collection: str, record_id: str) -> bool:
        """Delete a record. Returns True if deleted."""
        pass

    def delete_where(self, collection: str, **filters: Any) -> int:
        """Delete every matching record. Returns the count removed."""
        removed = 0
        for record in self.find(collection, **filters):
            if self.delete(collection, record["id"]):
                removed += 1
        return removed

    @staticmethod
    def _prepare(record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = dict(record)
        prepared.setdefault("id", new_id())
        prepared.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        return prepared


class InMemoryRecordStore(RecordStore):
    """
    In-memory store for development.

    NOT suitable for production with multiple workers.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self._lock = threading.Lock()
        logger.info("Using in-memory storage backend (development only)")

    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = self._prepare(record)
        with self._lock:
            self._collections.setdefault(collection, {})[prepared["id"]] = prepared
        return dict(prepared)

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._collections.get(collection, {}).get(record_id)
        return dict(record) if record is not None else None

    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        with self._lock:
            records = list(self._collections.get(collection, {}).values())
        return [dict(r) for r in records if _matches(r, filters)]

    def delete(self, collection: str, record_id: str) -> bool:
        with self._lock:
            return self._collections.get(collection, {}).pop(record_id, None) is not None


class RedisRecordStore(RecordStore):
    """
    Redis store for production.

    Each record lives under "<collection>:<id>"; "<collection>:index" keeps
    insertion order. Requires the redis package and REDIS_URL.
    """

    def __init__(self, redis_url: str, prefix: str = "datastory"):
        try:
            import redis
            self._client = redis.from_url(redis_url, decode_responses=True)
            self._client.ping()  # Test connection
            logger.info("Connected to Redis storage backend")
        except ImportError:
            raise RuntimeError(
                "Redis storage requires 'redis' package. "
                "Install with: pip install redis"
            )
        except Exception as e:
            raise RuntimeError(f"Failed to connect to Redis: {e}")
        self._prefix = prefix

    def _key(self, collection: str, record_id: str) -> str:
        return f"{self._prefix}:{collection}:{record_id}"

    def _index(self, collection: str) -> str:
        return f"{self._prefix}:{collection}:index"

    def create(self, collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        prepared = self._prepare(record)
        pipe = self._client.pipeline()
        pipe.set(self._key(collection, prepared["id"]), json.dumps(prepared))
        pipe.rpush(self._index(collection), prepared["id"])
        pipe.execute()
        return prepared

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        data = self._client.get(self._key(collection, record_id))
        return json.loads(data) if data else None

    def find(self, collection: str, **filters: Any) -> List[Dict[str, Any]]:
        ids = self._client.lrange(self._index(collection), 0, -1)
        if not ids:
            return []
        raw = self._client.mget([self._key(collection, i) for i in ids])
        records = [json.loads(r) for r in raw if r]
        return [r for r in records if _matches(r, filters)]

    def delete(self, collection: str, record_id: str) -> bool:
        pipe = self._client.pipeline()
        pipe.delete(self._key(collection, record_id))
        pipe.lrem(self._index(collection), 0, record_id)
        deleted, _ = pipe.execute()
        return deleted > 0


# Store factory
_store_instance: Optional[RecordStore] = None


def get_store() -> RecordStore:
    """
    Get the configured record store (singleton).

    Configure via environment variables:
    - STORAGE_BACKEND: "memory" (default) or "redis"
    - REDIS_URL: Required if using redis backend
    """
    global _store_instance

    if _store_instance is None:
        settings = get_settings()
        if settings.storage_backend == "redis":
            if not settings.redis_url:
                raise RuntimeError(
                    "REDIS_URL environment variable required for redis storage"
                )
            _store_instance = RedisRecordStore(settings.redis_url)
        else:
            _store_instance = InMemoryRecordStore()

    return _store_instance


def reset_store():
    """Reset store instance (for testing)."""
    global _store_instance
    _store_instance = None
