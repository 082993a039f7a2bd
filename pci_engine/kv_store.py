"""
Key-Value Store
Storage contract required by the engine, plus in-memory and Supabase backends.

Keys are namespaced by record type and owning account:
    task:{userId}:{taskId}
    settings:{userId}
    audit:{userId}:{auditId}
    flag:{userId}:{flagId}
    comment:{userId}:{commentId}

`set` overwrites (mutable entities); `add` never does (append-only records).
"""

import copy
import itertools
import logging
import threading
import weakref
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from .config import PCIConfig
from .errors import ConflictError, StorageError

logger = logging.getLogger(__name__)


# ============================================================================
# Key helpers
# ============================================================================

def task_key(user_id: str, task_id: str) -> str:
    return f"task:{user_id}:{task_id}"


def settings_key(user_id: str) -> str:
    return f"settings:{user_id}"


def audit_key(user_id: str, audit_id: str) -> str:
    return f"audit:{user_id}:{audit_id}"


def flag_key(user_id: str, flag_id: str) -> str:
    return f"flag:{user_id}:{flag_id}"


def comment_key(user_id: str, comment_id: str) -> str:
    return f"comment:{user_id}:{comment_id}"


# ============================================================================
# Contract
# ============================================================================

class KeyLock:
    """Mutex guarding read-check-write on one store key."""

    def __init__(self):
        self._lock = threading.Lock()

    def __enter__(self):
        self._lock.acquire()
        return self

    def __exit__(self, exc_type, exc, tb):
        self._lock.release()


class KVStore(ABC):
    """
    Abstract key-value store. Values are JSON-compatible dicts.

    The store also owns the coordination state its writers share: one
    KeyLock per key and the audit sequence counter. Every service built over
    the same store instance therefore serializes on the same locks.
    """

    def __init__(self):
        # Locks drop out of the registry once no writer references them
        self._key_locks: "weakref.WeakValueDictionary[str, KeyLock]" = weakref.WeakValueDictionary()
        self._key_locks_guard = threading.Lock()
        self._sequence = itertools.count(1)
        self._sequence_guard = threading.Lock()

    def lock_for(self, key: str) -> KeyLock:
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = KeyLock()
                self._key_locks[key] = lock
            return lock

    def next_sequence(self) -> int:
        """
        Monotonic tie-breaker for audit entries written through this store.

        The counter is process-local; entries with equal timestamps written by
        different processes against one Supabase table fall back to id order.
        """
        with self._sequence_guard:
            return next(self._sequence)

    @abstractmethod
    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    @abstractmethod
    def set(self, key: str, value: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    def add(self, key: str, value: Dict[str, Any]) -> None:
        """Write a new key. Raises ConflictError if the key already exists."""
        raise NotImplementedError

    @abstractmethod
    def delete(self, key: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        """Values whose key starts with prefix, ordered by key."""
        raise NotImplementedError


class InMemoryKVStore(KVStore):
    """Process-local store. Copies on the way in and out so callers never share state."""

    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None):
        super().__init__()
        self._data: Dict[str, Dict[str, Any]] = copy.deepcopy(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            self._data[key] = copy.deepcopy(value)

    def add(self, key: str, value: Dict[str, Any]) -> None:
        with self._lock:
            if key in self._data:
                raise ConflictError(f"Key already exists: {key}", target=key)
            self._data[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                copy.deepcopy(self._data[k])
                for k in sorted(self._data)
                if k.startswith(prefix)
            ]

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._data)


class SupabaseKVStore(KVStore):
    """
    Store backed by a Supabase table with `key` (text, primary key) and
    `value` (jsonb) columns.
    """

    def __init__(self, supabase, table: str = "kv_store"):
        super().__init__()
        self.supabase = supabase
        self.table = table

    def _execute(self, operation: str, key: str, query):
        try:
            return query.execute()
        except Exception as e:
            logger.error(f"KV {operation} failed for {key}: {e}")
            raise StorageError(f"Storage {operation} failed for {key}", target=key, details=str(e)) from e

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        result = self._execute(
            "get", key,
            self.supabase.table(self.table).select("value").eq("key", key).limit(1),
        )
        rows = result.data or []
        return rows[0]["value"] if rows else None

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._execute("set", key, self.supabase.table(self.table).upsert({"key": key, "value": value}))

    def add(self, key: str, value: Dict[str, Any]) -> None:
        try:
            self.supabase.table(self.table).insert({"key": key, "value": value}).execute()
        except Exception as e:
            message = str(e)
            # Postgres unique_violation
            if "23505" in message or "duplicate key" in message.lower():
                raise ConflictError(f"Key already exists: {key}", target=key) from e
            logger.error(f"KV add failed for {key}: {e}")
            raise StorageError(f"Storage add failed for {key}", target=key, details=message) from e

    def delete(self, key: str) -> None:
        self._execute("delete", key, self.supabase.table(self.table).delete().eq("key", key))

    def list_by_prefix(self, prefix: str) -> List[Dict[str, Any]]:
        result = self._execute(
            "list", prefix,
            self.supabase.table(self.table).select("key, value").like("key", f"{prefix}%"),
        )
        rows = result.data or []
        # LIKE treats "_" in account ids as a wildcard; re-check the prefix exactly
        rows = [r for r in rows if r.get("key", "").startswith(prefix)]
        rows.sort(key=lambda r: r["key"])
        return [r["value"] for r in rows if r.get("value") is not None]


def create_store(config: PCIConfig) -> KVStore:
    """Build the configured storage backend."""
    if config.storage_backend == "supabase":
        from .supabase_client import get_supabase

        client = get_supabase(config)
        if client is None:
            raise StorageError("Supabase storage selected but SUPABASE_URL or key is missing")
        return SupabaseKVStore(client, table=config.kv_table)
    return InMemoryKVStore()
