"""
Audit Recorder
Stamps and appends one audit entry per mutation, and commits entity writes
together with their audit entry.

Every entity write is preceded by its own audit entry. If the audit append
fails the entity is never touched and the mutation is not committed. If the
entity write fails after its entry was appended, the caller gets a
StorageError naming that entry: the log then holds an attempted change that
never landed, but no stored entity is ever left without its audit entry.
"""

import logging
from typing import Any, Callable, Dict, Optional, Union

from .audit_store import AuditStore
from .errors import ConflictError, PCIError, StorageError, ValidationError
from .kv_store import KVStore
from .models import AuditAction, AuditLogEntry, EntityType, new_id, utc_now

logger = logging.getLogger(__name__)


def require_user(user_id: Optional[str]) -> str:
    """Acting identity is resolved upstream; here it only has to be present."""
    if not isinstance(user_id, str) or not user_id.strip():
        raise ValidationError("Acting user id is required", target="user_id")
    return user_id


class AuditRecorder:

    def __init__(self, store: KVStore, clock: Callable = utc_now):
        self.store = store
        self.audit_store = AuditStore(store)
        self.clock = clock

    def record(
        self,
        user_id: str,
        action: Union[AuditAction, str],
        entity_type: Union[EntityType, str],
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """
        Append an audit entry.

        Args:
            user_id: Acting user (non-empty)
            action: create | update | delete | review | approve | reject | flag | comment
            entity_type: task | settings | comment | flag
            entity_id: ID of the affected entity
            changes: Structured diff ({"before": ..., "after": ...}) or snapshot
            metadata: Optional extra context (notes, reasons, source)

        Returns:
            The stored AuditLogEntry

        Raises:
            ValidationError: missing identity or unknown action/entity type
            StorageError: the store write failed
        """
        require_user(user_id)
        try:
            action = AuditAction(action)
            entity_type = EntityType(entity_type)
        except ValueError as e:
            raise ValidationError(str(e), target="action") from e
        if not entity_id:
            raise ValidationError("entity_id is required", target="entity_id")

        entry = AuditLogEntry(
            id=new_id(),
            user_id=user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            changes=changes or {},
            metadata=metadata,
            timestamp=self.clock(),
            sequence=self.store.next_sequence(),
        )

        try:
            self.audit_store.append(entry)
        except (StorageError, ConflictError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to write audit log for {entity_type.value} {entity_id}", details=str(e)) from e

        logger.info(f"Audit {action.value} {entity_type.value}:{entity_id} by {user_id} ({entry.id})")
        return entry

    def commit(
        self,
        key: str,
        after: Dict[str, Any],
        user_id: str,
        action: Union[AuditAction, str],
        entity_type: Union[EntityType, str],
        entity_id: str,
        changes: Optional[Dict[str, Any]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        append_only: bool = False,
    ) -> AuditLogEntry:
        """
        Write an audit entry, then the entity record it describes.

        Callers serialize writers to the same key with `store.lock_for(key)`.

        Args:
            key: Store key of the entity
            after: New value to store
            append_only: Use `add` (never overwrite) for append-only records
            Remaining arguments are passed to record()

        Returns:
            The AuditLogEntry for the mutation

        Raises:
            ConflictError: append_only and the key already exists
            StorageError: the audit or entity write failed
        """
        require_user(user_id)
        if append_only and self.store.get(key) is not None:
            raise ConflictError(f"Key already exists: {key}", target=key)

        entry = self.record(user_id, action, entity_type, entity_id, changes, metadata)

        try:
            if append_only:
                self.store.add(key, after)
            else:
                self.store.set(key, after)
        except Exception as e:
            logger.error(f"Write of {key} failed after audit entry {entry.id}: {e}")
            if isinstance(e, PCIError) and not isinstance(e, StorageError):
                raise
            raise StorageError(
                f"Failed to write {key}",
                target=key,
                details={"auditId": entry.id, "error": str(e)},
            ) from e
        return entry
