"""
Audit Store
Append-only persistence for audit log entries.

Entries are written once under audit:{userId}:{auditId} and never updated
or deleted.
"""

import logging
from typing import List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import StorageError
from .kv_store import KVStore, audit_key
from .models import AuditLogEntry, EntityType

logger = logging.getLogger(__name__)


class AuditStore:

    def __init__(self, store: KVStore):
        self.store = store

    def append(self, entry: AuditLogEntry) -> None:
        """Write a new entry. Raises ConflictError if the id is already taken."""
        self.store.add(audit_key(entry.user_id, entry.id), entry.to_dict())

    def get(self, user_id: str, audit_id: str) -> Optional[AuditLogEntry]:
        raw = self.store.get(audit_key(user_id, audit_id))
        return self._parse(raw) if raw is not None else None

    def list_by_user(self, user_id: str) -> List[AuditLogEntry]:
        """All entries for an account, oldest first (timestamp, then insertion order)."""
        entries = [self._parse(raw) for raw in self.store.list_by_prefix(audit_key(user_id, ""))]
        return sorted(entries, key=lambda e: e.sort_key)

    def list_by_entity(
        self,
        user_id: str,
        entity_type: Union[EntityType, str],
        entity_id: str,
    ) -> List[AuditLogEntry]:
        entity_type = EntityType(entity_type)
        return [
            e for e in self.list_by_user(user_id)
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]

    def _parse(self, raw) -> AuditLogEntry:
        try:
            return AuditLogEntry.model_validate(raw)
        except PydanticValidationError as e:
            logger.error(f"Corrupt audit record {raw.get('id') if isinstance(raw, dict) else raw!r}")
            raise StorageError("Corrupt audit record in store", details=str(e)) from e
