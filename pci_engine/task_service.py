"""
PCI Engine - Task Service
=========================
Creates and mutates Task records. Every mutation is written together with
its audit entry; PCI units are always derived from the current factors.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from .audit_recorder import AuditRecorder, require_user
from .errors import ConflictError, NotFoundError, StorageError, ValidationError, from_pydantic
from .formula_engine import FACTOR_NAMES
from .kv_store import KeyLock, KVStore, task_key
from .models import AuditAction, EntityType, Task, utc_now

logger = logging.getLogger(__name__)

# Fields callers may edit directly; factors and review stamps have their own paths
EDITABLE_FIELDS = {
    "task_name", "reference_number", "hourly_rate", "vendor_rate", "actual_hours",
}

_FIELD_ALIASES = {
    "taskName": "task_name",
    "referenceNumber": "reference_number",
    "hourlyRate": "hourly_rate",
    "vendorRate": "vendor_rate",
    "actualHours": "actual_hours",
    "aiVerifiedUnits": "ai_verified_units",
}


def _diff(before: Dict[str, Any], after: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: {"from": before.get(k), "to": after.get(k)}
        for k in sorted(set(before) | set(after))
        if before.get(k) != after.get(k) and k != "updatedAt"
    }


def validate_factors(factors: Dict[str, Any]) -> Dict[str, float]:
    """Check factor names and coerce values to float."""
    clean = {}
    for name, value in (factors or {}).items():
        if name not in FACTOR_NAMES:
            raise ValidationError(
                f"Unknown factor '{name}'. Valid factors: {', '.join(FACTOR_NAMES)}",
                target=name,
            )
        if isinstance(value, bool) or value is None:
            raise ValidationError(f"Factor {name} must be a number", target=name)
        try:
            clean[name] = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Factor {name} must be a number, got {value!r}", target=name)
    return clean


class TaskService:
    """Task lifecycle: create, edit factors, accept AI results, soft delete."""

    def __init__(self, store: KVStore, recorder: Optional[AuditRecorder] = None):
        self.store = store
        self.recorder = recorder or AuditRecorder(store)

    def _lock_for(self, user_id: str, task_id: str) -> KeyLock:
        # Writers to the same task serialize across every service on this store
        return self.store.lock_for(task_key(user_id, task_id))

    # =========================================================================
    # Reads
    # =========================================================================

    def _load_raw(self, user_id: str, task_id: str) -> Dict[str, Any]:
        raw = self.store.get(task_key(user_id, task_id))
        if raw is None:
            raise NotFoundError(f"Task not found: {task_id}", target=task_id)
        return raw

    def _parse(self, raw: Dict[str, Any]) -> Task:
        try:
            return Task.model_validate(raw)
        except PydanticValidationError as e:
            raise StorageError(f"Stored task {raw.get('id')} is invalid", details=str(e)) from e

    def get_task(self, user_id: str, task_id: str, include_deleted: bool = False) -> Task:
        require_user(user_id)
        task = self._parse(self._load_raw(user_id, task_id))
        if task.is_deleted and not include_deleted:
            raise NotFoundError(f"Task not found: {task_id}", target=task_id)
        return task

    def list_tasks(self, user_id: str, include_deleted: bool = False) -> List[Task]:
        """All tasks for an account ordered by creation time."""
        require_user(user_id)
        tasks = []
        for raw in self.store.list_by_prefix(task_key(user_id, "")):
            if not isinstance(raw, dict) or not raw.get("id"):
                continue
            task = self._parse(raw)
            if task.is_deleted and not include_deleted:
                continue
            tasks.append(task)
        return sorted(tasks, key=lambda t: (t.created_at, t.id))

    # =========================================================================
    # Mutations
    # =========================================================================

    def create_task(
        self,
        user_id: str,
        task_name: str,
        factors: Optional[Dict[str, Any]] = None,
        **fields: Any,
    ) -> Task:
        """
        Create a task in pending status.

        Args:
            user_id: Acting user / owning account
            task_name: Display name
            factors: Optional factor overrides; unspecified factors use defaults
            **fields: Optional editable fields (hourly_rate, vendor_rate, ...)

        Returns:
            The stored Task
        """
        require_user(user_id)
        data: Dict[str, Any] = {"task_name": task_name, "user_id": user_id}
        data.update(validate_factors(factors or {}))
        for name, value in fields.items():
            name = _FIELD_ALIASES.get(name, name)
            if name not in EDITABLE_FIELDS | {"id", "ai_verified_units", "aas"}:
                raise ValidationError(f"Field '{name}' cannot be set on create", target=name)
            data[name] = value
        now = utc_now()
        data["created_at"] = now
        data["updated_at"] = now

        try:
            task = Task.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic(e, target="task") from e

        key = task_key(user_id, task.id)
        with self._lock_for(user_id, task.id):
            if self.store.get(key) is not None:
                raise ConflictError(f"Task id already in use: {task.id}", target="id")
            after = task.to_dict()
            self.recorder.commit(
                key, after,
                user_id=user_id,
                action=AuditAction.CREATE,
                entity_type=EntityType.TASK,
                entity_id=task.id,
                changes={"after": after},
            )
        logger.info(f"Created task {task.id} ({task.task_name}) pci={task.pci_units:.2f}")
        return task

    def apply_changes(
        self,
        user_id: str,
        task_id: str,
        changes: Dict[str, Any],
        action: AuditAction = AuditAction.UPDATE,
        metadata: Optional[Dict[str, Any]] = None,
        guard: Optional[Callable[[Task], None]] = None,
    ) -> Task:
        """
        Apply field changes to a task under its lock.

        `guard(current_task)` runs before anything is written and may raise
        to abort the change (used by the review state machine).
        """
        require_user(user_id)
        with self._lock_for(user_id, task_id):
            raw = self._load_raw(user_id, task_id)
            current = self._parse(raw)
            if current.is_deleted:
                raise NotFoundError(f"Task not found: {task_id}", target=task_id)
            if guard is not None:
                guard(current)
            try:
                updated = current.evolve(**changes, updated_at=utc_now())
            except PydanticValidationError as e:
                raise from_pydantic(e, target=task_id) from e

            before = current.to_dict()
            after = updated.to_dict()
            self.recorder.commit(
                task_key(user_id, task_id), after,
                user_id=user_id,
                action=action,
                entity_type=EntityType.TASK,
                entity_id=task_id,
                changes={"before": before, "after": after, "diff": _diff(before, after)},
                metadata=metadata,
            )
            return updated

    def update_factors(self, user_id: str, task_id: str, factors: Dict[str, Any]) -> Task:
        """Change formula factors; PCI units follow automatically."""
        clean = validate_factors(factors)
        if not clean:
            raise ValidationError("No factors given", target="factors")
        task = self.apply_changes(user_id, task_id, clean)
        logger.info(f"Factors updated on {task_id}: {sorted(clean)} pci={task.pci_units:.2f}")
        return task

    def update_task(self, user_id: str, task_id: str, updates: Dict[str, Any]) -> Task:
        """Edit name, rates, actual hours or reference number (factor keys allowed too)."""
        factor_updates = {k: v for k, v in (updates or {}).items() if k in FACTOR_NAMES}
        changes: Dict[str, Any] = dict(validate_factors(factor_updates))
        for name, value in (updates or {}).items():
            if name in FACTOR_NAMES:
                continue
            field = _FIELD_ALIASES.get(name, name)
            if field not in EDITABLE_FIELDS:
                raise ValidationError(f"Field '{name}' cannot be edited", target=name)
            changes[field] = value
        if not changes:
            raise ValidationError("No updates given", target="updates")
        return self.apply_changes(user_id, task_id, changes)

    def accept_ai_suggestion(
        self,
        user_id: str,
        task_id: str,
        ai_verified_units: float,
        aas: Optional[float] = None,
        factors: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """
        Store the output of AI verification.

        The verified units and accuracy score are opaque inputs; suggested
        factor values, when given, replace the current factors.
        """
        changes: Dict[str, Any] = dict(validate_factors(factors or {}))
        changes["ai_verified_units"] = ai_verified_units
        changes["aas"] = aas
        return self.apply_changes(
            user_id, task_id, changes,
            metadata={"source": "ai_suggestion"},
        )

    def record_actual_hours(self, user_id: str, task_id: str, actual_hours: float) -> Task:
        return self.apply_changes(user_id, task_id, {"actual_hours": actual_hours})

    def delete_task(self, user_id: str, task_id: str) -> Task:
        """Soft delete: the record stays as a tombstone for its audit history."""
        task = self.apply_changes(
            user_id, task_id,
            {"deleted_at": utc_now(), "deleted_by": user_id},
            action=AuditAction.DELETE,
        )
        logger.info(f"Deleted task {task_id}")
        return task
