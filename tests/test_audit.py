"""
Tests for the append-only audit log and transactional commits.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from pydantic import ValidationError as PydanticValidationError

from pci_engine.audit_recorder import AuditRecorder
from pci_engine.audit_store import AuditStore
from pci_engine.errors import ConflictError, StorageError, ValidationError
from pci_engine.kv_store import audit_key, task_key
from pci_engine.models import AuditAction, EntityType
from pci_engine.task_service import TaskService

FIXED_TIME = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# RECORDING
# =============================================================================

class TestRecord:

    def test_record_stores_entry(self, store, recorder, user_id):
        entry = recorder.record(user_id, "create", "task", "t1", {"after": {"id": "t1"}})
        assert entry.action == AuditAction.CREATE
        assert entry.entity_type == EntityType.TASK
        assert entry.timestamp.tzinfo is not None
        assert store.get(audit_key(user_id, entry.id)) == entry.to_dict()

    def test_reread_is_identical(self, store, recorder, user_id):
        entry = recorder.record(user_id, "update", "settings", user_id, {"before": {}, "after": {"a": 1}})
        first = store.get(audit_key(user_id, entry.id))
        for _ in range(3):
            assert store.get(audit_key(user_id, entry.id)) == first

    def test_unique_ids(self, recorder, user_id):
        ids = {recorder.record(user_id, "comment", "comment", "c1").id for _ in range(20)}
        assert len(ids) == 20

    def test_requires_user(self, recorder):
        with pytest.raises(ValidationError):
            recorder.record("", "create", "task", "t1")
        with pytest.raises(ValidationError):
            recorder.record("   ", "create", "task", "t1")

    def test_rejects_unknown_action(self, recorder, user_id):
        with pytest.raises(ValidationError):
            recorder.record(user_id, "publish", "task", "t1")

    def test_rejects_unknown_entity_type(self, recorder, user_id):
        with pytest.raises(ValidationError):
            recorder.record(user_id, "create", "project", "t1")

    def test_store_failure(self, store, user_id):
        recorder = AuditRecorder(store)
        with patch.object(store, "add", side_effect=RuntimeError("disk full")):
            with pytest.raises(StorageError):
                recorder.record(user_id, "create", "task", "t1")


# =============================================================================
# IMMUTABILITY & ORDERING
# =============================================================================

class TestAuditStore:

    def test_entries_are_frozen(self, recorder, user_id):
        entry = recorder.record(user_id, "create", "task", "t1")
        with pytest.raises(PydanticValidationError):
            entry.action = AuditAction.DELETE

    def test_no_mutation_api(self):
        for name in ("update", "delete", "set", "remove"):
            assert not hasattr(AuditStore, name)

    def test_append_never_overwrites(self, recorder, audit_store, user_id):
        entry = recorder.record(user_id, "create", "task", "t1")
        with pytest.raises(ConflictError):
            audit_store.append(entry)

    def test_same_timestamp_ordered_by_insertion(self, store, user_id):
        recorder = AuditRecorder(store, clock=lambda: FIXED_TIME)
        created = [recorder.record(user_id, "update", "task", f"t{i}") for i in range(10)]
        listed = AuditStore(store).list_by_user(user_id)
        assert [e.id for e in listed] == [e.id for e in created]

    def test_recorders_on_one_store_share_ordering(self, store, user_id):
        first = AuditRecorder(store, clock=lambda: FIXED_TIME)
        second = AuditRecorder(store, clock=lambda: FIXED_TIME)
        created = [
            (first if i % 2 else second).record(user_id, "update", "task", f"t{i}")
            for i in range(6)
        ]
        listed = AuditStore(store).list_by_user(user_id)
        assert [e.id for e in listed] == [e.id for e in created]

    def test_list_by_entity(self, recorder, audit_store, user_id):
        recorder.record(user_id, "create", "task", "t1")
        recorder.record(user_id, "create", "task", "t2")
        recorder.record(user_id, "update", "task", "t1")
        entries = audit_store.list_by_entity(user_id, "task", "t1")
        assert [e.action for e in entries] == [AuditAction.CREATE, AuditAction.UPDATE]

    def test_accounts_are_isolated(self, recorder, audit_store):
        recorder.record("alice", "create", "task", "t1")
        recorder.record("bob", "create", "task", "t2")
        assert len(audit_store.list_by_user("alice")) == 1

    def test_corrupt_entry(self, store, audit_store, user_id):
        store.set(audit_key(user_id, "bad"), {"id": "bad"})
        with pytest.raises(StorageError):
            audit_store.list_by_user(user_id)


# =============================================================================
# TRANSACTIONAL COMMIT
# =============================================================================

class TestCommit:

    def test_failed_audit_leaves_no_entity(self, store, recorder, audit_store, user_id):
        service = TaskService(store, recorder)
        with patch.object(recorder.audit_store, "append", side_effect=StorageError("audit down")):
            with pytest.raises(StorageError):
                service.create_task(user_id, "Checkout flow")
        assert store.list_by_prefix(task_key(user_id, "")) == []
        assert audit_store.list_by_user(user_id) == []

    def test_failed_audit_never_touches_entity(self, store, recorder, audit_store, user_id):
        service = TaskService(store, recorder)
        task = service.create_task(user_id, "Checkout flow", {"ISR": 2})
        with patch.object(recorder.audit_store, "append", side_effect=StorageError("audit down")), \
                patch.object(store, "set", side_effect=RuntimeError("store down")) as mock_set:
            with pytest.raises(StorageError):
                service.update_factors(user_id, task.id, {"ISR": 9})
        mock_set.assert_not_called()
        assert service.get_task(user_id, task.id).ISR == 2
        updates = [e for e in audit_store.list_by_entity(user_id, "task", task.id) if e.action == AuditAction.UPDATE]
        assert updates == []

    def test_failed_entity_write_names_audit_entry(self, store, recorder, audit_store, user_id):
        service = TaskService(store, recorder)
        task = service.create_task(user_id, "Checkout flow", {"ISR": 2})
        with patch.object(store, "set", side_effect=RuntimeError("write failed")):
            with pytest.raises(StorageError) as exc:
                service.update_factors(user_id, task.id, {"ISR": 9})
        assert service.get_task(user_id, task.id).ISR == 2
        attempted = audit_store.list_by_entity(user_id, "task", task.id)[-1]
        assert exc.value.details["auditId"] == attempted.id
        assert exc.value.target == task_key(user_id, task.id)

    def test_append_only_conflict_records_nothing(self, store, recorder, audit_store, user_id):
        store.add("comment:user-1:c1", {"id": "c1"})
        with pytest.raises(ConflictError):
            recorder.commit(
                "comment:user-1:c1", {"id": "c1", "comment": "again"},
                user_id=user_id, action="comment", entity_type="comment", entity_id="c1",
                append_only=True,
            )
        assert audit_store.list_by_user(user_id) == []
        assert store.get("comment:user-1:c1") == {"id": "c1"}
