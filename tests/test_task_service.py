"""
Tests for the task lifecycle.
"""

import threading

import pytest

from pci_engine.errors import ConflictError, NotFoundError, ValidationError
from pci_engine.kv_store import task_key
from pci_engine.models import AuditAction, AuditStatus
from pci_engine.task_service import TaskService


# =============================================================================
# CREATE & READ
# =============================================================================

class TestCreateTask:

    def test_defaults(self, service, audit_store, user_id):
        task = service.create_task(user_id, "Login page")
        assert task.audit_status == AuditStatus.PENDING
        assert task.L == 0.0
        assert task.ISR == 1.0
        assert task.pci_units == 4.0

        entries = audit_store.list_by_user(user_id)
        assert len(entries) == 1
        assert entries[0].action == AuditAction.CREATE
        assert entries[0].entity_id == task.id

    def test_stored_pci_matches_formula(self, service, store, user_id, example_factors):
        task = service.create_task(user_id, "Payments", example_factors)
        stored = store.get(task_key(user_id, task.id))
        assert stored["pciUnits"] == pytest.approx(20.402)
        assert stored["taskName"] == "Payments"
        assert stored["auditStatus"] == "pending"

    def test_optional_fields(self, service, user_id):
        task = service.create_task(user_id, "Search", hourlyRate=90, vendor_rate=120, reference_number="TASK-001")
        assert task.hourly_rate == 90
        assert task.vendor_rate == 120
        assert task.reference_number == "TASK-001"

    def test_unknown_factor(self, service, user_id):
        with pytest.raises(ValidationError) as exc:
            service.create_task(user_id, "Search", {"XYZ": 2})
        assert exc.value.target == "XYZ"

    @pytest.mark.parametrize("value", [None, True, "high"])
    def test_non_numeric_factor(self, service, user_id, value):
        with pytest.raises(ValidationError):
            service.create_task(user_id, "Search", {"ISR": value})

    def test_empty_name(self, service, user_id):
        with pytest.raises(ValidationError):
            service.create_task(user_id, "")

    def test_status_cannot_be_set_on_create(self, service, user_id):
        with pytest.raises(ValidationError):
            service.create_task(user_id, "Search", audit_status="approved")

    def test_duplicate_id(self, service, user_id):
        service.create_task(user_id, "One", id="fixed-id")
        with pytest.raises(ConflictError):
            service.create_task(user_id, "Two", id="fixed-id")

    def test_missing_user(self, service):
        with pytest.raises(ValidationError):
            service.create_task("", "Search")

    def test_get_unknown(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.get_task(user_id, "missing")

    def test_list_ordered_by_creation(self, service, user_id):
        for name in ["first", "second", "third", "fourth"]:
            service.create_task(user_id, name)
        tasks = service.list_tasks(user_id)
        assert len(tasks) == 4
        assert tasks == sorted(tasks, key=lambda t: (t.created_at, t.id))

    def test_list_skips_other_accounts(self, service, user_id):
        service.create_task(user_id, "mine")
        service.create_task("someone-else", "theirs")
        assert [t.task_name for t in service.list_tasks(user_id)] == ["mine"]


# =============================================================================
# MUTATIONS
# =============================================================================

class TestUpdateTask:

    def test_update_factors_recomputes(self, service, audit_store, user_id, example_factors):
        task = service.create_task(user_id, "Payments")
        updated = service.update_factors(user_id, task.id, example_factors)
        assert updated.pci_units == pytest.approx(20.402)
        assert service.get_task(user_id, task.id).pci_units == pytest.approx(20.402)

        entry = audit_store.list_by_entity(user_id, "task", task.id)[-1]
        assert entry.action == AuditAction.UPDATE
        assert entry.changes["diff"]["ISR"] == {"from": 1.0, "to": 5.0}
        assert "pciUnits" in entry.changes["diff"]
        assert entry.changes["before"]["pciUnits"] == 4.0

    def test_update_factors_requires_values(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        with pytest.raises(ValidationError):
            service.update_factors(user_id, task.id, {})

    def test_update_task_fields(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        updated = service.update_task(user_id, task.id, {"taskName": "Payments v2", "actualHours": 12, "CF": 2})
        assert updated.task_name == "Payments v2"
        assert updated.actual_hours == 12
        assert updated.CF == 2.0

    def test_update_task_rejects_status(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        with pytest.raises(ValidationError):
            service.update_task(user_id, task.id, {"auditStatus": "approved"})

    def test_negative_rate_rejected(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        with pytest.raises(ValidationError):
            service.update_task(user_id, task.id, {"hourly_rate": -1})

    def test_accept_ai_suggestion(self, service, audit_store, user_id):
        task = service.create_task(user_id, "Payments")
        updated = service.accept_ai_suggestion(user_id, task.id, 3.5, aas=87.5, factors={"ISR": 2})
        assert updated.ai_verified_units == 3.5
        assert updated.aas == 87.5
        assert updated.ISR == 2.0
        assert audit_store.list_by_user(user_id)[-1].metadata == {"source": "ai_suggestion"}

    def test_aas_out_of_range(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        with pytest.raises(ValidationError):
            service.accept_ai_suggestion(user_id, task.id, 3.5, aas=150)

    def test_record_actual_hours(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        assert service.record_actual_hours(user_id, task.id, 7.5).actual_hours == 7.5

    def test_update_unknown(self, service, user_id):
        with pytest.raises(NotFoundError):
            service.update_factors(user_id, "missing", {"ISR": 2})


# =============================================================================
# SOFT DELETE
# =============================================================================

class TestDeleteTask:

    def test_soft_delete(self, service, store, audit_store, user_id):
        task = service.create_task(user_id, "Payments")
        service.delete_task(user_id, task.id)

        with pytest.raises(NotFoundError):
            service.get_task(user_id, task.id)
        assert service.list_tasks(user_id) == []
        assert service.list_tasks(user_id, include_deleted=True)[0].deleted_by == user_id
        assert store.get(task_key(user_id, task.id)) is not None
        assert audit_store.list_by_user(user_id)[-1].action == AuditAction.DELETE

    def test_deleted_task_is_read_only(self, service, user_id):
        task = service.create_task(user_id, "Payments")
        service.delete_task(user_id, task.id)
        with pytest.raises(NotFoundError):
            service.update_factors(user_id, task.id, {"ISR": 3})
        with pytest.raises(NotFoundError):
            service.delete_task(user_id, task.id)


# =============================================================================
# CONCURRENCY
# =============================================================================

class TestConcurrentWriters:

    def test_same_task_writes_each_audited(self, service, audit_store, user_id):
        task = service.create_task(user_id, "Payments")
        threads = [
            threading.Thread(target=service.update_factors, args=(user_id, task.id, {"ISR": i + 2}))
            for i in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = audit_store.list_by_entity(user_id, "task", task.id)
        assert len(entries) == 11
        final = service.get_task(user_id, task.id)
        assert final.ISR == entries[-1].changes["after"]["ISR"]

    def test_services_on_one_store_share_task_locks(self, store, user_id):
        first, second = TaskService(store), TaskService(store)
        lock = first._lock_for(user_id, "t1")
        assert second._lock_for(user_id, "t1") is lock

    def test_separate_services_serialize_writes(self, store, audit_store, user_id):
        services = [TaskService(store) for _ in range(4)]
        task = services[0].create_task(user_id, "Payments")
        threads = [
            threading.Thread(target=services[i % 4].update_factors, args=(user_id, task.id, {"ISR": i + 2}))
            for i in range(12)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        entries = audit_store.list_by_entity(user_id, "task", task.id)
        assert len(entries) == 13
        assert services[1].get_task(user_id, task.id).ISR == entries[-1].changes["after"]["ISR"]
