"""
Shared fixtures for PCI Engine tests.

Everything runs against the in-memory store; the Supabase backend is
exercised with a MagicMock client in test_kv_store.py.
"""

from datetime import datetime, timezone

import pytest

from pci_engine.audit_recorder import AuditRecorder
from pci_engine.audit_store import AuditStore
from pci_engine.kv_store import InMemoryKVStore
from pci_engine.review_workflow import ReviewWorkflow
from pci_engine.task_service import TaskService

USER_ID = "user-1"


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def store():
    return InMemoryKVStore()


@pytest.fixture
def recorder(store):
    return AuditRecorder(store)


@pytest.fixture
def audit_store(store):
    return AuditStore(store)


@pytest.fixture
def service(store, recorder):
    return TaskService(store, recorder)


@pytest.fixture
def workflow(store, recorder, service):
    return ReviewWorkflow(store, recorder=recorder, tasks=service)


@pytest.fixture
def example_factors():
    """Reference scenario: PCI = 9.1 + 8 + 1.872 + 1.43 = 20.402"""
    return {
        "ISR": 5, "CF": 1.4, "UXI": 1.3,
        "RCF": 1.5, "AEP": 6, "L": 1,
        "MLW": 1.3, "CGW": 1.2, "RF": 1.2,
        "S": 1.1, "GLRI": 1.3,
    }


@pytest.fixture
def as_of():
    return datetime(2026, 10, 19, 15, 30, tzinfo=timezone.utc)
