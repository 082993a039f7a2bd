"""
PCI Engine

Deterministic effort and cost estimation for software tasks, with an
immutable audit trail, a review/flag workflow, and reporting.

Key components:
- formula_engine: PCI unit formula and cost derivation
- settings_loader: per-account settings and rate resolution
- audit_store / audit_recorder: append-only audit log and transactional commits
- task_service: task lifecycle
- review_workflow: approval state machine, flags and comments
- review_rules_engine: automated flag suggestions
- savings_engine: savings breakdown
- reporting_engine: KPIs, trends and reports
- export_engine: CSV and Excel exports
"""

from pci_engine.audit_recorder import AuditRecorder
from pci_engine.audit_store import AuditStore
from pci_engine.config import PCIConfig, configure_logging, load_config
from pci_engine.errors import (
    ConflictError,
    NotFoundError,
    PCIError,
    StorageError,
    ValidationError,
)
from pci_engine.formula_engine import compute_breakdown, compute_cost, compute_pci
from pci_engine.kv_store import InMemoryKVStore, KVStore, SupabaseKVStore, create_store
from pci_engine.models import (
    AuditAction,
    AuditLogEntry,
    AuditStatus,
    Comment,
    EntityType,
    Flag,
    FlagCategory,
    FlagSeverity,
    FlagStatus,
    SavingsBreakdown,
    Settings,
    Task,
)
from pci_engine.reporting_engine import ReportingService
from pci_engine.review_workflow import ReviewWorkflow
from pci_engine.savings_engine import compute_savings
from pci_engine.settings_loader import get_settings, resolve_rate
from pci_engine.task_service import TaskService

__version__ = "1.0.0"

__all__ = [
    # Errors
    "PCIError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "StorageError",
    # Config
    "PCIConfig",
    "load_config",
    "configure_logging",
    # Storage
    "KVStore",
    "InMemoryKVStore",
    "SupabaseKVStore",
    "create_store",
    "AuditStore",
    "AuditRecorder",
    # Models
    "Task",
    "Settings",
    "AuditLogEntry",
    "Flag",
    "Comment",
    "SavingsBreakdown",
    "AuditStatus",
    "AuditAction",
    "EntityType",
    "FlagCategory",
    "FlagSeverity",
    "FlagStatus",
    # Engines
    "compute_pci",
    "compute_breakdown",
    "compute_cost",
    "compute_savings",
    "get_settings",
    "resolve_rate",
    # Services
    "TaskService",
    "ReviewWorkflow",
    "ReportingService",
]
