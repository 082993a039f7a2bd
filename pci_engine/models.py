"""
PCI Engine - Entity Models
==========================
Tasks, settings, audit entries, flags and comments.

Attributes are snake_case in Python; records are stored and serialized with
the camelCase keys used by the key-value store (taskName, pciUnits, ...).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Optional
from uuid import uuid4

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, computed_field

from .formula_engine import FACTOR_NAMES, compute_pci

# =============================================================================
# HELPERS
# =============================================================================

def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UTCDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


def new_id() -> str:
    return str(uuid4())


def to_camel(name: str) -> str:
    # Factor symbols (ISR, CF, ...) have no underscores and pass through unchanged
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


class PCIModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-compatible dict with camelCase keys (storage and response shape)."""
        return self.model_dump(mode="json", by_alias=True)


# =============================================================================
# ENUMS
# =============================================================================

class AuditStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    REVIEW = "review"
    APPROVE = "approve"
    REJECT = "reject"
    FLAG = "flag"
    COMMENT = "comment"


class EntityType(str, Enum):
    TASK = "task"
    SETTINGS = "settings"
    COMMENT = "comment"
    FLAG = "flag"


class FlagCategory(str, Enum):
    LOW_AAS = "LowAAS"
    HIGH_COST = "HighCost"
    UNCLEAR_SCOPE = "UnclearScope"
    REVIEW_NEEDED = "ReviewNeeded"


class FlagSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


# =============================================================================
# ENTITIES
# =============================================================================

class Task(PCIModel):
    """One cost-estimation unit."""

    id: str = Field(default_factory=new_id)
    user_id: Optional[str] = None
    task_name: str = Field(..., min_length=1, max_length=500)
    reference_number: Optional[str] = None

    # Formula factors (range guidance is advisory, not enforced)
    ISR: float = 1.0
    CF: float = 1.0
    UXI: float = 1.0
    RCF: float = 1.0
    AEP: float = 1.0
    L: float = 0.0
    MLW: float = 1.0
    CGW: float = 1.0
    RF: float = 1.0
    S: float = 1.0
    GLRI: float = 1.0

    # Externally supplied by AI verification
    ai_verified_units: Optional[float] = None
    aas: Optional[float] = Field(default=None, ge=0, le=100)

    hourly_rate: Optional[float] = Field(default=None, ge=0)
    vendor_rate: Optional[float] = Field(default=None, ge=0)
    actual_hours: Optional[float] = Field(default=None, ge=0)

    audit_status: AuditStatus = AuditStatus.PENDING
    approved_at: Optional[UTCDatetime] = None
    approved_by: Optional[str] = None
    approval_notes: Optional[str] = None
    rejected_at: Optional[UTCDatetime] = None
    rejected_by: Optional[str] = None
    rejection_reason: Optional[str] = None

    created_at: UTCDatetime = Field(default_factory=utc_now)
    updated_at: UTCDatetime = Field(default_factory=utc_now)
    deleted_at: Optional[UTCDatetime] = None
    deleted_by: Optional[str] = None

    @computed_field(alias="pciUnits")
    @property
    def pci_units(self) -> float:
        return compute_pci(self)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def factors(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in FACTOR_NAMES}

    def evolve(self, **changes: Any) -> "Task":
        """Return a validated copy with the given field changes applied."""
        data = self.model_dump()
        data.update(changes)
        return type(self).model_validate(data)


class Settings(PCIModel):
    """Per-account configuration used by every cost calculation."""

    user_id: Optional[str] = None
    default_hourly_rate: Optional[float] = Field(default=66.0, ge=0, alias="hourlyRate")
    unit_to_hour_ratio: float = Field(default=1.5, ge=0)
    currency: str = Field(default="USD", min_length=1, max_length=10)
    industry_preset: Optional[str] = "general"
    updated_at: Optional[UTCDatetime] = None


class AuditLogEntry(PCIModel):
    """Immutable record of one mutation."""

    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str = Field(..., min_length=1)
    action: AuditAction
    entity_type: EntityType
    entity_id: str = Field(..., min_length=1)
    changes: Dict[str, Any] = Field(default_factory=dict)
    metadata: Optional[Dict[str, Any]] = None
    timestamp: UTCDatetime
    sequence: int = 0

    @property
    def sort_key(self):
        return (self.timestamp, self.sequence, self.id)


class Flag(PCIModel):
    """Reviewer-created marker attached to a task."""

    id: str = Field(default_factory=new_id)
    task_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    category: FlagCategory
    severity: FlagSeverity
    notes: str = Field(..., min_length=1)
    status: FlagStatus = FlagStatus.OPEN
    created_at: UTCDatetime = Field(default_factory=utc_now)
    resolved_at: Optional[UTCDatetime] = None
    resolved_by: Optional[str] = None
    resolution: Optional[str] = None


class Comment(PCIModel):
    id: str = Field(default_factory=new_id)
    task_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    comment: str = Field(..., min_length=1)
    created_at: UTCDatetime = Field(default_factory=utc_now)


class SavingsBreakdown(PCIModel):
    """Derived view; never persisted."""

    original_estimate: float = 0.0
    optimized_estimate: float = 0.0
    ai_verification_savings: float = 0.0
    vendor_cost: float = 0.0
    vendor_rate_savings: float = 0.0
    actual_spent: float = 0.0
    budget_efficiency: float = 0.0
    total_savings: float = 0.0
    efficiency_percentage: float = 0.0
