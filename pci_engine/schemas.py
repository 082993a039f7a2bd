"""
PCI Engine - Report Schemas
===========================
Filter input and response shapes for reports, trends and KPIs.
Serialized with camelCase keys via to_dict().
"""

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import Field, field_validator, model_validator

from .models import AuditLogEntry, AuditStatus, PCIModel, UTCDatetime

# =============================================================================
# FILTERS
# =============================================================================

class TrendPeriod(str, Enum):
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"


def _as_bound(value: Any, end_of_day: bool) -> Any:
    # A bare date covers the whole day on either side of the range
    if isinstance(value, str) and len(value) == 10:
        value = date.fromisoformat(value)
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime.combine(value, time.max if end_of_day else time.min, tzinfo=timezone.utc)
    return value


class ReportFilter(PCIModel):
    """Task selection for a report. Date bounds are inclusive and apply to createdAt."""

    start_date: Optional[UTCDatetime] = None
    end_date: Optional[UTCDatetime] = None
    status: Optional[AuditStatus] = None
    include_audit: bool = False

    @field_validator("start_date", mode="before")
    @classmethod
    def _start_bound(cls, v):
        return _as_bound(v, end_of_day=False)

    @field_validator("end_date", mode="before")
    @classmethod
    def _end_bound(cls, v):
        return _as_bound(v, end_of_day=True)

    @model_validator(mode="after")
    def _check_range(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("startDate must not be after endDate")
        return self


# =============================================================================
# KPIs
# =============================================================================

class KPISnapshot(PCIModel):
    total_tasks: int = 0
    total_pci: float = Field(default=0.0, alias="totalPCI")
    total_verified: float = 0.0
    average_aas: float = Field(default=0.0, alias="averageAAS")
    approval_rate: float = 0.0
    total_low_aas: int = Field(default=0, alias="totalLowAAS")
    open_flags: int = 0
    approved_tasks: int = 0
    pending_tasks: int = 0
    rejected_tasks: int = 0
    audit_activity: int = 0
    total_comments: int = 0


class KPIData(PCIModel):
    kpis: KPISnapshot


# =============================================================================
# TRENDS
# =============================================================================

class TrendPoint(PCIModel):
    period: str  # Bucket end date label, e.g. "Oct 19"
    period_start: UTCDatetime
    period_end: UTCDatetime
    aas: float = 0.0
    tasks: int = 0
    pci: float = 0.0
    verified: float = 0.0
    audit_activity: int = 0


class TrendData(PCIModel):
    trends: List[TrendPoint]
    period: TrendPeriod


# =============================================================================
# REPORT
# =============================================================================

class CategoryDistribution(PCIModel):
    scope_complexity: float = 0.0
    risk_engineering: float = 0.0
    multi_layer: float = 0.0
    specialty_governance: float = 0.0

    @property
    def total(self) -> float:
        return ((self.scope_complexity + self.risk_engineering) + self.multi_layer) + self.specialty_governance


class ReportSummary(PCIModel):
    total_tasks: int = 0
    total_pci: float = Field(default=0.0, alias="totalPCI")
    total_verified: float = 0.0
    average_aas: float = Field(default=0.0, alias="averageAAS")
    approval_rate: float = 0.0
    approved_tasks: int = 0
    rejected_tasks: int = 0
    pending_tasks: int = 0
    low_aas_count: int = Field(default=0, alias="lowAASCount")


class AuditMetrics(PCIModel):
    total_logs: int = 0
    total_flags: int = 0
    open_flags: int = 0
    resolved_flags: int = 0
    recent_activity: List[AuditLogEntry] = Field(default_factory=list)


class TaskBreakdownRow(PCIModel):
    id: str
    task_name: str
    pci_units: float
    ai_verified_units: Optional[float] = None
    aas: Optional[float] = None
    audit_status: AuditStatus
    verified_cost: float = 0.0
    created_at: UTCDatetime
    updated_at: UTCDatetime


class ReportData(PCIModel):
    summary: ReportSummary
    category_distribution: CategoryDistribution
    audit_metrics: Optional[AuditMetrics] = None
    task_breakdown: List[TaskBreakdownRow] = Field(default_factory=list)
    generated_at: UTCDatetime
