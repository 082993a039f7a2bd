"""
Reporting Engine
KPI snapshots, category distribution, trend series and the report view.

The aggregation functions are pure over an explicit snapshot (tasks,
settings, audit log, flags). ReportingService loads that snapshot for one
account and runs them; nothing here writes to the store.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from .audit_store import AuditStore
from .config import PCIConfig
from .errors import ValidationError, from_pydantic
from .formula_engine import FormulaBreakdown, compute_breakdown, compute_cost
from .kv_store import KVStore
from .models import (
    AuditLogEntry,
    AuditStatus,
    Comment,
    Flag,
    FlagStatus,
    SavingsBreakdown,
    Settings,
    Task,
    ensure_utc,
    utc_now,
)
from .review_workflow import ReviewWorkflow
from .savings_engine import compute_savings
from .schemas import (
    AuditMetrics,
    CategoryDistribution,
    KPIData,
    KPISnapshot,
    ReportData,
    ReportFilter,
    ReportSummary,
    TaskBreakdownRow,
    TrendData,
    TrendPeriod,
    TrendPoint,
)
from .settings_loader import FALLBACK_HOURLY_RATE, get_settings, resolve_rate
from .task_service import TaskService

logger = logging.getLogger(__name__)

LOW_AAS_THRESHOLD = 85.0
RECENT_ACTIVITY_LIMIT = 10

# period -> (number of buckets, days per bucket)
TREND_BUCKETS = {
    TrendPeriod.WEEK: (7, 1),
    TrendPeriod.MONTH: (30, 1),
    TrendPeriod.QUARTER: (13, 7),
}


# =============================================================================
# HELPERS
# =============================================================================

def _live(tasks: Iterable[Optional[Task]]) -> List[Task]:
    """Drop missing and soft-deleted tasks; order by (createdAt, id)."""
    return sorted(
        (t for t in tasks if t is not None and not t.is_deleted),
        key=lambda t: (t.created_at, t.id),
    )


def _mean_aas(tasks: Sequence[Task]) -> float:
    # Tasks without a score are counted elsewhere but excluded from the mean
    scores = [t.aas for t in tasks if t.aas is not None]
    return sum(scores) / len(scores) if scores else 0.0


def _is_low_aas(task: Task, threshold: float) -> bool:
    return task.aas is not None and 0 < task.aas < threshold


def _status_counts(tasks: Sequence[Task]) -> Dict[AuditStatus, int]:
    counts = {status: 0 for status in AuditStatus}
    for task in tasks:
        counts[task.audit_status] += 1
    return counts


def _approval_rate(approved: int, total: int) -> float:
    return approved / total * 100 if total else 0.0


def coerce_filter(report_filter: Union[ReportFilter, Dict[str, Any], None]) -> ReportFilter:
    if report_filter is None:
        return ReportFilter()
    if isinstance(report_filter, ReportFilter):
        return report_filter
    try:
        return ReportFilter.model_validate(report_filter)
    except PydanticValidationError as e:
        raise from_pydantic(e, target="filter") from e


def coerce_period(period: Union[TrendPeriod, str]) -> TrendPeriod:
    try:
        return TrendPeriod(period)
    except ValueError:
        raise ValidationError(
            f"Unknown trend period '{period}'. Use one of: {', '.join(p.value for p in TrendPeriod)}",
            target="period",
        )


# =============================================================================
# PURE AGGREGATIONS
# =============================================================================

def filter_tasks(
    tasks: Iterable[Optional[Task]],
    report_filter: Union[ReportFilter, Dict[str, Any], None] = None,
) -> List[Task]:
    """Apply the date range (on createdAt, inclusive) and status filter."""
    report_filter = coerce_filter(report_filter)
    selected = []
    for task in _live(tasks):
        if report_filter.start_date and task.created_at < report_filter.start_date:
            continue
        if report_filter.end_date and task.created_at > report_filter.end_date:
            continue
        if report_filter.status and task.audit_status != report_filter.status:
            continue
        selected.append(task)
    return selected


def compute_kpis(
    tasks: Iterable[Optional[Task]],
    flags: Iterable[Flag] = (),
    audit_log: Iterable[AuditLogEntry] = (),
    comments: Iterable[Comment] = (),
    low_aas_threshold: float = LOW_AAS_THRESHOLD,
) -> KPIData:
    """
    KPI snapshot for a task set.

    Args:
        tasks: Task snapshot (missing and deleted tasks are dropped)
        flags: Flags for the account; only open flags on live tasks count
        audit_log: Audit entries for the account
        comments: Comments for the account
        low_aas_threshold: Scores strictly between 0 and this count as low

    Returns:
        KPIData
    """
    tasks = _live(tasks)
    counts = _status_counts(tasks)
    total = len(tasks)
    live_ids = {t.id for t in tasks}

    return KPIData(kpis=KPISnapshot(
        total_tasks=total,
        total_pci=sum(t.pci_units for t in tasks),
        total_verified=sum(t.ai_verified_units or 0.0 for t in tasks),
        average_aas=_mean_aas(tasks),
        approval_rate=_approval_rate(counts[AuditStatus.APPROVED], total),
        total_low_aas=sum(1 for t in tasks if _is_low_aas(t, low_aas_threshold)),
        open_flags=sum(1 for f in flags if f.status == FlagStatus.OPEN and f.task_id in live_ids),
        approved_tasks=counts[AuditStatus.APPROVED],
        pending_tasks=counts[AuditStatus.PENDING],
        rejected_tasks=counts[AuditStatus.REJECTED],
        audit_activity=sum(1 for _ in audit_log),
        total_comments=sum(1 for _ in comments),
    ))


def compute_category_distribution(tasks: Iterable[Optional[Task]]) -> CategoryDistribution:
    """Sum each formula group over the task set."""
    totals = FormulaBreakdown()
    for task in _live(tasks):
        totals = totals + compute_breakdown(task)
    return CategoryDistribution(
        scope_complexity=totals.scope_complexity,
        risk_engineering=totals.risk_engineering,
        multi_layer=totals.multi_layer,
        specialty_governance=totals.specialty_governance,
    )


def _bucket_label(day: datetime) -> str:
    return f"{day:%b} {day.day}"


def compute_trends(
    tasks: Iterable[Optional[Task]],
    audit_log: Iterable[AuditLogEntry],
    period: Union[TrendPeriod, str] = TrendPeriod.WEEK,
    as_of: Optional[datetime] = None,
) -> TrendData:
    """
    Fixed-length trend series ending on the day of `as_of`.

    week     7 daily buckets
    month    30 daily buckets
    quarter  13 weekly buckets (about 90 days)

    Each bucket covers whole UTC days. Tasks are placed by createdAt and
    audit entries by timestamp. Empty buckets are kept with zero values.
    """
    period = coerce_period(period)
    count, days = TREND_BUCKETS[period]
    as_of = ensure_utc(as_of or utc_now())
    today = as_of.replace(hour=0, minute=0, second=0, microsecond=0)

    tasks = _live(tasks)
    entries = list(audit_log)

    trends = []
    for i in range(count - 1, -1, -1):
        end = today + timedelta(days=1) - timedelta(days=i * days)
        start = end - timedelta(days=days)

        bucket_tasks = [t for t in tasks if start <= t.created_at < end]
        activity = sum(1 for e in entries if start <= e.timestamp < end)

        trends.append(TrendPoint(
            period=_bucket_label(end - timedelta(days=1)),
            period_start=start,
            period_end=end,
            aas=_mean_aas(bucket_tasks),
            tasks=len(bucket_tasks),
            pci=sum(t.pci_units for t in bucket_tasks),
            verified=sum(t.ai_verified_units or 0.0 for t in bucket_tasks),
            audit_activity=activity,
        ))

    return TrendData(trends=trends, period=period)


def build_task_breakdown(
    tasks: Iterable[Optional[Task]],
    settings: Optional[Settings],
    fallback_rate: float = FALLBACK_HOURLY_RATE,
) -> List[TaskBreakdownRow]:
    """One row per task; verified cost is priced at the account rate."""
    rate = resolve_rate(None, settings, fallback_rate)
    return [
        TaskBreakdownRow(
            id=t.id,
            task_name=t.task_name,
            pci_units=t.pci_units,
            ai_verified_units=t.ai_verified_units,
            aas=t.aas,
            audit_status=t.audit_status,
            verified_cost=compute_cost(t.ai_verified_units or 0.0, rate),
            created_at=t.created_at,
            updated_at=t.updated_at,
        )
        for t in _live(tasks)
    ]


def compute_audit_metrics(audit_log: Iterable[AuditLogEntry], flags: Iterable[Flag]) -> AuditMetrics:
    entries = sorted(audit_log, key=lambda e: e.sort_key, reverse=True)
    flags = list(flags)
    return AuditMetrics(
        total_logs=len(entries),
        total_flags=len(flags),
        open_flags=sum(1 for f in flags if f.status == FlagStatus.OPEN),
        resolved_flags=sum(1 for f in flags if f.status == FlagStatus.RESOLVED),
        recent_activity=entries[:RECENT_ACTIVITY_LIMIT],
    )


def generate_report(
    tasks: Iterable[Optional[Task]],
    settings: Optional[Settings],
    report_filter: Union[ReportFilter, Dict[str, Any], None] = None,
    audit_log: Iterable[AuditLogEntry] = (),
    flags: Iterable[Flag] = (),
    generated_at: Optional[datetime] = None,
    low_aas_threshold: float = LOW_AAS_THRESHOLD,
    fallback_rate: float = FALLBACK_HOURLY_RATE,
) -> ReportData:
    """
    Build the report for a task snapshot.

    Args:
        tasks: Task snapshot
        settings: Account settings snapshot (prices the verified cost column)
        report_filter: ReportFilter or a dict with startDate/endDate/status/includeAudit
        audit_log: Audit entries, used only when includeAudit is set
        flags: Flags, used only when includeAudit is set
        generated_at: Report timestamp (defaults to now)

    Returns:
        ReportData
    """
    report_filter = coerce_filter(report_filter)
    selected = filter_tasks(tasks, report_filter)
    counts = _status_counts(selected)

    summary = ReportSummary(
        total_tasks=len(selected),
        total_pci=sum(t.pci_units for t in selected),
        total_verified=sum(t.ai_verified_units or 0.0 for t in selected),
        average_aas=_mean_aas(selected),
        approval_rate=_approval_rate(counts[AuditStatus.APPROVED], len(selected)),
        approved_tasks=counts[AuditStatus.APPROVED],
        rejected_tasks=counts[AuditStatus.REJECTED],
        pending_tasks=counts[AuditStatus.PENDING],
        low_aas_count=sum(1 for t in selected if _is_low_aas(t, low_aas_threshold)),
    )

    return ReportData(
        summary=summary,
        category_distribution=compute_category_distribution(selected),
        audit_metrics=compute_audit_metrics(audit_log, flags) if report_filter.include_audit else None,
        task_breakdown=build_task_breakdown(selected, settings, fallback_rate),
        generated_at=generated_at or utc_now(),
    )


# =============================================================================
# SERVICE
# =============================================================================

class ReportingService:
    """Loads one account's snapshot from the store and aggregates it."""

    def __init__(self, store: KVStore, config: Optional[PCIConfig] = None, clock=utc_now):
        self.store = store
        self.config = config or PCIConfig()
        self.clock = clock
        self.tasks = TaskService(store)
        self.reviews = ReviewWorkflow(store, recorder=self.tasks.recorder, tasks=self.tasks)
        self.audit = AuditStore(store)

    def _settings(self, user_id: str) -> Settings:
        return get_settings(self.store, user_id)

    def generate_report(
        self,
        user_id: str,
        report_filter: Union[ReportFilter, Dict[str, Any], None] = None,
        generated_at: Optional[datetime] = None,
    ) -> ReportData:
        report_filter = coerce_filter(report_filter)
        tasks = self.tasks.list_tasks(user_id)
        settings = self._settings(user_id)
        audit_log: List[AuditLogEntry] = []
        flags: List[Flag] = []
        if report_filter.include_audit:
            audit_log = self.audit.list_by_user(user_id)
            flags = self.reviews.list_flags(user_id)

        report = generate_report(
            tasks, settings, report_filter,
            audit_log=audit_log,
            flags=flags,
            generated_at=generated_at or self.clock(),
            low_aas_threshold=self.config.low_aas_threshold,
            fallback_rate=self.config.fallback_hourly_rate,
        )
        logger.info(f"Report for {user_id}: {report.summary.total_tasks} tasks")
        return report

    def get_trends(
        self,
        user_id: str,
        period: Union[TrendPeriod, str] = TrendPeriod.WEEK,
        as_of: Optional[datetime] = None,
    ) -> TrendData:
        period = coerce_period(period)
        return compute_trends(
            self.tasks.list_tasks(user_id),
            self.audit.list_by_user(user_id),
            period,
            as_of=as_of or self.clock(),
        )

    def get_kpis(self, user_id: str) -> KPIData:
        return compute_kpis(
            self.tasks.list_tasks(user_id),
            flags=self.reviews.list_flags(user_id),
            audit_log=self.audit.list_by_user(user_id),
            comments=self.reviews.list_comments(user_id),
            low_aas_threshold=self.config.low_aas_threshold,
        )

    def get_savings(self, user_id: str) -> SavingsBreakdown:
        return compute_savings(
            self.tasks.list_tasks(user_id),
            self._settings(user_id),
            vendor_markup=self.config.vendor_markup,
            fallback_rate=self.config.fallback_hourly_rate,
        )

    async def build_dashboard(
        self,
        user_id: str,
        period: Union[TrendPeriod, str] = TrendPeriod.WEEK,
        report_filter: Union[ReportFilter, Dict[str, Any], None] = None,
    ) -> Dict[str, Any]:
        """
        Report, trends, KPIs and savings computed concurrently.

        Each aggregation is read-only and loads its own snapshot, so they
        run in the default executor with no ordering between them.
        """
        period = coerce_period(period)
        report_filter = coerce_filter(report_filter)
        now = self.clock()
        loop = asyncio.get_running_loop()

        report, trends, kpis, savings = await asyncio.gather(
            loop.run_in_executor(None, self.generate_report, user_id, report_filter, now),
            loop.run_in_executor(None, self.get_trends, user_id, period, now),
            loop.run_in_executor(None, self.get_kpis, user_id),
            loop.run_in_executor(None, self.get_savings, user_id),
        )
        return {
            "report": report,
            "trends": trends,
            "kpis": kpis,
            "savings": savings,
        }
