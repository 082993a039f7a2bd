"""
Report Export

CSV and Excel renderings of task sets, reports and the audit trail.
Numeric task fields are fixed to 2 decimals so repeated exports of the
same data are byte-identical.
"""

import csv
import io
import json
import logging
from datetime import datetime
from typing import Iterable, List, Optional

import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from .formula_engine import FACTOR_NAMES
from .models import AuditLogEntry, SavingsBreakdown, Settings, Task
from .schemas import ReportData, TrendData

logger = logging.getLogger(__name__)

TASK_CSV_COLUMNS = (
    ["Task Name"]
    + list(FACTOR_NAMES)
    + ["PCI Units", "AI Verified Units", "AAS %", "Audit Status", "Created At", "Updated At"]
)

AUDIT_CSV_COLUMNS = ["timestamp", "action", "entity_type", "entity_id", "user_id", "changes", "metadata"]

# Styling constants
HEADER_FILL = PatternFill(start_color="4472C4", end_color="4472C4", fill_type="solid")
HEADER_FONT = Font(color="FFFFFF", bold=True)
BORDER = Border(
    left=Side(style='thin'),
    right=Side(style='thin'),
    top=Side(style='thin'),
    bottom=Side(style='thin')
)


def export_filename(prefix: str = "pci_report", generated_at: Optional[datetime] = None, ext: str = "csv") -> str:
    """e.g. pci_report_2026-10-19.csv"""
    generated_at = generated_at or datetime.now()
    return f"{prefix}_{generated_at:%Y-%m-%d}.{ext}"


# =============================================================================
# CSV
# =============================================================================

def tasks_dataframe(tasks: Iterable[Optional[Task]]) -> pd.DataFrame:
    """One row per live task, in TASK_CSV_COLUMNS order."""
    rows = []
    for task in tasks:
        if task is None or task.is_deleted:
            continue
        row = {"Task Name": task.task_name}
        row.update(task.factors())
        row.update({
            "PCI Units": task.pci_units,
            "AI Verified Units": task.ai_verified_units or 0.0,
            "AAS %": task.aas if task.aas is not None else 0.0,
            "Audit Status": task.audit_status.value,
            "Created At": task.created_at.isoformat(),
            "Updated At": task.updated_at.isoformat(),
        })
        rows.append(row)
    return pd.DataFrame(rows, columns=TASK_CSV_COLUMNS)


def export_tasks_csv(tasks: Iterable[Optional[Task]]) -> str:
    """Task table as CSV text with a header row."""
    df = tasks_dataframe(tasks)
    output = io.StringIO()
    df.to_csv(output, index=False, float_format="%.2f", lineterminator="\n")
    logger.info(f"Exported {len(df)} tasks to CSV")
    return output.getvalue()


def export_audit_trail_csv(entries: Iterable[AuditLogEntry]) -> str:
    """Audit trail, oldest first. Changes and metadata are JSON encoded."""
    csv_buf = io.StringIO()
    writer = csv.writer(csv_buf, lineterminator="\n")
    writer.writerow(AUDIT_CSV_COLUMNS)
    for entry in sorted(entries, key=lambda e: e.sort_key):
        writer.writerow([
            entry.timestamp.isoformat(),
            entry.action.value,
            entry.entity_type.value,
            entry.entity_id,
            entry.user_id,
            json.dumps(entry.changes, sort_keys=True, default=str),
            json.dumps(entry.metadata or {}, sort_keys=True, default=str),
        ])
    return csv_buf.getvalue()


# =============================================================================
# EXCEL
# =============================================================================

def apply_header_style(ws, row_num: int = 1):
    for cell in ws[row_num]:
        cell.fill = HEADER_FILL
        cell.font = HEADER_FONT
        cell.alignment = Alignment(horizontal='center', vertical='center')
        cell.border = BORDER


def auto_adjust_columns(ws):
    """Auto-adjust column widths based on content"""
    for column in ws.columns:
        column_letter = get_column_letter(column[0].column)
        max_length = max((len(str(cell.value)) for cell in column if cell.value is not None), default=0)
        ws.column_dimensions[column_letter].width = min(max_length + 2, 50)


def _summary_sheet(wb: Workbook, report: ReportData, settings: Settings, savings: Optional[SavingsBreakdown]):
    ws = wb.active
    ws.title = "Summary"
    s = report.summary
    dist = report.category_distribution
    currency = settings.currency

    data: List[list] = [
        ["PCI COST ESTIMATION REPORT", ""],
        ["Generated", report.generated_at.strftime("%Y-%m-%d %H:%M:%S UTC")],
        ["Currency", currency],
        ["Hourly Rate", settings.default_hourly_rate],
        ["", ""],
        ["SUMMARY", ""],
        ["Total Tasks", s.total_tasks],
        ["Total PCI Units", round(s.total_pci, 2)],
        ["Total AI Verified Units", round(s.total_verified, 2)],
        ["Average AAS %", round(s.average_aas, 2)],
        ["Approval Rate %", round(s.approval_rate, 2)],
        ["Approved", s.approved_tasks],
        ["Pending", s.pending_tasks],
        ["Rejected", s.rejected_tasks],
        ["Low AAS Tasks", s.low_aas_count],
        ["", ""],
        ["CATEGORY DISTRIBUTION", ""],
        ["Scope & Complexity", round(dist.scope_complexity, 2)],
        ["Risk & Engineering", round(dist.risk_engineering, 2)],
        ["Multi-Layer Work", round(dist.multi_layer, 2)],
        ["Specialty & Governance", round(dist.specialty_governance, 2)],
    ]
    section_rows = [1, 6, 17]

    if savings is not None:
        data.append(["", ""])
        section_rows.append(len(data) + 1)
        data.extend([
            ["SAVINGS", ""],
            ["Original Estimate", round(savings.original_estimate, 2)],
            ["Optimized Estimate", round(savings.optimized_estimate, 2)],
            ["AI Verification Savings", round(savings.ai_verification_savings, 2)],
            ["Vendor Rate Savings", round(savings.vendor_rate_savings, 2)],
            ["Actual Spent", round(savings.actual_spent, 2)],
            ["Budget Efficiency", round(savings.budget_efficiency, 2)],
            ["Total Savings", round(savings.total_savings, 2)],
            ["Efficiency %", round(savings.efficiency_percentage, 2)],
        ])

    if report.audit_metrics is not None:
        m = report.audit_metrics
        data.append(["", ""])
        section_rows.append(len(data) + 1)
        data.extend([
            ["AUDIT", ""],
            ["Audit Log Entries", m.total_logs],
            ["Flags", m.total_flags],
            ["Open Flags", m.open_flags],
            ["Resolved Flags", m.resolved_flags],
        ])

    for row in data:
        ws.append(row)

    ws['A1'].font = Font(bold=True, size=14)
    for row_num in section_rows[1:]:
        ws.cell(row=row_num, column=1).font = Font(bold=True)

    auto_adjust_columns(ws)


def _tasks_sheet(wb: Workbook, report: ReportData, currency: str):
    ws = wb.create_sheet("Tasks")
    ws.append([
        "Task ID", "Task Name", "PCI Units", "AI Verified Units", "AAS %",
        "Audit Status", f"Verified Cost ({currency})", "Created At",
    ])
    apply_header_style(ws)

    for row in report.task_breakdown:
        ws.append([
            row.id,
            row.task_name,
            row.pci_units,
            row.ai_verified_units or 0.0,
            row.aas if row.aas is not None else 0.0,
            row.audit_status.value,
            row.verified_cost,
            row.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        ])

    for row in ws.iter_rows(min_row=2, min_col=3, max_col=5):
        for cell in row:
            cell.number_format = '0.00'
    for cell in ws.iter_rows(min_row=2, min_col=7, max_col=7):
        cell[0].number_format = '#,##0.00'

    ws.freeze_panes = "A2"
    auto_adjust_columns(ws)


def _trends_sheet(wb: Workbook, trends: TrendData):
    ws = wb.create_sheet("Trends")
    ws.append(["Period", "Tasks", "PCI Units", "Verified Units", "Average AAS %", "Audit Activity"])
    apply_header_style(ws)
    for point in trends.trends:
        ws.append([point.period, point.tasks, point.pci, point.verified, point.aas, point.audit_activity])
    for row in ws.iter_rows(min_row=2, min_col=3, max_col=5):
        for cell in row:
            cell.number_format = '0.00'
    auto_adjust_columns(ws)


def export_report_xlsx(
    report: ReportData,
    settings: Settings,
    trends: Optional[TrendData] = None,
    savings: Optional[SavingsBreakdown] = None,
) -> bytes:
    """
    Excel workbook for a report.

    Sheets: Summary, Tasks, and Trends when a trend series is given.

    Returns:
        The .xlsx file contents
    """
    wb = Workbook()
    _summary_sheet(wb, report, settings, savings)
    _tasks_sheet(wb, report, settings.currency)
    if trends is not None:
        _trends_sheet(wb, trends)

    output = io.BytesIO()
    wb.save(output)
    logger.info(f"Generated report workbook with {len(wb.sheetnames)} sheets")
    return output.getvalue()
