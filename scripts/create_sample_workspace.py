#!/usr/bin/env python3
"""
Create Sample PCI Workspace

Seeds an in-memory store with a realistic set of tasks, runs them through
review and the automated rules, and writes CSV/XLSX exports of the result.

    python scripts/create_sample_workspace.py --output-dir sample_output
"""

import argparse
import logging
import os
from datetime import datetime, timezone

from pci_engine.config import configure_logging, load_config
from pci_engine.export_engine import (
    export_audit_trail_csv,
    export_filename,
    export_report_xlsx,
    export_tasks_csv,
)
from pci_engine.kv_store import InMemoryKVStore
from pci_engine.reporting_engine import ReportingService
from pci_engine.review_rules_engine import ReviewRulesEngine
from pci_engine.review_workflow import ReviewWorkflow
from pci_engine.settings_loader import apply_industry_preset, get_settings

logger = logging.getLogger(__name__)

SAMPLE_USER = "sample-user"

SAMPLE_TASKS = [
    {
        "task_name": "Payment gateway integration",
        "factors": {"ISR": 5, "CF": 1.4, "UXI": 1.3, "RCF": 1.5, "AEP": 6, "L": 1,
                    "MLW": 1.3, "CGW": 1.2, "RF": 1.2, "S": 1.1, "GLRI": 1.3},
        "ai": (19.5, 95.6),
        "actual_hours": 18,
        "review": "approve",
    },
    {
        "task_name": "KYC document upload flow",
        "factors": {"ISR": 4, "CF": 1.2, "UXI": 1.5, "RCF": 1.3, "AEP": 4, "L": 0.5,
                    "MLW": 1.1, "CGW": 1.0, "RF": 1.1, "S": 1.2, "GLRI": 1.6},
        "ai": (12.1, 78.0),
        "vendor_rate": 140,
        "review": "reject",
    },
    {
        "task_name": "Audit log retention policy",
        "factors": {"ISR": 3, "CF": 1.1, "UXI": 1.0, "RCF": 1.2, "AEP": 3, "L": 0,
                    "MLW": 1.0, "CGW": 1.2, "RF": 1.0, "S": 1.0, "GLRI": 1.8},
        "ai": (9.0, 88.0),
    },
    {
        "task_name": "Realtime fraud scoring service",
        "factors": {"ISR": 9, "CF": 1.8, "UXI": 1.2, "RCF": 2.0, "AEP": 9, "L": 2,
                    "MLW": 1.6, "CGW": 1.5, "RF": 1.4, "S": 1.6, "GLRI": 1.5},
        "ai": (21.0, 62.0),
        "hourly_rate": 120,
    },
    {
        "task_name": "Marketing site refresh",
        "factors": {},
    },
]


def create_sample_workspace(output_dir: str) -> dict:
    """Build the sample workspace and write exports into output_dir."""
    config = load_config()
    store = InMemoryKVStore()
    workflow = ReviewWorkflow(store)
    tasks = workflow.tasks

    apply_industry_preset(store, workflow.recorder, SAMPLE_USER, "fintech")

    for sample in SAMPLE_TASKS:
        fields = {k: sample[k] for k in ("hourly_rate", "vendor_rate") if k in sample}
        task = tasks.create_task(SAMPLE_USER, sample["task_name"], sample["factors"], **fields)
        if "ai" in sample:
            units, aas = sample["ai"]
            tasks.accept_ai_suggestion(SAMPLE_USER, task.id, units, aas)
        if "actual_hours" in sample:
            tasks.record_actual_hours(SAMPLE_USER, task.id, sample["actual_hours"])
        if sample.get("review") == "approve":
            workflow.approve_task(SAMPLE_USER, task.id, notes="Matches the vendor quote")
        elif sample.get("review") == "reject":
            workflow.reject_task(SAMPLE_USER, task.id, reason="Scope overlaps the onboarding epic")
        workflow.add_comment(SAMPLE_USER, task.id, f"Imported {task.task_name}")

    rules = ReviewRulesEngine.from_config(config).apply(workflow, SAMPLE_USER)

    reporting = ReportingService(store, config)
    report = reporting.generate_report(SAMPLE_USER, {"includeAudit": True})
    trends = reporting.get_trends(SAMPLE_USER, "week")
    savings = reporting.get_savings(SAMPLE_USER)
    settings = get_settings(store, SAMPLE_USER)

    os.makedirs(output_dir, exist_ok=True)
    today = datetime.now(tz=timezone.utc)
    paths = {
        "tasks_csv": os.path.join(output_dir, export_filename("pci_report", today, "csv")),
        "audit_csv": os.path.join(output_dir, export_filename("pci_audit_trail", today, "csv")),
        "xlsx": os.path.join(output_dir, export_filename("pci_report", today, "xlsx")),
    }

    with open(paths["tasks_csv"], "w", newline="") as f:
        f.write(export_tasks_csv(tasks.list_tasks(SAMPLE_USER)))
    with open(paths["audit_csv"], "w", newline="") as f:
        f.write(export_audit_trail_csv(reporting.audit.list_by_user(SAMPLE_USER)))
    with open(paths["xlsx"], "wb") as f:
        f.write(export_report_xlsx(report, settings, trends=trends, savings=savings))

    logger.info(
        f"Sample workspace: {report.summary.total_tasks} tasks, "
        f"{rules['flags_created']} flags, total savings {savings.total_savings:,.2f}"
    )
    return paths


def main():
    parser = argparse.ArgumentParser(description="Create a sample PCI workspace and exports")
    parser.add_argument("--output-dir", default="sample_output", help="Directory for the exported files")
    parser.add_argument("--log-level", default=None, help="Logging level (default: PCI_LOG_LEVEL or INFO)")
    args = parser.parse_args()

    configure_logging(args.log_level)
    paths = create_sample_workspace(args.output_dir)
    for name, path in paths.items():
        print(f"{name}: {path}")


if __name__ == "__main__":
    main()
