"""
Tests for the savings breakdown.
"""

from datetime import datetime, timezone

import pytest

from pci_engine.models import Settings, Task
from pci_engine.savings_engine import compute_savings, task_cost

SETTINGS = Settings(default_hourly_rate=100)


class TestComputeSavings:

    def test_empty_set_is_all_zero(self):
        savings = compute_savings([], SETTINGS)
        assert all(value == 0 for value in savings.model_dump().values())
        assert savings.total_savings == (
            savings.ai_verification_savings + savings.vendor_rate_savings + savings.budget_efficiency
        )

    def test_missing_tasks_are_excluded(self):
        assert compute_savings([None, None], SETTINGS) == compute_savings([], SETTINGS)

    def test_worked_example(self, example_factors):
        task = Task(task_name="Payments", ai_verified_units=18, actual_hours=15, **example_factors)
        s = compute_savings([task], SETTINGS)

        assert s.original_estimate == pytest.approx(2040.2)
        assert s.optimized_estimate == pytest.approx(1800)
        assert s.ai_verification_savings == pytest.approx(240.2)
        assert s.vendor_cost == pytest.approx(18 * 130)
        assert s.vendor_rate_savings == pytest.approx(540)
        assert s.actual_spent == pytest.approx(1500)
        assert s.budget_efficiency == pytest.approx(300)
        assert s.total_savings == pytest.approx(1080.2)
        assert s.efficiency_percentage == pytest.approx(1080.2 / 2040.2 * 100)

    def test_identity_is_exact(self, example_factors):
        tasks = [
            Task(task_name="a", ai_verified_units=18.3, actual_hours=11.7, **example_factors),
            Task(task_name="b", ISR=2.7, hourly_rate=85.5, vendor_rate=140, ai_verified_units=3.3),
            Task(task_name="c", aas=90),
        ]
        s = compute_savings(tasks, SETTINGS)
        assert s.total_savings == s.ai_verification_savings + s.vendor_rate_savings + s.budget_efficiency

    def test_vendor_rate_override(self):
        task = Task(task_name="t", ai_verified_units=10, vendor_rate=90)
        assert compute_savings([task], SETTINGS).vendor_cost == 900

    def test_custom_markup(self):
        task = Task(task_name="t", ai_verified_units=10)
        assert compute_savings([task], SETTINGS, vendor_markup=2.0).vendor_cost == 2000

    def test_unverified_tasks_count_as_zero_verified(self):
        task = Task(task_name="t")  # 4 PCI units
        s = compute_savings([task], SETTINGS)
        assert s.original_estimate == 400
        assert s.optimized_estimate == 0
        assert s.ai_verification_savings == 400

    def test_task_rate_takes_precedence(self):
        task = Task(task_name="t", hourly_rate=50)
        assert compute_savings([task], SETTINGS).original_estimate == 200
        assert task_cost(task, SETTINGS) == 200

    def test_fallback_rate(self):
        task = Task(task_name="t")
        assert compute_savings([task], Settings(default_hourly_rate=None)).original_estimate == 4 * 66

    def test_no_original_estimate_gives_zero_percentage(self):
        task = Task(task_name="t", hourly_rate=0)
        assert compute_savings([task], SETTINGS).efficiency_percentage == 0

    def test_deleted_tasks_are_excluded(self, example_factors):
        live = Task(task_name="live", ai_verified_units=10)
        gone = Task(task_name="gone", deleted_at=datetime(2026, 10, 1, tzinfo=timezone.utc), **example_factors)
        assert compute_savings([live, gone], SETTINGS) == compute_savings([live], SETTINGS)
        assert compute_savings([gone], SETTINGS).efficiency_percentage == 0
