"""
Tests for the PCI formula.

Run with: python -m pytest tests/test_formula_engine.py -v
"""

import pytest

from pci_engine.formula_engine import (
    DEFAULT_FACTORS,
    FACTOR_NAMES,
    FormulaBreakdown,
    compute_breakdown,
    compute_cost,
    compute_pci,
)
from pci_engine.models import Task


class TestComputePCI:

    def test_reference_example(self, example_factors):
        assert compute_pci(example_factors) == pytest.approx(20.402)

    def test_reference_breakdown(self, example_factors):
        b = compute_breakdown(example_factors)
        assert b.scope_complexity == pytest.approx(9.1)
        assert b.risk_engineering == pytest.approx(8.0)
        assert b.multi_layer == pytest.approx(1.872)
        assert b.specialty_governance == pytest.approx(1.43)
        assert b.total == compute_pci(example_factors)

    def test_deterministic(self, example_factors):
        results = {compute_pci(example_factors) for _ in range(50)}
        assert len(results) == 1

    def test_task_and_mapping_agree(self, example_factors):
        task = Task(task_name="Example", **example_factors)
        assert task.pci_units == compute_pci(example_factors)

    def test_defaults(self):
        # 1 + (1 - 0) + 1 + 1
        assert compute_pci({}) == 4.0
        assert compute_pci(DEFAULT_FACTORS) == 4.0
        assert Task(task_name="New").pci_units == 4.0

    def test_out_of_range_factors_accepted(self):
        factors = {name: -3.5 for name in FACTOR_NAMES}
        assert isinstance(compute_pci(factors), float)

    def test_eleven_factors(self):
        assert len(FACTOR_NAMES) == 11
        assert set(DEFAULT_FACTORS) == set(FACTOR_NAMES)


class TestMonotonicity:

    @pytest.mark.parametrize("name", ["ISR", "CF", "UXI"])
    def test_scope_factors_increase_pci(self, example_factors, name):
        base = compute_pci(example_factors)
        bumped = dict(example_factors, **{name: example_factors[name] + 0.5})
        assert compute_pci(bumped) > base

    def test_learning_curve_decreases_pci(self, example_factors):
        base = compute_pci(example_factors)
        bumped = dict(example_factors, L=example_factors["L"] + 0.5)
        assert compute_pci(bumped) < base


class TestBreakdownSum:

    def test_add(self):
        a = FormulaBreakdown(1, 2, 3, 4)
        b = FormulaBreakdown(0.5, 0.5, 0.5, 0.5)
        total = a + b
        assert total.to_dict() == {
            "scopeComplexity": 1.5,
            "riskEngineering": 2.5,
            "multiLayer": 3.5,
            "specialtyGovernance": 4.5,
        }
        assert total.total == 12.0


class TestCost:

    def test_direct_units_times_rate(self):
        assert compute_cost(10, 66) == 660

    def test_zero_units(self):
        assert compute_cost(0, 120) == 0
