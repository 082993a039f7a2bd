"""
Savings Engine
Three-part savings breakdown for a task set.

    original estimate     sum(pciUnits x rate)
    optimized estimate    sum(aiVerifiedUnits x rate)
    AI verification       original - optimized
    vendor rate           sum(aiVerifiedUnits x (vendorRate or rate x markup)) - optimized
    budget efficiency     optimized - sum(actualHours x rate)

Pure over its inputs: the caller supplies the tasks and one settings snapshot.
"""

import logging
from typing import Any, Iterable, Optional

from .formula_engine import compute_cost
from .models import SavingsBreakdown, Settings, Task
from .settings_loader import FALLBACK_HOURLY_RATE, resolve_rate

logger = logging.getLogger(__name__)

# Vendors are assumed to charge 30% over the internal rate when no vendor rate is set
DEFAULT_VENDOR_MARKUP = 1.3


def task_cost(task: Any, settings: Optional[Settings], fallback: float = FALLBACK_HOURLY_RATE) -> float:
    """Unverified cost of one task at its effective rate."""
    return compute_cost(task.pci_units, resolve_rate(task, settings, fallback))


def verified_cost(task: Any, settings: Optional[Settings], fallback: float = FALLBACK_HOURLY_RATE) -> float:
    return compute_cost(task.ai_verified_units or 0.0, resolve_rate(task, settings, fallback))


def compute_savings(
    tasks: Iterable[Optional[Task]],
    settings: Optional[Settings],
    vendor_markup: float = DEFAULT_VENDOR_MARKUP,
    fallback_rate: float = FALLBACK_HOURLY_RATE,
) -> SavingsBreakdown:
    """
    Compute the savings breakdown.

    Args:
        tasks: Task snapshot; missing and soft-deleted tasks are dropped
               before any sum
        settings: Account settings snapshot
        vendor_markup: Multiplier applied to the effective rate when a task
                       has no vendor rate of its own
        fallback_rate: Rate used when neither task nor settings set one

    Returns:
        SavingsBreakdown (all zeros for an empty set)
    """
    tasks = [t for t in tasks if t is not None and not t.is_deleted]

    original_estimate = 0.0
    optimized_estimate = 0.0
    vendor_cost = 0.0
    actual_spent = 0.0

    for task in tasks:
        rate = resolve_rate(task, settings, fallback_rate)
        verified_units = task.ai_verified_units or 0.0

        original_estimate += compute_cost(task.pci_units, rate)
        optimized_estimate += compute_cost(verified_units, rate)

        vendor_rate = task.vendor_rate if task.vendor_rate is not None else rate * vendor_markup
        vendor_cost += compute_cost(verified_units, vendor_rate)

        actual_spent += compute_cost(task.actual_hours or 0.0, rate)

    ai_verification_savings = original_estimate - optimized_estimate
    vendor_rate_savings = vendor_cost - optimized_estimate
    budget_efficiency = optimized_estimate - actual_spent
    total_savings = ai_verification_savings + vendor_rate_savings + budget_efficiency
    efficiency_percentage = total_savings / original_estimate * 100 if original_estimate > 0 else 0.0

    logger.debug(
        f"Savings over {len(tasks)} tasks: original={original_estimate:.2f} "
        f"total={total_savings:.2f} ({efficiency_percentage:.1f}%)"
    )

    return SavingsBreakdown(
        original_estimate=original_estimate,
        optimized_estimate=optimized_estimate,
        ai_verification_savings=ai_verification_savings,
        vendor_cost=vendor_cost,
        vendor_rate_savings=vendor_rate_savings,
        actual_spent=actual_spent,
        budget_efficiency=budget_efficiency,
        total_savings=total_savings,
        efficiency_percentage=efficiency_percentage,
    )
