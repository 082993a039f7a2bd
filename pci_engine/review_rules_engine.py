"""
Review Rules Engine
Automated checks that suggest review flags for tasks.

Rules are deterministic and run over an explicit task + settings snapshot.
Each rule maps onto one flag category:

    LOW_AAS_001          LowAAS         accuracy score below threshold
    HIGH_COST_002        HighCost       unverified cost at or above threshold
    UNCLEAR_SCOPE_003    UnclearScope   never estimated (factors untouched, no AI result)
    REVIEW_NEEDED_004    ReviewNeeded   AI-verified units diverge from PCI units
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .formula_engine import DEFAULT_FACTORS, FACTOR_NAMES
from .models import FlagCategory, FlagSeverity, FlagStatus, Settings, Task
from .savings_engine import task_cost
from .settings_loader import FALLBACK_HOURLY_RATE, get_settings

logger = logging.getLogger(__name__)

DEFAULT_RULE_CONFIG: Dict[str, float] = {
    "low_aas_threshold": 85.0,
    "critical_aas_threshold": 50.0,
    "high_cost_threshold": 10000.0,
    "divergence_ratio": 0.5,
    "fallback_hourly_rate": FALLBACK_HOURLY_RATE,
}

# ============================================================================
# Rule Framework Types
# ============================================================================

@dataclass
class FlagSuggestion:
    """A flag a rule thinks should be raised on a task."""
    rule_id: str
    task_id: str
    category: FlagCategory
    severity: FlagSeverity
    notes: str
    evidence: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleId": self.rule_id,
            "taskId": self.task_id,
            "category": self.category.value,
            "severity": self.severity.value,
            "notes": self.notes,
            "evidence": self.evidence,
        }


@dataclass
class RuleResult:
    rule_id: str
    suggestions: List[FlagSuggestion]
    tasks_checked: int
    errors: List[str] = field(default_factory=list)


class ReviewRule:
    """Base class for review rules."""

    rule_id: str = ""
    category: FlagCategory = FlagCategory.REVIEW_NEEDED
    severity: FlagSeverity = FlagSeverity.MEDIUM

    def __init__(self, config: Dict[str, Any]):
        self.config = config

    def check(self, task: Task, settings: Optional[Settings]) -> Optional[FlagSuggestion]:
        raise NotImplementedError

    def run(self, tasks: List[Task], settings: Optional[Settings]) -> RuleResult:
        suggestions = []
        for task in tasks:
            suggestion = self.check(task, settings)
            if suggestion is not None:
                suggestions.append(suggestion)
        return RuleResult(self.rule_id, suggestions, len(tasks))

    def suggest(self, task: Task, notes: str, severity: Optional[FlagSeverity] = None, **evidence) -> FlagSuggestion:
        return FlagSuggestion(
            rule_id=self.rule_id,
            task_id=task.id,
            category=self.category,
            severity=severity or self.severity,
            notes=notes,
            evidence=evidence,
        )


# ============================================================================
# Rule Definitions
# ============================================================================

class LowAASRule(ReviewRule):
    """LOW_AAS_001: accuracy score set but under the threshold."""

    rule_id = "LOW_AAS_001"
    category = FlagCategory.LOW_AAS
    severity = FlagSeverity.MEDIUM

    def check(self, task, settings):
        threshold = float(self.config["low_aas_threshold"])
        if task.aas is None or not 0 < task.aas < threshold:
            return None
        severity = self.severity
        if task.aas < float(self.config["critical_aas_threshold"]):
            severity = FlagSeverity.HIGH
        return self.suggest(
            task,
            f"Accuracy score {task.aas:.1f}% is below the {threshold:.0f}% threshold",
            severity=severity,
            aas=task.aas,
            threshold=threshold,
        )


class HighCostRule(ReviewRule):
    """HIGH_COST_002: estimated cost at or above the configured threshold."""

    rule_id = "HIGH_COST_002"
    category = FlagCategory.HIGH_COST
    severity = FlagSeverity.HIGH

    def check(self, task, settings):
        threshold = float(self.config["high_cost_threshold"])
        cost = task_cost(task, settings, float(self.config["fallback_hourly_rate"]))
        if cost < threshold:
            return None
        currency = settings.currency if settings is not None else "USD"
        return self.suggest(
            task,
            f"Estimated cost {cost:,.2f} {currency} exceeds the {threshold:,.0f} {currency} threshold",
            cost=cost,
            threshold=threshold,
        )


class UnclearScopeRule(ReviewRule):
    """UNCLEAR_SCOPE_003: factors never moved off their defaults and no AI result."""

    rule_id = "UNCLEAR_SCOPE_003"
    category = FlagCategory.UNCLEAR_SCOPE
    severity = FlagSeverity.LOW

    def check(self, task, settings):
        if task.ai_verified_units is not None:
            return None
        if any(getattr(task, name) != DEFAULT_FACTORS[name] for name in FACTOR_NAMES):
            return None
        return self.suggest(
            task,
            "Task still has default factors and no AI verification; scope has not been estimated",
            pci_units=task.pci_units,
        )


class ReviewNeededRule(ReviewRule):
    """REVIEW_NEEDED_004: AI-verified units differ from PCI units by more than the ratio."""

    rule_id = "REVIEW_NEEDED_004"
    category = FlagCategory.REVIEW_NEEDED
    severity = FlagSeverity.MEDIUM

    def check(self, task, settings):
        if task.ai_verified_units is None or task.pci_units <= 0:
            return None
        ratio = float(self.config["divergence_ratio"])
        divergence = abs(task.ai_verified_units - task.pci_units) / task.pci_units
        if divergence <= ratio:
            return None
        return self.suggest(
            task,
            f"AI-verified units ({task.ai_verified_units:.2f}) differ from PCI units "
            f"({task.pci_units:.2f}) by {divergence * 100:.0f}%",
            pci_units=task.pci_units,
            ai_verified_units=task.ai_verified_units,
            divergence=divergence,
        )


ALL_RULES = [LowAASRule, HighCostRule, UnclearScopeRule, ReviewNeededRule]


# ============================================================================
# Runner
# ============================================================================

class ReviewRulesEngine:
    """
    Runs every rule over a task snapshot and, optionally, raises the
    suggested flags through the review workflow.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = {**DEFAULT_RULE_CONFIG, **(config or {})}

    @classmethod
    def from_config(cls, pci_config) -> "ReviewRulesEngine":
        """Thresholds from process configuration (PCIConfig)."""
        return cls({
            "low_aas_threshold": pci_config.low_aas_threshold,
            "high_cost_threshold": pci_config.high_cost_threshold,
            "fallback_hourly_rate": pci_config.fallback_hourly_rate,
        })

    def run(self, tasks: List[Optional[Task]], settings: Optional[Settings]) -> Dict[str, Any]:
        """
        Evaluate all rules.

        Returns:
            Dict with suggestions (list of FlagSuggestion), per-rule results,
            counts by category and any rule errors
        """
        tasks = [t for t in tasks if t is not None and not t.is_deleted]
        results: Dict[str, Any] = {
            "rules_executed": 0,
            "suggestions": [],
            "suggestions_by_category": {c.value: 0 for c in FlagCategory},
            "rule_results": [],
            "errors": [],
        }

        for rule_class in ALL_RULES:
            rule = rule_class(self.config)
            try:
                rule_result = rule.run(tasks, settings)
            except (TypeError, ValueError, KeyError) as e:
                logger.error(f"Error running rule {rule_class.rule_id}: {e}")
                results["errors"].append(f"{rule_class.rule_id}: {e}")
                continue

            results["rules_executed"] += 1
            results["suggestions"].extend(rule_result.suggestions)
            results["suggestions_by_category"][rule.category.value] += len(rule_result.suggestions)
            results["rule_results"].append({
                "rule_id": rule_result.rule_id,
                "tasks_checked": rule_result.tasks_checked,
                "suggestions_count": len(rule_result.suggestions),
                "errors": rule_result.errors,
            })

        return results

    def apply(
        self,
        workflow,
        user_id: str,
        tasks: Optional[List[Task]] = None,
        settings: Optional[Settings] = None,
    ) -> Dict[str, Any]:
        """
        Run the rules for an account and create flags for new findings.

        A suggestion is skipped when the task already has an open flag of
        the same category; resolved flags do not block a new one.

        Args:
            workflow: ReviewWorkflow used to create flags
            user_id: Acting reviewer
            tasks: Task snapshot (loaded from the workflow's store when omitted)
            settings: Settings snapshot (loaded when omitted)
        """
        if tasks is None:
            tasks = workflow.tasks.list_tasks(user_id)
        if settings is None:
            settings = get_settings(workflow.store, user_id)

        results = self.run(tasks, settings)
        open_flags: Set[Tuple[str, str]] = {
            (f.task_id, f.category.value)
            for f in workflow.list_flags(user_id, status=FlagStatus.OPEN)
        }

        created = []
        skipped = 0
        for suggestion in results["suggestions"]:
            marker = (suggestion.task_id, suggestion.category.value)
            if marker in open_flags:
                skipped += 1
                continue
            flag = workflow.create_flag(
                user_id,
                suggestion.task_id,
                suggestion.category,
                suggestion.severity,
                f"[{suggestion.rule_id}] {suggestion.notes}",
            )
            open_flags.add(marker)
            created.append(flag)

        results["flags_created"] = len(created)
        results["flags_skipped"] = skipped
        results["flags"] = created
        logger.info(
            f"Review rules for {user_id}: {len(results['suggestions'])} suggestions, "
            f"{len(created)} flags created, {skipped} skipped"
        )
        return results
