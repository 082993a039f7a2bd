"""
Formula Engine
Derives the PCI effort score from task factors.

    pci = (ISR x CF x UXI) + (RCF x AEP - L) + (MLW x CGW x RF) + (S x GLRI)

Pure functions only: no state, no I/O, no error path for numeric input.
Out-of-range factors are accepted since range guidance is advisory.
"""

from dataclasses import dataclass
from typing import Any, Mapping, Tuple

# ============================================================================
# Factor Definitions
# ============================================================================

FACTOR_NAMES: Tuple[str, ...] = (
    "ISR", "CF", "UXI", "RCF", "AEP", "L", "MLW", "CGW", "RF", "S", "GLRI",
)

FACTOR_DESCRIPTIONS = {
    "ISR": "Initial Scope Rating - baseline complexity score for the task",
    "CF": "Complexity Factor - technical complexity relative to industry norms",
    "UXI": "User Experience Impact - impact on end-user experience",
    "RCF": "Risk Complexity Factor - technical and business risk",
    "AEP": "Architecture & Engineering Points - engineering design complexity",
    "L": "Learning Curve - knowledge transfer and ramp-up time",
    "MLW": "Multi-Layer Work - cross-functional coordination required",
    "CGW": "Cross-Group Work - collaboration across teams or departments",
    "RF": "Rework Factor - likelihood of changes or iterations",
    "S": "Specialty Factor - need for specialized skills or tools",
    "GLRI": "Governance & Legal Risk Index - compliance and regulatory complexity",
}

# New tasks start neutral: every multiplier at 1, no learning-curve deduction
DEFAULT_FACTORS = {name: 1.0 for name in FACTOR_NAMES}
DEFAULT_FACTORS["L"] = 0.0


@dataclass(frozen=True)
class FormulaBreakdown:
    """The four formula groups for one task (or summed over many)."""
    scope_complexity: float = 0.0
    risk_engineering: float = 0.0
    multi_layer: float = 0.0
    specialty_governance: float = 0.0

    @property
    def total(self) -> float:
        # Left-to-right summation keeps results bit-reproducible
        return ((self.scope_complexity + self.risk_engineering) + self.multi_layer) + self.specialty_governance

    def __add__(self, other: "FormulaBreakdown") -> "FormulaBreakdown":
        return FormulaBreakdown(
            scope_complexity=self.scope_complexity + other.scope_complexity,
            risk_engineering=self.risk_engineering + other.risk_engineering,
            multi_layer=self.multi_layer + other.multi_layer,
            specialty_governance=self.specialty_governance + other.specialty_governance,
        )

    def to_dict(self) -> dict:
        return {
            "scopeComplexity": self.scope_complexity,
            "riskEngineering": self.risk_engineering,
            "multiLayer": self.multi_layer,
            "specialtyGovernance": self.specialty_governance,
        }


# ============================================================================
# Computation
# ============================================================================

def _factor(source: Any, name: str) -> float:
    if isinstance(source, Mapping):
        value = source.get(name, DEFAULT_FACTORS[name])
    else:
        value = getattr(source, name)
    return float(value)


def compute_breakdown(factors: Any) -> FormulaBreakdown:
    """
    Compute the four formula groups.

    Args:
        factors: Task (or any object with factor attributes) or a mapping
                 of factor name to value; missing mapping keys use defaults

    Returns:
        FormulaBreakdown
    """
    f = {name: _factor(factors, name) for name in FACTOR_NAMES}
    return FormulaBreakdown(
        scope_complexity=f["ISR"] * f["CF"] * f["UXI"],
        risk_engineering=f["RCF"] * f["AEP"] - f["L"],
        multi_layer=f["MLW"] * f["CGW"] * f["RF"],
        specialty_governance=f["S"] * f["GLRI"],
    )


def compute_pci(factors: Any) -> float:
    """Compute PCI units for a factor set."""
    return compute_breakdown(factors).total


def compute_cost(units: float, rate: float) -> float:
    """
    Cost of a number of PCI units at an hourly rate.

    Units are priced directly (units x rate). The unit-to-hour ratio is only
    used to present an hours estimate, never to price work.
    """
    return units * rate
