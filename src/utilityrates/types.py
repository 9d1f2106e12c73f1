from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

import pandas as pd

ADVISORY = "advisory"
DETERMINISTIC = "deterministic"


@dataclass(frozen=True)
class EnterpriseSnapshot:
    name: str
    customer_count: int
    total_budget: float
    total_revenue: float
    total_expenses: float
    year_to_date_spending: float = 0.0
    required_rate: float = 0.0
    affordability_index: float = 1.0
    reserve_target: float = 0.0
    fund: str = "water"
    municipality: str = "Town of Wiley"
    # As supplied by the data layer; the engine recomputes both.
    budget_remaining: float | None = None
    percent_of_budget_used: float | None = None

    @property
    def remaining_budget(self) -> float:
        return self.total_budget - self.year_to_date_spending

    @property
    def budget_utilization(self) -> float:
        if self.total_budget > 0:
            return self.year_to_date_spending / self.total_budget
        return float(self.percent_of_budget_used or 0.0)

    def financial_ratios(self) -> dict[str, float]:
        ratios: dict[str, float] = {}
        customers = max(self.customer_count, 1)
        if self.total_revenue > 0:
            ratios["expense_ratio"] = self.total_expenses / self.total_revenue
            ratios["revenue_per_customer"] = self.total_revenue / customers
        if self.total_budget > 0:
            ratios["budget_utilization"] = self.budget_utilization
            ratios["budget_per_customer"] = self.total_budget / customers
        if self.customer_count > 0:
            ratios["expense_per_customer"] = self.total_expenses / self.customer_count
        return ratios

    def risk_factors(self) -> list[str]:
        risks: list[str] = []
        if self.budget_utilization > 0.9:
            risks.append("High budget utilization - approaching budget limits")
        if self.total_revenue - self.total_expenses < 0:
            risks.append("Negative cash flow - expenses exceed revenue")
        if self.affordability_index < 0.8:
            risks.append("Low customer affordability - rates may be too high")
        if self.reserve_target > 0 and self.remaining_budget < self.reserve_target:
            risks.append("Insufficient reserves - below target reserve level")
        if self.total_expenses > 0 and self.total_revenue / self.total_expenses < 1.0:
            risks.append("Operational inefficiency - revenue below expenses")
        return risks

    def summary(self) -> str:
        return "\n".join(
            [
                f"Municipality: {self.municipality}",
                f"Enterprise: {self.name} ({self.fund})",
                f"Customer Base: {self.customer_count:,} customers",
                f"Total Budget: ${self.total_budget:,.2f}",
                f"Total Revenue: ${self.total_revenue:,.2f}",
                f"Total Expenses: ${self.total_expenses:,.2f}",
                f"YTD Spending: ${self.year_to_date_spending:,.2f} ({self.budget_utilization:.1%} of budget)",
                f"Budget Remaining: ${self.remaining_budget:,.2f}",
                f"Current Rate: ${self.required_rate:,.2f} per customer per month",
                f"Customer Affordability Index: {self.affordability_index:.1%}",
                f"Reserve Target: ${self.reserve_target:,.2f}",
            ]
        )


@dataclass(frozen=True)
class RateOptimizationGoals:
    target_revenue: float
    max_rate_increase_percent: float = 0.15
    customer_retention_target: float = 0.95
    affordability_constraint: float = 0.04

    def normalized(self, max_rate_step: float = 0.5) -> "RateOptimizationGoals":
        return RateOptimizationGoals(
            target_revenue=max(0.0, float(self.target_revenue)),
            max_rate_increase_percent=min(max(0.0, float(self.max_rate_increase_percent)), max_rate_step),
            customer_retention_target=min(max(0.0, float(self.customer_retention_target)), 1.0),
            affordability_constraint=min(max(0.0, float(self.affordability_constraint)), 1.0),
        )


@dataclass(frozen=True)
class CustomerDemographics:
    segment: str
    average_household_income: float
    customers: int


@dataclass(frozen=True)
class FinancialDataPoint:
    date: date
    value: float
    category: str = ""
    description: str = ""


@dataclass(frozen=True)
class RevenuePoint:
    date: date
    revenue: float
    customer_count: int = 0
    average_rate: float = 0.0


@dataclass(frozen=True)
class RegulatoryRequirement:
    name: str
    type: str
    description: str = ""
    threshold: float = 0.0
    min_value: float = 0.0
    max_value: float = 0.0
    mandatory: bool = True
    authority: str = ""
    recommended_action: str = ""


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class OptimizedRate:
    service_type: str
    current_rate: float
    recommended_rate: float
    rate_change: float
    justification: str
    confidence: float

    @property
    def percentage_change(self) -> float:
        return self.rate_change / self.current_rate if self.current_rate > 0 else 0.0


@dataclass(frozen=True)
class RevenueProjection:
    projected_annual_revenue: float = 0.0
    revenue_change: float = 0.0


@dataclass(frozen=True)
class CustomerImpact:
    average_monthly_increase: float = 0.0
    percentage_increase: float = 0.0
    estimated_customer_loss: float = 0.0


@dataclass(frozen=True)
class RateOptimizationResult:
    success: bool
    method: str
    error: str = ""
    method_detail: str = ""
    confidence: float = 0.0
    rates: list[OptimizedRate] = field(default_factory=list)
    revenue_projection: RevenueProjection = field(default_factory=RevenueProjection)
    customer_impact: CustomerImpact = field(default_factory=CustomerImpact)
    risk_factors: list[str] = field(default_factory=list)
    narrative: str = ""
    notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AffordabilityResult:
    success: bool
    method: str
    error: str = ""
    method_detail: str = ""
    confidence: float = 0.0
    affordability_fraction: float = 0.0
    score: float = 0.0
    vulnerable_fraction: float = 0.0
    rating: str = ""
    monthly_burden: float = 0.0
    reference_income: float = 0.0
    assistance_programs: list[str] = field(default_factory=list)
    alternative_rate_structures: list[str] = field(default_factory=list)
    narrative: str = ""
    notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DetectedAnomaly:
    date: date
    value: float
    expected: float
    deviation: float
    severity: float
    anomaly_type: str
    description: str = ""


@dataclass(frozen=True)
class SeverityAssessment:
    overall: str = "Low"
    critical: int = 0
    high: int = 0
    medium: int = 0
    low: int = 0


@dataclass(frozen=True)
class AnomalyDetectionResult:
    success: bool
    method: str
    error: str = ""
    method_detail: str = ""
    confidence: float = 0.0
    mean: float = 0.0
    std_dev: float = 0.0
    anomalies: list[DetectedAnomaly] = field(default_factory=list)
    severity: SeverityAssessment = field(default_factory=SeverityAssessment)
    recommended_actions: list[str] = field(default_factory=list)
    narrative: str = ""
    notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ConfidenceInterval:
    lower: float
    upper: float
    level: float


@dataclass(frozen=True)
class ScenarioAnalysis:
    optimistic: list[float] = field(default_factory=list)
    realistic: list[float] = field(default_factory=list)
    pessimistic: list[float] = field(default_factory=list)
    optimistic_probability: float = 0.2
    realistic_probability: float = 0.6
    pessimistic_probability: float = 0.2


@dataclass(frozen=True)
class RevenueForecastResult:
    success: bool
    method: str
    error: str = ""
    method_detail: str = ""
    confidence: float = 0.0
    slope: float = 0.0
    intercept: float = 0.0
    periods: list[str] = field(default_factory=list)
    projections: list[float] = field(default_factory=list)
    intervals: list[ConfidenceInterval] = field(default_factory=list)
    scenarios: ScenarioAnalysis = field(default_factory=ScenarioAnalysis)
    key_assumptions: list[str] = field(default_factory=list)
    narrative: str = ""
    notes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ComplianceDetail:
    requirement: str
    compliant: bool
    details: str = ""
    recommended_action: str = ""
    priority: str = "Medium"

    @property
    def status(self) -> str:
        return "Compliant" if self.compliant else "Non-Compliant"


@dataclass(frozen=True)
class ComplianceResult:
    success: bool
    method: str
    error: str = ""
    method_detail: str = ""
    confidence: float = 0.0
    score: float = 0.0
    passed: int = 0
    total: int = 0
    gaps: list[str] = field(default_factory=list)
    recommended_actions: list[str] = field(default_factory=list)
    details: list[ComplianceDetail] = field(default_factory=list)
    risk_level: str = ""
    risk_assessment: str = ""
    narrative: str = ""
    notes: list[str] = field(default_factory=list)


CalculationResult = (
    RateOptimizationResult | AffordabilityResult | AnomalyDetectionResult | RevenueForecastResult | ComplianceResult
)


@dataclass(frozen=True)
class AnalysisBundle:
    """All five capability results for one enterprise snapshot."""

    enterprise: str
    rates: RateOptimizationResult
    affordability: AffordabilityResult
    anomalies: AnomalyDetectionResult
    forecast: RevenueForecastResult
    compliance: ComplianceResult
    assumptions: dict[str, Any] = field(default_factory=dict)

    def results(self) -> dict[str, CalculationResult]:
        return {
            "rates": self.rates,
            "affordability": self.affordability,
            "anomalies": self.anomalies,
            "forecast": self.forecast,
            "compliance": self.compliance,
        }


@dataclass(frozen=True)
class Inputs:
    snapshot: EnterpriseSnapshot
    goals: RateOptimizationGoals
    proposed_rate: float
    revenue_history: list[RevenuePoint]
    financial_data: list[FinancialDataPoint]
    requirements: list[RegulatoryRequirement]
    demographics: list[CustomerDemographics] = field(default_factory=list)
    household_income: float | None = None
    account_lines: pd.DataFrame | None = None
    warnings: list[str] = field(default_factory=list)
