"""Deterministic fallback calculations.

Closed-form rate, affordability, anomaly, forecast and compliance math with no
external dependency. Every function is pure: same inputs, same result. The only
failure any of them reports is insufficient input data.
"""

from __future__ import annotations

from typing import Sequence

import numpy as np
import pandas as pd

from .config import EngineConfig, InvestmentScenario
from .scenarios import monthly_payment
from .types import (
    DETERMINISTIC,
    AffordabilityResult,
    AnomalyDetectionResult,
    ComplianceDetail,
    ComplianceResult,
    ConfidenceInterval,
    CustomerDemographics,
    CustomerImpact,
    DetectedAnomaly,
    EnterpriseSnapshot,
    FinancialDataPoint,
    OptimizedRate,
    RateOptimizationGoals,
    RateOptimizationResult,
    RegulatoryRequirement,
    RevenueForecastResult,
    RevenuePoint,
    RevenueProjection,
    ScenarioAnalysis,
    SeverityAssessment,
)


def optimize_rates(
    snapshot: EnterpriseSnapshot,
    goals: RateOptimizationGoals,
    config: EngineConfig,
    service_type: str = "Base Service",
    justification_suffix: str = "",
) -> RateOptimizationResult:
    cfg = config.rates
    goals = goals.normalized(config.validation.max_rate_step)
    customers = max(int(snapshot.customer_count), 0)
    current = max(float(snapshot.required_rate), 0.0)

    base_rate = goals.target_revenue / customers if customers > 0 else 0.0
    recommended = base_rate * (1 + cfg.safety_buffer)
    increase = (recommended - current) / current if current > 0 else 0.0

    capped = increase > goals.max_rate_increase_percent
    if capped:
        recommended = current * (1 + goals.max_rate_increase_percent)

    justification = (
        f"Simple calculation: ${goals.target_revenue:,.0f} / {customers} customers = ${base_rate:,.2f}"
        f" + {cfg.safety_buffer:.0%} buffer = ${base_rate * (1 + cfg.safety_buffer):,.2f}"
    )
    if capped:
        justification += f"; capped at {goals.max_rate_increase_percent:.0%} increase over ${current:,.2f}"
    justification += justification_suffix

    change = recommended - current
    # Impact is judged on the increase the target would need, before the cap.
    loss = customers * cfg.customer_loss_fraction if increase > cfg.customer_loss_threshold else 0.0
    applied = change / current if current > 0 else 0.0

    return RateOptimizationResult(
        success=True,
        method=DETERMINISTIC,
        method_detail="Basic Mathematical Calculation (target revenue / customers + buffer)",
        confidence=cfg.confidence,
        rates=[
            OptimizedRate(
                service_type=service_type,
                current_rate=current,
                recommended_rate=recommended,
                rate_change=change,
                justification=justification,
                confidence=cfg.confidence,
            )
        ],
        revenue_projection=RevenueProjection(
            projected_annual_revenue=recommended * customers * 12,
            revenue_change=change * customers * 12,
        ),
        customer_impact=CustomerImpact(
            average_monthly_increase=change,
            percentage_increase=increase,
            estimated_customer_loss=loss,
        ),
        risk_factors=snapshot.risk_factors(),
        narrative=f"Recommended {service_type.lower()} rate ${recommended:,.2f} ({applied:+.1%} vs current).",
    )


def optimize_rates_for_investment(
    snapshot: EnterpriseSnapshot,
    goals: RateOptimizationGoals,
    investment: InvestmentScenario,
    config: EngineConfig,
) -> RateOptimizationResult:
    """Rate optimization where the target revenue also covers an amortized capital investment."""
    payment = monthly_payment(investment.principal, investment.annual_rate, investment.years)
    debt_service = payment * 12
    funded = RateOptimizationGoals(
        target_revenue=max(0.0, goals.target_revenue) + debt_service,
        max_rate_increase_percent=goals.max_rate_increase_percent,
        customer_retention_target=goals.customer_retention_target,
        affordability_constraint=goals.affordability_constraint,
    )
    suffix = (
        f"; includes {investment.label} debt service ${payment:,.2f}/month"
        f" (${investment.principal:,.0f} at {investment.annual_rate:.2%} over {investment.years} years)"
    )
    return optimize_rates(
        snapshot,
        funded,
        config,
        service_type=f"Base Service + {investment.label}",
        justification_suffix=suffix,
    )


def reference_income(
    config: EngineConfig,
    demographics: Sequence[CustomerDemographics] | None = None,
    household_income: float | None = None,
) -> float:
    if household_income is not None and household_income > 0:
        return float(household_income)
    if demographics:
        weights = np.array([max(d.customers, 0) for d in demographics], dtype=float)
        incomes = np.array([d.average_household_income for d in demographics], dtype=float)
        if weights.sum() > 0 and (incomes > 0).all():
            return float(np.average(incomes, weights=weights))
    return config.affordability.reference_household_income


def affordability_rating(fraction: float, config: EngineConfig) -> str:
    for band in config.affordability.bands:
        if fraction <= band.max_fraction:
            return band.rating
    return config.affordability.fallback_rating


def assistance_programs(fraction: float) -> list[str]:
    programs: list[str] = []
    if fraction > 0.04:
        programs.append("Low-income discount program (10-20% rate reduction)")
        programs.append("Extended payment plans (up to 12 months)")
    if fraction > 0.06:
        programs.append("Emergency assistance fund")
        programs.append("Community support programs")
    programs.append("Budget billing to spread costs evenly")
    programs.append("Water conservation education and rebates")
    return programs


def analyze_affordability(
    snapshot: EnterpriseSnapshot,
    proposed_rate: float,
    config: EngineConfig,
    demographics: Sequence[CustomerDemographics] | None = None,
    household_income: float | None = None,
) -> AffordabilityResult:
    cfg = config.affordability
    income = reference_income(config, demographics, household_income)
    rate = max(float(proposed_rate), 0.0)

    fraction = (rate * 12) / income
    rating = affordability_rating(fraction, config)
    score = max(0.0, 1 - fraction * cfg.score_multiplier)
    vulnerable = min(fraction * cfg.vulnerable_multiplier, cfg.vulnerable_cap)

    return AffordabilityResult(
        success=True,
        method=DETERMINISTIC,
        method_detail="Basic Percentage-of-Income Calculation",
        confidence=cfg.confidence,
        affordability_fraction=fraction,
        score=score,
        vulnerable_fraction=vulnerable,
        rating=rating,
        monthly_burden=rate,
        reference_income=income,
        assistance_programs=assistance_programs(fraction),
        narrative=(
            f"{snapshot.name}: ${rate:,.2f}/month is {fraction:.2%} of a ${income:,.0f} household income"
            f" ({rating})."
        ),
    )


def severity_assessment(anomalies: Sequence[DetectedAnomaly]) -> SeverityAssessment:
    count = len(anomalies)
    if count > 3:
        overall = "High"
    elif count >= 1:
        overall = "Medium"
    else:
        overall = "Low"
    return SeverityAssessment(
        overall=overall,
        critical=sum(1 for a in anomalies if a.severity > 3),
        high=sum(1 for a in anomalies if 2 < a.severity <= 3),
        medium=sum(1 for a in anomalies if 1.5 < a.severity <= 2),
        low=sum(1 for a in anomalies if a.severity <= 1.5),
    )


def detect_anomalies(
    series: Sequence[FinancialDataPoint],
    config: EngineConfig,
) -> AnomalyDetectionResult:
    cfg = config.anomalies
    if series is None or len(series) < cfg.min_points:
        return AnomalyDetectionResult(
            success=False,
            method=DETERMINISTIC,
            error=f"Insufficient data for anomaly detection (need at least {cfg.min_points} points)",
        )

    values = np.array([p.value for p in series], dtype=float)
    mean = float(values.mean())
    std = float(np.sqrt(((values - mean) ** 2).sum() / len(values)))

    anomalies: list[DetectedAnomaly] = []
    if std > 0:
        for point in series:
            deviation = abs(point.value - mean)
            if deviation > cfg.sigma_threshold * std:
                severity = deviation / std
                anomalies.append(
                    DetectedAnomaly(
                        date=point.date,
                        value=float(point.value),
                        expected=mean,
                        deviation=deviation,
                        severity=severity,
                        anomaly_type="High Value" if point.value > mean else "Low Value",
                        description=(
                            f"Value ${point.value:,.2f} is {severity:.1f} standard deviations from mean ${mean:,.2f}"
                        ),
                    )
                )

    actions: list[str] = []
    if anomalies:
        actions.append("Review source transactions for the flagged periods")
        if any(a.anomaly_type == "High Value" for a in anomalies):
            actions.append("Confirm unusual spending against approved purchase orders")
        if any(a.anomaly_type == "Low Value" for a in anomalies):
            actions.append("Check for missing postings or delayed billing")

    return AnomalyDetectionResult(
        success=True,
        method=DETERMINISTIC,
        method_detail=f"{cfg.sigma_threshold:g}-Sigma Statistical Threshold Analysis",
        confidence=cfg.confidence,
        mean=mean,
        std_dev=std,
        anomalies=anomalies,
        severity=severity_assessment(anomalies),
        recommended_actions=actions,
        narrative=(
            f"Found {len(anomalies)} anomalies using {cfg.sigma_threshold:g}-sigma rule."
            f" Mean: ${mean:,.2f}, Std Dev: ${std:,.2f}"
        ),
    )


def fit_trend(values: Sequence[float]) -> tuple[float, float]:
    """Ordinary least squares of ``values`` against their index 0..n-1; returns (slope, intercept)."""
    y = np.asarray(values, dtype=float)
    n = len(y)
    x = np.arange(n, dtype=float)
    sum_x, sum_y = x.sum(), y.sum()
    sum_xy, sum_xx = (x * y).sum(), (x * x).sum()
    denominator = n * sum_xx - sum_x * sum_x
    slope = (n * sum_xy - sum_x * sum_y) / denominator if denominator != 0 else 0.0
    intercept = (sum_y - slope * sum_x) / n
    return float(slope), float(intercept)


def forecast_revenue(
    history: Sequence[RevenuePoint],
    forecast_months: int,
    config: EngineConfig,
) -> RevenueForecastResult:
    cfg = config.forecast
    if history is None or len(history) < cfg.min_points:
        return RevenueForecastResult(
            success=False,
            method=DETERMINISTIC,
            error=f"Insufficient historical data for forecasting (need at least {cfg.min_points} points)",
        )

    months = min(max(int(forecast_months), 1), cfg.max_months)
    ordered = sorted(history, key=lambda p: p.date)
    slope, intercept = fit_trend([p.revenue for p in ordered])

    n = len(ordered)
    projections = [max(0.0, slope * x + intercept) for x in range(n, n + months)]
    last = pd.Period(pd.Timestamp(ordered[-1].date), freq="M")
    periods = [str(last + i) for i in range(1, months + 1)]

    intervals = [
        ConfidenceInterval(
            lower=p * (1 - cfg.interval_width),
            upper=p * (1 + cfg.interval_width),
            level=cfg.interval_confidence,
        )
        for p in projections
    ]

    return RevenueForecastResult(
        success=True,
        method=DETERMINISTIC,
        method_detail="Linear Trend Analysis (y = mx + b)",
        confidence=cfg.confidence,
        slope=slope,
        intercept=intercept,
        periods=periods,
        projections=projections,
        intervals=intervals,
        scenarios=ScenarioAnalysis(
            optimistic=[p * cfg.optimistic_multiplier for p in projections],
            realistic=list(projections),
            pessimistic=[p * cfg.pessimistic_multiplier for p in projections],
        ),
        key_assumptions=[
            "Linear growth trend continues",
            "No major economic disruptions",
            "Customer base remains stable",
            f"Historical growth rate: {slope:,.2f} per month",
        ],
        narrative=(
            f"Trend of ${slope:,.2f}/month from {n} months of history;"
            f" {periods[0]} projected at ${projections[0]:,.2f}."
        ),
    )


def risk_assessment(score: float) -> tuple[str, str]:
    if score >= 0.9:
        return "Low", "Low Risk - Strong compliance record"
    if score >= 0.75:
        return "Medium", "Medium Risk - Some compliance gaps identified"
    if score >= 0.5:
        return "High", "High Risk - Multiple compliance issues"
    return "Critical", "Critical Risk - Significant compliance failures"


def _requirement_met(snapshot: EnterpriseSnapshot, requirement: RegulatoryRequirement) -> bool:
    kind = (requirement.type or "").strip().lower()
    if kind == "budget":
        return snapshot.budget_utilization <= requirement.threshold
    if kind == "revenue":
        return snapshot.total_revenue >= requirement.min_value
    if kind == "reserves":
        return snapshot.remaining_budget >= requirement.min_value
    # Unknown requirement types cannot be checked from a snapshot.
    return True


def check_compliance(
    snapshot: EnterpriseSnapshot,
    requirements: Sequence[RegulatoryRequirement] | None,
    config: EngineConfig,
) -> ComplianceResult:
    cfg = config.compliance
    details: list[ComplianceDetail] = []

    for req in requirements or []:
        met = _requirement_met(snapshot, req)
        details.append(
            ComplianceDetail(
                requirement=req.name,
                compliant=met,
                details=req.description,
                recommended_action="" if met else f"Address {req.name} - {req.recommended_action}".rstrip(" -"),
                priority="High" if req.mandatory else "Medium",
            )
        )

    utilization = snapshot.budget_utilization
    details.append(
        ComplianceDetail(
            requirement="Budget Utilization",
            compliant=utilization <= cfg.max_budget_utilization,
            details=f"{utilization:.1%} of budget used (limit {cfg.max_budget_utilization:.0%})",
            recommended_action="Implement budget controls and monitor spending closely",
            priority="High",
        )
    )
    details.append(
        ComplianceDetail(
            requirement="Revenue Adequacy",
            compliant=snapshot.total_revenue >= snapshot.total_expenses,
            details=f"Revenue ${snapshot.total_revenue:,.2f} vs expenses ${snapshot.total_expenses:,.2f}",
            recommended_action="Review rate structure or reduce expenses",
            priority="High",
        )
    )
    reserve_floor = snapshot.total_budget * cfg.min_reserve_fraction
    details.append(
        ComplianceDetail(
            requirement="Reserve Requirements",
            compliant=snapshot.remaining_budget >= reserve_floor,
            details=f"Remaining ${snapshot.remaining_budget:,.2f} vs minimum ${reserve_floor:,.2f}",
            recommended_action=f"Build financial reserves to {cfg.min_reserve_fraction:.0%} of annual budget minimum",
            priority="Medium",
        )
    )
    details.append(
        ComplianceDetail(
            requirement="Rate Reasonableness",
            compliant=not (snapshot.required_rate > 0 and snapshot.affordability_index < cfg.min_affordability_index),
            details=f"Affordability index {snapshot.affordability_index:.1%} (minimum {cfg.min_affordability_index:.0%})",
            recommended_action="Review rate structure for customer affordability",
            priority="Medium",
        )
    )

    total = len(details)
    passed = sum(1 for d in details if d.compliant)
    score = passed / total if total else 1.0
    level, assessment = risk_assessment(score)
    gaps = [f"{d.requirement}: {d.details}" for d in details if not d.compliant]
    actions = [d.recommended_action for d in details if not d.compliant and d.recommended_action]

    return ComplianceResult(
        success=True,
        method=DETERMINISTIC,
        method_detail="Basic Rule-Based Compliance Check",
        confidence=cfg.confidence,
        score=score,
        passed=passed,
        total=total,
        gaps=gaps,
        recommended_actions=actions,
        details=details,
        risk_level=level,
        risk_assessment=assessment,
        narrative=f"Basic compliance check: {passed}/{total} requirements met ({score:.1%} compliance)",
    )
