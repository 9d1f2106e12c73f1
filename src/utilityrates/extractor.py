"""Turn advisory free text into engine-shaped results.

This is a deliberately thin, low-trust adapter. It only checks whether the
text exists and contains a few keywords; numbers come either from fixed
confidence constants in ``AdvisoryConfig`` or from the deterministic
statistics. Everything it returns is clamped by the validator afterwards.
"""

from __future__ import annotations

from dataclasses import replace
from typing import Sequence

from . import engine
from .advisory import AdvisoryResponse
from .config import EngineConfig
from .types import (
    ADVISORY,
    AffordabilityResult,
    AnomalyDetectionResult,
    ComplianceResult,
    EnterpriseSnapshot,
    FinancialDataPoint,
    OptimizedRate,
    RateOptimizationResult,
    RegulatoryRequirement,
    RevenueForecastResult,
    RevenuePoint,
)

ADVISORY_PROGRAMS = [
    "Low-income rate discount program",
    "Payment plan options",
    "Emergency assistance fund",
    "Energy efficiency rebates",
]


def _usable(response: AdvisoryResponse | None) -> bool:
    return response is not None and response.ok and bool(response.text and response.text.strip())


def _failure_reason(response: AdvisoryResponse | None) -> str:
    if response is None:
        return "No advisory response"
    return response.error or "Empty advisory response"


class AdvisoryExtractor:
    def __init__(self, config: EngineConfig) -> None:
        self.config = config
        self.advisory = config.advisory

    def rates(
        self,
        response: AdvisoryResponse | None,
        snapshot: EnterpriseSnapshot,
        service_type: str = "Base Rate",
    ) -> RateOptimizationResult:
        if not _usable(response):
            return RateOptimizationResult(success=False, method=ADVISORY, error=_failure_reason(response))

        text = response.text
        rates: list[OptimizedRate] = []
        if "recommend" in text.lower() and "$" in text:
            current = max(float(snapshot.required_rate), 0.0)
            rates.append(
                OptimizedRate(
                    service_type=service_type,
                    current_rate=current,
                    recommended_rate=current,
                    rate_change=0.0,
                    justification="Advisory recommendation; see narrative for the proposed figures",
                    confidence=self.advisory.placeholder_rate_confidence,
                )
            )
        if not rates:
            return RateOptimizationResult(
                success=False,
                method=ADVISORY,
                error="Advisory response contained no rate recommendation",
            )

        return RateOptimizationResult(
            success=True,
            method=ADVISORY,
            method_detail="AI-Enhanced with Validation",
            confidence=self.advisory.confidence_for("rates"),
            rates=rates,
            risk_factors=snapshot.risk_factors(),
            narrative=text,
        )

    def affordability(
        self,
        response: AdvisoryResponse | None,
        snapshot: EnterpriseSnapshot,
        proposed_rate: float,
        reference_income: float,
    ) -> AffordabilityResult:
        if not _usable(response):
            return AffordabilityResult(success=False, method=ADVISORY, error=_failure_reason(response))

        rate = max(float(proposed_rate), 0.0)
        fraction = rate * 12 / reference_income if reference_income > 0 else 0.0
        return AffordabilityResult(
            success=True,
            method=ADVISORY,
            method_detail="AI-Enhanced with Demographics Analysis",
            confidence=self.advisory.confidence_for("affordability"),
            affordability_fraction=fraction,
            score=self.advisory.affordability_score,
            vulnerable_fraction=self.advisory.vulnerable_fraction,
            rating=engine.affordability_rating(fraction, self.config),
            monthly_burden=rate,
            reference_income=reference_income,
            assistance_programs=list(ADVISORY_PROGRAMS),
            narrative=response.text,
        )

    def anomalies(
        self,
        response: AdvisoryResponse | None,
        series: Sequence[FinancialDataPoint],
    ) -> AnomalyDetectionResult:
        if not _usable(response):
            return AnomalyDetectionResult(success=False, method=ADVISORY, error=_failure_reason(response))

        stats = engine.detect_anomalies(series, self.config)
        if not stats.success:
            return replace(stats, method=ADVISORY)
        return replace(
            stats,
            method=ADVISORY,
            method_detail="AI Pattern Recognition with Statistical Validation",
            confidence=self.advisory.confidence_for("anomalies"),
            narrative=response.text,
        )

    def forecast(
        self,
        response: AdvisoryResponse | None,
        history: Sequence[RevenuePoint],
        forecast_months: int,
    ) -> RevenueForecastResult:
        if not _usable(response):
            return RevenueForecastResult(success=False, method=ADVISORY, error=_failure_reason(response))

        trend = engine.forecast_revenue(history, forecast_months, self.config)
        if not trend.success:
            return replace(trend, method=ADVISORY)
        return replace(
            trend,
            method=ADVISORY,
            method_detail="AI Time Series Analysis with Trend Validation",
            confidence=self.advisory.confidence_for("forecast"),
            narrative=response.text,
        )

    def compliance(
        self,
        response: AdvisoryResponse | None,
        snapshot: EnterpriseSnapshot,
        requirements: Sequence[RegulatoryRequirement] | None,
    ) -> ComplianceResult:
        if not _usable(response):
            return ComplianceResult(success=False, method=ADVISORY, error=_failure_reason(response))

        checks = engine.check_compliance(snapshot, requirements, self.config)
        mandatory_gap = any(not d.compliant and d.priority == "High" for d in checks.details)
        score = checks.score if mandatory_gap else max(checks.score, self.advisory.compliance_score)
        level, assessment = engine.risk_assessment(score)
        return replace(
            checks,
            method=ADVISORY,
            method_detail="AI Regulatory Analysis with Rule Validation",
            confidence=self.advisory.confidence_for("compliance"),
            score=score,
            risk_level=level,
            risk_assessment=assessment,
            narrative=response.text,
        )
