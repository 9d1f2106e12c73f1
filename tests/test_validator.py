from __future__ import annotations

from datetime import date

import pytest

from utilityrates import engine
from utilityrates.config import EngineConfig
from utilityrates.types import (
    ADVISORY,
    AffordabilityResult,
    AnomalyDetectionResult,
    ComplianceResult,
    ConfidenceInterval,
    DetectedAnomaly,
    OptimizedRate,
    RateOptimizationResult,
    RevenueForecastResult,
    ScenarioAnalysis,
)
from utilityrates.validator import ResultValidator, fix

CFG = EngineConfig()


def _rates(current: float, recommended: float, confidence: float = 0.8) -> RateOptimizationResult:
    return RateOptimizationResult(
        success=True,
        method=ADVISORY,
        confidence=confidence,
        rates=[
            OptimizedRate(
                service_type="Base Rate",
                current_rate=current,
                recommended_rate=recommended,
                rate_change=recommended - current,
                justification="test",
                confidence=confidence,
            )
        ],
    )


def _forecast(projections: list[float]) -> RevenueForecastResult:
    return RevenueForecastResult(
        success=True,
        method=ADVISORY,
        confidence=0.75,
        periods=[f"2025-{i + 1:02d}" for i in range(len(projections))],
        projections=projections,
        intervals=[ConfidenceInterval(p * 0.9, p * 1.1, 0.8) for p in projections],
        scenarios=ScenarioAnalysis(
            optimistic=[p * 1.15 for p in projections],
            realistic=list(projections),
            pessimistic=[p * 0.85 for p in projections],
        ),
    )


def _samples():
    return [
        _rates(40.0, -5.0),
        _rates(40.0, 100.0, confidence=1.4),
        _rates(40.0, 10.0),
        _rates(0.0, 25.0),
        _rates(40.0, float("nan")),
        _rates(40.0, float("inf")),
        _rates(float("nan"), 25.0),
        AffordabilityResult(success=True, method=ADVISORY, confidence=0.8, score=-0.2, vulnerable_fraction=0.8),
        _forecast([-10.0, 100.0, 150.0, 155.0]),
        ComplianceResult(success=True, method=ADVISORY, confidence=0.9, score=1.3, risk_level="?"),
        AnomalyDetectionResult(
            success=True,
            method=ADVISORY,
            confidence=0.85,
            anomalies=[
                DetectedAnomaly(date(2024, 1, 1), 100.0, 50.0, 50.0, -1.0, "High Value"),
                DetectedAnomaly(date(2024, 2, 1), 104.0, 50.0, 54.0, 2.5, "High Value"),
            ],
        ),
    ]


def test_negative_recommended_rate_falls_back_to_current() -> None:
    rate = fix(_rates(40.0, -5.0)).rates[0]
    assert rate.recommended_rate == 40.0
    assert rate.rate_change == 0.0


def test_non_finite_recommended_rate_falls_back_to_current() -> None:
    for bad in (float("nan"), float("inf"), float("-inf")):
        res = fix(_rates(40.0, bad))
        rate = res.rates[0]
        assert rate.recommended_rate == 40.0
        assert rate.rate_change == 0.0
        assert any("invalid recommended rate" in n for n in res.notes)


def test_non_finite_current_rate_treated_as_zero() -> None:
    res = fix(_rates(float("nan"), 25.0))
    rate = res.rates[0]
    assert rate.current_rate == 0.0
    assert rate.recommended_rate == 25.0
    assert rate.rate_change == 25.0


def test_rate_step_capped_both_directions() -> None:
    up = fix(_rates(40.0, 100.0))
    assert up.rates[0].recommended_rate == pytest.approx(60.0)
    assert up.rates[0].rate_change == pytest.approx(20.0)
    assert any("capped" in n for n in up.notes)

    down = fix(_rates(40.0, 10.0)).rates[0]
    assert down.recommended_rate == pytest.approx(20.0)
    assert down.rate_change == pytest.approx(-20.0)


def test_rate_from_zero_is_not_capped() -> None:
    rate = fix(_rates(0.0, 25.0)).rates[0]
    assert rate.recommended_rate == 25.0


def test_in_bounds_result_is_returned_unchanged() -> None:
    original = _rates(40.0, 44.0)
    assert fix(original) is original


def test_confidence_and_scores_clamped() -> None:
    rates = fix(_rates(40.0, 44.0, confidence=1.4))
    assert rates.confidence == 1.0
    assert rates.rates[0].confidence == 1.0

    afford = fix(AffordabilityResult(success=True, method=ADVISORY, score=-0.2, vulnerable_fraction=0.8))
    assert afford.score == 0.0
    assert afford.vulnerable_fraction == 0.5
    assert len(afford.notes) == 2


def test_compliance_risk_recomputed_when_score_clamped() -> None:
    res = fix(ComplianceResult(success=True, method=ADVISORY, score=1.3, risk_level="?"))
    assert res.score == 1.0
    assert res.risk_level == "Low"


def test_forecast_floors_and_growth_warning() -> None:
    res = fix(_forecast([-10.0, 100.0, 150.0, 155.0]))
    assert res.projections == [0.0, 100.0, 150.0, 155.0]
    assert all(v >= 0 for v in res.scenarios.pessimistic)
    assert all(i.lower >= 0 and i.upper >= 0 for i in res.intervals)
    growth = [n for n in res.notes if "month-over-month" in n]
    assert len(growth) == 1
    assert "2025-03" in growth[0]


def test_anomaly_severity_floored_and_indistinct_note() -> None:
    res = fix(_samples()[-1])
    assert res.anomalies[0].severity == 0.0
    assert any("statistically distinct" in n for n in res.notes)


def test_anomalies_far_from_their_mean_get_no_note() -> None:
    # Mean 100; 80 and 120 each sit 20% away from it.
    res = fix(
        AnomalyDetectionResult(
            success=True,
            method=ADVISORY,
            confidence=0.85,
            anomalies=[
                DetectedAnomaly(date(2024, 1, 1), 80.0, 50.0, 30.0, 1.0, "High Value"),
                DetectedAnomaly(date(2024, 2, 1), 120.0, 50.0, 70.0, 2.5, "High Value"),
            ],
        )
    )
    assert not any("statistically distinct" in n for n in res.notes)


def test_indistinct_note_measures_deviation_from_mean() -> None:
    # Spread is 12 (over 10% of the mean 104), but no value sits 10% from the mean.
    res = fix(
        AnomalyDetectionResult(
            success=True,
            method=ADVISORY,
            confidence=0.85,
            anomalies=[
                DetectedAnomaly(date(2024, 1, 1), 98.0, 50.0, 48.0, 1.0, "High Value"),
                DetectedAnomaly(date(2024, 2, 1), 104.0, 50.0, 54.0, 1.0, "High Value"),
                DetectedAnomaly(date(2024, 3, 1), 110.0, 50.0, 60.0, 1.0, "High Value"),
            ],
        )
    )
    assert any("statistically distinct" in n for n in res.notes)


def test_failed_result_passes_through() -> None:
    failed = RevenueForecastResult(success=False, method=ADVISORY, error="Insufficient data")
    assert fix(failed) is failed


@pytest.mark.parametrize("result", _samples())
def test_validation_bounds(result) -> None:
    fixed = fix(result, CFG)
    assert 0.0 <= fixed.confidence <= 1.0
    if isinstance(fixed, RateOptimizationResult):
        for r in fixed.rates:
            assert r.recommended_rate >= 0
            assert r.current_rate == 0 or abs(r.rate_change) <= 0.5 * r.current_rate + 1e-9
    if hasattr(fixed, "score"):
        assert 0.0 <= fixed.score <= 1.0


@pytest.mark.parametrize("result", _samples())
def test_fix_is_idempotent(result) -> None:
    validator = ResultValidator(CFG)
    once = validator.fix(result)
    assert validator.fix(once) == once


def test_engine_results_are_already_valid() -> None:
    from utilityrates.types import EnterpriseSnapshot, RateOptimizationGoals

    snap = EnterpriseSnapshot("Water", 1_000, 100_000.0, 120_000.0, 100_000.0, 50_000.0, 40.0)
    res = engine.optimize_rates(snap, RateOptimizationGoals(target_revenue=600_000), CFG)
    assert fix(res) is res
