"""The advisory confidence figures are configured placeholders, not calibrated values.

These tests pin the shipped defaults so a change to them is deliberate; they do
not claim the numbers are statistically meaningful.
"""

from __future__ import annotations

from datetime import date

import pytest

from utilityrates.advisory import AdvisoryResponse
from utilityrates.config import EngineConfig
from utilityrates.extractor import AdvisoryExtractor
from utilityrates.types import ADVISORY, EnterpriseSnapshot, FinancialDataPoint, RegulatoryRequirement, RevenuePoint

CFG = EngineConfig()
TEXT = AdvisoryResponse(text="We recommend holding the rate near $42 while reserves rebuild.", ok=True)


def _snapshot(**overrides) -> EnterpriseSnapshot:
    values = dict(
        name="Sewer Enterprise",
        customer_count=800,
        total_budget=100_000.0,
        total_revenue=120_000.0,
        total_expenses=100_000.0,
        year_to_date_spending=50_000.0,
        required_rate=42.0,
    )
    values.update(overrides)
    return EnterpriseSnapshot(**values)


@pytest.mark.parametrize(
    "response",
    [None, AdvisoryResponse.failed("boom"), AdvisoryResponse(text="   ", ok=True)],
)
def test_unusable_response_is_failure(response) -> None:
    ex = AdvisoryExtractor(CFG)
    results = [
        ex.rates(response, _snapshot()),
        ex.affordability(response, _snapshot(), 42.0, 50_000.0),
        ex.anomalies(response, []),
        ex.forecast(response, [], 6),
        ex.compliance(response, _snapshot(), []),
    ]
    for r in results:
        assert not r.success
        assert r.method == ADVISORY
        assert r.error


def test_failed_response_keeps_error_text() -> None:
    res = AdvisoryExtractor(CFG).rates(AdvisoryResponse.failed("quota exceeded"), _snapshot())
    assert res.error == "quota exceeded"


def test_rates_placeholder_line() -> None:
    res = AdvisoryExtractor(CFG).rates(TEXT, _snapshot())
    assert res.success
    assert len(res.rates) == 1
    line = res.rates[0]
    assert line.current_rate == line.recommended_rate == 42.0
    assert line.confidence == pytest.approx(0.80)
    assert res.confidence == pytest.approx(0.85)
    assert res.narrative == TEXT.text


def test_rates_without_dollar_amount_fail() -> None:
    res = AdvisoryExtractor(CFG).rates(AdvisoryResponse(text="I recommend a modest increase.", ok=True), _snapshot())
    assert not res.success


def test_affordability_fixed_constants() -> None:
    res = AdvisoryExtractor(CFG).affordability(TEXT, _snapshot(), 75.0, 50_000.0)
    assert res.affordability_fraction == pytest.approx(0.018)
    assert res.rating == "Highly Affordable"
    assert res.score == pytest.approx(0.75)
    assert res.vulnerable_fraction == pytest.approx(0.15)
    assert res.confidence == pytest.approx(0.80)
    assert res.assistance_programs


def test_anomalies_use_engine_statistics() -> None:
    values = [10.0] * 9 + [100.0]
    series = [FinancialDataPoint(date(2024, i + 1, 1), v) for i, v in enumerate(values)]
    res = AdvisoryExtractor(CFG).anomalies(TEXT, series)
    assert res.method == ADVISORY
    assert len(res.anomalies) == 1
    assert res.confidence == pytest.approx(0.85)
    assert res.narrative == TEXT.text


def test_forecast_uses_engine_trend() -> None:
    history = [RevenuePoint(date(2024, i + 1, 1), 100.0 + 5 * i) for i in range(6)]
    res = AdvisoryExtractor(CFG).forecast(TEXT, history, 2)
    assert res.projections == pytest.approx([130.0, 135.0])
    assert res.confidence == pytest.approx(0.75)


def test_forecast_insufficient_history_stays_failed() -> None:
    res = AdvisoryExtractor(CFG).forecast(TEXT, [RevenuePoint(date(2024, 1, 1), 1.0)], 2)
    assert not res.success
    assert res.method == ADVISORY


def test_compliance_score_blended_without_mandatory_gaps() -> None:
    reqs = [RegulatoryRequirement(name="Optional audit", type="budget", threshold=0.1, mandatory=False)]
    res = AdvisoryExtractor(CFG).compliance(TEXT, _snapshot(), reqs)
    # 4 of 5 checks pass (0.8); no High-priority gap so the advisory score applies.
    assert res.passed == 4
    assert res.score == pytest.approx(0.90)
    assert res.risk_level == "Low"
    assert res.confidence == pytest.approx(0.90)


def test_compliance_mandatory_gap_keeps_rule_score() -> None:
    res = AdvisoryExtractor(CFG).compliance(TEXT, _snapshot(total_revenue=90_000.0), [])
    assert res.score == pytest.approx(0.75)
    assert res.risk_level == "Medium"
