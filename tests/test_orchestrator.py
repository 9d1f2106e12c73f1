from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import date

import pytest

from utilityrates.advisory import AdvisoryConfigurationError, AdvisoryError, AdvisoryResponse
from utilityrates.config import AdvisoryConfig, EngineConfig
from utilityrates.orchestrator import Orchestrator
from utilityrates.types import (
    ADVISORY,
    DETERMINISTIC,
    EnterpriseSnapshot,
    FinancialDataPoint,
    Inputs,
    RateOptimizationGoals,
    RegulatoryRequirement,
    RevenuePoint,
)

FAST = EngineConfig(advisory=AdvisoryConfig(timeout_seconds=0.05))


class FakeClient:
    def __init__(self, text: str = "We recommend a monthly base rate of $48.50 with a phased rollout.") -> None:
        self.text = text
        self.calls = 0
        self.prompts: list[str] = []

    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        self.calls += 1
        self.prompts.append(prompt)
        return AdvisoryResponse(text=self.text, ok=True)


class FailingClient(FakeClient):
    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        self.calls += 1
        raise AdvisoryError("service unavailable")


class NotOkClient(FakeClient):
    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        self.calls += 1
        return AdvisoryResponse.failed("quota exceeded")


class SlowClient(FakeClient):
    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        self.calls += 1
        await asyncio.sleep(5)
        return AdvisoryResponse(text=self.text, ok=True)


class MisconfiguredClient(FakeClient):
    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        self.calls += 1
        raise AdvisoryConfigurationError("invalid API key")


def _snapshot() -> EnterpriseSnapshot:
    return EnterpriseSnapshot(
        name="Water Enterprise",
        customer_count=1_000,
        total_budget=100_000.0,
        total_revenue=120_000.0,
        total_expenses=100_000.0,
        year_to_date_spending=50_000.0,
        required_rate=40.0,
        affordability_index=0.9,
    )


def _inputs() -> Inputs:
    values = [38_000.0, 39_500.0, 37_800.0, 38_200.0, 61_000.0, 38_900.0, 39_100.0, 38_400.0]
    return Inputs(
        snapshot=_snapshot(),
        goals=RateOptimizationGoals(target_revenue=480_000.0),
        proposed_rate=42.0,
        revenue_history=[RevenuePoint(date(2024, i + 1, 1), 40_000.0 + 250 * i) for i in range(12)],
        financial_data=[FinancialDataPoint(date(2024, i + 1, 1), v) for i, v in enumerate(values)],
        requirements=[RegulatoryRequirement(name="Budget cap", type="budget", threshold=0.95)],
    )


def _run(coro):
    return asyncio.run(coro)


def test_no_client_uses_deterministic_path() -> None:
    orch = Orchestrator(FAST)
    res = _run(orch.optimize_rates(_snapshot(), RateOptimizationGoals(target_revenue=480_000.0)))
    assert res.success and res.method == DETERMINISTIC
    assert not orch.advisory_available


def test_advisory_rate_recommendation() -> None:
    client = FakeClient()
    res = _run(Orchestrator(FAST, client).optimize_rates(_snapshot(), RateOptimizationGoals(target_revenue=480_000.0)))
    assert res.method == ADVISORY
    assert res.confidence == pytest.approx(0.85)
    rate = res.rates[0]
    assert rate.current_rate == 40.0 and rate.recommended_rate == 40.0 and rate.rate_change == 0.0
    assert "$48.50" in res.narrative
    assert "Target revenue is $480,000.00" in client.prompts[0]


def test_advisory_text_without_recommendation_falls_back() -> None:
    client = FakeClient(text="Rates look broadly reasonable for a town of this size.")
    res = _run(Orchestrator(FAST, client).optimize_rates(_snapshot(), RateOptimizationGoals(target_revenue=480_000.0)))
    assert client.calls == 1
    assert res.success and res.method == DETERMINISTIC


@pytest.mark.parametrize("client_cls", [FailingClient, NotOkClient, SlowClient])
def test_unreliable_client_degrades_every_capability(client_cls) -> None:
    client = client_cls()
    bundle = _run(Orchestrator(FAST, client).run_all(_inputs(), forecast_months=6))
    for name, result in bundle.results().items():
        assert result.success, name
        assert result.method == DETERMINISTIC, name
    assert client.calls == 5


def test_timeout_falls_back(caplog) -> None:
    with caplog.at_level("WARNING", logger="utilityrates.orchestrator"):
        res = _run(Orchestrator(FAST, SlowClient()).forecast_revenue(_snapshot(), _inputs().revenue_history, 6))
    assert res.success and res.method == DETERMINISTIC
    assert len(res.projections) == 6
    assert any("timed out" in r.getMessage() for r in caplog.records)


def test_configuration_error_disables_client_for_process() -> None:
    client = MisconfiguredClient()
    orch = Orchestrator(FAST, client)

    async def scenario():
        first = await orch.check_compliance(_snapshot())
        second = await orch.check_compliance(_snapshot())
        return first, second

    first, second = _run(scenario())
    assert first.method == DETERMINISTIC and second.method == DETERMINISTIC
    assert client.calls == 1
    assert not orch.advisory_available


def test_transient_error_does_not_disable_client() -> None:
    client = FailingClient()
    orch = Orchestrator(FAST, client)
    _run(orch.check_compliance(_snapshot()))
    _run(orch.check_compliance(_snapshot()))
    assert client.calls == 2
    assert orch.advisory_available


def test_insufficient_inputs_skip_advisory() -> None:
    client = FakeClient()
    orch = Orchestrator(FAST, client)
    short = [FinancialDataPoint(date(2024, 1, 1), 1.0), FinancialDataPoint(date(2024, 2, 1), 2.0)]
    res = _run(orch.detect_anomalies(_snapshot(), short))
    assert not res.success and res.method == DETERMINISTIC
    assert "Insufficient" in res.error
    assert client.calls == 0


def test_disabled_advisory_config_never_calls_client() -> None:
    client = FakeClient()
    cfg = replace(FAST, advisory=replace(FAST.advisory, enabled=False))
    res = _run(Orchestrator(cfg, client).check_compliance(_snapshot()))
    assert res.method == DETERMINISTIC
    assert client.calls == 0


def test_run_all_with_advisory() -> None:
    client = FakeClient()
    bundle = _run(Orchestrator(FAST, client).run_all(_inputs(), forecast_months=3))
    assert {r.method for r in bundle.results().values()} == {ADVISORY}
    assert bundle.affordability.score == pytest.approx(0.75)
    assert bundle.compliance.confidence == pytest.approx(0.90)
    assert len(bundle.forecast.projections) == 3
    assert bundle.assumptions["advisory_configured"] is True


def test_advisory_rates_for_investment() -> None:
    orch = Orchestrator(FAST, FakeClient())
    res = _run(orch.optimize_rates_for_investment(_snapshot(), RateOptimizationGoals(480_000.0), "treatment_plant"))
    assert res.method == ADVISORY
    assert "Water Treatment Plant" in res.rates[0].service_type


def test_investment_falls_back_to_amortized_rate() -> None:
    orch = Orchestrator(FAST, FailingClient())
    res = _run(orch.optimize_rates_for_investment(_snapshot(), RateOptimizationGoals(0.0), "pipeline_replacement"))
    assert res.method == DETERMINISTIC
    assert "debt service" in res.rates[0].justification


def test_unknown_investment_raises() -> None:
    with pytest.raises(KeyError):
        _run(Orchestrator(FAST).optimize_rates_for_investment(_snapshot(), RateOptimizationGoals(0.0), "stadium"))


def test_outer_cancellation_propagates() -> None:
    orch = Orchestrator(EngineConfig(advisory=AdvisoryConfig(timeout_seconds=10)), SlowClient())

    async def scenario():
        task = asyncio.create_task(orch.check_compliance(_snapshot()))
        await asyncio.sleep(0.01)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        _run(scenario())
