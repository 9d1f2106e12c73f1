"""Dual-path calculation: advisory first, deterministic fallback, always validated.

Each capability call tries the advisory client (when one is configured, usable
and the inputs are sufficient), bounded by ``asyncio.wait_for``. Any timeout,
cancellation of the inner call or exception from the client or extractor is
logged and the call degrades to the deterministic engine. Nothing raised at the
advisory boundary reaches the caller; the result's ``method`` records which path
produced it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Sequence

from . import advisory, engine
from .advisory import AdvisoryClient, AdvisoryConfigurationError, AdvisoryResponse
from .config import EngineConfig, default_engine_config
from .extractor import AdvisoryExtractor
from .types import (
    AffordabilityResult,
    AnalysisBundle,
    AnomalyDetectionResult,
    CalculationResult,
    ComplianceResult,
    CustomerDemographics,
    EnterpriseSnapshot,
    FinancialDataPoint,
    Inputs,
    RateOptimizationGoals,
    RateOptimizationResult,
    RegulatoryRequirement,
    RevenueForecastResult,
    RevenuePoint,
)
from .validator import ResultValidator

logger = logging.getLogger("utilityrates.orchestrator")


class Orchestrator:
    def __init__(self, config: EngineConfig | None = None, client: AdvisoryClient | None = None) -> None:
        self.config = config or default_engine_config()
        self.client = client
        self.extractor = AdvisoryExtractor(self.config)
        self.validator = ResultValidator(self.config)
        # One-way: once the client proves unusable it stays off for this process.
        self._advisory_usable = True

    @property
    def advisory_available(self) -> bool:
        return self.client is not None and self.config.advisory.enabled and self._advisory_usable

    async def _consult(self, capability: str, snapshot: EnterpriseSnapshot, prompt: Callable[[], str]) -> AdvisoryResponse:
        timeout = self.config.advisory.timeout_seconds
        try:
            return await asyncio.wait_for(self.client.ask_text(snapshot, prompt()), timeout=timeout)
        except asyncio.TimeoutError:
            return AdvisoryResponse.failed(f"advisory call timed out after {timeout:g}s")
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return AdvisoryResponse.failed("advisory call was cancelled")
        except AdvisoryConfigurationError as e:
            self._advisory_usable = False
            logger.warning("%s: advisory client disabled for this process: %s", capability, e)
            return AdvisoryResponse.failed(str(e))
        except Exception as e:  # noqa: BLE001
            return AdvisoryResponse.failed(f"{type(e).__name__}: {e}")

    async def _run(
        self,
        capability: str,
        snapshot: EnterpriseSnapshot,
        prompt: Callable[[], str] | None,
        extract: Callable[[AdvisoryResponse], CalculationResult],
        fallback: Callable[[], CalculationResult],
    ) -> CalculationResult:
        result: CalculationResult | None = None
        if prompt is not None and self.advisory_available:
            response = await self._consult(capability, snapshot, prompt)
            if response.ok:
                try:
                    result = extract(response)
                except Exception as e:  # noqa: BLE001
                    logger.warning("%s: advisory extraction failed (%s); using deterministic path", capability, e)
                    result = None
                if result is not None and not result.success:
                    logger.warning("%s: advisory result unusable (%s); using deterministic path", capability, result.error)
                    result = None
            else:
                logger.warning("%s: advisory unavailable (%s); using deterministic path", capability, response.error)

        if result is None:
            result = fallback()
        return self.validator.fix(result)

    async def optimize_rates(
        self,
        snapshot: EnterpriseSnapshot,
        goals: RateOptimizationGoals,
    ) -> RateOptimizationResult:
        goals = goals.normalized(self.config.validation.max_rate_step)
        prompt = None
        if snapshot.customer_count > 0:
            prompt = lambda: advisory.build_rate_prompt(snapshot, goals)  # noqa: E731
        return await self._run(
            "rates",
            snapshot,
            prompt,
            lambda response: self.extractor.rates(response, snapshot),
            lambda: engine.optimize_rates(snapshot, goals, self.config),
        )

    async def optimize_rates_for_investment(
        self,
        snapshot: EnterpriseSnapshot,
        goals: RateOptimizationGoals,
        investment_key: str,
    ) -> RateOptimizationResult:
        investment = self.config.scenarios.investment(investment_key)
        goals = goals.normalized(self.config.validation.max_rate_step)
        prompt = None
        if snapshot.customer_count > 0:
            prompt = lambda: advisory.build_rate_prompt(snapshot, goals, investment)  # noqa: E731
        return await self._run(
            "rates",
            snapshot,
            prompt,
            lambda response: self.extractor.rates(response, snapshot, f"Base Rate + {investment.label}"),
            lambda: engine.optimize_rates_for_investment(snapshot, goals, investment, self.config),
        )

    async def analyze_affordability(
        self,
        snapshot: EnterpriseSnapshot,
        proposed_rate: float,
        demographics: Sequence[CustomerDemographics] | None = None,
        household_income: float | None = None,
    ) -> AffordabilityResult:
        income = engine.reference_income(self.config, demographics, household_income)
        return await self._run(
            "affordability",
            snapshot,
            lambda: advisory.build_affordability_prompt(snapshot, proposed_rate, income, demographics),
            lambda response: self.extractor.affordability(response, snapshot, proposed_rate, income),
            lambda: engine.analyze_affordability(snapshot, proposed_rate, self.config, demographics, household_income),
        )

    async def detect_anomalies(
        self,
        snapshot: EnterpriseSnapshot,
        series: Sequence[FinancialDataPoint],
    ) -> AnomalyDetectionResult:
        series = list(series or [])
        prompt = None
        if len(series) >= self.config.anomalies.min_points:
            prompt = lambda: advisory.build_anomaly_prompt(snapshot, series)  # noqa: E731
        return await self._run(
            "anomalies",
            snapshot,
            prompt,
            lambda response: self.extractor.anomalies(response, series),
            lambda: engine.detect_anomalies(series, self.config),
        )

    async def forecast_revenue(
        self,
        snapshot: EnterpriseSnapshot,
        history: Sequence[RevenuePoint],
        forecast_months: int = 12,
    ) -> RevenueForecastResult:
        history = list(history or [])
        prompt = None
        if len(history) >= self.config.forecast.min_points:
            prompt = lambda: advisory.build_forecast_prompt(snapshot, history, forecast_months)  # noqa: E731
        return await self._run(
            "forecast",
            snapshot,
            prompt,
            lambda response: self.extractor.forecast(response, history, forecast_months),
            lambda: engine.forecast_revenue(history, forecast_months, self.config),
        )

    async def check_compliance(
        self,
        snapshot: EnterpriseSnapshot,
        requirements: Sequence[RegulatoryRequirement] | None = None,
    ) -> ComplianceResult:
        requirements = list(requirements or [])
        return await self._run(
            "compliance",
            snapshot,
            lambda: advisory.build_compliance_prompt(snapshot, requirements),
            lambda response: self.extractor.compliance(response, snapshot, requirements),
            lambda: engine.check_compliance(snapshot, requirements, self.config),
        )

    async def run_all(self, inputs: Inputs, forecast_months: int = 12) -> AnalysisBundle:
        snapshot = inputs.snapshot
        rates, affordability, anomalies, forecast, compliance = await asyncio.gather(
            self.optimize_rates(snapshot, inputs.goals),
            self.analyze_affordability(snapshot, inputs.proposed_rate, inputs.demographics, inputs.household_income),
            self.detect_anomalies(snapshot, inputs.financial_data),
            self.forecast_revenue(snapshot, inputs.revenue_history, forecast_months),
            self.check_compliance(snapshot, inputs.requirements),
        )
        assumptions = {
            "enterprise": snapshot.name,
            "fund": snapshot.fund,
            "municipality": snapshot.municipality,
            "forecast_months": int(forecast_months),
            "advisory_configured": self.client is not None,
            "advisory_model": self.config.advisory.model if self.client is not None else None,
            "reference_household_income": engine.reference_income(
                self.config, inputs.demographics, inputs.household_income
            ),
            "safety_buffer": self.config.rates.safety_buffer,
            "anomaly_sigma": self.config.anomalies.sigma_threshold,
            "revenue_points": len(inputs.revenue_history),
            "financial_points": len(inputs.financial_data),
            "warnings": list(inputs.warnings),
        }
        return AnalysisBundle(
            enterprise=snapshot.name,
            rates=rates,
            affordability=affordability,
            anomalies=anomalies,
            forecast=forecast,
            compliance=compliance,
            assumptions=assumptions,
        )
