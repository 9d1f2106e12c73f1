"""Gemini-backed advisory client and prompt builders.

The advisory path asks Google Gemini for a narrative analysis of an enterprise
fund. The engine never trusts the text as data: it is attached as a narrative
and every number that reaches the caller comes from the extractor + validator.
No client is built when GEMINI_API_KEY is not set, and the orchestrator then
runs the deterministic path only.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import os
from typing import Protocol, Sequence

from .config import AdvisoryConfig, InvestmentScenario
from .types import (
    CustomerDemographics,
    EnterpriseSnapshot,
    FinancialDataPoint,
    RateOptimizationGoals,
    RegulatoryRequirement,
    RevenuePoint,
)

logger = logging.getLogger("utilityrates.advisory")


class AdvisoryError(RuntimeError):
    """The advisory service failed for this call."""


class AdvisoryConfigurationError(AdvisoryError):
    """The advisory client can never work in this process (missing package, bad key)."""


@dataclass(frozen=True)
class AdvisoryResponse:
    text: str
    ok: bool
    error: str = ""

    @classmethod
    def failed(cls, error: str) -> "AdvisoryResponse":
        return cls(text="", ok=False, error=error)


class AdvisoryClient(Protocol):
    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse: ...


class GeminiAdvisoryClient:
    def __init__(self, api_key: str, model: str = "gemini-2.0-flash") -> None:
        self.api_key = api_key
        self.model_name = model
        self._model = None

    @classmethod
    def from_env(cls, config: AdvisoryConfig) -> "GeminiAdvisoryClient | None":
        if not config.enabled:
            return None
        api_key = os.environ.get(config.api_key_env)
        if not api_key:
            return None
        return cls(api_key=api_key, model=config.model)

    def _generative_model(self):
        if self._model is None:
            try:
                import google.generativeai as genai
            except ImportError as e:
                raise AdvisoryConfigurationError("google-generativeai is not installed") from e
            genai.configure(api_key=self.api_key)
            self._model = genai.GenerativeModel(self.model_name)
        return self._model

    async def ask_text(self, context: EnterpriseSnapshot, prompt: str) -> AdvisoryResponse:
        from google.api_core import exceptions as google_exceptions

        model = self._generative_model()
        full_prompt = f"{ANALYST_PREAMBLE}\n\nEnterprise context:\n{context.summary()}\n\n{prompt}"
        try:
            response = await model.generate_content_async(full_prompt)
        except (google_exceptions.PermissionDenied, google_exceptions.Unauthenticated) as e:
            raise AdvisoryConfigurationError(f"Gemini rejected the credentials: {e}") from e
        except google_exceptions.InvalidArgument as e:
            # A malformed key comes back as a 400 rather than a 401/403.
            if "api key" in str(e).lower():
                raise AdvisoryConfigurationError(f"Gemini rejected the API key: {e}") from e
            raise
        try:
            text = response.text
        except ValueError as e:
            # Raised by the SDK when the candidate was blocked or empty.
            return AdvisoryResponse.failed(f"Gemini returned no text: {e}")
        if not text or not text.strip():
            return AdvisoryResponse.failed("Gemini returned an empty response")
        return AdvisoryResponse(text=text, ok=True)


ANALYST_PREAMBLE = (
    "You are a municipal utility finance analyst advising a small town on its enterprise funds"
    " (water, sewer, trash, apartments). Be specific with numbers and keep it under 400 words."
)


def build_rate_prompt(
    snapshot: EnterpriseSnapshot,
    goals: RateOptimizationGoals,
    investment: InvestmentScenario | None = None,
) -> str:
    lines = [
        f"Optimize utility rates for {snapshot.name} with the following goals:",
        f"Target revenue is ${goals.target_revenue:,.2f} per year.",
        f"The fund serves {snapshot.customer_count:,} customers at a current rate of"
        f" ${snapshot.required_rate:,.2f} per month.",
        f"The maximum allowed rate increase is {goals.max_rate_increase_percent:.1%}.",
        f"The customer retention target is {goals.customer_retention_target:.1%}.",
        f"Utility cost must stay under {goals.affordability_constraint:.1%} of household income.",
    ]
    if investment is not None:
        lines.append(
            f"Rates must also fund the {investment.label}: ${investment.principal:,.0f} financed at"
            f" {investment.annual_rate:.2%} over {investment.years} years."
        )
    lines.append(
        "Consider seasonal patterns, customer demographics and regional rates. Recommend a specific"
        " monthly rate in dollars with its risks."
    )
    return "\n".join(lines)


def build_affordability_prompt(
    snapshot: EnterpriseSnapshot,
    proposed_rate: float,
    reference_income: float,
    demographics: Sequence[CustomerDemographics] | None = None,
) -> str:
    return "\n".join(
        [
            f"Analyze customer affordability for {snapshot.name} with a proposed rate of ${proposed_rate:,.2f} per month.",
            f"Total customers: {snapshot.customer_count:,}.",
            f"Reference household income: ${reference_income:,.0f} per year.",
            f"Demographic segments available: {len(demographics or [])}.",
            f"Current affordability index: {snapshot.affordability_index:.1%}.",
            "Assess affordability impact, identify vulnerable customer segments, recommend assistance"
            " programs and alternative rate structures.",
        ]
    )


def build_anomaly_prompt(snapshot: EnterpriseSnapshot, series: Sequence[FinancialDataPoint]) -> str:
    recent = ", ".join(f"{p.date}: ${p.value:,.2f}" for p in list(series)[-12:])
    return "\n".join(
        [
            f"Analyze {len(series)} financial data points for potential anomalies in {snapshot.name}.",
            f"Most recent values: {recent}.",
            "Identify unusual spending or revenue patterns, their likely causes and recommended actions.",
        ]
    )


def build_forecast_prompt(
    snapshot: EnterpriseSnapshot,
    history: Sequence[RevenuePoint],
    forecast_months: int,
) -> str:
    recent = ", ".join(f"{p.date}: ${p.revenue:,.2f}" for p in list(history)[-12:])
    return "\n".join(
        [
            f"Generate a revenue forecast for {snapshot.name} for the next {forecast_months} months.",
            f"There are {len(history)} months of revenue history. Most recent: {recent}.",
            f"Current annual revenue is ${snapshot.total_revenue:,.2f} from {snapshot.customer_count:,} customers.",
            "Consider seasonal patterns, customer growth and economic trends. Describe optimistic, realistic"
            " and pessimistic scenarios.",
        ]
    )


def build_compliance_prompt(snapshot: EnterpriseSnapshot, requirements: Sequence[RegulatoryRequirement]) -> str:
    names = ", ".join(r.name for r in requirements) or "none supplied"
    return "\n".join(
        [
            f"Check regulatory compliance for {snapshot.name}.",
            f"Enterprise budget is ${snapshot.total_budget:,.2f} with revenue of ${snapshot.total_revenue:,.2f}"
            f" and expenses of ${snapshot.total_expenses:,.2f}.",
            f"{snapshot.budget_utilization:.1%} of the budget has been spent.",
            f"Requirements to check ({len(requirements)}): {names}.",
            "Identify compliance gaps with rate-setting, reserve and customer protection rules and recommend"
            " corrective actions.",
        ]
    )
