"""Sanity bounds applied to every result, whichever path produced it.

``ResultValidator.fix`` never mutates its argument and never rejects a result:
out-of-bounds values are corrected and a note is appended explaining what was
changed. Running it twice gives the same result as running it once.
"""

from __future__ import annotations

from dataclasses import replace
import logging
import math

from .config import EngineConfig, ValidationConfig
from .engine import risk_assessment
from .types import (
    AffordabilityResult,
    AnomalyDetectionResult,
    CalculationResult,
    ComplianceResult,
    ConfidenceInterval,
    OptimizedRate,
    RateOptimizationResult,
    RevenueForecastResult,
    ScenarioAnalysis,
)

logger = logging.getLogger("utilityrates.validator")

_TOLERANCE = 1e-9


def _clamp(value: float, low: float, high: float) -> float:
    if math.isnan(value):
        return low
    return min(max(value, low), high)


def _with_note(notes: list[str], note: str) -> list[str]:
    if note in notes:
        return notes
    logger.debug("validator: %s", note)
    return [*notes, note]


class ResultValidator:
    def __init__(self, config: EngineConfig | ValidationConfig | None = None) -> None:
        if isinstance(config, EngineConfig):
            config = config.validation
        self.bounds = config or ValidationConfig()

    def fix(self, result: CalculationResult) -> CalculationResult:
        if not result.success:
            return result
        if isinstance(result, RateOptimizationResult):
            return self._fix_rates(result)
        if isinstance(result, AffordabilityResult):
            return self._fix_affordability(result)
        if isinstance(result, AnomalyDetectionResult):
            return self._fix_anomalies(result)
        if isinstance(result, RevenueForecastResult):
            return self._fix_forecast(result)
        if isinstance(result, ComplianceResult):
            return self._fix_compliance(result)
        raise TypeError(f"Unsupported result type: {type(result).__name__}")

    def _unit(self, notes: list[str], label: str, value: float, high: float = 1.0) -> tuple[float, list[str]]:
        fixed = _clamp(float(value), 0.0, high)
        if fixed != value:
            notes = _with_note(notes, f"{label} {value:.4g} outside [0, {high:g}]; clamped to {fixed:.4g}")
        return fixed, notes

    # -- rates ---------------------------------------------------------------

    def _fix_rate_line(self, line: OptimizedRate, notes: list[str]) -> tuple[OptimizedRate, list[str]]:
        step = min(self.bounds.max_rate_step, 1.0)
        current = line.current_rate
        recommended = line.recommended_rate
        change = line.rate_change

        if not math.isfinite(current) or current < 0:
            notes = _with_note(notes, f"{line.service_type}: invalid current rate {current:,.2f} treated as 0")
            current = 0.0
            change = recommended - current
        if not math.isfinite(recommended) or recommended < 0:
            notes = _with_note(
                notes,
                f"{line.service_type}: invalid recommended rate {recommended:,.2f} replaced with current rate",
            )
            recommended = current
            change = 0.0
        if current > 0 and abs(recommended - current) > step * current + _TOLERANCE:
            change = math.copysign(step * current, recommended - current)
            notes = _with_note(
                notes,
                f"{line.service_type}: rate change capped at {step:.0%} of current rate ${current:,.2f}",
            )
            recommended = current + change
        elif not math.isfinite(change) or abs(change - (recommended - current)) > 1e-6:
            change = recommended - current

        confidence, notes = self._unit(notes, f"{line.service_type} confidence", line.confidence)
        fixed = replace(
            line,
            current_rate=current,
            recommended_rate=recommended,
            rate_change=change,
            confidence=confidence,
        )
        return fixed, notes

    def _fix_rates(self, result: RateOptimizationResult) -> RateOptimizationResult:
        notes = list(result.notes)
        lines: list[OptimizedRate] = []
        for line in result.rates:
            fixed, notes = self._fix_rate_line(line, notes)
            lines.append(fixed)
        confidence, notes = self._unit(notes, "confidence", result.confidence)
        if notes == result.notes and lines == result.rates and confidence == result.confidence:
            return result
        return replace(result, rates=lines, confidence=confidence, notes=notes)

    # -- affordability -------------------------------------------------------

    def _fix_affordability(self, result: AffordabilityResult) -> AffordabilityResult:
        notes = list(result.notes)
        confidence, notes = self._unit(notes, "confidence", result.confidence)
        score, notes = self._unit(notes, "affordability score", result.score)
        fraction, notes = self._unit(notes, "affordability fraction", result.affordability_fraction)
        vulnerable, notes = self._unit(
            notes, "vulnerable fraction", result.vulnerable_fraction, self.bounds.max_vulnerable_fraction
        )
        if notes == result.notes:
            return result
        return replace(
            result,
            confidence=confidence,
            score=score,
            affordability_fraction=fraction,
            vulnerable_fraction=vulnerable,
            notes=notes,
        )

    # -- anomalies -----------------------------------------------------------

    def _fix_anomalies(self, result: AnomalyDetectionResult) -> AnomalyDetectionResult:
        notes = list(result.notes)
        confidence, notes = self._unit(notes, "confidence", result.confidence)

        anomalies = []
        for anomaly in result.anomalies:
            if anomaly.severity < 0 or math.isnan(anomaly.severity):
                notes = _with_note(notes, f"Negative anomaly severity on {anomaly.date} floored at 0")
                anomaly = replace(anomaly, severity=0.0)
            anomalies.append(anomaly)

        if len(anomalies) >= 2:
            values = [a.value for a in anomalies]
            centre = sum(values) / len(values)
            if centre > 0 and max(abs(v - centre) for v in values) < 0.1 * centre:
                notes = _with_note(
                    notes,
                    "Reported anomalies all lie within 10% of their mean; they may not be statistically distinct",
                )

        if notes == result.notes:
            return result
        return replace(result, confidence=confidence, anomalies=anomalies, notes=notes)

    # -- forecast ------------------------------------------------------------

    def _fix_forecast(self, result: RevenueForecastResult) -> RevenueForecastResult:
        notes = list(result.notes)
        confidence, notes = self._unit(notes, "confidence", result.confidence)

        def floor(values: list[float], label: str) -> list[float]:
            nonlocal notes
            if any(v < 0 for v in values):
                notes = _with_note(notes, f"Negative {label} values floored at 0")
                return [max(v, 0.0) for v in values]
            return values

        projections = floor(result.projections, "projection")
        scenarios = result.scenarios
        optimistic = floor(scenarios.optimistic, "optimistic scenario")
        realistic = floor(scenarios.realistic, "realistic scenario")
        pessimistic = floor(scenarios.pessimistic, "pessimistic scenario")
        if (optimistic, realistic, pessimistic) != (scenarios.optimistic, scenarios.realistic, scenarios.pessimistic):
            scenarios = ScenarioAnalysis(
                optimistic=optimistic,
                realistic=realistic,
                pessimistic=pessimistic,
                optimistic_probability=scenarios.optimistic_probability,
                realistic_probability=scenarios.realistic_probability,
                pessimistic_probability=scenarios.pessimistic_probability,
            )

        intervals = result.intervals
        if any(i.lower < 0 or i.upper < 0 for i in intervals):
            notes = _with_note(notes, "Negative confidence interval bounds floored at 0")
            intervals = [ConfidenceInterval(max(i.lower, 0.0), max(i.upper, 0.0), i.level) for i in intervals]

        limit = self.bounds.max_monthly_growth
        for i in range(1, len(projections)):
            previous = projections[i - 1]
            if previous <= 0:
                continue
            growth = (projections[i] - previous) / previous
            if growth > limit:
                period = result.periods[i] if i < len(result.periods) else f"month {i + 1}"
                notes = _with_note(
                    notes,
                    f"Projected growth of {growth:.1%} in {period} exceeds {limit:.0%} month-over-month",
                )

        if notes == result.notes:
            return result
        return replace(
            result,
            confidence=confidence,
            projections=projections,
            scenarios=scenarios,
            intervals=intervals,
            notes=notes,
        )

    # -- compliance ----------------------------------------------------------

    def _fix_compliance(self, result: ComplianceResult) -> ComplianceResult:
        notes = list(result.notes)
        confidence, notes = self._unit(notes, "confidence", result.confidence)
        score, notes = self._unit(notes, "compliance score", result.score)
        if notes == result.notes:
            return result
        level, assessment = (
            risk_assessment(score) if score != result.score else (result.risk_level, result.risk_assessment)
        )
        return replace(
            result,
            confidence=confidence,
            score=score,
            risk_level=level,
            risk_assessment=assessment,
            notes=notes,
        )


def fix(result: CalculationResult, config: EngineConfig | None = None) -> CalculationResult:
    return ResultValidator(config).fix(result)
