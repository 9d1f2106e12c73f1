from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import importlib.resources
import logging
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import yaml

logger = logging.getLogger("utilityrates.config")


class AccountCategory(str, Enum):
    REVENUE = "revenue"
    OPERATING = "operating"
    INFRASTRUCTURE = "infrastructure"
    QUALITY = "quality"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Any) -> "AccountCategory":
        text = str(raw or "").strip().lower()
        for member in cls:
            if member.value == text:
                return member
        return cls.OTHER


class ImpactClass(str, Enum):
    DEFAULT = "default"
    WATER_SALES = "water_sales"
    QUALITY_TESTING = "quality_testing"
    PLANT_UTILITIES = "plant_utilities"
    TREATMENT_CHEMICALS = "treatment_chemicals"
    SYSTEM_REPAIRS = "system_repairs"
    INSURANCE = "insurance"
    VEHICLE_FUEL = "vehicle_fuel"
    TRAINING = "training"


@dataclass(frozen=True)
class RatesConfig:
    safety_buffer: float = 0.10
    confidence: float = 0.70
    customer_loss_threshold: float = 0.15
    customer_loss_fraction: float = 0.05


@dataclass(frozen=True)
class AffordabilityBand:
    max_fraction: float
    rating: str


def _default_bands() -> list[AffordabilityBand]:
    return [
        AffordabilityBand(0.02, "Highly Affordable"),
        AffordabilityBand(0.04, "Affordable"),
        AffordabilityBand(0.06, "Moderately Affordable"),
    ]


@dataclass(frozen=True)
class AffordabilityConfig:
    reference_household_income: float = 50_000.0
    confidence: float = 0.70
    score_multiplier: float = 20.0
    vulnerable_multiplier: float = 10.0
    vulnerable_cap: float = 0.30
    bands: list[AffordabilityBand] = field(default_factory=_default_bands)
    fallback_rating: str = "Challenging Affordability"


@dataclass(frozen=True)
class AnomalyConfig:
    sigma_threshold: float = 2.0
    min_points: int = 3
    confidence: float = 0.70


@dataclass(frozen=True)
class ForecastConfig:
    min_points: int = 2
    interval_width: float = 0.10
    interval_confidence: float = 0.80
    optimistic_multiplier: float = 1.15
    pessimistic_multiplier: float = 0.85
    confidence: float = 0.75
    max_months: int = 120


@dataclass(frozen=True)
class ComplianceConfig:
    max_budget_utilization: float = 0.95
    min_reserve_fraction: float = 0.05
    min_affordability_index: float = 0.70
    confidence: float = 0.70


@dataclass(frozen=True)
class ValidationConfig:
    max_rate_step: float = 0.50
    max_vulnerable_fraction: float = 0.50
    max_monthly_growth: float = 0.20


def _default_advisory_confidence() -> dict[str, float]:
    return {"rates": 0.85, "affordability": 0.80, "anomalies": 0.85, "forecast": 0.75, "compliance": 0.90}


@dataclass(frozen=True)
class AdvisoryConfig:
    enabled: bool = True
    model: str = "gemini-2.0-flash"
    api_key_env: str = "GEMINI_API_KEY"
    timeout_seconds: float = 60.0
    # Fixed per-capability constants; the advisory text carries no usable confidence.
    confidence: dict[str, float] = field(default_factory=_default_advisory_confidence)
    placeholder_rate_confidence: float = 0.80
    affordability_score: float = 0.75
    vulnerable_fraction: float = 0.15
    compliance_score: float = 0.90

    def confidence_for(self, capability: str) -> float:
        return float(self.confidence.get(capability, 0.75))


@dataclass(frozen=True)
class InvestmentScenario:
    key: str
    label: str
    principal: float
    annual_rate: float
    years: int
    revenue_overhead: float = 1.0
    quality_share: float = 0.0
    operating_goal_share: float = 0.0
    infrastructure_goal_share: float = 0.0


@dataclass(frozen=True)
class AccountClassRule:
    pattern: str
    impact_class: ImpactClass
    match: str = "contains"  # or "prefix"

    def matches(self, account: str) -> bool:
        code = account.upper()
        pattern = self.pattern.upper()
        if self.match == "prefix":
            return code.startswith(pattern)
        return pattern in code


def _default_investments() -> list[InvestmentScenario]:
    return [
        InvestmentScenario("treatment_plant", "Water Treatment Plant", 750_000.0, 0.04, 20, 1.05, 0.08, 0.10, 0.80),
        InvestmentScenario("pipeline_replacement", "Pipeline Replacement", 200_000.0, 0.035, 10, 1.03, 0.05, 0.15, 0.60),
        InvestmentScenario("quality_upgrade", "Quality Upgrades", 125_000.0, 0.03, 8, 1.02, 1.00, 0.05, 0.40),
    ]


@dataclass(frozen=True)
class ScenarioConfig:
    minimum_infrastructure_allocation: float = 0.15
    minimum_quality_allocation: float = 0.05
    epa_compliance_factor: float = 1.08
    default_revenue_allocation: float = 0.25
    high_average_rate: float = 50.0
    investments: list[InvestmentScenario] = field(default_factory=_default_investments)
    account_classes: list[AccountClassRule] = field(default_factory=list)
    epa_classes: set[ImpactClass] = field(default_factory=set)
    impact_factors: dict[ImpactClass, dict[str, float]] = field(default_factory=dict)
    # fund name -> revenue seasonal factor used when a line carries none
    seasonal_factors: dict[str, float] = field(default_factory=dict)

    def investment(self, key: str) -> InvestmentScenario:
        for inv in self.investments:
            if inv.key == key:
                return inv
        raise KeyError(f"Unknown investment scenario '{key}'. Known: {[i.key for i in self.investments]}")

    def impact_factor(self, impact_class: ImpactClass, investment_key: str) -> float:
        table = self.impact_factors.get(impact_class, {})
        if investment_key in table:
            return float(table[investment_key])
        return float(self.impact_factors.get(ImpactClass.DEFAULT, {}).get(investment_key, 0.0))


@dataclass(frozen=True)
class EngineConfig:
    rates: RatesConfig = field(default_factory=RatesConfig)
    affordability: AffordabilityConfig = field(default_factory=AffordabilityConfig)
    anomalies: AnomalyConfig = field(default_factory=AnomalyConfig)
    forecast: ForecastConfig = field(default_factory=ForecastConfig)
    compliance: ComplianceConfig = field(default_factory=ComplianceConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    advisory: AdvisoryConfig = field(default_factory=AdvisoryConfig)
    scenarios: ScenarioConfig = field(default_factory=ScenarioConfig)

    @staticmethod
    def from_mapping(raw: Mapping[str, Any]) -> "EngineConfig":
        raw = _mapping(raw, "root")
        return EngineConfig(
            rates=_section(RatesConfig, _mapping(raw.get("rates"), "rates")),
            affordability=_affordability_from_mapping(_mapping(raw.get("affordability"), "affordability")),
            anomalies=_section(AnomalyConfig, _mapping(raw.get("anomalies"), "anomalies")),
            forecast=_section(ForecastConfig, _mapping(raw.get("forecast"), "forecast")),
            compliance=_section(ComplianceConfig, _mapping(raw.get("compliance"), "compliance")),
            validation=_section(ValidationConfig, _mapping(raw.get("validation"), "validation")),
            advisory=_advisory_from_mapping(_mapping(raw.get("advisory"), "advisory")),
            scenarios=_scenarios_from_mapping(_mapping(raw.get("scenarios"), "scenarios")),
        )

    @staticmethod
    def from_yaml(path: str | Path) -> "EngineConfig":
        """Load a config file layered over the packaged defaults."""
        path = Path(path)
        raw = _mapping(yaml.safe_load(path.read_text(encoding="utf-8")), str(path))
        return EngineConfig.from_mapping(_deep_merge(_packaged_mapping(), raw))


def default_engine_config() -> EngineConfig:
    return EngineConfig.from_mapping(_packaged_mapping())


def _packaged_mapping() -> dict[str, Any]:
    text = (
        importlib.resources.files("utilityrates.resources")
        .joinpath("default_engine.yaml")
        .read_text(encoding="utf-8")
    )
    return yaml.safe_load(text) or {}


def _deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _section(cls, raw: Mapping[str, Any] | None):
    """Build a flat numeric section, keeping the dataclass default for anything missing or malformed."""
    defaults = cls()
    values: dict[str, Any] = {}
    for name, default in vars(defaults).items():
        if raw is None or name not in raw or raw[name] is None:
            continue
        try:
            values[name] = type(default)(raw[name])
        except (TypeError, ValueError):
            logger.warning("Invalid %s.%s=%r; using default %r", cls.__name__, name, raw[name], default)
    return cls(**values)


def _mapping(raw: Any, name: str) -> Mapping[str, Any]:
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        logger.warning("Config section %s should be a mapping, got %r; using defaults", name, raw)
        return {}
    return raw


def _entries(raw: Any, name: str, parse: Callable[[Any], Any]) -> list[Any]:
    """Parse each item of a nested list, skipping (with a warning) the ones that do not parse."""
    if raw is None:
        return []
    if isinstance(raw, (str, bytes, Mapping)) or not isinstance(raw, Iterable):
        logger.warning("Config %s should be a list, got %r; using defaults", name, raw)
        return []
    parsed = []
    for item in raw:
        try:
            parsed.append(parse(item))
        except (AttributeError, KeyError, TypeError, ValueError) as exc:
            logger.warning("Invalid %s entry %r (%s); skipped", name, item, exc)
    return parsed


def _table(raw: Any, name: str, parse: Callable[[Any, Any], tuple[Any, Any]]) -> dict[Any, Any]:
    """Parse a nested key/value table, skipping (with a warning) the pairs that do not parse."""
    return dict(_entries(list(_mapping(raw, name).items()), name, lambda kv: parse(*kv)))


def _band(raw: Mapping[str, Any]) -> AffordabilityBand:
    return AffordabilityBand(float(raw["max_fraction"]), str(raw["rating"]))


def _investment(raw: Mapping[str, Any]) -> InvestmentScenario:
    return InvestmentScenario(
        key=str(raw["key"]),
        label=str(raw.get("label", raw["key"])),
        principal=float(raw["principal"]),
        annual_rate=float(raw.get("annual_rate", 0.0)),
        years=int(raw["years"]),
        revenue_overhead=float(raw.get("revenue_overhead", 1.0)),
        quality_share=float(raw.get("quality_share", 0.0)),
        operating_goal_share=float(raw.get("operating_goal_share", 0.0)),
        infrastructure_goal_share=float(raw.get("infrastructure_goal_share", 0.0)),
    )


def _account_class(raw: Mapping[str, Any]) -> AccountClassRule:
    return AccountClassRule(
        pattern=str(raw["pattern"]),
        impact_class=ImpactClass(str(raw["impact_class"])),
        match=str(raw.get("match", "contains")),
    )


def _impact_table(name: Any, table: Any) -> tuple[ImpactClass, dict[str, float]]:
    factors = _table(table, f"impact_factors.{name}", lambda k, f: (str(k), float(f)))
    return ImpactClass(str(name)), factors


def _affordability_from_mapping(raw: Mapping[str, Any]) -> AffordabilityConfig:
    flat = _section(AffordabilityConfig, {k: v for k, v in raw.items() if k not in ("bands", "fallback_rating")})
    income = flat.reference_household_income
    if income <= 0:
        logger.warning("reference_household_income must be positive (got %s); using 50000", income)
        income = AffordabilityConfig.reference_household_income
    bands = sorted(_entries(raw.get("bands"), "affordability.bands", _band), key=lambda b: b.max_fraction)
    return AffordabilityConfig(
        reference_household_income=income,
        confidence=flat.confidence,
        score_multiplier=flat.score_multiplier,
        vulnerable_multiplier=flat.vulnerable_multiplier,
        vulnerable_cap=flat.vulnerable_cap,
        bands=bands or _default_bands(),
        fallback_rating=str(raw.get("fallback_rating") or AffordabilityConfig.fallback_rating),
    )


def _advisory_from_mapping(raw: Mapping[str, Any]) -> AdvisoryConfig:
    flat = _section(AdvisoryConfig, {k: v for k, v in raw.items() if k != "confidence"})
    confidence = _default_advisory_confidence()
    confidence.update(_table(raw.get("confidence"), "advisory.confidence", lambda k, v: (str(k), float(v))))
    return AdvisoryConfig(
        enabled=bool(raw.get("enabled", True)),
        model=flat.model,
        api_key_env=flat.api_key_env,
        timeout_seconds=flat.timeout_seconds,
        confidence=confidence,
        placeholder_rate_confidence=flat.placeholder_rate_confidence,
        affordability_score=flat.affordability_score,
        vulnerable_fraction=flat.vulnerable_fraction,
        compliance_score=flat.compliance_score,
    )


def _scenarios_from_mapping(raw: Mapping[str, Any]) -> ScenarioConfig:
    flat = _section(
        ScenarioConfig,
        {
            k: v
            for k, v in raw.items()
            if k
            in (
                "minimum_infrastructure_allocation",
                "minimum_quality_allocation",
                "epa_compliance_factor",
                "default_revenue_allocation",
                "high_average_rate",
            )
        },
    )
    investments = _entries(raw.get("investments"), "scenarios.investments", _investment)
    return ScenarioConfig(
        minimum_infrastructure_allocation=flat.minimum_infrastructure_allocation,
        minimum_quality_allocation=flat.minimum_quality_allocation,
        epa_compliance_factor=flat.epa_compliance_factor,
        default_revenue_allocation=flat.default_revenue_allocation,
        high_average_rate=flat.high_average_rate,
        investments=investments or _default_investments(),
        account_classes=_entries(raw.get("account_classes"), "scenarios.account_classes", _account_class),
        epa_classes=set(_entries(raw.get("epa_classes"), "scenarios.epa_classes", lambda c: ImpactClass(str(c)))),
        impact_factors=_table(raw.get("impact_factors"), "scenarios.impact_factors", _impact_table),
        seasonal_factors=_table(
            raw.get("seasonal_factors"), "scenarios.seasonal_factors", lambda k, v: (str(k).lower(), float(v))
        ),
    )
