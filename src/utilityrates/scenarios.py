"""Amortized capital investment scenarios for enterprise account lines.

Each configured investment (treatment plant, pipeline, quality upgrades) is
converted to a level monthly payment and spread over the fund's account lines
according to their category and impact class.
"""

from __future__ import annotations

from typing import Any

import numpy as np
import pandas as pd

from .config import AccountCategory, EngineConfig, ImpactClass, InvestmentScenario


def monthly_payment(principal: float, annual_rate: float, years: int) -> float:
    """Level monthly payment: P * r(1+r)^n / ((1+r)^n - 1), or P/n at zero interest."""
    if principal <= 0 or annual_rate < 0 or years <= 0:
        return 0.0
    r = annual_rate / 12
    n = int(years) * 12
    if r == 0:
        return principal / n
    factor = (1 + r) ** n
    return principal * (r * factor) / (factor - 1)


def _active_factor(col: pd.Series) -> pd.Series:
    """Multiplier columns only apply when set (> 0) and not neutral."""
    col = pd.to_numeric(col, errors="coerce").fillna(0.0)
    return col.where((col > 0) & (col != 1.0), 1.0)


def _allocate(lines: pd.DataFrame, inv: InvestmentScenario, config: EngineConfig, fund: str) -> pd.Series:
    cfg = config.scenarios
    payment = monthly_payment(inv.principal, inv.annual_rate, inv.years)

    base = lines["MonthlyInput"]
    category = lines["Category"]
    goal = lines["GoalAdjustment"].clip(lower=0.0)
    epa = lines["ImpactClass"].isin([c.value for c in cfg.epa_classes])
    epa_factor = np.where(epa, cfg.epa_compliance_factor, 1.0)

    allocation = lines["PercentAllocation"].where(lines["PercentAllocation"] > 0, cfg.default_revenue_allocation)
    revenue = (base + payment * allocation * inv.revenue_overhead) * epa_factor

    impact = lines["ImpactClass"].map(lambda c: cfg.impact_factor(ImpactClass(c), inv.key))
    operating = base + payment * impact + goal * inv.operating_goal_share

    infrastructure = base + payment + goal * inv.infrastructure_goal_share
    quality = (base + payment * inv.quality_share) * epa_factor

    values = pd.Series(
        np.select(
            [
                category == AccountCategory.REVENUE.value,
                category == AccountCategory.OPERATING.value,
                category == AccountCategory.INFRASTRUCTURE.value,
                category == AccountCategory.QUALITY.value,
            ],
            [revenue, operating, infrastructure, quality],
            default=base,
        ),
        index=lines.index,
    )

    values = values * _active_factor(lines["TimeOfUseFactor"]) * _active_factor(lines["CustomerAffordabilityIndex"])

    seasonal_default = cfg.seasonal_factors.get(fund.lower(), 1.0)
    seasonal = lines["SeasonalRevenueFactor"].where(lines["SeasonalRevenueFactor"] > 0, seasonal_default)
    values = values.where(category != AccountCategory.REVENUE.value, values * seasonal)

    values = values.clip(lower=0.0)
    floor = lines["CurrentFYBudget"] * cfg.minimum_infrastructure_allocation
    is_infra = category == AccountCategory.INFRASTRUCTURE.value
    return values.where(~is_infra, np.maximum(values, floor))


def calculate_scenarios(lines: pd.DataFrame, config: EngineConfig, fund: str = "water") -> pd.DataFrame:
    """Add one column per configured investment with each line's scenario monthly amount.

    ``lines`` must already be normalized and classified (Category and ImpactClass columns).
    """
    out = lines.copy()
    if len(out.index) == 0:
        for inv in config.scenarios.investments:
            out[inv.key] = pd.Series(dtype=float)
        return out
    for inv in config.scenarios.investments:
        out[inv.key] = _allocate(out, inv, config, fund)
    return out


def required_rates(
    lines: pd.DataFrame,
    customer_base: int,
    total_expenses: float,
    total_revenue: float,
) -> pd.Series:
    """Monthly rate per customer each line requires."""
    if customer_base <= 0 or len(lines.index) == 0:
        return pd.Series(0.0, index=lines.index)

    category = lines["Category"]
    budget = lines["CurrentFYBudget"]
    per_customer = budget / customer_base / 12

    if total_revenue > 0:
        revenue_rate = total_expenses * (budget / total_revenue) / customer_base / 12
    else:
        revenue_rate = pd.Series(0.0, index=lines.index)

    rate = pd.Series(
        np.select(
            [
                category == AccountCategory.REVENUE.value,
                category == AccountCategory.OPERATING.value,
                category == AccountCategory.INFRASTRUCTURE.value,
                category == AccountCategory.QUALITY.value,
            ],
            [revenue_rate, per_customer, (budget + lines["GoalAdjustment"]) / customer_base / 12, per_customer],
            default=0.0,
        ),
        index=lines.index,
    )
    rate = rate * _active_factor(lines["TimeOfUseFactor"]) * _active_factor(lines["CustomerAffordabilityIndex"])
    return rate.clip(lower=0.0)


def summary_statistics(lines: pd.DataFrame, customer_base: int, config: EngineConfig) -> dict[str, Any]:
    cfg = config.scenarios
    by_category = lines.groupby("Category")["CurrentFYBudget"].sum()

    def _total(cat: AccountCategory) -> float:
        return float(by_category.get(cat.value, 0.0))

    revenue = _total(AccountCategory.REVENUE)
    expenses = float(lines.loc[lines["Category"] != AccountCategory.REVENUE.value, "CurrentFYBudget"].sum())
    infrastructure = _total(AccountCategory.INFRASTRUCTURE)
    quality = _total(AccountCategory.QUALITY)
    scale = revenue + expenses

    rates = required_rates(lines, customer_base, expenses, revenue)
    positive = rates[rates > 0]

    stats: dict[str, Any] = {
        "total_revenue": revenue,
        "total_operating_expenses": _total(AccountCategory.OPERATING),
        "total_infrastructure_investment": infrastructure,
        "total_quality_investment": quality,
        "total_expenses": expenses,
        "net_surplus_deficit": revenue - expenses,
        "average_required_rate": float(positive.mean()) if len(positive.index) else 0.0,
        "total_ytd_spending": float(lines["YearToDateSpending"].sum()),
        "infrastructure_percentage": round(infrastructure / scale * 100, 2) if scale else 0.0,
        "quality_percentage": round(quality / scale * 100, 2) if scale else 0.0,
        "customer_base": int(customer_base),
    }
    for inv in cfg.investments:
        stats[f"{inv.key}_monthly_payment"] = monthly_payment(inv.principal, inv.annual_rate, inv.years)

    stats["infrastructure_adequate"] = stats["infrastructure_percentage"] >= cfg.minimum_infrastructure_allocation * 100
    stats["quality_adequate"] = stats["quality_percentage"] >= cfg.minimum_quality_allocation * 100
    stats["budget_balanced"] = stats["net_surplus_deficit"] >= 0
    return stats


def validate_enterprise(lines: pd.DataFrame, customer_base: int, config: EngineConfig) -> list[str]:
    cfg = config.scenarios
    if len(lines.index) == 0:
        return ["ERROR: No enterprise account lines found"]

    stats = summary_statistics(lines, customer_base, config)
    messages: list[str] = []

    if not stats["infrastructure_adequate"]:
        messages.append(
            f"WARNING: Infrastructure allocation ({stats['infrastructure_percentage']:.1f}%) below recommended"
            f" minimum ({cfg.minimum_infrastructure_allocation * 100:.0f}%)"
        )
    if not stats["quality_adequate"]:
        messages.append(
            f"WARNING: Quality allocation ({stats['quality_percentage']:.1f}%) below recommended"
            f" minimum ({cfg.minimum_quality_allocation * 100:.0f}%)"
        )
    if stats["net_surplus_deficit"] < 0:
        messages.append(f"WARNING: Enterprise showing deficit of ${abs(stats['net_surplus_deficit']):,.2f}")

    present = set(lines["Category"].unique())
    for cat in (
        AccountCategory.REVENUE,
        AccountCategory.OPERATING,
        AccountCategory.INFRASTRUCTURE,
        AccountCategory.QUALITY,
    ):
        if cat.value not in present:
            messages.append(f"WARNING: No accounts found for {cat.value.title()} section")

    if stats["average_required_rate"] > cfg.high_average_rate:
        messages.append(f"WARNING: Average required rate (${stats['average_required_rate']:.2f}) seems high")

    if not messages:
        messages.append("SUCCESS: Enterprise validation passed")
    return messages
