from __future__ import annotations

from pathlib import Path
from typing import Any, Mapping

import pandas as pd
import yaml

from .config import AccountCategory, ScenarioConfig
from .mapping import classify_accounts
from .normalize import normalize_account_lines, normalize_financial_data, normalize_revenue_history
from .scenarios import required_rates
from .types import (
    CustomerDemographics,
    EnterpriseSnapshot,
    FinancialDataPoint,
    Inputs,
    RateOptimizationGoals,
    RegulatoryRequirement,
    RevenuePoint,
)

ENTERPRISE_FILE = "enterprise.yaml"
REVENUE_FILE = "Revenue_History.csv"
FINANCIAL_FILE = "Financial_Data.csv"
ACCOUNTS_FILE = "Account_Lines.csv"


def _read_csv(path: Path) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(f"Missing required input: {path}")
    # Keep account codes like "W301.10" as text
    return pd.read_csv(path, dtype={"Account": str})


def snapshot_from_mapping(raw: Mapping[str, Any]) -> EnterpriseSnapshot:
    def _opt(key: str) -> float | None:
        value = raw.get(key)
        return None if value is None else float(value)

    return EnterpriseSnapshot(
        name=str(raw.get("name", "Enterprise")),
        fund=str(raw.get("fund", "water")),
        municipality=str(raw.get("municipality", "Town of Wiley")),
        customer_count=int(raw.get("customer_count", 0)),
        total_budget=float(raw.get("total_budget", 0.0)),
        total_revenue=float(raw.get("total_revenue", 0.0)),
        total_expenses=float(raw.get("total_expenses", 0.0)),
        year_to_date_spending=float(raw.get("year_to_date_spending", 0.0)),
        required_rate=float(raw.get("required_rate", 0.0)),
        affordability_index=float(raw.get("affordability_index", 1.0)),
        reserve_target=float(raw.get("reserve_target", 0.0)),
        budget_remaining=_opt("budget_remaining"),
        percent_of_budget_used=_opt("percent_of_budget_used"),
    )


def snapshot_from_account_lines(
    name: str,
    lines: pd.DataFrame,
    customer_count: int,
    fund: str = "water",
) -> EnterpriseSnapshot:
    """Roll classified account lines up into a fund-level snapshot."""
    is_revenue = lines["Category"] == AccountCategory.REVENUE.value
    total_budget = float(lines["CurrentFYBudget"].sum())
    revenue = float(lines.loc[is_revenue, "CurrentFYBudget"].sum())
    expenses = float(lines.loc[~is_revenue, "CurrentFYBudget"].sum())

    rates = required_rates(lines, customer_count, expenses, revenue)
    positive_rates = rates[rates > 0]
    affordability = lines.loc[lines["CustomerAffordabilityIndex"] > 0, "CustomerAffordabilityIndex"]

    return EnterpriseSnapshot(
        name=name,
        fund=fund,
        customer_count=int(customer_count),
        total_budget=total_budget,
        total_revenue=revenue,
        total_expenses=expenses,
        year_to_date_spending=float(lines["YearToDateSpending"].sum()),
        required_rate=float(positive_rates.sum()) if len(positive_rates.index) else 0.0,
        affordability_index=float(affordability.mean()) if len(affordability.index) else 1.0,
    )


def load_account_lines(path: str | Path, config: ScenarioConfig) -> tuple[pd.DataFrame, list[str]]:
    lines, warnings = normalize_account_lines(_read_csv(Path(path)))
    lines, map_warnings = classify_accounts(lines, config)
    return lines, warnings + map_warnings


def load_revenue_history(path: str | Path) -> tuple[list[RevenuePoint], list[str]]:
    df, warnings = normalize_revenue_history(_read_csv(Path(path)))
    points = [
        RevenuePoint(
            date=row.Date.date(),
            revenue=float(row.Revenue),
            customer_count=int(row.CustomerCount),
            average_rate=float(row.AverageRate),
        )
        for row in df.itertuples(index=False)
    ]
    return points, warnings


def load_financial_data(path: str | Path) -> tuple[list[FinancialDataPoint], list[str]]:
    df, warnings = normalize_financial_data(_read_csv(Path(path)))
    points = [
        FinancialDataPoint(
            date=row.Date.date(),
            value=float(row.Value),
            category=str(row.Category),
            description=str(row.Description),
        )
        for row in df.itertuples(index=False)
    ]
    return points, warnings


def load_inputs(input_dir: str | Path, config: ScenarioConfig) -> Inputs:
    """Load an enterprise directory. Only enterprise.yaml is required; series files are optional."""
    input_dir = Path(input_dir)
    enterprise_path = input_dir / ENTERPRISE_FILE
    if not enterprise_path.exists():
        raise FileNotFoundError(f"Missing required input: {enterprise_path}")
    raw = yaml.safe_load(enterprise_path.read_text(encoding="utf-8")) or {}
    warnings: list[str] = []

    lines = None
    if (input_dir / ACCOUNTS_FILE).exists():
        lines, line_warnings = load_account_lines(input_dir / ACCOUNTS_FILE, config)
        warnings.extend(line_warnings)

    ent = raw.get("enterprise") or {}
    if "total_budget" in ent or lines is None:
        snapshot = snapshot_from_mapping(ent)
    else:
        snapshot = snapshot_from_account_lines(
            str(ent.get("name", "Enterprise")),
            lines,
            int(ent.get("customer_count", 0)),
            fund=str(ent.get("fund", "water")),
        )
        warnings.append("Enterprise totals derived from Account_Lines.csv.")

    goals_raw = raw.get("goals") or {}
    goals = RateOptimizationGoals(
        target_revenue=float(goals_raw.get("target_revenue", snapshot.total_expenses)),
        max_rate_increase_percent=float(goals_raw.get("max_rate_increase_percent", 0.15)),
        customer_retention_target=float(goals_raw.get("customer_retention_target", 0.95)),
        affordability_constraint=float(goals_raw.get("affordability_constraint", 0.04)),
    )

    requirements = [
        RegulatoryRequirement(
            name=str(r["name"]),
            type=str(r.get("type", "")),
            description=str(r.get("description", "")),
            threshold=float(r.get("threshold", 0.0)),
            min_value=float(r.get("min_value", 0.0)),
            max_value=float(r.get("max_value", 0.0)),
            mandatory=bool(r.get("mandatory", True)),
            authority=str(r.get("authority", "")),
            recommended_action=str(r.get("recommended_action", "")),
        )
        for r in (raw.get("requirements") or [])
    ]
    demographics = [
        CustomerDemographics(
            segment=str(d.get("segment", "")),
            average_household_income=float(d["average_household_income"]),
            customers=int(d.get("customers", 0)),
        )
        for d in (raw.get("demographics") or [])
    ]

    revenue: list[RevenuePoint] = []
    if (input_dir / REVENUE_FILE).exists():
        revenue, rev_warnings = load_revenue_history(input_dir / REVENUE_FILE)
        warnings.extend(rev_warnings)
    else:
        warnings.append(f"{REVENUE_FILE} not found; revenue forecast will report insufficient data.")

    financial: list[FinancialDataPoint] = []
    if (input_dir / FINANCIAL_FILE).exists():
        financial, fin_warnings = load_financial_data(input_dir / FINANCIAL_FILE)
        warnings.extend(fin_warnings)
    else:
        warnings.append(f"{FINANCIAL_FILE} not found; anomaly detection will report insufficient data.")

    income = raw.get("household_income")
    return Inputs(
        snapshot=snapshot,
        goals=goals,
        proposed_rate=float(raw.get("proposed_rate", snapshot.required_rate)),
        revenue_history=revenue,
        financial_data=financial,
        requirements=requirements,
        demographics=demographics,
        household_income=None if income is None else float(income),
        account_lines=lines,
        warnings=warnings,
    )
