from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import pandas as pd
import yaml

from .io import ACCOUNTS_FILE, ENTERPRISE_FILE, FINANCIAL_FILE, REVENUE_FILE


@dataclass(frozen=True)
class SynthSpec:
    start: str  # YYYY-MM
    months: int
    seed: int
    customers: int = 1_200
    base_rate: float = 45.0
    fund: str = "water"
    outliers: int = 2


def generate_synthetic_dataset(out_dir: str | Path, spec: SynthSpec) -> Path:
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    rng = np.random.default_rng(spec.seed)
    periods = pd.period_range(spec.start, periods=spec.months, freq="M")

    rows = []
    customers = float(spec.customers)
    rate = spec.base_rate
    for period in periods:
        season = 1.0 + 0.12 * np.sin((period.month - 4) / 12 * 2 * np.pi)
        customers = max(customers + float(rng.normal(2, 3)), 1.0)
        rate = rate * (1 + float(rng.normal(0.002, 0.001)))
        revenue = customers * rate * season + float(rng.normal(0, 1_500))
        rows.append([period.to_timestamp().date().isoformat(), round(max(revenue, 0.0), 2), int(customers), round(rate, 2)])
    revenue = pd.DataFrame(rows, columns=["Date", "Revenue", "CustomerCount", "AverageRate"])
    revenue.to_csv(out_dir / REVENUE_FILE, index=False)

    spending = rng.normal(38_000, 2_500, size=len(periods))
    # A few obvious spikes and dips for the anomaly detector to find.
    picks = rng.choice(len(periods), size=min(spec.outliers, len(periods)), replace=False)
    for i, idx in enumerate(picks):
        spending[idx] *= 1.6 if i % 2 == 0 else 0.45
    financial = pd.DataFrame(
        {
            "Date": [p.to_timestamp().date().isoformat() for p in periods],
            "Value": np.round(spending, 2),
            "Category": "Operating",
            "Description": "Monthly operating spend",
        }
    )
    financial.to_csv(out_dir / FINANCIAL_FILE, index=False)

    annual_revenue = float(revenue["Revenue"].tail(12).sum())
    accounts = pd.DataFrame(
        [
            ["W301.10", "Revenue", "Metered water sales", annual_revenue * 0.92, 0.0, 0.25, 1.0, 0.95, 1.05],
            ["W301.20", "Revenue", "Connection fees", annual_revenue * 0.08, 0.0, 0.10, 0.0, 0.0, 0.0],
            ["W405.00", "Quality", "EPA lab testing", 36_000.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            ["W418.00", "Operating", "Plant utilities", 96_000.0, 5_000.0, 0.0, 1.1, 0.0, 0.0],
            ["W425.00", "Operating", "Treatment chemicals", 72_000.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            ["W430.00", "Operating", "Insurance", 28_000.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            ["W491.00", "Operating", "Vehicle fuel", 14_000.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            ["W413.00", "Operating", "Operator training", 6_000.0, 0.0, 0.0, 0.0, 0.0, 0.0],
            ["W415.00", "Infrastructure", "System repairs", 110_000.0, 20_000.0, 0.0, 0.0, 0.0, 0.0],
            ["W470.00", "Infrastructure", "Capital outlay", 60_000.0, 10_000.0, 0.0, 0.0, 0.0, 0.0],
        ],
        columns=[
            "Account",
            "Section",
            "Description",
            "CurrentFYBudget",
            "GoalAdjustment",
            "PercentAllocation",
            "TimeOfUseFactor",
            "CustomerAffordabilityIndex",
            "SeasonalRevenueFactor",
        ],
    )
    elapsed = float(rng.uniform(0.55, 0.75))
    accounts["MonthlyInput"] = (accounts["CurrentFYBudget"] / 12).round(2)
    accounts["YearToDateSpending"] = (accounts["CurrentFYBudget"] * elapsed).round(2)
    accounts.loc[accounts["Section"] == "Revenue", "YearToDateSpending"] = 0.0
    accounts.to_csv(out_dir / ACCOUNTS_FILE, index=False)

    expenses = float(accounts.loc[accounts["Section"] != "Revenue", "CurrentFYBudget"].sum())
    enterprise = {
        "enterprise": {
            "name": f"{spec.fund.title()} Enterprise",
            "fund": spec.fund,
            "municipality": "Town of Wiley",
            "customer_count": int(customers),
            "total_budget": round(expenses, 2),
            "total_revenue": round(annual_revenue, 2),
            "total_expenses": round(expenses, 2),
            "year_to_date_spending": round(expenses * elapsed, 2),
            "required_rate": round(rate, 2),
            "affordability_index": 0.85,
            "reserve_target": round(expenses * 0.1, 2),
        },
        "goals": {
            "target_revenue": round(expenses * 1.05, 2),
            "max_rate_increase_percent": 0.15,
            "customer_retention_target": 0.95,
            "affordability_constraint": 0.04,
        },
        "proposed_rate": round(rate * 1.05, 2),
        "demographics": [
            {"segment": "Fixed income", "average_household_income": 32_000, "customers": int(customers * 0.25)},
            {"segment": "Working families", "average_household_income": 54_000, "customers": int(customers * 0.55)},
            {"segment": "Higher income", "average_household_income": 88_000, "customers": int(customers * 0.20)},
        ],
        "requirements": [
            {
                "name": "State budget cap",
                "type": "budget",
                "description": "Spending must stay within 95% of the adopted budget",
                "threshold": 0.95,
                "mandatory": True,
                "authority": "State Auditor",
                "recommended_action": "Request a budget amendment",
            },
            {
                "name": "Minimum operating revenue",
                "type": "revenue",
                "description": "Annual revenue must cover operating costs",
                "min_value": round(expenses * 0.8, 2),
                "mandatory": True,
                "authority": "Public Utility Commission",
            },
        ],
    }
    (out_dir / ENTERPRISE_FILE).write_text(yaml.safe_dump(enterprise, sort_keys=False), encoding="utf-8")

    return out_dir
