from __future__ import annotations

import pandas as pd

ACCOUNT_LINE_DEFAULTS: dict[str, float] = {
    "MonthlyInput": 0.0,
    "CurrentFYBudget": 0.0,
    "YearToDateSpending": 0.0,
    "GoalAdjustment": 0.0,
    "PercentAllocation": 0.0,
    "TimeOfUseFactor": 1.0,
    "CustomerAffordabilityIndex": 0.0,
    "SeasonalRevenueFactor": 0.0,
}


def normalize_account_lines(lines: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    warnings: list[str] = []
    for required in ["Account", "Section"]:
        if required not in lines.columns:
            raise ValueError(f"Account_Lines.csv missing required column: {required}")

    out = lines.copy()
    if "Description" not in out.columns:
        out["Description"] = ""
    for col, default in ACCOUNT_LINE_DEFAULTS.items():
        if col not in out.columns:
            out[col] = default
            if col in ("MonthlyInput", "CurrentFYBudget"):
                warnings.append(f"Account_Lines.csv missing {col}; defaulting to {default}.")
        out[col] = pd.to_numeric(out[col], errors="coerce").fillna(default)

    # Monthly input defaults to a twelfth of the annual budget.
    missing_monthly = out["MonthlyInput"] == 0
    out.loc[missing_monthly, "MonthlyInput"] = out.loc[missing_monthly, "CurrentFYBudget"] / 12
    return out, warnings


def normalize_revenue_history(history: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    warnings: list[str] = []
    for required in ["Date", "Revenue"]:
        if required not in history.columns:
            raise ValueError(f"Revenue_History.csv missing required column: {required}")

    out = history.copy()
    out["Date"] = pd.to_datetime(out["Date"], errors="coerce")
    out["Revenue"] = pd.to_numeric(out["Revenue"], errors="coerce")
    bad = int((out["Date"].isna() | out["Revenue"].isna()).sum())
    if bad:
        warnings.append(f"{bad} revenue rows have an unreadable Date or Revenue; dropped.")
    out = out.dropna(subset=["Date", "Revenue"])

    for col in ["CustomerCount", "AverageRate"]:
        if col not in out.columns:
            out[col] = 0
        out[col] = pd.to_numeric(out[col], errors="coerce").fillna(0)
    return out.sort_values("Date").reset_index(drop=True), warnings


def normalize_financial_data(data: pd.DataFrame) -> tuple[pd.DataFrame, list[str]]:
    warnings: list[str] = []
    for required in ["Date", "Value"]:
        if required not in data.columns:
            raise ValueError(f"Financial_Data.csv missing required column: {required}")

    out = data.copy()
    out["Date"] = pd.to_datetime(out["Date"], errors="coerce")
    out["Value"] = pd.to_numeric(out["Value"], errors="coerce")
    bad = int((out["Date"].isna() | out["Value"].isna()).sum())
    if bad:
        warnings.append(f"{bad} financial data rows have an unreadable Date or Value; dropped.")
    out = out.dropna(subset=["Date", "Value"])

    for col in ["Category", "Description"]:
        if col not in out.columns:
            out[col] = ""
        out[col] = out[col].fillna("").astype(str)
    return out.sort_values("Date").reset_index(drop=True), warnings
