from __future__ import annotations

import pandas as pd

from .config import AccountCategory, ImpactClass, ScenarioConfig


def classify_account(account: str, config: ScenarioConfig) -> ImpactClass:
    for rule in config.account_classes:
        if rule.matches(account):
            return rule.impact_class
    return ImpactClass.DEFAULT


def classify_accounts(lines: pd.DataFrame, config: ScenarioConfig) -> tuple[pd.DataFrame, list[str]]:
    """Resolve Section -> Category and Account -> ImpactClass once, when lines are loaded."""
    out = lines.copy()
    warnings: list[str] = []

    out["Account"] = out["Account"].fillna("").astype(str)
    out["Category"] = out["Section"].map(lambda s: AccountCategory.parse(s).value)
    out["ImpactClass"] = out["Account"].map(lambda a: classify_account(a, config).value)

    unknown = int((out["Category"] == AccountCategory.OTHER.value).sum())
    if unknown:
        warnings.append(f"{unknown} account lines have no recognised Section; scenarios keep their base amount.")
    return out, warnings
