from __future__ import annotations

from dataclasses import asdict
import json
from pathlib import Path
from typing import Any, Sequence

import matplotlib.pyplot as plt
import matplotlib.ticker as mtick
import pandas as pd
from openpyxl import Workbook
from openpyxl.utils.dataframe import dataframe_to_rows

from .types import AnalysisBundle, RevenueForecastResult, RevenuePoint


def write_assumptions(path: str | Path, assumptions: dict[str, Any]) -> None:
    path = Path(path)
    path.write_text(json.dumps(assumptions, indent=2, default=str), encoding="utf-8")


def bundle_to_dict(bundle: AnalysisBundle) -> dict[str, Any]:
    return {
        "enterprise": bundle.enterprise,
        "assumptions": bundle.assumptions,
        "results": {name: asdict(result) for name, result in bundle.results().items()},
    }


def write_results(path: str | Path, bundle: AnalysisBundle) -> None:
    path = Path(path)
    path.write_text(json.dumps(bundle_to_dict(bundle), indent=2, default=str), encoding="utf-8")


def write_narrative(path: str | Path, bundle: AnalysisBundle) -> None:
    path = Path(path)
    rates, afford, anomalies, forecast, compliance = (
        bundle.rates,
        bundle.affordability,
        bundle.anomalies,
        bundle.forecast,
        bundle.compliance,
    )

    lines: list[str] = []
    lines.append(f"# Utility Rate Analysis: {bundle.enterprise}")
    lines.append("")
    lines.append("## Summary")
    lines.append("| Capability | Method | Confidence | Status |")
    lines.append("|---|---|---|---|")
    for name, result in bundle.results().items():
        status = "OK" if result.success else f"Unavailable: {result.error}"
        lines.append(f"| {name} | {result.method} | {result.confidence:.0%} | {status} |")
    lines.append("")

    lines.append("## Rates")
    if rates.success:
        for r in rates.rates:
            lines.append(
                f"- {r.service_type}: ${r.current_rate:,.2f} → ${r.recommended_rate:,.2f}"
                f" ({r.percentage_change:+.1%})"
            )
            lines.append(f"  - {r.justification}")
        impact = rates.customer_impact
        if impact.estimated_customer_loss:
            lines.append(f"- Estimated customer loss: {impact.estimated_customer_loss:,.0f}")
        for risk in rates.risk_factors:
            lines.append(f"- Risk: {risk}")
    else:
        lines.append(f"- {rates.error}")
    lines.append("")

    lines.append("## Affordability")
    if afford.success:
        lines.append(
            f"- ${afford.monthly_burden:,.2f}/month is {afford.affordability_fraction:.2%} of"
            f" ${afford.reference_income:,.0f} household income: **{afford.rating}**"
        )
        lines.append(f"- Affordability score {afford.score:.2f}; vulnerable customers ~{afford.vulnerable_fraction:.0%}")
        for program in afford.assistance_programs:
            lines.append(f"- {program}")
    else:
        lines.append(f"- {afford.error}")
    lines.append("")

    lines.append("## Anomalies")
    if anomalies.success:
        lines.append(
            f"- {len(anomalies.anomalies)} flagged (overall severity {anomalies.severity.overall});"
            f" mean ${anomalies.mean:,.2f}, sd ${anomalies.std_dev:,.2f}"
        )
        for a in anomalies.anomalies:
            lines.append(f"- {a.date}: {a.anomaly_type}, {a.description}")
    else:
        lines.append(f"- {anomalies.error}")
    lines.append("")

    lines.append("## Revenue Forecast")
    if forecast.success and forecast.projections:
        lines.append(f"- Trend ${forecast.slope:,.2f}/month; {len(forecast.projections)} months projected")
        lines.append(
            f"- {forecast.periods[0]}: ${forecast.projections[0]:,.2f};"
            f" {forecast.periods[-1]}: ${forecast.projections[-1]:,.2f}"
        )
        for assumption in forecast.key_assumptions:
            lines.append(f"- {assumption}")
    else:
        lines.append(f"- {forecast.error}")
    lines.append("")

    lines.append("## Compliance")
    if compliance.success:
        lines.append(
            f"- {compliance.passed}/{compliance.total} checks met ({compliance.score:.0%}); {compliance.risk_assessment}"
        )
        for gap in compliance.gaps:
            lines.append(f"- Gap: {gap}")
        for action in compliance.recommended_actions:
            lines.append(f"- Action: {action}")
    else:
        lines.append(f"- {compliance.error}")
    lines.append("")

    notes = [(name, n) for name, result in bundle.results().items() for n in result.notes]
    if notes:
        lines.append("## Validation Notes")
        for name, note in notes:
            lines.append(f"- {name}: {note}")
        lines.append("")

    advisory = [(name, result.narrative) for name, result in bundle.results().items() if result.method == "advisory"]
    if advisory:
        lines.append("## Advisory Commentary")
        for name, text in advisory:
            lines.append(f"### {name}")
            lines.append(text.strip())
            lines.append("")

    warnings = bundle.assumptions.get("warnings") or []
    if warnings:
        lines.append("## Data Quality / Warnings")
        for w in warnings:
            lines.append(f"- {w}")
        lines.append("")

    path.write_text("\n".join(lines), encoding="utf-8")


def save_forecast_chart(
    out_dir: str | Path,
    forecast: RevenueForecastResult,
    history: Sequence[RevenuePoint],
) -> Path | None:
    if not forecast.success or not forecast.projections:
        return None
    out_dir = Path(out_dir)
    out_dir.mkdir(parents=True, exist_ok=True)

    actual_x = [pd.Timestamp(p.date) for p in history]
    future_x = [pd.Period(p, freq="M").to_timestamp() for p in forecast.periods]

    plt.figure(figsize=(10, 4))
    if actual_x:
        plt.plot(actual_x, [p.revenue for p in history], label="Actual")
    plt.plot(future_x, forecast.scenarios.realistic or forecast.projections, label="Forecast")
    if forecast.intervals:
        plt.fill_between(
            future_x,
            [i.lower for i in forecast.intervals],
            [i.upper for i in forecast.intervals],
            alpha=0.2,
            label=f"{forecast.intervals[0].level:.0%} interval",
        )
    if forecast.scenarios.optimistic:
        plt.plot(future_x, forecast.scenarios.optimistic, linestyle="--", alpha=0.7, label="Optimistic")
    if forecast.scenarios.pessimistic:
        plt.plot(future_x, forecast.scenarios.pessimistic, linestyle="--", alpha=0.7, label="Pessimistic")
    if actual_x:
        plt.axvline(x=actual_x[-1], color="gray", linestyle=":", linewidth=1, alpha=0.6)
    plt.title(f"Revenue Forecast ({forecast.method})")
    plt.ylabel("Revenue")
    plt.gca().yaxis.set_major_formatter(mtick.StrMethodFormatter("${x:,.0f}"))
    plt.grid(True, alpha=0.25)
    plt.legend()
    p = out_dir / "revenue_forecast.png"
    plt.tight_layout()
    plt.savefig(p, dpi=160)
    plt.close()
    return p


def forecast_frame(forecast: RevenueForecastResult) -> pd.DataFrame:
    n = len(forecast.projections)
    return pd.DataFrame(
        {
            "Period": forecast.periods[:n],
            "Projection": forecast.projections,
            "Lower": [i.lower for i in forecast.intervals][:n],
            "Upper": [i.upper for i in forecast.intervals][:n],
            "Optimistic": forecast.scenarios.optimistic[:n],
            "Pessimistic": forecast.scenarios.pessimistic[:n],
        }
    )


def write_scenarios_csv(path: str | Path, scenarios: pd.DataFrame) -> None:
    scenarios.to_csv(Path(path), index=False)


def write_excel_pack(path: str | Path, bundle: AnalysisBundle, scenarios: pd.DataFrame | None = None) -> None:
    path = Path(path)
    wb = Workbook()
    wb.remove(wb.active)

    summary = pd.DataFrame(
        [
            {
                "Capability": name,
                "Method": result.method,
                "Success": result.success,
                "Confidence": result.confidence,
                "Detail": result.method_detail or result.error,
            }
            for name, result in bundle.results().items()
        ]
    )
    _add_df_sheet(wb, "Summary", summary)
    if bundle.rates.rates:
        _add_df_sheet(wb, "Rates", pd.DataFrame([asdict(r) for r in bundle.rates.rates]))
    if bundle.forecast.success:
        _add_df_sheet(wb, "Forecast", forecast_frame(bundle.forecast))
    if bundle.anomalies.anomalies:
        _add_df_sheet(wb, "Anomalies", pd.DataFrame([asdict(a) for a in bundle.anomalies.anomalies]))
    if bundle.compliance.details:
        _add_df_sheet(
            wb,
            "Compliance",
            pd.DataFrame(
                [
                    {
                        "Requirement": d.requirement,
                        "Status": d.status,
                        "Priority": d.priority,
                        "Details": d.details,
                        "RecommendedAction": d.recommended_action,
                    }
                    for d in bundle.compliance.details
                ]
            ),
        )
    if scenarios is not None and not scenarios.empty:
        _add_df_sheet(wb, "Scenarios", scenarios)

    wb.save(path)


def _add_df_sheet(wb: Workbook, title: str, df: pd.DataFrame) -> None:
    df = _excel_safe_df(df)
    ws = wb.create_sheet(title=title[:31])
    for r in dataframe_to_rows(df, index=False, header=True):
        ws.append(r)
    ws.freeze_panes = "A2"


def _excel_safe_df(df: pd.DataFrame) -> pd.DataFrame:
    out = df.copy()
    for col in out.columns:
        if isinstance(out[col].dtype, pd.PeriodDtype):
            out[col] = out[col].astype(str)
            continue
        # Object columns may hold dates or periods openpyxl cannot write.
        if out[col].dtype == "object":
            out[col] = out[col].map(lambda v: str(v) if isinstance(v, (pd.Period, list, dict)) else v)
    return out
