from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Any

import pandas as pd

from .advisory import AdvisoryClient, GeminiAdvisoryClient
from .config import EngineConfig
from .io import load_inputs
from .orchestrator import Orchestrator
from .reporting import (
    save_forecast_chart,
    write_assumptions,
    write_excel_pack,
    write_narrative,
    write_results,
    write_scenarios_csv,
)
from .scenarios import calculate_scenarios, summary_statistics, validate_enterprise
from .types import AnalysisBundle, Inputs

logger = logging.getLogger("utilityrates.agents")


@dataclass(frozen=True)
class ScenarioRun:
    table: pd.DataFrame
    summary: dict[str, Any]
    messages: list[str]


@dataclass(frozen=True)
class AnalysisRun:
    inputs: Inputs
    bundle: AnalysisBundle
    scenarios: ScenarioRun | None = None
    warnings: list[str] = field(default_factory=list)


class ScenarioAgent:
    def run(self, inputs: Inputs, config: EngineConfig) -> ScenarioRun | None:
        lines = inputs.account_lines
        if lines is None:
            return None
        snapshot = inputs.snapshot
        table = calculate_scenarios(lines, config, fund=snapshot.fund)
        return ScenarioRun(
            table=table,
            summary=summary_statistics(lines, snapshot.customer_count, config),
            messages=validate_enterprise(lines, snapshot.customer_count, config),
        )


class AnalystAgent:
    def __init__(self, client: AdvisoryClient | None = None, offline: bool = False) -> None:
        self.client = client
        self.offline = offline

    def _client(self, config: EngineConfig) -> AdvisoryClient | None:
        if self.offline:
            return None
        if self.client is not None:
            return self.client
        client = GeminiAdvisoryClient.from_env(config.advisory)
        if client is None:
            logger.info("No %s set; running the deterministic path only", config.advisory.api_key_env)
        return client

    async def run(self, input_dir: Path, config: EngineConfig, forecast_months: int = 12) -> AnalysisRun:
        inputs = load_inputs(input_dir, config.scenarios)
        for w in inputs.warnings:
            logger.warning(w)

        orchestrator = Orchestrator(config, client=self._client(config))
        bundle = await orchestrator.run_all(inputs, forecast_months=forecast_months)
        scenarios = ScenarioAgent().run(inputs, config)

        warnings = list(inputs.warnings)
        if scenarios is not None:
            warnings.extend(m for m in scenarios.messages if m.startswith("WARNING") or m.startswith("ERROR"))
        return AnalysisRun(inputs=inputs, bundle=bundle, scenarios=scenarios, warnings=list(dict.fromkeys(warnings)))


class ReporterAgent:
    def package(self, out_dir: Path, run: AnalysisRun) -> list[Path]:
        out_dir.mkdir(parents=True, exist_ok=True)
        written = [out_dir / "results.json", out_dir / "narrative.md", out_dir / "assumptions.json"]
        write_results(written[0], run.bundle)
        write_narrative(written[1], run.bundle)

        assumptions = dict(run.bundle.assumptions)
        assumptions["warnings"] = run.warnings
        if run.scenarios is not None:
            assumptions["scenario_summary"] = run.scenarios.summary
            assumptions["scenario_validation"] = run.scenarios.messages
        write_assumptions(written[2], assumptions)

        chart = save_forecast_chart(out_dir / "charts", run.bundle.forecast, run.inputs.revenue_history)
        if chart is not None:
            written.append(chart)

        table = run.scenarios.table if run.scenarios is not None else None
        if table is not None:
            write_scenarios_csv(out_dir / "scenarios.csv", table)
            written.append(out_dir / "scenarios.csv")
        write_excel_pack(out_dir / "analysis_pack.xlsx", run.bundle, table)
        written.append(out_dir / "analysis_pack.xlsx")
        return written

    def package_scenarios(self, out_dir: Path, run: ScenarioRun) -> Path:
        out_dir.mkdir(parents=True, exist_ok=True)
        write_scenarios_csv(out_dir / "scenarios.csv", run.table)
        write_assumptions(
            out_dir / "scenario_summary.json",
            {"summary": run.summary, "validation": run.messages},
        )
        return out_dir / "scenarios.csv"
