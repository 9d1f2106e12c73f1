from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import matplotlib
import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .agents import AnalystAgent, ReporterAgent, ScenarioAgent
from .config import EngineConfig, default_engine_config
from .io import load_inputs
from .synth import SynthSpec, generate_synthetic_dataset

app = typer.Typer(add_completion=False, help="Municipal utility rate, affordability and compliance analysis.")
console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _load_config(config: Optional[Path]) -> EngineConfig:
    return EngineConfig.from_yaml(config) if config else default_engine_config()


@app.command()
def synth(
    out: Path = typer.Option(..., help="Output directory for the synthetic enterprise."),
    start: str = typer.Option("2024-01", help="Start period (YYYY-MM)."),
    months: int = typer.Option(24, min=3, help="Number of months of history."),
    customers: int = typer.Option(1_200, min=1, help="Customer count at the start."),
    fund: str = typer.Option("water", help="Enterprise fund name."),
    seed: int = typer.Option(42, help="RNG seed."),
):
    generate_synthetic_dataset(out, SynthSpec(start=start, months=months, seed=seed, customers=customers, fund=fund))
    console.print(f"Wrote synthetic dataset to {out}")


@app.command()
def analyze(
    input: Path = typer.Option(..., exists=True, file_okay=False, help="Enterprise directory (enterprise.yaml + CSVs)."),
    out: Path = typer.Option(..., help="Output directory for the analysis pack."),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Engine config YAML overrides."),
    offline: bool = typer.Option(False, help="Skip the advisory service; deterministic path only."),
    forecast_months: int = typer.Option(12, min=1, help="Months to project beyond the last revenue point."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    _setup_logging(verbose)
    # Charts are only ever written to disk here.
    matplotlib.use("Agg")
    try:
        cfg = _load_config(config)
        run = asyncio.run(AnalystAgent(offline=offline).run(input, cfg, forecast_months=forecast_months))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    ReporterAgent().package(out, run)

    table = Table(title=run.bundle.enterprise)
    for col in ("Capability", "Method", "Confidence", "Status"):
        table.add_column(col)
    for name, result in run.bundle.results().items():
        status = "ok" if result.success else result.error
        table.add_row(name, result.method, f"{result.confidence:.0%}", status)
    console.print(table)
    console.print(f"Wrote analysis pack to {out}")


@app.command()
def scenarios(
    input: Path = typer.Option(..., exists=True, file_okay=False, help="Enterprise directory with Account_Lines.csv."),
    out: Path = typer.Option(..., help="Output directory for scenarios.csv."),
    config: Optional[Path] = typer.Option(None, exists=True, dir_okay=False, help="Engine config YAML overrides."),
):
    _setup_logging(False)
    try:
        cfg = _load_config(config)
        inputs = load_inputs(input, cfg.scenarios)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1)
    run = ScenarioAgent().run(inputs, cfg)
    if run is None:
        console.print("[red]Error:[/red] Account_Lines.csv not found; nothing to allocate.")
        raise typer.Exit(code=1)
    path = ReporterAgent().package_scenarios(out, run)
    for message in run.messages:
        console.print(message)
    console.print(f"Wrote {path}")
