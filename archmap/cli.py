"""Typer-based CLI for archmap architecture discovery."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import CONFIG_FILE
from .config_manager import DEFAULT_CONFIG, AnalyzerOptions, load_options, save_config
from .graph_export import export_dot, export_html, export_json
from .loader import load_local_context
from .models import CONFIDENCE_LEVELS
from .passes.features import feature_for
from .pipeline import AnalysisResult, analyze_architecture
from .schema import AnalysisRequest

console = Console()

app = typer.Typer(
    help="archmap: discover the architecture of Next.js + Supabase projects.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

EXPORT_FORMATS = ("json", "dot", "html")


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        typer.echo(f"archmap v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    )
):
    """archmap: evidence-backed architecture graphs from source trees."""
    pass


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def _resolve_options(config: Optional[Path], min_confidence: Optional[str]) -> AnalyzerOptions:
    if min_confidence is not None and min_confidence not in CONFIDENCE_LEVELS:
        raise typer.BadParameter(f"--min-confidence must be one of: {', '.join(CONFIDENCE_LEVELS)}")
    options = load_options(config)
    if min_confidence is not None:
        options.min_confidence = min_confidence
    return options


def _write_output(result: AnalysisResult, out: Optional[Path], fmt: str) -> None:
    if fmt not in EXPORT_FORMATS:
        raise typer.BadParameter(f"--format must be one of: {', '.join(EXPORT_FORMATS)}")
    if out is None:
        if fmt != "json":
            raise typer.BadParameter("--out is required for dot and html output.")
        typer.echo(json.dumps(result.to_dict(), indent=2))
        return
    out.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "dot":
        export_dot(result, out)
    elif fmt == "html":
        export_html(result, out)
    else:
        export_json(result, out)
    console.print(f"[green]Wrote {fmt} graph to {out}[/green]")


def _print_summary(result: AnalysisResult) -> None:
    summary = result.summary
    cov = summary.coverage

    table = Table(title="Architecture Summary", show_header=True, show_lines=False)
    table.add_column("Metric", style="cyan", width=22)
    table.add_column("Value", min_width=30)

    for node_type, count in summary.nodes_by_type.items():
        table.add_row(f"{node_type} nodes", str(count))
    table.add_row("Edges", str(summary.total_edges))
    table.add_row(
        "Confidence",
        ", ".join(f"{k}: {v}" for k, v in summary.edges_by_confidence.items()) or "-",
    )
    table.add_row("Evidence", str(summary.total_evidence))
    table.add_row("Features", str(summary.feature_count))
    table.add_row(
        "Screens → endpoints",
        f"{cov.screens_with_endpoints}/{cov.screens_total} ({cov.screen_endpoint_pct:.0f}%)",
    )
    table.add_row("Endpoints → tables", f"{cov.endpoints_with_data}/{cov.endpoints_total}")
    table.add_row("Tables with RLS", f"{cov.tables_with_rls}/{cov.tables_total}")
    if cov.unresolved_placeholders:
        table.add_row("Unresolved API calls", f"[yellow]{cov.unresolved_placeholders}[/yellow]")

    console.print(table)


@app.command("analyze")
def analyze(
    paths: List[Path] = typer.Argument(..., exists=True, file_okay=False, help="Repository checkouts to analyze."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file (stdout JSON when omitted)."),
    fmt: str = typer.Option("json", "--format", "-f", help="Output format: json, dot, html."),
    min_confidence: Optional[str] = typer.Option(None, "--min-confidence", help="Drop edges below high/medium/low."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml."),
    project_id: Optional[str] = typer.Option(None, "--project", "-p", help="Project ID recorded in the graph."),
    verbose: bool = typer.Option(False, "--verbose", help="Log per-pass progress."),
):
    """Analyze local repositories and emit the architecture graph."""
    _configure_logging(verbose)
    options = _resolve_options(config, min_confidence)
    context = load_local_context(paths, project_id=project_id)
    result = analyze_architecture(context, options)
    if out is not None:
        _print_summary(result)
    _write_output(result, out, fmt)


@app.command("analyze-request")
def analyze_request(
    request_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON analysis request."),
    out: Optional[Path] = typer.Option(None, "--out", "-o", help="Output file (stdout JSON when omitted)."),
    fmt: str = typer.Option("json", "--format", "-f", help="Output format: json, dot, html."),
    min_confidence: Optional[str] = typer.Option(None, "--min-confidence", help="Drop edges below high/medium/low."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml."),
    verbose: bool = typer.Option(False, "--verbose", help="Log per-pass progress."),
):
    """Analyze a host-supplied request (repos, file lists and contents)."""
    _configure_logging(verbose)
    options = _resolve_options(config, min_confidence)
    try:
        request = AnalysisRequest.model_validate_json(request_file.read_text(encoding="utf-8"))
    except ValidationError as exc:
        raise typer.BadParameter(f"Invalid analysis request: {exc}") from exc
    result = analyze_architecture(request.to_context(), options)
    if out is not None:
        _print_summary(result)
    _write_output(result, out, fmt)


@app.command("features")
def features(
    paths: List[Path] = typer.Argument(..., exists=True, file_okay=False, help="Repository checkouts to analyze."),
    slug: Optional[str] = typer.Option(None, "--slug", "-s", help="Show the flow of a single feature."),
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a config.toml."),
):
    """List detected features, or walk one feature's flow."""
    _configure_logging(False)
    result = analyze_architecture(load_local_context(paths), _resolve_options(config, None))
    found = result.graph.features

    if slug:
        feature = feature_for(slug, found)
        if feature is None:
            raise typer.BadParameter(f"Feature '{slug}' not found.")
        console.print(f"[bold]{escape(feature.name)}[/bold] ({feature.slug})")
        if feature.description:
            console.print(escape(feature.description))
        for step in feature.flow:
            console.print(f"  {step.order}. " + escape(f"[{step.type}] {step.label}"))
        return

    if not found:
        typer.echo("No features detected.")
        raise typer.Exit(code=0)

    table = Table(title="Features", show_header=True)
    table.add_column("Slug", style="cyan")
    table.add_column("Name")
    table.add_column("Screens", justify="right")
    table.add_column("Endpoints", justify="right")
    table.add_column("Tables", justify="right")
    for feature in found:
        table.add_row(
            feature.slug, escape(feature.name),
            str(len(feature.screens)), str(len(feature.endpoints)), str(len(feature.tables)),
        )
    console.print(table)


@app.command("init-config")
def init_config(
    path: Optional[Path] = typer.Option(None, "--path", help=f"Where to write (default {CONFIG_FILE})."),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file."),
):
    """Write a default config.toml."""
    target = path or CONFIG_FILE
    if target.exists() and not force:
        raise typer.BadParameter(f"{target} already exists. Use --force to overwrite.")
    written = save_config(DEFAULT_CONFIG, target)
    typer.echo(f"Wrote default config to {written}")
