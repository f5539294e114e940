"""
estimate command - Price an architecture diagram, hidden dependencies included.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from archcost.cli.errors import EXIT_CODE_MAP, CliError, ErrorCode, handle_errors
from archcost.cli.output import emit_json, resolve_format
from archcost.core.config import EngineConfig
from archcost.core.pipeline import EstimationPipeline, parse_period
from archcost.core.schema import ArchitectureCostEstimate, CostStatus, Severity
from archcost.repository import (
    BuiltinRuleRepository,
    InMemoryRateRepository,
    JsonRateRepository,
    JsonRuleRepository,
)

console = Console()
log = logging.getLogger(__name__)

_STATUS_STYLE = {
    CostStatus.COMPLETE: "[green]complete[/green]",
    CostStatus.PARTIAL: "[yellow]partial[/yellow]",
    CostStatus.UNKNOWN: "[red]unknown[/red]",
}
_SEVERITY_STYLE = {
    Severity.INFO: "dim",
    Severity.WARNING: "yellow",
    Severity.ERROR: "red",
}


@handle_errors
def estimate_cmd(
    diagram: Path = typer.Argument(
        ...,
        help="Diagram JSON file exported from the canvas",
    ),
    region: Optional[str] = typer.Option(
        None,
        "--region", "-r",
        help="Default region for nodes outside a region container",
    ),
    provider: Optional[str] = typer.Option(
        None,
        "--provider",
        help="Cloud provider (default: aws)",
    ),
    period: str = typer.Option(
        "720h",
        "--period", "-p",
        help="Pricing period: <n>h, <n>d, <n>m (30-day months) or hours",
    ),
    rules: Optional[Path] = typer.Option(
        None,
        "--rules",
        help="Dependency rules JSON (default: built-in rules)",
    ),
    rates: Optional[Path] = typer.Option(
        None,
        "--rates",
        help="Pricing rates JSON (default: built-in rate table)",
    ),
    as_of: Optional[str] = typer.Option(
        None,
        "--as-of",
        help="Price as of this ISO-8601 instant (default: now)",
    ),
    config_path: Optional[Path] = typer.Option(
        None,
        "--config", "-c",
        help="Engine configuration JSON",
    ),
    format: Optional[str] = typer.Option(
        None,
        "--format", "-f",
        help="Output format: table, json (defaults to json when piped)",
    ),
):
    """
    Estimate the cost of an architecture diagram.

    Exit code 0 when every resource was fully priced, 1 when some
    resources are partial or unknown.
    """
    output_format = resolve_format(format)
    config = _load_config(config_path)
    pricing_period = _parse_period(period)
    instant = _parse_as_of(as_of)

    try:
        payload = diagram.read_bytes()
    except OSError as e:
        raise CliError(
            error_code=ErrorCode.INVALID_INPUT,
            message=f"Cannot read diagram {diagram}: {e}",
            exit_code=EXIT_CODE_MAP["usage"],
        ) from e

    pipeline = EstimationPipeline(
        rule_repository=JsonRuleRepository(rules) if rules else BuiltinRuleRepository(),
        rate_repository=JsonRateRepository(rates) if rates else InMemoryRateRepository(),
        config=config,
    )
    result = pipeline.estimate(
        payload,
        region=region,
        provider=provider,
        period=pricing_period,
        as_of=instant,
    )

    if output_format == "json":
        emit_json(result.to_json())
    else:
        _output_table(result)

    fully_priced = result.complete and all(
        e.status is CostStatus.COMPLETE for e in result.resource_estimates
    )
    raise typer.Exit(EXIT_CODE_MAP["ok"] if fully_priced else EXIT_CODE_MAP["findings"])


def _load_config(path: Optional[Path]) -> EngineConfig:
    if path is None:
        return EngineConfig()
    try:
        config = EngineConfig.load(path)
    except (OSError, ValueError, ValidationError) as e:
        raise CliError(
            error_code=ErrorCode.INVALID_INPUT,
            message=f"Invalid config {path}: {e}",
            exit_code=EXIT_CODE_MAP["usage"],
        ) from e
    log.debug("Loaded engine config from %s", path)
    return config


def _parse_period(text: str):
    try:
        return parse_period(text)
    except ValueError as e:
        raise CliError(
            error_code=ErrorCode.INVALID_INPUT,
            message=str(e),
            exit_code=EXIT_CODE_MAP["usage"],
        ) from e


def _parse_as_of(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    raw = text.strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1] + "+00:00"
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as e:
        raise CliError(
            error_code=ErrorCode.INVALID_INPUT,
            message=f"Invalid --as-of '{text}': expected ISO-8601",
            exit_code=EXIT_CODE_MAP["usage"],
        ) from e
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _money(value: Decimal) -> str:
    return f"${value:,.4f}"


def _output_table(result: ArchitectureCostEstimate) -> None:
    """Render the estimate as rich tables."""
    hours = result.period.total_seconds() / 3600
    unpriced = sum(1 for e in result.resource_estimates if e.status is not CostStatus.COMPLETE)

    console.print()
    console.print(Panel(
        f"[bold]Architecture Cost Estimate[/bold]\n"
        f"Provider: {result.provider}  Region: {result.region}  Period: {hours:g}h\n"
        f"Total: [bold]{_money(result.total_cost)}[/bold] {result.currency}\n"
        f"Base: {_money(result.base_cost())}  Hidden: {_money(result.hidden_cost())}",
        title="archcost estimate",
        border_style="green" if unpriced == 0 and result.complete else "yellow",
    ))

    table = Table(
        title="Resources",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Resource")
    table.add_column("Type")
    table.add_column("Region")
    table.add_column("Base", justify="right")
    table.add_column("Hidden", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Status")

    for estimate in result.resource_estimates:
        table.add_row(
            estimate.resource_name,
            estimate.resource_type,
            estimate.region or "-",
            _money(estimate.base_cost()),
            _money(estimate.hidden_cost()),
            _money(estimate.total_cost),
            _STATUS_STYLE[estimate.status],
        )
    console.print(table)

    hidden = [
        (estimate, component)
        for estimate in result.resource_estimates
        for component in estimate.breakdown
        if component.is_hidden
    ]
    if hidden:
        detail = Table(title="Hidden Dependencies", box=box.SIMPLE, header_style="bold magenta")
        detail.add_column("Resource")
        detail.add_column("Component")
        detail.add_column("Quantity", justify="right")
        detail.add_column("Subtotal", justify="right")
        for estimate, component in hidden:
            detail.add_row(
                estimate.resource_name,
                component.name,
                str(component.quantity),
                _money(component.subtotal),
            )
        console.print(detail)

    if result.diagnostics:
        console.print()
        console.print("[bold]Diagnostics[/bold]")
        for d in result.diagnostics:
            style = _SEVERITY_STYLE[d.severity]
            where = f" {d.resource_id}" if d.resource_id else ""
            console.print(f"  [{style}]{d.code.value}[/{style}]{where}: {d.message}")
