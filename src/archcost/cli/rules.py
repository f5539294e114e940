"""
rules command - List the hidden-dependency rules in effect.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich import box
from rich.console import Console
from rich.table import Table

from archcost.cli.errors import handle_errors
from archcost.cli.output import emit_json, resolve_format
from archcost.core.schema import canonical_type_name
from archcost.repository import BuiltinRuleRepository, JsonRuleRepository

console = Console()


@handle_errors
def rules_cmd(
    rules: Optional[Path] = typer.Option(
        None,
        "--rules",
        help="Dependency rules JSON (default: built-in rules)",
    ),
    resource_type: Optional[str] = typer.Option(
        None,
        "--resource-type", "-t",
        help="Only rules for this parent resource type",
    ),
    format: Optional[str] = typer.Option(
        None,
        "--format", "-f",
        help="Output format: table, json (defaults to json when piped)",
    ),
):
    """
    List dependency rules.
    """
    output_format = resolve_format(format)
    repository = JsonRuleRepository(rules) if rules else BuiltinRuleRepository()

    selected = repository.all_rules()
    if resource_type:
        parent = canonical_type_name(resource_type)
        selected = [r for r in selected if r.parent_resource_type == parent]

    if output_format == "json":
        emit_json(json.dumps(
            [r.model_dump(mode="json", by_alias=True) for r in selected],
            indent=2,
        ))
        return

    table = Table(
        title=f"Dependency Rules ({len(selected)})",
        box=box.ROUNDED,
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Parent")
    table.add_column("Child")
    table.add_column("Quantity")
    table.add_column("Condition")
    table.add_column("Attached", width=8)
    table.add_column("Description", min_width=24)

    for rule in selected:
        quantity = rule.quantity_expression
        if rule.default_quantity is not None:
            quantity = f"{quantity} (default {rule.default_quantity})"
        table.add_row(
            rule.parent_resource_type,
            rule.child_resource_type,
            quantity,
            rule.condition_expression or "-",
            "yes" if rule.is_attached else "no",
            rule.description,
        )
    console.print(table)
