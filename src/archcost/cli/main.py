"""
archcost CLI

Main entry point for the CLI application.
"""

from __future__ import annotations

import logging
import sys

import typer

from archcost.cli.estimate import estimate_cmd
from archcost.cli.rules import rules_cmd

# Create main app
app = typer.Typer(
    name="archcost",
    help="Architecture diagram cost estimation with hidden dependencies",
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose logging",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress all output except errors",
    ),
):
    """
    archcost - price cloud architecture diagrams

    Includes the resources a provider creates implicitly
    (Elastic IPs behind NAT Gateways, root volumes behind instances, ...).

    Run 'archcost COMMAND --help' for command-specific help.
    """
    # Configure logging
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(message)s" if not verbose else "%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


@app.command()
def version():
    """Show version information."""
    from archcost import __version__

    typer.echo(f"archcost {__version__}")


app.command("estimate")(estimate_cmd)
app.command("rules")(rules_cmd)


if __name__ == "__main__":
    app()
