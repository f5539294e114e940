"""Output format selection and JSON emission shared by commands."""
from __future__ import annotations

import sys
from typing import Optional

import typer

from archcost.cli.errors import EXIT_CODE_MAP, CliError, ErrorCode


def resolve_format(
    requested: Optional[str],
    *,
    default_tty: str = "table",
    allowed: tuple[str, ...] = ("table", "json"),
) -> str:
    """Explicit --format wins; otherwise table on a terminal, json when piped."""
    if requested is None:
        return default_tty if sys.stdout.isatty() else "json"
    fmt = requested.strip().lower()
    if fmt not in allowed:
        raise CliError(
            error_code=ErrorCode.INVALID_INPUT,
            message=f"Invalid format '{requested}'. Use one of: {', '.join(allowed)}",
            exit_code=EXIT_CODE_MAP["usage"],
        )
    return fmt


def emit_json(text: str) -> None:
    typer.echo(text)
