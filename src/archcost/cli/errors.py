"""
CLI error layer - map engine failures to stable error codes and exit codes.

Exit codes:
    0  estimate complete
    1  estimate returned, but some resources are partial or unknown
    2  bad input (unreadable or malformed diagram, bad options)
    3  reference data unavailable, cancellation, or an internal error
"""
from __future__ import annotations

import functools
import logging
from enum import Enum

import typer
from rich.console import Console

from archcost.core.errors import (
    ArchCostError,
    EstimationCancelledError,
    MalformedGraphError,
    ReferenceDataUnavailableError,
)

log = logging.getLogger(__name__)
err_console = Console(stderr=True)

EXIT_CODE_MAP = {
    "ok": 0,
    "findings": 1,
    "usage": 2,
    "internal": 3,
}


class ErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    MALFORMED_DIAGRAM = "MALFORMED_DIAGRAM"
    REFERENCE_DATA_UNAVAILABLE = "REFERENCE_DATA_UNAVAILABLE"
    ESTIMATION_CANCELLED = "ESTIMATION_CANCELLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class CliError(Exception):
    """A failure that should end the command with a specific exit code."""

    def __init__(self, error_code: ErrorCode, message: str, exit_code: int = EXIT_CODE_MAP["internal"]):
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.exit_code = exit_code


def _from_engine_error(error: ArchCostError) -> CliError:
    if isinstance(error, MalformedGraphError):
        return CliError(ErrorCode.MALFORMED_DIAGRAM, str(error), EXIT_CODE_MAP["usage"])
    if isinstance(error, ReferenceDataUnavailableError):
        return CliError(ErrorCode.REFERENCE_DATA_UNAVAILABLE, str(error), EXIT_CODE_MAP["internal"])
    if isinstance(error, EstimationCancelledError):
        return CliError(ErrorCode.ESTIMATION_CANCELLED, str(error), EXIT_CODE_MAP["internal"])
    return CliError(ErrorCode.INTERNAL_ERROR, str(error), EXIT_CODE_MAP["internal"])


def handle_errors(func):
    """Decorator for commands: print a one-line error and exit with its code."""

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except typer.Exit:
            raise
        except CliError as e:
            err_console.print(f"[red]Error[/red] [{e.error_code.value}] {e.message}")
            raise typer.Exit(e.exit_code) from e
        except ArchCostError as e:
            cli_error = _from_engine_error(e)
            err_console.print(f"[red]Error[/red] [{cli_error.error_code.value}] {cli_error.message}")
            raise typer.Exit(cli_error.exit_code) from e

    return wrapper
