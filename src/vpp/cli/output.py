"""Shared CLI output helpers for JSON and human-readable output."""

from __future__ import annotations

import json
import sys
from typing import NoReturn

import click

from vpp.cli.exit_codes import ExitCode


def error_exit(
    message: str,
    code: ExitCode | int,
    json_output: bool = False,
) -> NoReturn:
    """Print an error in the requested format and exit.

    Args:
        message: Error message to display.
        code: Exit code (ExitCode enum or int).
        json_output: Emit a JSON error object instead of plain text.
    """
    code_name = code.name if isinstance(code, ExitCode) else "UNKNOWN_ERROR"
    if json_output:
        click.echo(
            json.dumps(
                {"status": "failed", "error": {"code": code_name, "message": message}}
            ),
            err=True,
        )
    else:
        click.echo(f"Error: {message}", err=True)
    sys.exit(int(code))


def echo_json(data: object) -> None:
    click.echo(json.dumps(data, indent=2, default=str))
