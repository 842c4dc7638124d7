"""Common CLI helpers.

Provides:
- `run_async_command`: Unified async execution with error handling for CLI commands
- Option type aliases shared by commands
"""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Annotated, TypeVar

import typer
from rich.console import Console

from fast42.api.exceptions import Fast42Error

# Shared console instance for CLI output
console = Console()

T = TypeVar("T")


def run_async_command(
    coro: Coroutine[object, object, T],
    *,
    error_prefix: str = "Error",
) -> T:
    """Execute async code from a synchronous CLI command.

    Catches fast42 errors, prints a user-friendly message, and exits with
    code 1. Other exceptions propagate.

    Args:
        coro: Async coroutine to execute
        error_prefix: Prefix for error messages (default: "Error")

    Returns:
        Result from the coroutine

    Raises:
        typer.Exit: Re-raised from deliberate exits, or raised with code 1 on error
    """
    try:
        return asyncio.run(coro)
    except typer.Exit:
        raise
    except Fast42Error as e:
        console.print(f"[red]{error_prefix}:[/red] {e}")
        raise typer.Exit(1) from None


def parse_options(values: list[str] | None) -> dict[str, str]:
    """Parse repeated ``key=value`` options into query parameters.

    Raises:
        typer.BadParameter: If a value has no ``=``
    """
    options: dict[str, str] = {}
    for value in values or []:
        key, sep, item = value.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected key=value, got {value!r}")
        options[key] = item
    return options


QueryOption = Annotated[
    list[str] | None,
    typer.Option(
        "--option",
        "-o",
        help="Query parameter as key=value (repeatable), e.g. -o 'filter[campus_id]=14'",
    ),
]
"""Repeatable query parameter option.

Usage:
    def command(option: QueryOption = None):
"""

ConcurrentOffsetOption = Annotated[
    int | None,
    typer.Option(
        "--concurrent-offset",
        min=0,
        help="Keep this many per-second slots free (default from settings)",
    ),
]
"""Concurrency headroom option.

Usage:
    def command(concurrent_offset: ConcurrentOffsetOption = None):
"""
