"""Main CLI application for fast42."""

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from fast42 import __version__
from fast42.cli import intra as intra_cmd
from fast42.config import get_settings
from fast42.logging import setup_logging

app = typer.Typer(
    name="fast42",
    help="Rate-limited connector for the 42 intra API.",
    add_completion=False,
)
console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fast42 version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            help="Show version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Enable debug logging.",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option(
            "--quiet",
            "-q",
            help="Suppress non-error output (WARNING level).",
        ),
    ] = False,
) -> None:
    """fast42 - query the 42 API as fast as your keys allow."""
    settings = get_settings()
    log_config = settings.logging

    setup_logging(
        level=settings.log_level,
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_config.log_file) if log_config.log_file else None,
        rotation=log_config.rotation,
        retention=log_config.retention,
        serialize=log_config.serialize,
    )


app.add_typer(intra_cmd.app, name="api")


if __name__ == "__main__":
    app()
