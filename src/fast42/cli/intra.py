"""42 API commands."""

from __future__ import annotations

import asyncio
from typing import Annotated, Any

import typer
from rich.table import Table

from fast42.api import Fast42, RateLimitedError
from fast42.cli.common import (
    ConcurrentOffsetOption,
    QueryOption,
    console,
    parse_options,
    run_async_command,
)
from fast42.config import get_settings

app = typer.Typer(help="42 API commands")


def _require_secrets() -> None:
    if not get_settings().secrets:
        console.print("[red]Error:[/red] FAST42_SECRETS not set in environment")
        raise typer.Exit(1)


@app.command("quota")
def quota(concurrent_offset: ConcurrentOffsetOption = None) -> None:
    """Discover the rate limits of every configured key.

    Examples:
        fast42 api quota
        fast42 api quota --concurrent-offset 1
    """
    _require_secrets()

    async def _quota() -> None:
        async with Fast42(concurrent_offset=concurrent_offset) as api:
            table = Table(title="42 API keys")
            table.add_column("Key", style="cyan")
            table.add_column("Client ID")
            table.add_column("App")
            table.add_column("Hourly", justify="right")
            table.add_column("Per second", justify="right")
            table.add_column("Concurrent", justify="right")
            table.add_column("Spacing", justify="right")

            for slot in api.slots:
                settings = slot.limiter.settings
                table.add_row(
                    str(slot.index),
                    slot.secret.client_id[:12],
                    str(slot.quota.owner_id),
                    f"{slot.quota.hourly_remaining}/{slot.quota.hourly_limit}",
                    str(slot.quota.secondly_limit),
                    str(settings.max_concurrent),
                    f"{settings.min_time_ms}ms",
                )
            console.print(table)

    run_async_command(_quota(), error_prefix="Quota discovery failed")


@app.command("get")
def get(
    endpoint: Annotated[str, typer.Argument(help="Endpoint below the API root, e.g. /cursus")],
    option: QueryOption = None,
    all_pages: Annotated[
        bool,
        typer.Option("--all", "-a", help="Fetch every page and print the item count"),
    ] = False,
    page_size: Annotated[
        int | None,
        typer.Option("--page-size", min=1, max=100, help="page[size] for --all"),
    ] = None,
    concurrent_offset: ConcurrentOffsetOption = None,
) -> None:
    """GET an endpoint and print the JSON response.

    Examples:
        fast42 api get /cursus
        fast42 api get /cursus/21/users --all -o 'filter[campus_id]=14'
    """
    _require_secrets()
    options = parse_options(option)
    if page_size is not None:
        options["page[size]"] = str(page_size)

    async def _get() -> None:
        async with Fast42(concurrent_offset=concurrent_offset) as api:
            if not all_pages:
                response = await api.get(endpoint, options or None)
                console.print(f"[bold]{response.status_code}[/bold] {response.url}")
                console.print_json(response.text)
                return

            pages = await api.get_all_pages(endpoint, options or None)
            results = await asyncio.gather(*pages, return_exceptions=True)
            items: list[Any] = []
            limited: list[RateLimitedError] = []
            for result in results:
                if isinstance(result, RateLimitedError):
                    limited.append(result)
                elif isinstance(result, BaseException):
                    raise result
                else:
                    items.extend(result.json())

            console.print(f"Fetched {len(items)} item(s) in {len(results)} page(s)")
            for error in limited:
                console.print(f"[yellow]Rate limited:[/yellow] {error.response.request.url}")

    run_async_command(_get(), error_prefix="Request failed")
