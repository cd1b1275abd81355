"""Fetch and resolve commands."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from ngdp_fetch.core.config import AppConfig
from ngdp_fetch.core.errors import NGDPError
from ngdp_fetch.core.resolver import ALREADY_EXISTS, ContentResolver, ExtractionAttempt, build_resolver
from ngdp_fetch.core.utils import format_size

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    debug: bool = ctx.obj["debug"]
    return config, console, verbose, debug


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _open_resolver(config: AppConfig, console: Console) -> ContentResolver:
    """Build the resolver or exit with an error."""
    try:
        return build_resolver(config)
    except NGDPError as e:
        logger.error("resolver_unavailable", error=str(e))
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _attempts_table(attempts: list[ExtractionAttempt]) -> Table:
    table = Table(title="Extraction Attempts")
    table.add_column("Encoding Key", style="cyan")
    table.add_column("Source", style="magenta")
    table.add_column("Outcome")
    table.add_column("Error", style="red")
    for attempt in attempts:
        table.add_row(attempt.encoding_key.hex(), attempt.source, attempt.outcome, attempt.error or "")
    return table


@click.command()
@click.argument("identifier", type=str)
@click.argument("destination", type=click.Path(dir_okay=False, path_type=Path))
@click.option("--locale", "-l", type=str, help="Locale code for root lookups (default from config)")
@click.pass_context
def fetch(ctx: click.Context, identifier: str, destination: Path, locale: str | None) -> None:
    """Fetch a file to DESTINATION.

    IDENTIFIER is a numeric file id or a file name.
    """
    config, console, verbose, _ = _get_context_objects(ctx)
    resolver = _open_resolver(config, console)

    try:
        source = resolver.fetch(identifier, destination, locale or config.locale)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if config.output_format == "json":
        _output_json({
            "identifier": identifier,
            "destination": str(destination),
            "source": source,
            "attempts": [
                {"encoding_key": a.encoding_key.hex(), "source": a.source, "outcome": a.outcome, "error": a.error}
                for a in resolver.last_attempts
            ],
        })
    elif source is None:
        console.print(f"[red]Not found: {identifier}[/red]")
        if verbose and resolver.last_attempts:
            console.print(_attempts_table(resolver.last_attempts))
    elif source == ALREADY_EXISTS:
        console.print(f"[yellow]{destination} is already up to date[/yellow]")
    else:
        size = destination.stat().st_size
        console.print(f"[green]Fetched {identifier} from {source} ({format_size(size)}) to {destination}[/green]")
        if verbose:
            console.print(_attempts_table(resolver.last_attempts))

    if source is None:
        sys.exit(1)


@click.command()
@click.argument("identifier", type=str)
@click.option("--locale", "-l", type=str, help="Locale code for root lookups (default from config)")
@click.pass_context
def resolve(ctx: click.Context, identifier: str, locale: str | None) -> None:
    """Print the content hash of IDENTIFIER."""
    config, console, _, _ = _get_context_objects(ctx)
    resolver = _open_resolver(config, console)

    try:
        content_hash = resolver.resolve_identifier(identifier, locale or config.locale)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    content_map = resolver.encoding.get_content_map(content_hash) if content_hash else None

    if config.output_format == "json":
        _output_json({
            "identifier": identifier,
            "content_hash": content_hash.hex() if content_hash else None,
            "encoding_keys": [k.hex() for k in content_map.encoding_keys] if content_map else [],
            "size": content_map.file_size if content_map else None,
        })
    elif content_hash is None:
        console.print(f"[red]Not found: {identifier}[/red]")
    else:
        table = Table(title=identifier)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="magenta")
        table.add_row("Content Hash", content_hash.hex())
        if content_map is not None:
            table.add_row("Encoding Keys", "\n".join(k.hex() for k in content_map.encoding_keys))
            table.add_row("Size", format_size(content_map.file_size))
        else:
            table.add_row("Encoding Keys", "not in encoding table")
        console.print(table)

    if content_hash is None:
        sys.exit(1)
