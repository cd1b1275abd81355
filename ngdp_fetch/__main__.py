"""Main entry point for the ngdp-fetch CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from pydantic import ValidationError
from rich.console import Console

from ngdp_fetch import __version__
from ngdp_fetch.commands.fetch import fetch, resolve
from ngdp_fetch.core.config import AppConfig

logger = structlog.get_logger()


def configure_logging(level: str, colors: bool = False) -> None:
    """Configure structlog with the console renderer at the given level."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=getattr(logging, level))
    logging.getLogger().setLevel(getattr(logging, level))
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=colors),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@click.group()
@click.version_option(version=__version__, prog_name="ngdp-fetch")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--debug", "-d", is_flag=True, help="Enable debug output")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json"], case_sensitive=False),
    default=None,
    help="Output format",
)
@click.option("--wow-path", type=click.Path(file_okay=False, path_type=Path), help="Local installation directory")
@click.option("--program", "-p", type=str, help="Product code")
@click.option("--region", "-r", type=str, help="Region code")
@click.option("--locale", "-l", type=str, help="Default locale code")
@click.option("--cache-dir", type=click.Path(file_okay=False, path_type=Path), help="Cache directory")
@click.option("--key-file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Extra decryption keys (name;value lines)")
@click.option("--no-loose-files", is_flag=True, help="Only fetch encoding keys listed in archive indexes")
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str | None,
    wow_path: Path | None,
    program: str | None,
    region: str | None,
    locale: str | None,
    cache_dir: Path | None,
    key_file: Path | None,
    no_loose_files: bool,
) -> None:
    """Fetch individual files from NGDP/CASC content stores."""
    ctx.ensure_object(dict)

    try:
        app_config = AppConfig.load(config)
        overrides: dict[str, Any] = {
            "wow_path": wow_path,
            "program": program,
            "region": region,
            "locale": locale,
            "cache_dir": cache_dir,
            "key_file": key_file,
            "output_format": output.lower() if output else None,
        }
        updates = {k: v for k, v in overrides.items() if v is not None}
        if no_loose_files:
            updates["allow_loose_files"] = False
        if verbose or debug:
            updates["log_level"] = "DEBUG" if debug else "INFO"
        app_config = AppConfig(**{**app_config.model_dump(), **updates})
    except (OSError, ValueError, ValidationError) as e:
        click.echo(f"Failed to load configuration: {e}", err=True)
        sys.exit(1)

    configure_logging(app_config.log_level, colors=debug)

    rich_output = app_config.output_format == "rich"
    console = Console(
        force_terminal=rich_output,
        no_color=not rich_output,
        width=None if rich_output else 120,
    )

    ctx.obj["config"] = app_config
    ctx.obj["console"] = console
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["debug"] = debug

    logger.debug("cli_initialized", config=app_config.model_dump(mode="json"))


main.add_command(fetch)
main.add_command(resolve)


def handle_exception(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: Any) -> None:
    """Handle uncaught exceptions."""
    if issubclass(exc_type, KeyboardInterrupt):
        logger.info("operation_cancelled")
        sys.exit(1)

    logger.error("uncaught_exception", exc_info=(exc_type, exc_value, exc_traceback))
    sys.exit(1)


if __name__ == "__main__":
    sys.excepthook = handle_exception
    main()
