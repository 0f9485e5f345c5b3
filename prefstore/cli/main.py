"""Main CLI entry point and application setup."""

import logging
import sys
from pathlib import Path

import click
from click.exceptions import Exit
from rich.console import Console

from prefstore import __version__
from prefstore.cli.commands import backups, migrate, settings
from prefstore.cli.context import Context
from prefstore.config import build_store, load_config
from prefstore.core.errors import PrefStoreError


def setup_logging(
    verbose: bool = False,
    quiet: bool = False,
    debug: bool = False,
    default_level: str = "WARNING",
) -> None:
    """Configure logging based on CLI flags."""
    if quiet:
        level = logging.ERROR
    elif verbose or debug:
        level = logging.DEBUG
    else:
        level = logging.getLevelName(default_level.upper())
        if not isinstance(level, int):
            level = logging.WARNING

    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s"
        if not debug
        else "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def create_console(no_color: bool = False, width: int | None = None) -> Console:
    """Create Rich console with appropriate settings."""
    return Console(
        no_color=no_color,
        width=width or 120,
        highlight=not no_color,
        color_system=None if no_color else "auto",
    )


class PrefStoreGroup(click.Group):
    """Custom group that handles KeyboardInterrupt."""

    def invoke(self, ctx):
        try:
            return super().invoke(ctx)
        except KeyboardInterrupt:
            console = getattr(ctx.obj, "console", None) if ctx.obj else None
            if console:
                console.print("[yellow]Interrupted[/yellow]")
            ctx.exit(130)
        except (click.ClickException, click.Abort, Exit, SystemExit):
            raise
        except Exception as e:
            debug = getattr(ctx.obj, "debug", False) if ctx.obj else False
            if debug:
                raise
            console = getattr(ctx.obj, "console", None) if ctx.obj else None
            if console:
                console.print(f"[red]Error:[/red] {e}")
            else:
                click.echo(f"Error: {e}", err=True)
            ctx.exit(1)


@click.group(cls=PrefStoreGroup)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-error output")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.option("--debug", is_flag=True, help="Enable debug mode with full tracebacks")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option(
    "--data-dir",
    "-d",
    type=click.Path(path_type=Path),
    help="Override data directory location",
)
@click.option("--namespace", "-n", help="Namespace prefixing every stored key")
@click.version_option(
    version=__version__, prog_name="prefstore", message="prefstore version %(version)s"
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    no_color: bool,
    debug: bool,
    config: Path | None,
    data_dir: Path | None,
    namespace: str | None,
) -> None:
    """Durable, versioned settings store.

    Inspect and change settings, run migrations and manage backups.
    """
    overrides = {}
    if data_dir:
        overrides["data_dir"] = str(data_dir)
    if namespace:
        overrides["namespace"] = namespace

    try:
        store_config = load_config(config, overrides)
    except PrefStoreError as e:
        if debug:
            raise
        click.echo(f"Error loading configuration: {e}", err=True)
        ctx.exit(1)

    setup_logging(
        verbose=verbose, quiet=quiet, debug=debug, default_level=store_config.log_level
    )
    console = create_console(no_color=no_color)

    try:
        store = build_store(store_config)
    except PrefStoreError as e:
        if debug:
            raise
        console.print(f"[red]Error initializing store:[/red] {e}")
        ctx.exit(1)

    ctx.call_on_close(store.close)
    ctx.obj = Context(config=store_config, store=store, console=console, debug=debug)


cli.add_command(settings.show)
cli.add_command(settings.get)
cli.add_command(settings.set_setting, name="set")
cli.add_command(settings.reset)
cli.add_command(migrate.migrate)
cli.add_command(migrate.check)
cli.add_command(migrate.history)
cli.add_command(backups.backups)


def main() -> None:
    """Main entry point for the CLI application."""
    try:
        cli()
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    main()
