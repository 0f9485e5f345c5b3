"""Backup management commands."""

import click

from prefstore.cli.context import Context, pass_context
from prefstore.cli.output import print_success, print_table


@click.group()
def backups() -> None:
    """List, restore and prune migration backups."""
    pass


@backups.command(name="list")
@pass_context
def list_backups(ctx: Context) -> None:
    """List backups, newest first."""
    available = ctx.run(ctx.engine.get_available_backups())

    if not available:
        ctx.console.print("[yellow]No backups found[/yellow]")
        return

    print_table(
        ["Key", "Timestamp", "Version", "Size"],
        [[b.key, b.timestamp, b.version, b.size] for b in available],
        title="Backups",
        out=ctx.console,
    )


@backups.command()
@click.argument("key")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@pass_context
def restore(ctx: Context, key: str, yes: bool) -> None:
    """Replace the stored data with backup KEY."""
    if not yes:
        click.confirm(f"Overwrite stored data with {key}?", abort=True)

    record = ctx.run(ctx.engine.restore_from_backup(key))
    print_success(f"Restored {key} (version {record.version})", out=ctx.console)


@backups.command()
@click.option("--keep", type=click.IntRange(min=0), help="Number of backups to keep")
@pass_context
def cleanup(ctx: Context, keep: int | None) -> None:
    """Delete all but the newest backups."""
    keep_count = ctx.config.backup_keep_count if keep is None else keep
    deleted = ctx.run(ctx.engine.cleanup_old_backups(keep_count))
    print_success(f"Deleted {deleted} backup(s), kept up to {keep_count}", out=ctx.console)
