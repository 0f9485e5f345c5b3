"""Migration and integrity commands."""

import click

from prefstore.cli.context import Context, pass_context
from prefstore.cli.output import print_success, print_table, print_warning


@click.command()
@click.option("--target", help="Version to migrate to (default: latest)")
@click.option("--force", is_flag=True, help="Run even if data is already at the target")
@click.option("--dry-run", is_flag=True, help="Show what would change without writing")
@pass_context
def migrate(ctx: Context, target: str | None, force: bool, dry_run: bool) -> None:
    """Migrate stored data to a newer version."""
    outcome = ctx.run(
        ctx.engine.migrate(target_version=target, force=force, dry_run=dry_run)
    )
    console = ctx.console

    if not outcome.migrated:
        console.print(f"No migration needed (version {outcome.from_version})")
        return

    prefix = "[dim](dry run)[/dim] " if outcome.dry_run else ""
    console.print(f"{prefix}{outcome.from_version} -> {outcome.to_version}")

    changes = outcome.changes
    for label, keys in (
        ("Added", changes.added),
        ("Removed", changes.removed),
        ("Modified", changes.modified),
    ):
        if keys:
            console.print(f"  {label}: {', '.join(keys)}")

    if outcome.backup_key:
        console.print(f"  Backup: {outcome.backup_key}")

    if not outcome.dry_run:
        print_success("Migration completed", out=console)


@click.command()
@pass_context
def check(ctx: Context) -> None:
    """Check the stored version and data integrity."""
    status = ctx.run(ctx.engine.check_migration_needed())
    report = ctx.run(ctx.engine.validate_data_integrity())
    console = ctx.console

    console.print(f"\n[bold]Namespace {ctx.store.namespace}[/bold]\n")
    console.print(f"Backend: {ctx.store.selected_kind.value}")
    console.print(f"Stored version: {status.current_version}")
    console.print(f"Latest version: {status.target_version}")

    if status.needs_migration:
        print_warning(
            f"Migration needed ({status.estimated_steps} step(s))", out=console
        )
    else:
        console.print("Migration: [green]up to date[/green]")

    if report.is_valid:
        console.print("Integrity: [green]OK[/green]")
        return

    console.print(f"Integrity: [red]{len(report.issues)} issue(s)[/red]")
    for issue in report.issues:
        console.print(f"  - {issue.to_string()}", markup=False)
    click.get_current_context().exit(1)


@click.command()
@pass_context
def history(ctx: Context) -> None:
    """Show past migrations, oldest first."""
    records = ctx.run(ctx.engine.get_migration_history())

    if not records:
        ctx.console.print("[yellow]No migrations recorded[/yellow]")
        return

    print_table(
        ["Timestamp", "From", "To", "Backup", "Result"],
        [
            [
                r.timestamp,
                r.from_version,
                r.to_version,
                r.backup_key or "-",
                "ok" if r.success else "failed",
            ]
            for r in records
        ],
        title="Migration History",
        out=ctx.console,
    )
