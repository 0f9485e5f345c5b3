"""Commands for reading and changing settings."""

import click
import msgspec

from prefstore.cli.context import Context, pass_context
from prefstore.cli.output import format_value, print_json, print_mapping, print_success


def parse_value(raw: str):
    """Parse ``raw`` as JSON, falling back to the plain string."""
    try:
        return msgspec.json.decode(raw.encode())
    except msgspec.DecodeError:
        return raw


@click.command()
@click.option("--json", "as_json", is_flag=True, help="Print settings as JSON")
@pass_context
def show(ctx: Context, as_json: bool) -> None:
    """Show the current settings."""
    settings = ctx.run(ctx.settings.load_settings())

    if as_json:
        print_json(settings, out=ctx.console)
        return

    print_mapping(
        settings,
        title=f"Settings ({ctx.store.namespace}, {ctx.store.selected_kind.value})",
        out=ctx.console,
    )


@click.command()
@click.argument("key")
@pass_context
def get(ctx: Context, key: str) -> None:
    """Print a single setting."""
    value = ctx.run(ctx.settings.get_setting(key))
    ctx.console.print(format_value(value), markup=False, highlight=False)


@click.command(name="set")
@click.argument("key")
@click.argument("value")
@pass_context
def set_setting(ctx: Context, key: str, value: str) -> None:
    """Change a single setting.

    VALUE is parsed as JSON (``true``, ``0.5``, ``"x"``); anything else is
    taken as a plain string.
    """
    parsed = parse_value(value)
    ctx.run(ctx.settings.update_setting(key, parsed))
    print_success(f"{key} = {format_value(parsed)}", out=ctx.console)


@click.command()
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@pass_context
def reset(ctx: Context, yes: bool) -> None:
    """Reset all settings to their defaults."""
    if not yes:
        click.confirm("Reset all settings to defaults?", abort=True)

    ctx.run(ctx.settings.reset_settings())
    print_success("Settings reset to defaults", out=ctx.console)
