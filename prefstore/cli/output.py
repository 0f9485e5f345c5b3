"""CLI output utilities."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import msgspec
from rich.console import Console
from rich.table import Table

# Global console instance
console = Console()


def print_success(message: str, out: Console | None = None) -> None:
    """Print success message."""
    (out or console).print(f"[green]✓[/green] {message}")


def print_warning(message: str, out: Console | None = None) -> None:
    (out or console).print(f"[yellow]Warning:[/yellow] {message}")


def format_value(value: Any) -> str:
    """Render a stored value as compact JSON."""
    if isinstance(value, str):
        return value
    return msgspec.json.encode(value).decode()


def print_table(
    headers: list[str],
    rows: list[list[Any]],
    title: str | None = None,
    out: Console | None = None,
) -> None:
    """Print a table.

    Args:
        headers: Table headers
        rows: Table rows
        title: Optional table title
        out: Console to print to; the module console by default
    """
    table = Table(title=title) if title else Table()

    for header in headers:
        table.add_column(header)

    for row in rows:
        table.add_row(*[str(cell) for cell in row])

    (out or console).print(table)


def print_mapping(
    data: Mapping[str, Any], title: str | None = None, out: Console | None = None
) -> None:
    """Print key/value pairs as a two-column table."""
    print_table(
        ["Key", "Value"],
        [[key, format_value(value)] for key, value in data.items()],
        title=title,
        out=out,
    )


def print_json(data: Any, out: Console | None = None) -> None:
    """Print data as indented JSON."""
    encoded = msgspec.json.format(msgspec.json.encode(data), indent=2)
    (out or console).print(encoded.decode(), markup=False, highlight=False, soft_wrap=True)
