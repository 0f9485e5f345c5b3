"""CLI context shared by all commands."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from dataclasses import dataclass, field
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.markup import escape

from prefstore.config import StoreConfig
from prefstore.core.errors import SchemaValidationError
from prefstore.core.result import Err, Result
from prefstore.settings.manager import SettingsManager
from prefstore.storage.migrations import MigrationEngine
from prefstore.storage.store import NamespacedStore

T = TypeVar("T")


@dataclass
class Context:
    """CLI context that holds shared resources."""

    config: StoreConfig
    store: NamespacedStore
    console: Console
    debug: bool = False
    _engine: MigrationEngine | None = field(default=None, repr=False)
    _settings: SettingsManager | None = field(default=None, repr=False)

    @property
    def engine(self) -> MigrationEngine:
        if self._engine is None:
            self._engine = MigrationEngine(
                self.store, create_backup=self.config.create_backup
            )
        return self._engine

    @property
    def settings(self) -> SettingsManager:
        if self._settings is None:
            self._settings = SettingsManager(self.store)
        return self._settings

    def run(self, coro: Coroutine[Any, Any, Result[T]]) -> T:
        """Run ``coro`` and return its value, exiting with status 1 on failure."""
        result = asyncio.run(coro)
        if isinstance(result, Err):
            if self.debug:
                raise result.error
            self.report(result.error)
            click.get_current_context().exit(1)
        return result.value

    def report(self, error: Exception) -> None:
        self.console.print(f"[red]Error:[/red] {escape(str(error))}")
        if isinstance(error, SchemaValidationError):
            for issue in error.issues:
                self.console.print(f"  - {issue.field}: {escape(issue.reason)}")


pass_context = click.make_pass_decorator(Context)
