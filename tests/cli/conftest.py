"""Pytest configuration and fixtures for CLI tests."""

import asyncio

import msgspec
import pytest
from click.testing import CliRunner

from prefstore.cli.main import cli
from prefstore.storage.backends import FileSystemBackend


@pytest.fixture
def cli_runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "store"


@pytest.fixture
def invoke(cli_runner, data_dir):
    """Run the CLI against ``data_dir``."""

    def run(*args, **kwargs):
        return cli_runner.invoke(cli, ["--data-dir", str(data_dir), *args], **kwargs)

    return run


@pytest.fixture
def seed(data_dir):
    """Write raw values into the local backend the CLI will pick."""

    def write(data, namespace="app"):
        backend = FileSystemBackend(data_dir / "local")

        async def _write():
            for key, value in data.items():
                await backend.set(f"{namespace}.{key}", msgspec.json.encode(value))

        asyncio.run(_write())

    return write
