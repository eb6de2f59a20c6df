"""Fixtures for CLI command tests."""

from pathlib import Path

import pytest

from sukudo.config import StorageConfig, SukudoConfig


@pytest.fixture(autouse=True)
def skip_logging_setup(monkeypatch):
    """Keep CLI invocations from reconfiguring the root logger."""
    monkeypatch.setattr("sukudo.cli._logging_configured", True)


@pytest.fixture
def config(temp_dir: Path) -> SukudoConfig:
    return SukudoConfig(
        storage=StorageConfig(root=temp_dir / "objects"),
        database_path=temp_dir / "sukudo.db",
    )


@pytest.fixture
def cli_obj(db_conn, config) -> dict:
    """Context object handing the CLI a prepared config and connection."""
    return {"db_conn": db_conn, "config": config}
