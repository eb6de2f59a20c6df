"""Tests for the serve command."""

from __future__ import annotations

import asyncio
import os
import signal
from pathlib import Path
from unittest.mock import ANY, patch

import pytest

from sukudo.cli import main
from sukudo.cli.exit_codes import ExitCode
from sukudo.cli.serve import run_server


@pytest.fixture
def serve_mocks():
    """Stub out the event loop so serve_command only runs its checks."""
    with (
        patch("sukudo.cli.serve.run_server") as run_server_mock,
        patch("sukudo.cli.serve.asyncio.run", return_value=ExitCode.SUCCESS) as run,
        patch("sukudo.cli.serve.check_database_connectivity", return_value=True),
    ):
        yield run_server_mock, run


class TestServeCommand:
    """sukudo serve."""

    def test_uses_config_defaults(self, runner, cli_obj, config, serve_mocks):
        run_server_mock, run = serve_mocks
        result = runner.invoke(main, ["serve"], obj=cli_obj)

        assert result.exit_code == 0, result.output
        run_server_mock.assert_called_once_with(
            "127.0.0.1",
            8340,
            config.server.shutdown_timeout,
            config.database_path,
            storage=ANY,
            feed=config.feed,
        )
        run.assert_called_once()

    def test_options_override_config(self, runner, cli_obj, serve_mocks):
        run_server_mock, _ = serve_mocks
        runner.invoke(
            main, ["serve", "--bind", "0.0.0.0", "--port", "9000"], obj=cli_obj
        )
        args = run_server_mock.call_args.args
        assert args[:2] == ("0.0.0.0", 9000)

    def test_invalid_port(self, runner, cli_obj, serve_mocks):
        result = runner.invoke(main, ["serve", "--port", "70000"], obj=cli_obj)
        assert result.exit_code == ExitCode.VALIDATION_ERROR
        serve_mocks[1].assert_not_called()

    def test_database_unreachable(self, runner, cli_obj, serve_mocks):
        with patch(
            "sukudo.cli.serve.check_database_connectivity", return_value=False
        ):
            result = runner.invoke(main, ["serve"], obj=cli_obj)
        assert result.exit_code == ExitCode.DATABASE_ERROR

    def test_interrupted_before_start(self, runner, cli_obj, serve_mocks):
        serve_mocks[1].side_effect = KeyboardInterrupt
        result = runner.invoke(main, ["serve"], obj=cli_obj)
        assert result.exit_code == ExitCode.INTERRUPTED


class TestRunServer:
    """run_server() lifecycle."""

    def test_stops_cleanly_on_sigterm(self, db_path: Path):
        async def _serve() -> int:
            loop = asyncio.get_running_loop()
            loop.call_later(0.3, os.kill, os.getpid(), signal.SIGTERM)
            return await run_server("127.0.0.1", 0, 1.0, db_path)

        assert asyncio.run(_serve()) == ExitCode.SUCCESS
