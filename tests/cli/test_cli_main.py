"""Tests for the Typer CLI."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from truth_engine import __version__
from truth_engine.cli import main as cli_main
from truth_engine.cli.main import app

runner = CliRunner()


@pytest.fixture
def wide_console(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(cli_main, "console", Console(width=200))


class TestCli:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_sources_lists_every_tier(self, wide_console: None) -> None:
        result = runner.invoke(app, ["sources"])
        assert result.exit_code == 0
        assert "authority_impersonation_check" in result.stdout
        assert "behavioral_heuristics" in result.stdout
        assert "contact_channel_inspector" in result.stdout

    def test_status(self) -> None:
        result = runner.invoke(app, ["status"])
        assert result.exit_code == 0
        assert "Truth Engine Status" in result.stdout

    def test_verify_in_process(self) -> None:
        result = runner.invoke(app, [
            "verify",
            "This is the IRS. Reply to irs.refund.dept@gmail.com within 24 hours.",
        ])
        assert result.exit_code == 0
        assert "DEFINITE_SCAM" in result.stdout
