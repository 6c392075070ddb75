"""Tests for CLI commands."""
import pytest

from click.testing import CliRunner
from main import cli


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        f"database:\n  path: {tmp_path / 'cli.db'}\n"
        f"sinks:\n  console: false\n  file: {tmp_path / 'events.jsonl'}\n"
    )
    return str(path)


def test_cli_help(runner):
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "TokenWatch" in result.output


def test_cli_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "1.0.0" in result.output


def test_rules_help(runner):
    result = runner.invoke(cli, ["rules", "--help"])
    assert result.exit_code == 0
    for name in ("list", "load", "enable", "disable", "cancel", "delete"):
        assert name in result.output


def test_events_help(runner):
    result = runner.invoke(cli, ["events", "--help"])
    assert result.exit_code == 0
    assert "list" in result.output
    assert "follow" in result.output


def test_load_then_tick(runner, config_file, tmp_path):
    rules_path = tmp_path / "rules.yaml"
    rules_path.write_text(
        "rules:\n"
        "  - id: r1\n    kind: threshold\n    asset: PEPE\n"
        "    triggers:\n      - kind: price_move\n        min_pct: 5\n"
        "  - id: r2\n    kind: nonsense\n    asset: X\n"
    )
    result = runner.invoke(cli, ["--config", config_file, "rules", "load", str(rules_path)])
    assert result.exit_code == 0, result.output
    assert "Created 1 rules" in result.output

    result = runner.invoke(cli, ["--config", config_file, "tick"])
    assert result.exit_code == 0, result.output
    assert "Evaluated" in result.output

    result = runner.invoke(cli, ["--config", config_file, "rules", "list"])
    assert "r1" in result.output


def test_disable_unknown_rule(runner, config_file):
    result = runner.invoke(cli, ["--config", config_file, "rules", "disable", "ghost"])
    assert result.exit_code == 1
    assert "No rule" in result.output
