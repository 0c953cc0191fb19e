"""Tests for the hybridrag entry point."""

from __future__ import annotations

from hybridrag.cli.main import app


def test_help_lists_commands(runner):
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("ingest", "query", "table", "documents", "schemas", "status", "remove"):
        assert command in result.output


def test_version_option(runner):
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert result.output.startswith("hybridrag ")


def test_version_command(runner):
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert result.output.startswith("hybridrag ")


def test_verbose_flag_accepted(runner, db_path):
    result = runner.invoke(app, ["--verbose", "status", "--db", str(db_path)])
    assert result.exit_code == 0, result.output
