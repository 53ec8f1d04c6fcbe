"""Tests for the command line surface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from docrelay.cli import cli
from docrelay.commands.publish import run_parse, run_publish
from docrelay.commands.relays import build_filter
from docrelay.config import RelayConfig, Settings


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "docrelay.toml"
    path.write_text("content_level = 3\n", encoding="utf-8")
    return path


def test_run_parse_json(book_path: Path, settings: Settings, relay_config: RelayConfig, capsys):
    assert run_parse(book_path, settings, relay_config, content_level=3, output_json=True) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["title"] == "Book"
    assert data["dialect"] == "asciidoc"
    assert data["metadata"]["author"] == "Jane Doe"
    assert data["contentLevel"] == 3
    assert data["contentKind"] == 30041
    assert [step["title"] for step in data["plan"]] == ["S1", "S2", "Ch1", "Book"]


def test_run_publish_dry_run_json(book_path: Path, settings: Settings, relay_config: RelayConfig, capsys):
    code = run_publish(book_path, settings, relay_config, content_level=3, dry_run=True, output_json=True)

    assert code == 0
    data = json.loads(capsys.readouterr().out)
    assert data["dryRun"] is True
    assert data["success"] is True
    assert data["totalExpectedEvents"] == 4
    assert data["totalPublishedEvents"] == 0


def test_cli_parse_shows_plan(book_path: Path, config_file: Path):
    result = CliRunner().invoke(cli, ["--config", str(config_file), "parse", str(book_path)])

    assert result.exit_code == 0, result.output
    assert "Publish Plan: Book" in result.output


def test_cli_publish_dry_run(book_path: Path, config_file: Path):
    result = CliRunner().invoke(
        cli, ["--config", str(config_file), "publish", str(book_path), "--dry-run", "--json"]
    )

    assert result.exit_code == 0, result.output
    assert '"dryRun": true' in result.output
    assert '"totalExpectedEvents": 4' in result.output


def test_cli_reports_compiler_errors(tmp_path: Path, config_file: Path):
    bad = tmp_path / "bad.adoc"
    bad.write_text("no title\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config_file), "parse", str(bad)])
    assert result.exit_code == 1
    assert "Error" in result.output
    assert "level-1 title" in result.output


def test_cli_rejects_invalid_settings(tmp_path: Path, book_path: Path):
    config = tmp_path / "docrelay.toml"
    config.write_text("quorum = 0\n", encoding="utf-8")

    result = CliRunner().invoke(cli, ["--config", str(config), "parse", str(book_path)])
    assert result.exit_code == 1
    assert "quorum" in result.output


def test_cli_query_requires_a_filter(config_file: Path):
    result = CliRunner().invoke(cli, ["--config", str(config_file), "query"])
    assert result.exit_code == 2
    assert "at least one" in result.output


def test_build_filter():
    assert build_filter() == {}
    assert build_filter(kinds=(30040,), identifiers=("book",), limit=5) == {
        "kinds": [30040],
        "#d": ["book"],
        "limit": 5,
    }
