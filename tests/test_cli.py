"""Tests for the command line interface."""

import re

import pytest
from typer.testing import CliRunner

import compliance_tower.cli as cli
from compliance_tower.db.base import reset_engine
from compliance_tower.sources.inmemory import InMemorySourceClient

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'cli.db'}")
    monkeypatch.setenv("COLUMNS", "200")
    reset_engine()
    result = runner.invoke(cli.app, ["init-db"])
    assert result.exit_code == 0, result.output
    yield
    reset_engine()


@pytest.fixture
def source(monkeypatch, verifier):
    source = InMemorySourceClient()
    monkeypatch.setattr(cli, "GitHubSourceClient", lambda: source)
    monkeypatch.setattr(cli, "JwsVerifier", lambda: verifier)
    return source


def _add_repo() -> str:
    result = runner.invoke(cli.app, ["add-repo", "acme", "device-fw"])
    assert result.exit_code == 0, result.output
    return re.search(r"Repository id: (\S+)", result.output).group(1)


def test_add_repo():
    result = runner.invoke(cli.app, ["add-repo", "acme", "device-fw", "--branch", "release"])

    assert result.exit_code == 0
    assert "Registered acme/device-fw" in result.output


def test_add_repo_twice_fails():
    _add_repo()
    result = runner.invoke(cli.app, ["add-repo", "acme", "device-fw"])

    assert result.exit_code == 1
    assert "REPOSITORY_EXISTS" in result.output


def test_status_without_scans():
    _add_repo()
    result = runner.invoke(cli.app, ["status", "acme/device-fw"])

    assert result.exit_code == 0
    assert "No scans recorded for acme/device-fw" in result.output


def test_unknown_repository():
    result = runner.invoke(cli.app, ["risk", "acme/unknown"])

    assert result.exit_code == 1
    assert "REPOSITORY_NOT_FOUND" in result.output


def test_scan_then_report(source, repo_files):
    repo_id = _add_repo()
    source.publish("acme", "device-fw", repo_files())

    result = runner.invoke(cli.app, ["scan", repo_id])
    assert result.exit_code == 0, result.output
    assert "completed" in result.output
    assert "100%" in result.output

    status = runner.invoke(cli.app, ["status", "acme/device-fw"])
    assert status.exit_code == 0
    assert "completed" in status.output

    risk = runner.invoke(cli.app, ["risk", "acme/device-fw"])
    assert risk.exit_code == 0
    assert "Recommendations:" in risk.output

    links = runner.invoke(cli.app, ["broken-links", "acme/device-fw"])
    assert links.exit_code == 0
    assert "No broken links in acme/device-fw" in links.output

    verify = runner.invoke(cli.app, ["verify", "acme/device-fw"])
    assert verify.exit_code == 0
    assert "1/1 verified, 0 failed" in verify.output


def test_scan_failure_exits_nonzero(source):
    _add_repo()
    source.publish("acme", "device-fw", {"README.md": "# empty"})

    result = runner.invoke(cli.app, ["scan", "acme/device-fw"])

    assert result.exit_code == 1
    assert "SCAN_NO_ARTIFACTS" in result.output


def test_verify_without_evidence(source):
    _add_repo()
    result = runner.invoke(cli.app, ["verify", "acme/device-fw"])

    assert result.exit_code == 0
    assert "No evidence stored for acme/device-fw" in result.output


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert "Compliance Tower v" in result.output
