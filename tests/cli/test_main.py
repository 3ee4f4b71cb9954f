"""Tests for the codevolve CLI."""

import asyncio

import orjson
import pytest
from typer.testing import CliRunner

from codevolve.audit.log import AuditLog
from codevolve.cli import main as cli
from codevolve.evolution.inbox import ProcessedStore

runner = CliRunner()


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.setattr(cli.settings, "project_root", tmp_path)
    monkeypatch.setattr(cli.settings, "anthropic_api_key", "")
    return cli.settings


def test_submit_queues_proposal(workspace):
    result = runner.invoke(cli.app, ["submit", "Add greeting", "Please add greet()", "--author", "dana"])

    assert result.exit_code == 0, result.output
    assert "Queued" in result.output
    entries = orjson.loads(workspace.proposals_file.read_bytes())
    assert entries[0]["title"] == "Add greeting"
    assert entries[0]["author"] == "dana"


def test_status_lists_processed(workspace):
    ProcessedStore(workspace.processed_file).mark("gh-issue-12", "pr_created")

    result = runner.invoke(cli.app, ["status"])

    assert result.exit_code == 0, result.output
    assert "gh-issue-12" in result.output
    assert "pr_created" in result.output
    assert "not set" in result.output


def test_status_empty(workspace):
    result = runner.invoke(cli.app, ["status"])
    assert result.exit_code == 0
    assert "No proposals processed yet." in result.output


def test_audit_shows_entries(workspace):
    log = AuditLog(workspace.audit_file)
    asyncio.run(log.record("PROPOSAL_START", id="local-1"))
    asyncio.run(log.record("PROPOSAL_JUDGED", id="local-1", verdict="APPROVED"))

    result = runner.invoke(cli.app, ["audit", "--event", "proposal_judged"])

    assert result.exit_code == 0, result.output
    assert "PROPOSAL_JUDGED" in result.output
    assert "PROPOSAL_START" not in result.output


def test_once_requires_api_key(workspace):
    result = runner.invoke(cli.app, ["once"])
    assert result.exit_code == 1
    assert "API_KEY" in result.output
