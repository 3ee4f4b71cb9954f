"""Tests for the Committer — direct commits, PR flow, failure handling."""

import pytest

from codevolve.evolution.committer import Committer, branch_name, commit_message, pr_body, slugify
from codevolve.types import ChangeRecord, Evaluation, FileChange, Plan, Scores, Verdict
from tests.conftest import FakeVersionControl, make_proposal


def _evaluation():
    return Evaluation(
        verdict=Verdict.APPROVED,
        scores=Scores(relevance=9, value=8, safety=10, feasibility=9),
        summary="Worth doing.",
        avg_score=9,
    )


def _plan(complexity="low"):
    return Plan(
        summary="Add greeting helper",
        estimated_complexity=complexity,
        changes=[FileChange(action="create", file_path="core/greeting.py", content="x = 1\n")],
    )


APPLIED = [ChangeRecord(action="create", file_path="core/greeting.py")]


def test_slugify_and_branch_name():
    assert slugify("Add a *new* Greeting -- helper!") == "add-a-new-greeting-helper"
    assert len(slugify("x" * 100)) == 40
    assert branch_name(make_proposal(title="Fix: crash on empty input")) == "evolution/fix-crash-on-empty-input"
    assert branch_name(make_proposal(pid="gh-issue-7", title="!!!")) == "evolution/gh-issue-7"


def test_commit_message_format():
    proposal = make_proposal(title="Add greeting helper " + "y" * 80)

    message = commit_message(proposal, _evaluation(), _plan("low"))
    subject, _, body = message.partition("\n\n")

    assert subject.startswith("fix(evolution): Add greeting helper")
    assert len(subject) == len("fix(evolution): ") + 72
    assert "Proposal: local-1" in body
    assert "Author: alice (local)" in body
    assert "Judge Score: 9.0/10" in body
    assert commit_message(proposal, _evaluation(), _plan("high")).startswith("feat(evolution):")


def test_pr_body_contents():
    body = pr_body(make_proposal(), _evaluation(), _plan(), APPLIED)
    assert "| Safety | 10/10 |" in body
    assert "**Average** | **9.0/10**" in body
    assert "- `core/greeting.py` (create)" in body
    assert "evolution, automated" in body


@pytest.mark.asyncio
async def test_direct_commit(fake_vcs):
    committer = Committer(fake_vcs, direct_commit=True)

    result = await committer.commit(make_proposal(), _evaluation(), _plan(), APPLIED)

    assert result.success
    assert result.branch == "main"
    assert result.pr_url is None
    assert len(result.commit_hash) == 7
    assert fake_vcs.commits[0][:2] == ("main", ["core/greeting.py"])
    assert fake_vcs.pushed == [("main", False)]


@pytest.mark.asyncio
async def test_pull_request_flow(fake_vcs):
    committer = Committer(fake_vcs)

    result = await committer.commit(make_proposal(), _evaluation(), _plan(), APPLIED)

    assert result.success
    assert result.branch == "evolution/add-greeting-helper"
    assert result.pr_url == "https://github.com/o/r/pull/1"
    assert [c[0] for c in fake_vcs.calls] == [
        "checkout", "sync_base", "create_or_reset_branch",
        "stage_and_commit", "push", "open_pull_request", "checkout",
    ]
    assert fake_vcs.pushed == [("evolution/add-greeting-helper", True)]
    assert fake_vcs.branch == "main"
    assert ("open_pull_request", "main", "evolution/add-greeting-helper",
            "[Evolution] Add greeting helper") in fake_vcs.calls


@pytest.mark.asyncio
async def test_pr_failure_is_partial_success():
    vcs = FakeVersionControl(fail_on="open_pull_request")

    result = await Committer(vcs).commit(make_proposal(), _evaluation(), _plan(), APPLIED)

    assert result.success
    assert result.pr_url is None
    assert result.pr_error == "open_pull_request failed"
    assert vcs.pushed
    assert vcs.branch == "main"


@pytest.mark.asyncio
async def test_push_failure_returns_error_and_checks_out_base():
    vcs = FakeVersionControl(fail_on="push")

    result = await Committer(vcs).commit(make_proposal(), _evaluation(), _plan(), APPLIED)

    assert not result.success
    assert result.error == "push failed"
    assert vcs.calls[-1] == ("checkout", "main")
    assert vcs.branch == "main"


@pytest.mark.asyncio
async def test_commit_failure_in_direct_mode():
    vcs = FakeVersionControl(fail_on="stage_and_commit")

    result = await Committer(vcs, direct_commit=True).commit(
        make_proposal(), _evaluation(), _plan(), APPLIED
    )

    assert not result.success
    assert vcs.pushed == []
