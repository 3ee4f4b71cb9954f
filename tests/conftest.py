"""Shared test fixtures — MockLLMProvider and FakeVersionControl, no network."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone

import pytest

from codevolve.evolution.vcs import VersionControl
from codevolve.exceptions import VersionControlError
from codevolve.llm.base import BaseLLMProvider, LLMResponse
from codevolve.types import Proposal


class MockLLMProvider(BaseLLMProvider):
    """Oracle that returns canned responses. No API calls."""

    def __init__(self, responses: list[LLMResponse | Exception] | None = None):
        self._responses = responses or []
        self._call_count = 0
        self.calls: list[dict] = []  # record all calls for assertions

    async def complete(self, messages, system=None, max_tokens=4096, temperature=0.3):
        self.calls.append({
            "messages": messages,
            "system": system,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self._call_count < len(self._responses):
            resp = self._responses[self._call_count]
            self._call_count += 1
            if isinstance(resp, Exception):
                raise resp
            return resp
        return LLMResponse(content="Done.", stop_reason="end_turn")


def json_response(data) -> LLMResponse:
    return LLMResponse(content=json.dumps(data), stop_reason="end_turn")


def judge_payload(relevance=9, value=8, safety=10, feasibility=9, verdict="APPROVED"):
    return {
        "relevance": {"score": relevance, "reason": "fits"},
        "value": {"score": value, "reason": "useful"},
        "safety": {"score": safety, "reason": "harmless"},
        "feasibility": {"score": feasibility, "reason": "small"},
        "summary": "Looks good.",
        "verdict": verdict,
    }


class FakeVersionControl(VersionControl):
    """In-memory VCS. Set ``fail_on`` to a method name to make it raise."""

    def __init__(self, fail_on: str = "", pr_url: str = "https://github.com/o/r/pull/1"):
        self.fail_on = fail_on
        self.pr_url = pr_url
        self.branch = "main"
        self.calls: list[tuple] = []
        self.commits: list[tuple[str, list[str], str]] = []
        self.pushed: list[tuple[str, bool]] = []

    def _record(self, name: str, *args) -> None:
        self.calls.append((name, *args))
        if self.fail_on == name:
            raise VersionControlError(f"{name} failed")

    async def checkout(self, branch):
        self._record("checkout", branch)
        self.branch = branch

    async def sync_base(self, branch):
        self._record("sync_base", branch)

    async def create_or_reset_branch(self, name, base):
        self._record("create_or_reset_branch", name, base)
        self.branch = name

    async def stage_and_commit(self, paths, message):
        self._record("stage_and_commit", list(paths))
        commit_hash = hashlib.sha1(message.encode()).hexdigest()[:7]
        self.commits.append((self.branch, list(paths), message))
        return commit_hash

    async def push(self, branch, force=False):
        self._record("push", branch, force)
        self.pushed.append((branch, force))

    async def open_pull_request(self, base, head, title, body, labels):
        self._record("open_pull_request", base, head, title)
        return self.pr_url


def make_proposal(pid="local-1", title="Add greeting helper", body="Please add it.",
                  timestamp=None, source="local", author="alice") -> Proposal:
    return Proposal(
        id=pid,
        source=source,
        author=author,
        title=title,
        body=body,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def mock_llm_with_responses():
    def _factory(responses: list[LLMResponse | Exception]) -> MockLLMProvider:
        return MockLLMProvider(responses=responses)
    return _factory


@pytest.fixture
def fake_vcs():
    return FakeVersionControl()
