"""InboxCollector — gathers evolution proposals from every configured source.

Sources:
  1. GitHub issues carrying one of the configured labels
  2. A local append-only JSON queue (manual submissions, bots, webhooks)

Each proposal is normalized to a Proposal. Ids already present in the
processed store are never returned again; that store is the idempotency
boundary across daemon restarts.
"""

from __future__ import annotations

import logging
import os
import random
import string
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import orjson
from pydantic import ValidationError

from codevolve.config import EvolutionSettings
from codevolve.exceptions import SourceFetchError
from codevolve.types import ProcessedRecord, Proposal, utcnow

_logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"


@contextmanager
def _exclusive_lock(path: Path):
    """Hold an OS-level lock on ``path`` across processes for the block."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(str(path), os.O_CREAT | os.O_RDWR)
    try:
        if sys.platform == "win32":
            import msvcrt
            msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
        else:
            import fcntl
            fcntl.flock(fd, fcntl.LOCK_EX)
        try:
            yield
        finally:
            if sys.platform == "win32":
                import msvcrt
                os.lseek(fd, 0, os.SEEK_SET)
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
            else:
                import fcntl
                fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)


def _write_json_atomic(path: Path, data: Any) -> None:
    """Replace ``path`` in one step so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(orjson.dumps(data, option=orjson.OPT_INDENT_2))
        os.replace(tmp, path)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


class ProposalSource(ABC):
    """Anything that can yield proposals."""

    name: str = ""

    @abstractmethod
    async def fetch(self) -> list[Proposal]:
        ...


# ── GitHub issues ────────────────────────────────────────────────


class GitHubIssueSource(ProposalSource):
    """Open issues with the evolution label(s), newest first."""

    name = "github-issue"

    def __init__(
        self,
        repo: str,
        token: str,
        labels: list[str] | None = None,
        per_page: int = 20,
        max_pages: int = 1,
        timeout: float = 30.0,
    ) -> None:
        self._repo = repo
        self._token = token
        self._labels = labels or ["evolution"]
        self._per_page = per_page
        self._max_pages = max_pages
        self._timeout = timeout

    async def fetch(self) -> list[Proposal]:
        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github.v3+json",
            "User-Agent": "codevolve",
        }
        proposals: list[Proposal] = []

        async with httpx.AsyncClient(timeout=self._timeout, headers=headers) as client:
            for page in range(1, self._max_pages + 1):
                resp = await client.get(
                    f"{GITHUB_API}/repos/{self._repo}/issues",
                    params={
                        "labels": ",".join(self._labels),
                        "state": "open",
                        "sort": "created",
                        "direction": "desc",
                        "per_page": str(self._per_page),
                        "page": str(page),
                    },
                )
                if resp.status_code != 200:
                    raise SourceFetchError(
                        f"GitHub API {resp.status_code}: {resp.text[:200]}"
                    )
                issues = resp.json()
                if not isinstance(issues, list):
                    raise SourceFetchError("GitHub API returned a non-list payload")

                for issue in issues:
                    if "pull_request" in issue:
                        continue  # the issues endpoint also lists PRs
                    proposal = self._to_proposal(issue)
                    if proposal:
                        proposals.append(proposal)

                if len(issues) < self._per_page:
                    break

        return proposals

    def _to_proposal(self, issue: dict) -> Proposal | None:
        try:
            return Proposal(
                id=f"gh-issue-{issue['number']}",
                source=self.name,
                author=(issue.get("user") or {}).get("login") or "unknown",
                title=issue.get("title") or "",
                body=issue.get("body") or "",
                timestamp=issue["created_at"],
                raw={
                    "number": issue["number"],
                    "url": issue.get("html_url", ""),
                    "labels": [
                        label.get("name", "") for label in issue.get("labels", [])
                        if isinstance(label, dict)
                    ],
                },
            )
        except (KeyError, ValidationError) as e:
            _logger.warning("Skipping malformed issue: %s", e)
            return None


# ── Local queue ──────────────────────────────────────────────────


class LocalProposalQueue(ProposalSource):
    """Append-only JSON array of locally submitted proposals."""

    name = "local"

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def fetch(self) -> list[Proposal]:
        proposals = []
        for entry in self._read():
            try:
                proposals.append(Proposal.model_validate(entry))
            except ValidationError as e:
                _logger.warning("Skipping malformed local proposal: %s", e)
        return proposals

    def append(self, title: str, body: str, author: str = "anonymous") -> Proposal:
        suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
        proposal = Proposal(
            id=f"local-{int(time.time() * 1000)}-{suffix}",
            source=self.name,
            author=author or "anonymous",
            title=title,
            body=body,
            raw={"title": title, "body": body, "author": author},
        )
        # Writers in other processes (CLI, webhooks) share this file
        with _exclusive_lock(self._path.with_name(self._path.name + ".lock")):
            entries = self._read()
            entries.append(proposal.model_dump(mode="json"))
            _write_json_atomic(self._path, entries)
        return proposal

    def _read(self) -> list[dict]:
        if not self._path.exists():
            return []
        try:
            data = orjson.loads(self._path.read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            _logger.warning("Local proposals unreadable (%s): %s", self._path, e)
            return []
        if not isinstance(data, list):
            return []
        return [entry for entry in data if isinstance(entry, dict)]


# ── Processed tracking ───────────────────────────────────────────


class ProcessedStore:
    """Durable ``proposal id -> {outcome, processed_at}`` map."""

    def __init__(self, path: Path | str) -> None:
        self._path = Path(path)
        self._records: dict[str, ProcessedRecord] = self._load()

    def __contains__(self, proposal_id: object) -> bool:
        return proposal_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def get(self, proposal_id: str) -> ProcessedRecord | None:
        return self._records.get(proposal_id)

    def items(self) -> list[tuple[str, ProcessedRecord]]:
        return list(self._records.items())

    def mark(self, proposal_id: str, outcome: str) -> ProcessedRecord:
        """Record a terminal outcome and persist it before returning."""
        record = ProcessedRecord(outcome=outcome)
        self._records[proposal_id] = record
        _write_json_atomic(
            self._path,
            {pid: r.model_dump(mode="json") for pid, r in self._records.items()},
        )
        return record

    def _load(self) -> dict[str, ProcessedRecord]:
        if not self._path.exists():
            return {}
        try:
            raw = orjson.loads(self._path.read_bytes())
            return {
                pid: ProcessedRecord.model_validate(rec) for pid, rec in raw.items()
            }
        except (OSError, orjson.JSONDecodeError, ValidationError, AttributeError) as e:
            _logger.warning("Failed to load processed state: %s", e)
            return {}


# ── Collector ────────────────────────────────────────────────────


class InboxCollector:
    """Collects, filters and rate-limits proposals from all sources."""

    def __init__(
        self,
        processed: ProcessedStore,
        local_queue: LocalProposalQueue,
        sources: list[ProposalSource] | None = None,
        max_age_hours: float = 72,
        max_per_cycle: int = 5,
    ) -> None:
        self._processed = processed
        self._local_queue = local_queue
        self._sources = list(sources) if sources is not None else []
        if local_queue not in self._sources:
            self._sources.append(local_queue)
        self._max_age = timedelta(hours=max_age_hours)
        self._max_per_cycle = max_per_cycle

    @classmethod
    def from_settings(cls, settings: EvolutionSettings) -> "InboxCollector":
        sources: list[ProposalSource] = []
        if settings.repo and settings.github_token:
            sources.append(
                GitHubIssueSource(
                    repo=settings.repo,
                    token=settings.github_token,
                    labels=settings.issue_labels,
                    timeout=settings.http_timeout,
                )
            )
        return cls(
            processed=ProcessedStore(settings.processed_file),
            local_queue=LocalProposalQueue(settings.proposals_file),
            sources=sources,
            max_age_hours=settings.max_age_hours,
            max_per_cycle=settings.max_per_cycle,
        )

    @property
    def processed(self) -> ProcessedStore:
        return self._processed

    async def collect(self, now: datetime | None = None) -> list[Proposal]:
        """Collect the next batch of unprocessed, recent proposals."""
        gathered: list[Proposal] = []
        for source in self._sources:
            try:
                gathered.extend(await source.fetch())
            except Exception as e:
                # One failed source shouldn't stop the rest
                _logger.warning("Proposal source '%s' failed: %s", source.name, e)

        seen: set[str] = set()
        fresh: list[Proposal] = []
        for proposal in gathered:
            if proposal.id in seen or proposal.id in self._processed:
                continue
            seen.add(proposal.id)
            fresh.append(proposal)

        cutoff = (now or utcnow()) - self._max_age
        recent = [p for p in fresh if p.timestamp > cutoff]
        recent.sort(key=lambda p: p.timestamp, reverse=True)
        batch = recent[: self._max_per_cycle]

        if batch:
            _logger.info(
                "Collected %d new proposal(s) from %d total", len(batch), len(gathered)
            )
        return batch

    def add_proposal(self, title: str, body: str, author: str = "anonymous") -> Proposal:
        """Queue a proposal for the next collect() call."""
        return self._local_queue.append(title, body, author)

    def mark_processed(self, proposal_id: str, outcome: str) -> None:
        self._processed.mark(proposal_id, outcome)

    def is_processed(self, proposal_id: str) -> bool:
        return proposal_id in self._processed
