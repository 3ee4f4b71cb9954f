"""VersionControl — the narrow capability the committer needs.

GitVersionControl shells out to ``git`` (argument lists, no shell) and
opens pull requests through the GitHub REST API.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

import httpx

from codevolve.evolution.process import run_command
from codevolve.exceptions import VersionControlError

GITHUB_API = "https://api.github.com"


class VersionControl(ABC):
    @abstractmethod
    async def checkout(self, branch: str) -> None: ...

    @abstractmethod
    async def sync_base(self, branch: str) -> None:
        """Bring the local base branch up to date with its remote."""

    @abstractmethod
    async def create_or_reset_branch(self, name: str, base: str) -> None:
        """Point ``name`` at ``base`` (deleting any old branch) and check it out."""

    @abstractmethod
    async def stage_and_commit(self, paths: list[str], message: str) -> str:
        """Stage exactly ``paths``, commit, and return the short hash."""

    @abstractmethod
    async def push(self, branch: str, force: bool = False) -> None: ...

    @abstractmethod
    async def open_pull_request(
        self, base: str, head: str, title: str, body: str, labels: list[str]
    ) -> str:
        """Open a pull request and return its URL."""


class GitVersionControl(VersionControl):
    def __init__(
        self,
        project_root: Path | str = ".",
        repo: str = "",
        token: str = "",
        remote: str = "origin",
        timeout: float = 30.0,
    ) -> None:
        self._root = Path(project_root)
        self._repo = repo
        self._token = token
        self._remote = remote
        self._timeout = timeout

    async def checkout(self, branch: str) -> None:
        await self._git("checkout", branch)

    async def sync_base(self, branch: str) -> None:
        # Uncommitted pipeline edits ride along through the rebase
        await self._git("pull", "--rebase", "--autostash", self._remote, branch)

    async def create_or_reset_branch(self, name: str, base: str) -> None:
        await self._git("checkout", "-B", name, base)

    async def stage_and_commit(self, paths: list[str], message: str) -> str:
        if not paths:
            raise VersionControlError("Nothing to commit")
        await self._git("add", "-A", "--", *paths)
        await self._git("commit", "-F", "-", "--", *paths, input_text=message)
        return (await self._git("rev-parse", "--short", "HEAD")).strip()

    async def push(self, branch: str, force: bool = False) -> None:
        args = ["push", self._remote, branch]
        if force:
            args.append("--force")
        await self._git(*args)

    async def open_pull_request(
        self, base: str, head: str, title: str, body: str, labels: list[str]
    ) -> str:
        if not self._repo or not self._token:
            raise VersionControlError("Pull requests need a repository and a token")

        headers = {
            "Authorization": f"Bearer {self._token}",
            "Accept": "application/vnd.github.v3+json",
        }
        async with httpx.AsyncClient(timeout=self._timeout, headers=headers) as client:
            resp = await client.post(
                f"{GITHUB_API}/repos/{self._repo}/pulls",
                json={"title": title, "body": body, "head": head, "base": base},
            )
            if resp.status_code not in (200, 201):
                raise VersionControlError(
                    f"PR creation failed: {resp.status_code} {resp.text[:200]}"
                )
            data = resp.json()

            if labels:
                # Labels are cosmetic; the PR exists either way
                await client.post(
                    f"{GITHUB_API}/repos/{self._repo}/issues/{data['number']}/labels",
                    json={"labels": labels},
                )

        return data.get("html_url", "")

    async def _git(self, *args: str, input_text: str | None = None) -> str:
        result = await run_command(
            ["git", *args], cwd=self._root, timeout=self._timeout, input_text=input_text
        )
        if not result.ok:
            raise VersionControlError(f"git {args[0]} failed: {result.output[:300]}")
        return result.stdout
