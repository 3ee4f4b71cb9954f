"""Committer — turns a validated change-set into a commit or a pull request.

Direct mode commits straight onto the base branch. Pull-request mode
commits onto a deterministically named feature branch, force-pushes it
and opens a PR; when only the PR step fails the pushed branch is still
reported as a (partial) success so an operator can open the PR by hand.
Either way the working tree ends on the base branch.
"""

from __future__ import annotations

import re

import structlog

from codevolve.evolution.vcs import VersionControl
from codevolve.types import ChangeRecord, CommitResult, Evaluation, Plan, Proposal

logger = structlog.get_logger()

PR_LABELS = ["evolution", "automated"]


def slugify(text: str, max_length: int = 40) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_length].strip("-")


def branch_name(proposal: Proposal, prefix: str = "evolution/") -> str:
    slug = slugify(proposal.title) or slugify(proposal.id)
    return f"{prefix}{slug}"


def commit_message(proposal: Proposal, evaluation: Evaluation, plan: Plan) -> str:
    """Conventional-commit subject plus a traceability body."""
    kind = "fix" if plan.estimated_complexity == "low" else "feat"
    subject = proposal.title.replace("\n", " ")[:72]
    body = "\n".join([
        f"Proposal: {proposal.id}",
        f"Author: {proposal.author} ({proposal.source})",
        f"Judge Score: {evaluation.avg_score:.1f}/10",
        f"Verdict: {evaluation.verdict.value}",
        "",
        plan.summary,
        "",
        "Automated by the codevolve evolution pipeline.",
    ])
    return f"{kind}(evolution): {subject}\n\n{body}\n"


def pr_body(
    proposal: Proposal,
    evaluation: Evaluation,
    plan: Plan,
    applied: list[ChangeRecord],
) -> str:
    """Markdown PR description: request, score table, plan, files."""
    scores = evaluation.scores
    file_list = "\n".join(f"- `{c.file_path}` ({c.action})" for c in applied)
    return (
        "## Evolution Proposal\n\n"
        f"**Title:** {proposal.title}\n"
        f"**Author:** {proposal.author} (via {proposal.source})\n"
        f"**Proposal ID:** {proposal.id}\n\n"
        "### Original Request\n"
        f"{proposal.body}\n\n"
        "---\n\n"
        "### Judge Evaluation\n"
        "| Axis | Score |\n|------|-------|\n"
        f"| Relevance | {scores.relevance:g}/10 |\n"
        f"| Value | {scores.value:g}/10 |\n"
        f"| Safety | {scores.safety:g}/10 |\n"
        f"| Feasibility | {scores.feasibility:g}/10 |\n"
        f"| **Average** | **{evaluation.avg_score:.1f}/10** |\n\n"
        f"**Verdict:** {evaluation.verdict.value}\n"
        f"**Summary:** {evaluation.summary}\n\n"
        "---\n\n"
        "### Implementation Plan\n"
        f"{plan.summary or 'No summary'}\n\n"
        f"**Complexity:** {plan.estimated_complexity}\n\n"
        "### Files Changed\n"
        f"{file_list}\n\n"
        "---\n"
        f"*Labels: {', '.join(PR_LABELS)}. Automatically generated by the "
        "codevolve evolution pipeline; review carefully before merging.*\n"
    )


class Committer:
    def __init__(
        self,
        vcs: VersionControl,
        base_branch: str = "main",
        branch_prefix: str = "evolution/",
        direct_commit: bool = False,
    ) -> None:
        self._vcs = vcs
        self.base_branch = base_branch
        self.branch_prefix = branch_prefix
        self.direct_commit = direct_commit

    async def commit(
        self,
        proposal: Proposal,
        evaluation: Evaluation,
        plan: Plan,
        applied: list[ChangeRecord],
    ) -> CommitResult:
        """Never raises; VCS failures come back as ``success=False``."""
        message = commit_message(proposal, evaluation, plan)
        paths = [c.file_path for c in applied]
        try:
            if self.direct_commit:
                return await self._direct_commit(message, paths)
            return await self._pull_request(proposal, evaluation, plan, applied, message, paths)
        except Exception as e:
            logger.error("commit_failed", proposal_id=proposal.id, error=str(e))
            try:
                await self._vcs.checkout(self.base_branch)
            except Exception as checkout_error:
                logger.warning("checkout_base_failed", error=str(checkout_error))
            return CommitResult(success=False, error=str(e))

    async def _direct_commit(self, message: str, paths: list[str]) -> CommitResult:
        await self._vcs.checkout(self.base_branch)
        commit_hash = await self._vcs.stage_and_commit(paths, message)
        await self._vcs.push(self.base_branch)
        logger.info("direct_commit", commit_hash=commit_hash, branch=self.base_branch)
        return CommitResult(success=True, branch=self.base_branch, commit_hash=commit_hash)

    async def _pull_request(
        self,
        proposal: Proposal,
        evaluation: Evaluation,
        plan: Plan,
        applied: list[ChangeRecord],
        message: str,
        paths: list[str],
    ) -> CommitResult:
        branch = branch_name(proposal, self.branch_prefix)

        await self._vcs.checkout(self.base_branch)
        await self._vcs.sync_base(self.base_branch)
        await self._vcs.create_or_reset_branch(branch, self.base_branch)
        commit_hash = await self._vcs.stage_and_commit(paths, message)
        await self._vcs.push(branch, force=True)

        pr_url = None
        pr_error = None
        try:
            pr_url = await self._vcs.open_pull_request(
                base=self.base_branch,
                head=branch,
                title=f"[Evolution] {proposal.title}",
                body=pr_body(proposal, evaluation, plan, applied),
                labels=PR_LABELS,
            )
            logger.info("pull_request_created", url=pr_url, branch=branch)
        except Exception as e:
            pr_error = str(e)
            logger.warning("pull_request_failed", branch=branch, error=pr_error)

        await self._vcs.checkout(self.base_branch)

        return CommitResult(
            success=True,
            branch=branch,
            commit_hash=commit_hash,
            pr_url=pr_url or None,
            pr_error=pr_error,
        )
