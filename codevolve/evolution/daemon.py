"""Evolution daemon — runs the proposal pipeline on a schedule.

Every cycle:
  1. collect proposals (GitHub issues, local queue)
  2. judge each one (relevance, value, safety, feasibility)
  3. plan approved ones and check the plan against the guardrails
  4. write the change-set with backups
  5. validate (syntax, imports, tests)
  6. commit directly or push a branch and open a PR
  7. roll back on validation or commit failure

Proposals are processed strictly one at a time; the writer, the git
working tree and the backup directory are shared. A daily cap bounds how
many proposals may be committed per calendar day. Every stage transition
is appended to the audit log, and every terminal outcome is written to
the processed store so a proposal is never retried automatically.
"""

from __future__ import annotations

import asyncio
import time
from datetime import date, datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field

from codevolve.audit.log import AuditLog
from codevolve.config import EvolutionSettings
from codevolve.events.bus import (
    DAEMON_ERROR,
    DAEMON_STARTED,
    DAEMON_STOPPED,
    PROPOSAL_COMPLETE,
    EventBus,
)
from codevolve.evolution.committer import Committer
from codevolve.evolution.guard import PathGuard
from codevolve.evolution.inbox import InboxCollector
from codevolve.evolution.judge import ProposalJudge
from codevolve.evolution.lifecycle import ProposalLifecycle, ProposalState
from codevolve.evolution.planner import CodePlanner
from codevolve.evolution.validator import Validator
from codevolve.evolution.vcs import GitVersionControl
from codevolve.evolution.writer import CodeWriter
from codevolve.llm.base import BaseLLMProvider
from codevolve.types import Proposal, Verdict, utcnow

logger = structlog.get_logger()


def seconds_until_midnight(now: datetime | None = None) -> float:
    """Seconds until the next local midnight."""
    now = now or datetime.now()
    midnight = (now + timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    return max((midnight - now).total_seconds(), 1.0)


class DaemonState(BaseModel):
    """All mutable daemon state in one place."""

    running: bool = False
    daily_count: int = 0
    day: date = Field(default_factory=date.today)
    cycles_run: int = 0
    last_cycle_at: datetime | None = None


class EvolutionDaemon:
    """Background daemon that evolves the repository on a schedule."""

    def __init__(
        self,
        inbox: InboxCollector,
        judge: ProposalJudge,
        planner: CodePlanner,
        writer: CodeWriter,
        validator: Validator,
        committer: Committer,
        audit: AuditLog,
        event_bus: EventBus | None = None,
        interval_seconds: float = 3600,
        max_proposals_per_day: int = 10,
        strict_writes: bool = False,
    ) -> None:
        self.inbox = inbox
        self.judge = judge
        self.planner = planner
        self.writer = writer
        self.validator = validator
        self.committer = committer
        self.audit = audit
        self._event_bus = event_bus
        self.interval_seconds = interval_seconds
        self.max_proposals_per_day = max_proposals_per_day
        self.strict_writes = strict_writes

        self._state = DaemonState()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None
        self._reset_task: asyncio.Task | None = None

    @classmethod
    def from_settings(
        cls,
        settings: EvolutionSettings,
        llm: BaseLLMProvider,
        event_bus: EventBus | None = None,
    ) -> "EvolutionDaemon":
        """Wire every stage from one settings object."""
        guard = PathGuard(
            allowed_paths=settings.allowed_paths,
            forbidden_paths=settings.forbidden_paths,
            dangerous_patterns=settings.dangerous_patterns,
        )
        return cls(
            inbox=InboxCollector.from_settings(settings),
            judge=ProposalJudge(
                llm,
                approval_threshold=settings.approval_threshold,
                safety_minimum=settings.safety_minimum,
            ),
            planner=CodePlanner(
                llm,
                project_root=settings.project_root,
                guard=guard,
                max_changes=settings.max_changes,
            ),
            writer=CodeWriter(
                project_root=settings.project_root,
                backup_dir=settings.backup_dir,
                guard=guard,
                max_file_size=settings.max_file_size,
            ),
            validator=Validator(
                project_root=settings.project_root,
                entry_points=settings.entry_points,
                run_tests=settings.run_tests,
                test_command=settings.test_command or None,
                timeout=settings.check_timeout,
                test_timeout=settings.test_timeout,
            ),
            committer=Committer(
                GitVersionControl(
                    project_root=settings.project_root,
                    repo=settings.repo,
                    token=settings.github_token,
                    timeout=settings.git_timeout,
                ),
                base_branch=settings.base_branch,
                branch_prefix=settings.branch_prefix,
                direct_commit=settings.direct_commit,
            ),
            audit=AuditLog(settings.audit_file),
            event_bus=event_bus,
            interval_seconds=settings.interval_seconds,
            max_proposals_per_day=settings.max_proposals_per_day,
            strict_writes=settings.strict_writes,
        )

    # ── Lifecycle ───────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._state.running

    @property
    def state(self) -> DaemonState:
        return self._state.model_copy()

    async def start(self) -> None:
        """Start the cycle loop and the midnight reset timer."""
        if self._state.running:
            logger.warning("evolution_daemon_already_running")
            return
        self._state.running = True
        self._stop_event = asyncio.Event()
        self.reset_daily_counter()

        await self.audit.record("DAEMON_START", interval_seconds=self.interval_seconds)
        await self._emit(
            DAEMON_STARTED, {"interval_seconds": self.interval_seconds}
        )
        self._task = asyncio.create_task(self._run_loop())
        self._reset_task = asyncio.create_task(self._daily_reset_loop())

    async def stop(self) -> None:
        """Stop scheduling cycles. A proposal already in flight finishes."""
        if not self._state.running:
            return
        self._state.running = False
        self._stop_event.set()

        if self._reset_task and not self._reset_task.done():
            self._reset_task.cancel()
            try:
                await self._reset_task
            except asyncio.CancelledError:
                pass
        self._reset_task = None

        if self._task and not self._task.done():
            await self._task
        self._task = None

        await self.audit.record("DAEMON_STOP")
        await self._emit(DAEMON_STOPPED, {})

    def submit_proposal(self, title: str, body: str, author: str = "anonymous") -> Proposal:
        """Queue a proposal; it is picked up on the next cycle."""
        return self.inbox.add_proposal(title, body, author)

    def reset_daily_counter(self) -> None:
        self._state.daily_count = 0
        self._state.day = date.today()

    # ── Cycle ───────────────────────────────────────────────────

    async def run_cycle(self) -> list[str]:
        """Collect a batch and process it sequentially. Returns outcomes."""
        started = time.monotonic()
        self._roll_day()
        self._state.cycles_run += 1
        self._state.last_cycle_at = utcnow()

        if self._state.daily_count >= self.max_proposals_per_day:
            logger.info(
                "evolution_cycle_skipped",
                reason="daily_limit",
                daily_count=self._state.daily_count,
            )
            await self.audit.record(
                "CYCLE_SKIPPED", reason="daily_limit", daily_count=self._state.daily_count
            )
            return []

        proposals = await self.inbox.collect()
        await self.audit.record("CYCLE_START", proposals=len(proposals))

        outcomes: list[str] = []
        for proposal in proposals:
            if self._stop_event.is_set():
                break
            if self._state.daily_count >= self.max_proposals_per_day:
                break
            outcomes.append(await self.process_proposal(proposal))

        logger.info(
            "evolution_cycle_completed",
            processed=len(outcomes),
            elapsed_s=round(time.monotonic() - started, 1),
        )
        return outcomes

    async def process_proposal(self, proposal: Proposal) -> str:
        """Run one proposal through every stage. Returns its outcome tag."""
        lifecycle = ProposalLifecycle(proposal.id)
        logger.info("proposal_start", proposal_id=proposal.id, title=proposal.title)
        await self.audit.record(
            "PROPOSAL_START", id=proposal.id, title=proposal.title, source=proposal.source
        )
        try:
            return await self._run_stages(proposal, lifecycle)
        except Exception as e:
            logger.error("proposal_error", proposal_id=proposal.id, error=str(e))
            rollback = await self.writer.rollback()
            await self.audit.record(
                "PROPOSAL_ERROR",
                id=proposal.id,
                state=lifecycle.state.value,
                error=str(e),
                rolled_back=rollback.rolled,
            )
            await self._emit(DAEMON_ERROR, {"proposal_id": proposal.id, "error": str(e)})
            self.inbox.mark_processed(proposal.id, "error")
            return "error"

    async def _run_stages(self, proposal: Proposal, lifecycle: ProposalLifecycle) -> str:
        pid = proposal.id

        # Judge
        evaluation = await self.judge.evaluate(proposal)
        lifecycle.transition(ProposalState.JUDGED)
        await self.audit.record(
            "PROPOSAL_JUDGED",
            id=pid,
            verdict=evaluation.verdict.value,
            avg_score=evaluation.avg_score,
            scores=evaluation.scores.model_dump(),
            summary=evaluation.summary,
        )
        if evaluation.verdict == Verdict.REJECTED:
            lifecycle.transition(ProposalState.REJECTED)
            return self._finish(pid, "rejected")
        if evaluation.verdict == Verdict.NEEDS_REVIEW:
            lifecycle.transition(ProposalState.NEEDS_REVIEW)
            return self._finish(pid, "needs_review")

        # Plan
        result = await self.planner.plan(proposal, evaluation)
        plan = result.plan
        if not result.valid or plan is None:
            lifecycle.transition(ProposalState.PLAN_INVALID)
            await self.audit.record("PLAN_INVALID", id=pid, errors=result.errors)
            return self._finish(pid, "plan_failed")
        lifecycle.transition(ProposalState.PLANNED)
        await self.audit.record(
            "PLAN_CREATED",
            id=pid,
            changes=len(plan.changes),
            complexity=plan.estimated_complexity,
        )

        # Write
        write = await self.writer.apply(plan)
        if not write.applied:
            lifecycle.transition(ProposalState.WRITE_FAILED)
            await self.audit.record("WRITE_FAILED", id=pid, errors=write.errors)
            return self._finish(pid, "write_failed")
        lifecycle.transition(ProposalState.WRITTEN)
        await self.audit.record(
            "PROPOSAL_WRITTEN",
            id=pid,
            files=[c.file_path for c in write.applied],
            errors=write.errors,
        )
        if write.errors and self.strict_writes:
            lifecycle.transition(ProposalState.WRITE_FAILED)
            await self.audit.record("WRITE_FAILED", id=pid, errors=write.errors, partial=True)
            await self._rollback(pid, lifecycle)
            return self._finish(pid, "write_failed")

        # Validate
        report = await self.validator.validate(write.applied)
        if not report.passed:
            lifecycle.transition(ProposalState.VALIDATION_FAILED)
            await self.audit.record(
                "VALIDATION_FAILED",
                id=pid,
                failed_checks=report.failed_checks,
                details={c.name: c.detail for c in report.checks if not c.passed},
            )
            await self._rollback(pid, lifecycle)
            return self._finish(pid, "validation_failed")
        lifecycle.transition(ProposalState.VALIDATED)
        await self.audit.record(
            "PROPOSAL_VALIDATED", id=pid, checks=[c.name for c in report.checks]
        )

        # Commit
        commit = await self.committer.commit(proposal, evaluation, plan, write.applied)
        if not commit.success:
            lifecycle.transition(ProposalState.COMMIT_FAILED)
            await self.audit.record("COMMIT_FAILED", id=pid, error=commit.error)
            await self._rollback(pid, lifecycle)
            return self._finish(pid, "commit_failed")
        lifecycle.transition(ProposalState.COMMITTED)
        # The commit owns these files now; a later failure must not undo them
        self.writer.discard()
        await self.audit.record(
            "PROPOSAL_COMMITTED", id=pid, branch=commit.branch, commit_hash=commit.commit_hash
        )

        if self.committer.direct_commit:
            outcome = "committed"
        elif commit.pr_url:
            outcome = "pr_created"
        else:
            outcome = "branch_pushed"

        # Persist before the run counts as finished
        self.inbox.mark_processed(pid, outcome)
        self._state.daily_count += 1
        lifecycle.transition(ProposalState.COMPLETE)
        await self.audit.record(
            "PROPOSAL_COMPLETE",
            id=pid,
            title=proposal.title,
            branch=commit.branch,
            commit_hash=commit.commit_hash,
            pr_url=commit.pr_url,
            pr_error=commit.pr_error,
            outcome=outcome,
        )
        logger.info(
            "proposal_complete",
            proposal_id=pid,
            outcome=outcome,
            commit_hash=commit.commit_hash,
            pr_url=commit.pr_url,
        )
        await self._emit(PROPOSAL_COMPLETE, {
            "proposal": {"id": pid, "title": proposal.title},
            "evaluation": {
                "verdict": evaluation.verdict.value,
                "avg_score": evaluation.avg_score,
            },
            "commit": commit.model_dump(),
        })
        return outcome

    async def _rollback(self, proposal_id: str, lifecycle: ProposalLifecycle) -> None:
        result = await self.writer.rollback()
        lifecycle.transition(ProposalState.ROLLED_BACK)
        await self.audit.record(
            "PROPOSAL_ROLLED_BACK",
            id=proposal_id,
            rolled=result.rolled,
            success=result.success,
            errors=result.errors,
        )

    def _finish(self, proposal_id: str, outcome: str) -> str:
        self.inbox.mark_processed(proposal_id, outcome)
        logger.info("proposal_finished", proposal_id=proposal_id, outcome=outcome)
        return outcome

    # ── Timers ──────────────────────────────────────────────────

    def _roll_day(self) -> None:
        if self._state.day != date.today():
            self.reset_daily_counter()

    async def _run_loop(self) -> None:
        """Run a cycle now, then every interval until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("evolution_daemon_cycle_failed", error=str(e))
                await self.audit.record("CYCLE_ERROR", error=str(e))
                await self._emit(DAEMON_ERROR, {"error": str(e)})

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue

    async def _daily_reset_loop(self) -> None:
        while True:
            await asyncio.sleep(seconds_until_midnight())
            self.reset_daily_counter()
            logger.info("daily_counter_reset")
            await self.audit.record("DAILY_RESET")

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, data, source="evolution_daemon")
