"""Core types shared across the evolution pipeline."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field, field_validator

ProposalId: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Proposals ────────────────────────────────────────────────────────────────


class Proposal(BaseModel):
    """A normalized request for a code change, from any source."""

    model_config = ConfigDict(frozen=True)

    id: ProposalId
    source: str
    author: str = "anonymous"
    title: str
    body: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    raw: dict[str, Any] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class ProcessedRecord(BaseModel):
    outcome: str
    processed_at: datetime = Field(default_factory=utcnow)


# ── Evaluation ───────────────────────────────────────────────────────────────


class Verdict(str, Enum):
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


SCORE_AXES = ("relevance", "value", "safety", "feasibility")


class Scores(BaseModel):
    model_config = ConfigDict(frozen=True)

    relevance: float = 0.0
    value: float = 0.0
    safety: float = 0.0
    feasibility: float = 0.0

    @property
    def average(self) -> float:
        return (self.relevance + self.value + self.safety + self.feasibility) / 4


class Evaluation(BaseModel):
    """The judge's scored verdict on a proposal."""

    model_config = ConfigDict(frozen=True)

    verdict: Verdict
    scores: Scores = Field(default_factory=Scores)
    reasons: dict[str, str] = Field(default_factory=dict)
    summary: str = ""
    avg_score: float = 0.0


# ── Plans ────────────────────────────────────────────────────────────────────

COMPLEXITIES = ("low", "medium", "high")


class FileChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: str = ""  # create, modify
    file_path: str = Field(default="", alias="filePath")
    description: str = ""
    content: str = ""

    @field_validator("action", "file_path", "description", "content", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class Plan(BaseModel):
    """Concrete list of file operations implementing an approved proposal."""

    model_config = ConfigDict(populate_by_name=True)

    summary: str = ""
    rationale: str = ""
    estimated_complexity: str = Field(default="medium", alias="estimatedComplexity")
    changes: list[FileChange] = Field(default_factory=list)
    exports: list[Any] = Field(default_factory=list)
    test_cases: list[Any] = Field(default_factory=list, alias="testCases")

    @field_validator("estimated_complexity", mode="before")
    @classmethod
    def _normalize_complexity(cls, value: Any) -> str:
        text = str(value or "").strip().lower()
        return text if text in COMPLEXITIES else "medium"


class PlanResult(BaseModel):
    plan: Plan | None = None
    valid: bool = False
    errors: list[str] = Field(default_factory=list)


# ── Writing ──────────────────────────────────────────────────────────────────


class ChangeRecord(BaseModel):
    """One applied file change. Opaque rollback token outside the writer."""

    model_config = ConfigDict(frozen=True)

    action: str  # effective action: create, modify
    file_path: str
    backup_location: str | None = None


class WriteResult(BaseModel):
    success: bool = False
    applied: list[ChangeRecord] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


class RollbackResult(BaseModel):
    success: bool = True
    rolled: int = 0
    errors: list[str] = Field(default_factory=list)


# ── Validation ───────────────────────────────────────────────────────────────


class CheckResult(BaseModel):
    name: str
    passed: bool
    detail: str = ""
    exports: list[str] = Field(default_factory=list)


class ValidationReport(BaseModel):
    passed: bool = True
    checks: list[CheckResult] = Field(default_factory=list)

    @property
    def failed_checks(self) -> list[str]:
        return [c.name for c in self.checks if not c.passed]


# ── Commit ───────────────────────────────────────────────────────────────────


class CommitResult(BaseModel):
    success: bool = False
    branch: str = ""
    commit_hash: str = ""
    pr_url: str | None = None
    error: str | None = None
    pr_error: str | None = None  # branch pushed but the pull request was not opened


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(extra="allow")

    timestamp: datetime = Field(default_factory=utcnow)
    event: str
