"""CodePlanner — turns an approved proposal into a concrete change-set.

The oracle sees a snapshot of the project tree plus the proposal and the
judge's notes, and answers with a structured plan. The plan is parsed
defensively and then checked against every write rule before anything
touches disk: change count, allow/deny paths, dangerous content, and
non-empty content for new files. An invalid plan is discarded.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from codevolve.llm.base import BaseLLMProvider, LLMMessage
from codevolve.evolution.guard import PathGuard
from codevolve.evolution.parsing import ParseFailure, parse_oracle_json
from codevolve.types import Evaluation, Plan, PlanResult, Proposal

_logger = logging.getLogger(__name__)

MAX_CHANGES = 10

TREE_EXCLUDE = {
    "node_modules", "data", "__pycache__", "venv", "env",
    "build", "dist", "backups", "site-packages",
}
TREE_EXTENSIONS = {".py", ".pyi", ".js", ".mjs", ".ts", ".json", ".md", ".toml"}

PLANNER_PROMPT = """You are a senior software engineer planning code changes for an open-source project.

PROJECT STRUCTURE:
{tree}

RULES:
- You can ONLY modify or create files within these allowed paths: {allowed}
- You MUST NEVER touch these paths: {forbidden}
- Follow the existing code style and patterns
- Keep changes minimal and focused; at most {max_changes} files
- Each file change must include the FULL new content (not diffs)
- Never spawn processes, run shell commands, or delete files

RESPOND ONLY WITH VALID JSON:
{{
  "plan": {{
    "summary": "Brief description of what will be implemented",
    "rationale": "Why this approach was chosen",
    "estimatedComplexity": "low" | "medium" | "high",
    "changes": [
      {{
        "action": "create" | "modify",
        "filePath": "relative/path/to/file.py",
        "description": "What this change does",
        "content": "FULL file content"
      }}
    ],
    "exports": [{{"file": "package/__init__.py", "add": "ClassName"}}],
    "testCases": ["Description of what should be tested"]
  }}
}}"""


def _listing(directory: Path) -> list[Path]:
    try:
        names = sorted(os.listdir(directory))
    except OSError:
        return []  # unreadable directory
    return [
        directory / name for name in names
        if not name.startswith(".") and name not in TREE_EXCLUDE
    ]


def build_project_tree(root: Path | str, max_depth: int = 6) -> str:
    """Indented listing of directories and source files with sizes.

    Iterative (explicit stack), never follows symlinked directories and
    remembers visited inodes, so cycles and deep trees are bounded.
    """
    root = Path(root)
    lines: list[str] = []
    visited: set[tuple[int, int]] = set()
    stack: list[tuple[Path, int]] = [(p, 0) for p in reversed(_listing(root))]

    while stack:
        path, depth = stack.pop()
        prefix = "  " * depth
        try:
            if path.is_symlink():
                continue
            st = path.stat()
            if path.is_dir():
                lines.append(f"{prefix}{path.name}/")
                key = (st.st_dev, st.st_ino)
                if depth + 1 >= max_depth or key in visited:
                    continue
                visited.add(key)
                stack.extend((child, depth + 1) for child in reversed(_listing(path)))
            elif path.suffix in TREE_EXTENSIONS:
                lines.append(f"{prefix}{path.name} ({st.st_size / 1024:.1f}kB)")
        except OSError:
            continue

    return "\n".join(lines)


def validate_plan(plan: Plan | None, guard: PathGuard, max_changes: int = MAX_CHANGES) -> list[str]:
    """Every invariant the plan violates; empty means the plan may be written."""
    if plan is None:
        return ["Plan has no changes array"]
    if not plan.changes:
        return ["Plan has zero changes"]

    errors: list[str] = []
    if len(plan.changes) > max_changes:
        errors.append(
            f"Too many changes ({len(plan.changes)}). "
            f"Maximum is {max_changes} per proposal."
        )

    for change in plan.changes:
        if change.action not in ("create", "modify"):
            errors.append(f"Unknown action '{change.action}' for {change.file_path}")
        errors.extend(guard.path_errors(change.file_path))
        errors.extend(guard.content_errors(change.file_path, change.content))
        if change.action == "create" and not change.content.strip():
            errors.append(f"Create action for {change.file_path} has no content")

    return errors


class CodePlanner:
    """Asks the oracle for an implementation plan and validates it."""

    def __init__(
        self,
        llm: BaseLLMProvider,
        project_root: Path | str = ".",
        guard: PathGuard | None = None,
        max_changes: int = MAX_CHANGES,
    ) -> None:
        self._llm = llm
        self._root = Path(project_root)
        self._guard = guard or PathGuard()
        self._max_changes = max_changes

    async def plan(self, proposal: Proposal, evaluation: Evaluation) -> PlanResult:
        system = PLANNER_PROMPT.format(
            tree=build_project_tree(self._root),
            allowed=", ".join(self._guard.allowed_paths),
            forbidden=", ".join(self._guard.forbidden_paths),
            max_changes=self._max_changes,
        )
        user_content = (
            "APPROVED PROPOSAL:\n"
            f"Title: {proposal.title}\n"
            f"Description: {proposal.body[:8000]}\n\n"
            "JUDGE NOTES:\n"
            f"{evaluation.summary}\n"
            f"Feasibility: {evaluation.scores.feasibility:g}/10\n"
            f"Value: {evaluation.scores.value:g}/10\n\n"
            "Generate a detailed implementation plan."
        )

        try:
            response = await self._llm.complete(
                messages=[LLMMessage(role="user", content=user_content)],
                system=system,
                max_tokens=8192,
                temperature=0.3,
            )
        except Exception as e:
            _logger.error("Planning failed for '%s': %s", proposal.title, e)
            return PlanResult(errors=[f"Planning failed: {e}"])

        parsed = parse_oracle_json(response.content)
        if isinstance(parsed, ParseFailure):
            return PlanResult(errors=[f"Failed to parse plan: {parsed.raw_text[:200]}"])

        try:
            plan = self._to_plan(parsed.data)
        except (ValidationError, TypeError) as e:
            return PlanResult(errors=[f"Malformed plan: {e}"])

        errors = validate_plan(plan, self._guard, self._max_changes)
        if errors:
            _logger.warning("Plan has %d validation error(s): %s", len(errors), "; ".join(errors))
        else:
            _logger.info(
                "Plan generated: %d file change(s), complexity %s",
                len(plan.changes) if plan else 0,
                plan.estimated_complexity if plan else "-",
            )

        return PlanResult(plan=plan, valid=not errors, errors=errors)

    def _to_plan(self, data: dict[str, Any]) -> Plan | None:
        body = data.get("plan", data)
        if not isinstance(body, dict):
            return None
        if not isinstance(body.get("changes"), list):
            return None
        return Plan.model_validate(body)
