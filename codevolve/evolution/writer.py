"""CodeWriter — applies a plan to the working tree and can undo it.

Guardrails per file:
  - path re-checked against the allow/deny rules (the planner's check is
    not the only gate)
  - content size limit
  - existing files copied to a per-run backup directory before overwrite
  - every applied change tracked so the whole run can be rolled back
"""

from __future__ import annotations

import logging
import shutil
import time
from pathlib import Path

from codevolve.evolution.guard import PathGuard
from codevolve.exceptions import RollbackError, WriteError
from codevolve.types import ChangeRecord, Plan, RollbackResult, WriteResult

_logger = logging.getLogger(__name__)

DEFAULT_MAX_FILE_SIZE = 50 * 1024  # bytes


class CodeWriter:
    """Owns the working-tree side effects of one pipeline run."""

    def __init__(
        self,
        project_root: Path | str = ".",
        backup_dir: Path | str | None = None,
        guard: PathGuard | None = None,
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
    ) -> None:
        self._root = Path(project_root).resolve()
        self._backup_dir = (
            Path(backup_dir) if backup_dir is not None
            else self._root / "data" / "evolution" / "backups"
        )
        self._guard = guard or PathGuard()
        self._max_file_size = max_file_size
        self._applied: list[ChangeRecord] = []
        self._run_dir: Path | None = None

    @property
    def run_dir(self) -> Path | None:
        """Backup directory of the most recent apply()."""
        return self._run_dir

    def get_applied_changes(self) -> list[ChangeRecord]:
        return list(self._applied)

    async def apply(self, plan: Plan | None) -> WriteResult:
        """Write every change in the plan. Partial results are returned as-is."""
        if plan is None or not plan.changes:
            return WriteResult(errors=["No changes in plan"])

        self._applied = []
        self._run_dir = self._backup_dir / f"run-{int(time.time() * 1000)}"
        errors: list[str] = []
        touched: set[str] = set()

        for change in plan.changes:
            try:
                if change.action not in ("create", "modify"):
                    raise WriteError(
                        f"Unknown action '{change.action}' for {change.file_path}"
                    )
                path_error = self._guard.check_path(change.file_path)
                if path_error:
                    raise WriteError(path_error)
                if len(change.content.encode("utf-8")) > self._max_file_size:
                    raise WriteError(
                        f"File {change.file_path} exceeds max size "
                        f"({self._max_file_size} bytes)"
                    )

                target = self._resolve(change.file_path)

                if change.file_path in touched:
                    # Already backed up earlier in this run
                    self._write(target, change.content)
                    continue

                backup = None
                if target.exists():
                    backup = self._backup(target, change.file_path)
                    if change.action == "create":
                        _logger.warning(
                            "File exists, overwriting with backup: %s", change.file_path
                        )
                # Recorded before writing so a half-written file is still undone
                record = ChangeRecord(
                    action="modify" if backup else "create",
                    file_path=change.file_path,
                    backup_location=str(backup) if backup else None,
                )
                self._applied.append(record)
                touched.add(change.file_path)
                self._write(target, change.content)
                _logger.info("%s: %s", record.action.capitalize(), change.file_path)

            except WriteError as e:
                errors.append(str(e))
            except OSError as e:
                errors.append(f"Failed to apply {change.file_path}: {e}")

        success = not errors and bool(self._applied)
        if errors and self._applied:
            _logger.warning(
                "Applied %d change(s) with %d error(s)", len(self._applied), len(errors)
            )

        return WriteResult(success=success, applied=list(self._applied), errors=errors)

    async def rollback(self) -> RollbackResult:
        """Undo the last apply(): delete created files, restore modified ones."""
        errors: list[str] = []
        rolled = 0

        for change in reversed(self._applied):
            try:
                target = self._resolve(change.file_path)
                if change.action == "create":
                    if target.exists():
                        target.unlink()
                        rolled += 1
                        _logger.info("Deleted: %s", change.file_path)
                else:
                    backup = Path(change.backup_location) if change.backup_location else None
                    if backup is None or not backup.exists():
                        raise RollbackError(f"no backup at {change.backup_location}")
                    shutil.copy2(backup, target)
                    rolled += 1
                    _logger.info("Restored: %s", change.file_path)
            except (OSError, RollbackError, WriteError) as e:
                errors.append(f"Rollback failed for {change.file_path}: {e}")

        self._applied = []
        if rolled:
            _logger.info("Rolled back %d change(s)", rolled)
        return RollbackResult(success=not errors, rolled=rolled, errors=errors)

    def discard(self) -> None:
        """Forget the last apply() once its changes are committed; files stay as written."""
        if self._applied:
            _logger.debug("Discarding %d applied change record(s)", len(self._applied))
        self._applied = []

    def _resolve(self, file_path: str) -> Path:
        target = (self._root / file_path).resolve()
        if not target.is_relative_to(self._root):
            raise WriteError(f"Path escapes project root: {file_path}")
        return target

    def _backup(self, target: Path, file_path: str) -> Path:
        backup = self._run_dir / file_path
        backup.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(target, backup)
        return backup

    def _write(self, target: Path, content: str) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
