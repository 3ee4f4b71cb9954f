"""Validator — post-write checks that decide between commit and rollback.

Checks, each run independently so the report is never short-circuited:
  1. syntax     — every changed .py file parses (ast, never executed);
                  changed .json files load
  2. imports    — every configured entry point imports cleanly in an
                  isolated interpreter; its exported names are recorded
  3. test-suite — optional full test run with a bounded timeout
"""

from __future__ import annotations

import ast
import json
import logging
import sys
import textwrap
from pathlib import Path

from codevolve.evolution.process import run_command
from codevolve.types import ChangeRecord, CheckResult, ValidationReport

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15.0  # seconds per check
DEFAULT_TEST_TIMEOUT = 60.0

IMPORT_PROBE = textwrap.dedent("""\
    import importlib
    import json
    import sys
    sys.path.insert(0, ".")
    try:
        module = importlib.import_module(sys.argv[1])
    except BaseException as e:
        print(json.dumps({"ok": False, "error": f"{type(e).__name__}: {e}"}))
    else:
        names = getattr(module, "__all__", None)
        if names is None:
            names = [n for n in vars(module) if not n.startswith("_")]
        print(json.dumps({"ok": True, "exports": sorted(str(n) for n in names)}))
""")


def module_name(entry_point: str) -> str:
    """'pkg/sub/mod.py' -> 'pkg.sub.mod'; dotted names pass through."""
    if not entry_point.endswith(".py") and "/" not in entry_point:
        return entry_point
    path = Path(entry_point.replace("\\", "/"))
    parts = list(path.with_suffix("").parts)
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


class Validator:
    """Runs the post-write checks against the working tree."""

    def __init__(
        self,
        project_root: Path | str = ".",
        entry_points: list[str] | None = None,
        run_tests: bool = False,
        test_command: list[str] | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        test_timeout: float = DEFAULT_TEST_TIMEOUT,
    ) -> None:
        self._root = Path(project_root)
        self.entry_points = list(entry_points or [])
        self.run_tests = run_tests
        self._test_command = list(test_command or [sys.executable, "-m", "pytest", "-q"])
        self._timeout = timeout
        self._test_timeout = test_timeout

    async def validate(self, applied: list[ChangeRecord]) -> ValidationReport:
        checks: list[CheckResult] = []

        for change in applied:
            if Path(change.file_path).suffix in (".py", ".pyi", ".json"):
                name = f"syntax:{change.file_path}"
                checks.append(self._guarded(name, lambda c=change: self.check_syntax(c.file_path)))

        for entry in self.entry_points:
            name = f"imports:{entry}"
            try:
                checks.append(await self.check_imports(entry))
            except Exception as e:
                checks.append(CheckResult(name=name, passed=False, detail=f"Check crashed: {e}"))

        if self.run_tests:
            try:
                checks.append(await self.run_test_suite())
            except Exception as e:
                checks.append(CheckResult(name="test-suite", passed=False, detail=f"Tests failed: {e}"))

        report = ValidationReport(passed=all(c.passed for c in checks), checks=checks)
        if report.passed:
            _logger.info("All %d check(s) passed", len(checks))
        else:
            _logger.error(
                "%d/%d check(s) failed: %s",
                len(report.failed_checks), len(checks), ", ".join(report.failed_checks),
            )
        return report

    def check_syntax(self, file_path: str) -> CheckResult:
        name = f"syntax:{file_path}"
        path = self._root / file_path
        source = path.read_text(encoding="utf-8")
        try:
            if path.suffix == ".json":
                json.loads(source)
            else:
                ast.parse(source, filename=file_path)
        except SyntaxError as e:
            return CheckResult(name=name, passed=False, detail=f"Syntax error: line {e.lineno}: {e.msg}")
        except ValueError as e:
            return CheckResult(name=name, passed=False, detail=f"Syntax error: {str(e)[:200]}")
        return CheckResult(name=name, passed=True, detail="Syntax OK")

    async def check_imports(self, entry_point: str) -> CheckResult:
        """Import the entry point in a fresh interpreter."""
        name = f"imports:{entry_point}"
        result = await run_command(
            [sys.executable, "-c", IMPORT_PROBE, module_name(entry_point)],
            cwd=self._root,
            timeout=self._timeout,
        )
        lines = result.stdout.strip().splitlines()
        try:
            parsed = json.loads(lines[-1]) if lines else None
        except json.JSONDecodeError:
            parsed = None

        if not isinstance(parsed, dict):
            detail = result.output[:200] or f"exit code {result.returncode}"
            return CheckResult(name=name, passed=False, detail=f"Import failed: {detail}")
        if not parsed.get("ok"):
            return CheckResult(name=name, passed=False, detail=f"Import error: {parsed.get('error', '')[:200]}")

        exports = [str(n) for n in parsed.get("exports", [])]
        return CheckResult(
            name=name,
            passed=True,
            detail=f"Exports: {', '.join(exports)}"[:500],
            exports=exports,
        )

    async def run_test_suite(self) -> CheckResult:
        result = await run_command(self._test_command, cwd=self._root, timeout=self._test_timeout)
        if result.ok:
            return CheckResult(name="test-suite", passed=True, detail="All tests passed")
        output = (result.stdout or result.stderr).strip()
        return CheckResult(name="test-suite", passed=False, detail=f"Tests failed: {output[-300:]}")

    @staticmethod
    def _guarded(name: str, check) -> CheckResult:
        try:
            return check()
        except Exception as e:
            return CheckResult(name=name, passed=False, detail=f"Check crashed: {e}")
