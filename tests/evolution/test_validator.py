"""Tests for the post-write Validator."""

import sys

import pytest

from codevolve.evolution.validator import Validator, module_name
from codevolve.types import ChangeRecord


@pytest.fixture
def project(tmp_path):
    (tmp_path / "core").mkdir()
    (tmp_path / "core" / "__init__.py").write_text("", encoding="utf-8")
    (tmp_path / "core" / "greeting.py").write_text(
        "__all__ = ['greet']\n\ndef greet(name):\n    return f'hi {name}'\n",
        encoding="utf-8",
    )
    return tmp_path


def _record(path, action="create"):
    return ChangeRecord(action=action, file_path=path)


def test_module_name():
    assert module_name("core/greeting.py") == "core.greeting"
    assert module_name("core/__init__.py") == "core"
    assert module_name("core.greeting") == "core.greeting"


@pytest.mark.asyncio
async def test_syntax_ok(project):
    report = await Validator(project).validate([_record("core/greeting.py")])
    assert report.passed
    assert [c.name for c in report.checks] == ["syntax:core/greeting.py"]


@pytest.mark.asyncio
async def test_syntax_error_fails(project):
    (project / "core" / "broken.py").write_text("def broken(:\n", encoding="utf-8")

    report = await Validator(project).validate([_record("core/broken.py")])

    assert not report.passed
    assert report.failed_checks == ["syntax:core/broken.py"]
    assert report.checks[0].detail.startswith("Syntax error: line 1")


@pytest.mark.asyncio
async def test_invalid_json_fails(project):
    (project / "core" / "config.json").write_text("{'single': quotes}", encoding="utf-8")

    report = await Validator(project).validate([_record("core/config.json")])

    assert report.failed_checks == ["syntax:core/config.json"]


@pytest.mark.asyncio
async def test_non_python_files_not_checked(project):
    (project / "core" / "NewModule.js").write_text("module.exports = {};\n", encoding="utf-8")

    report = await Validator(project).validate([_record("core/NewModule.js")])

    assert report.passed
    assert report.checks == []


@pytest.mark.asyncio
async def test_import_probe_records_exports(project):
    validator = Validator(project, entry_points=["core/greeting.py"])

    report = await validator.validate([])

    assert report.passed
    check = report.checks[0]
    assert check.name == "imports:core/greeting.py"
    assert check.exports == ["greet"]


@pytest.mark.asyncio
async def test_import_error_fails(project):
    (project / "core" / "bad.py").write_text("import does_not_exist_anywhere\n", encoding="utf-8")
    validator = Validator(project, entry_points=["core.bad"])

    report = await validator.validate([])

    assert report.failed_checks == ["imports:core.bad"]
    assert "ModuleNotFoundError" in report.checks[0].detail


@pytest.mark.asyncio
async def test_checks_are_independent(project):
    """A crashing check is recorded and the remaining checks still run."""
    validator = Validator(project, entry_points=["core.greeting"])

    report = await validator.validate([_record("core/vanished.py")])

    assert not report.passed
    assert report.failed_checks == ["syntax:core/vanished.py"]
    assert report.checks[0].detail.startswith("Check crashed")
    assert report.checks[1].name == "imports:core.greeting"
    assert report.checks[1].passed


@pytest.mark.asyncio
async def test_test_suite_pass_and_fail(project):
    passing = Validator(project, run_tests=True, test_command=[sys.executable, "-c", "pass"])
    failing = Validator(
        project,
        run_tests=True,
        test_command=[sys.executable, "-c", "print('1 failed'); raise SystemExit(1)"],
    )

    ok = await passing.validate([])
    bad = await failing.validate([])

    assert ok.passed
    assert ok.checks[0].name == "test-suite"
    assert not bad.passed
    assert "1 failed" in bad.checks[0].detail


@pytest.mark.asyncio
async def test_test_suite_timeout_is_a_failure(project):
    validator = Validator(
        project,
        run_tests=True,
        test_command=[sys.executable, "-c", "import time; time.sleep(10)"],
        test_timeout=0.5,
    )

    report = await validator.validate([])

    assert report.failed_checks == ["test-suite"]
    assert "Timeout" in report.checks[0].detail
